"""
Central configuration for card-cropper.

Geometry constants, encode budgets and the user settings file
(~/.card_cropper/config.json).
"""
import dataclasses
import json
import os
from dataclasses import dataclass
from typing import Literal, Optional

from loguru import logger

# Geometry (display pixels)
MIN_RECT_SIZE = 80.0
INSET_MARGIN = 0.08  # initial crop inset per side, fraction of each dimension

# Display fitting, mirrors the modal layout
HORIZONTAL_PADDING = 32
MAX_HEIGHT_RATIO = 0.6
DEFAULT_WINDOW = (390, 844)

# Codec
DEFAULT_CALL_TIMEOUT = 30.0  # seconds per codec call
SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png")

CONFIG_DIR = os.path.expanduser('~/.card_cropper')
CONFIG_FILE = os.path.join(CONFIG_DIR, 'config.json')

ImageFormat = Literal["jpeg", "png"]
ReencodeSource = Literal["previous", "original"]


@dataclass(frozen=True)
class EncodeBudget:
    """
    Re-encoding policy: how large the output may be and how the compression
    loop gets there.

    max_bytes:            success threshold for an attempt
    hard_ceiling_bytes:   accepted after the last attempt (None = max_bytes)
    max_edge_pixels:      longest output edge before encoding (None = no limit)
    max_attempts:         re-encodes after the first encode
    reencode_from:        "previous" feeds each attempt the last output,
                          "original" re-crops the source every time
    png_fallback_quality: when set, an oversized PNG switches to JPEG at this quality
    trust_codec_size:     prefer the codec's byte count over the base64 estimate
    """
    max_bytes: int
    max_edge_pixels: Optional[int] = None
    format: ImageFormat = "jpeg"
    initial_quality: float = 0.7
    quality_step: float = 0.1
    min_quality: float = 0.4
    max_attempts: int = 3
    hard_ceiling_bytes: Optional[int] = None
    reencode_from: ReencodeSource = "previous"
    png_fallback_quality: Optional[float] = None
    emit_base64: bool = True
    trust_codec_size: bool = True
    oversize_message_key: str = "image_too_large"

    def __post_init__(self):
        if self.max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {self.max_bytes}")
        if self.max_edge_pixels is not None and self.max_edge_pixels <= 0:
            raise ValueError(f"max_edge_pixels must be positive, got {self.max_edge_pixels}")
        if self.format not in ("jpeg", "png"):
            raise ValueError(f"Unsupported format: {self.format}")
        for name in ("initial_quality", "min_quality"):
            q = getattr(self, name)
            if not 0.0 < q <= 1.0:
                raise ValueError(f"{name} must be in (0, 1], got {q}")
        if self.min_quality > self.initial_quality:
            raise ValueError("min_quality cannot exceed initial_quality")
        if self.quality_step <= 0:
            raise ValueError(f"quality_step must be positive, got {self.quality_step}")
        if self.max_attempts < 0:
            raise ValueError(f"max_attempts cannot be negative, got {self.max_attempts}")
        if self.hard_ceiling_bytes is not None and self.hard_ceiling_bytes < self.max_bytes:
            raise ValueError("hard_ceiling_bytes cannot be below max_bytes")
        if self.reencode_from not in ("previous", "original"):
            raise ValueError(f"Unknown reencode_from: {self.reencode_from}")

    @property
    def hard_ceiling(self) -> int:
        return self.hard_ceiling_bytes if self.hard_ceiling_bytes is not None else self.max_bytes

    def wants_reencode(self, encodes_done: int, size: int, fmt: str) -> bool:
        """Whether the compression loop encodes again after `encodes_done` encodes ended at `size`."""
        if size <= self.max_bytes or encodes_done > self.max_attempts:
            return False
        # Quality has no effect on lossless PNG
        return fmt != "png" or self.png_fallback_quality is not None


# Membership card: ~300 KB stored inline in the profile document
CARD_BUDGET = EncodeBudget(
    max_bytes=285_000,
    hard_ceiling_bytes=300_000,
    max_edge_pixels=1400,
    format="jpeg",
    initial_quality=0.7,
    quality_step=0.1,
    min_quality=0.4,
    max_attempts=3,
    reencode_from="previous",
)

# Medical certificate: 1 MB, keeps full resolution
CERTIFICATE_BUDGET = EncodeBudget(
    max_bytes=1_000_000,
    max_edge_pixels=None,
    format="jpeg",
    initial_quality=0.92,
    quality_step=0.15,
    min_quality=0.3,
    max_attempts=6,
    reencode_from="original",
    png_fallback_quality=0.85,
    oversize_message_key="certificate_too_large",
)

BUDGETS = {
    "card": CARD_BUDGET,
    "certificate": CERTIFICATE_BUDGET,
}


@dataclass(frozen=True)
class Settings:
    language: str = "en"
    call_timeout: Optional[float] = DEFAULT_CALL_TIMEOUT
    budgets: dict = dataclasses.field(default_factory=dict)


def load_settings(path: str = CONFIG_FILE) -> Settings:
    """Load user settings; a missing or malformed file yields defaults."""
    if not os.path.exists(path):
        return Settings()
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return Settings()
    if not isinstance(raw, dict):
        logger.warning(f"Ignoring config {path}: expected a JSON object")
        return Settings()

    timeout = raw.get('call_timeout', DEFAULT_CALL_TIMEOUT)
    if timeout is not None:
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            logger.warning(f"Invalid call_timeout {timeout!r}, using default")
            timeout = DEFAULT_CALL_TIMEOUT

    budgets = raw.get('budgets', {})
    if not isinstance(budgets, dict):
        budgets = {}

    return Settings(
        language=str(raw.get('language', 'en')),
        call_timeout=timeout,
        budgets=budgets,
    )


def budget_for(name: str, settings: Optional[Settings] = None) -> EncodeBudget:
    """Named preset with the user's overrides applied. Bad overrides are logged and ignored."""
    if name not in BUDGETS:
        raise KeyError(f"Unknown budget {name!r}; expected one of {sorted(BUDGETS)}")
    budget = BUDGETS[name]
    overrides = (settings.budgets if settings else {}).get(name) or {}
    if not isinstance(overrides, dict):
        logger.warning(f"Ignoring budget overrides for {name}: expected an object, got {overrides!r}")
        return budget
    if not overrides:
        return budget

    known = {f.name for f in dataclasses.fields(EncodeBudget)}
    unknown = set(overrides) - known
    if unknown:
        logger.warning(f"Ignoring unknown budget keys for {name}: {sorted(unknown)}")
    try:
        return dataclasses.replace(budget, **{k: v for k, v in overrides.items() if k in known})
    except (TypeError, ValueError) as e:
        logger.warning(f"Ignoring budget overrides for {name}, using defaults: {e}")
        return budget
