from dataclasses import dataclass, field
from typing import List, Optional

from card_cropper.config import EncodeBudget
from card_cropper.encoder import CompressionAttempt
from card_cropper.geometry import CropRect, DisplaySize
from card_cropper.mapping import CropRegion, ImageSize


@dataclass(frozen=True)
class CropRequest:
    """Immutable snapshot of one confirm action. Later drags cannot leak into a running request."""
    source_uri: str
    rect: CropRect
    display_size: DisplaySize
    image_size: ImageSize
    budget: EncodeBudget
    request_id: int


@dataclass(frozen=True)
class CropResult:
    """Final artifact; only ever built from an attempt that met the budget."""
    uri: str
    width: int
    height: int
    base64: Optional[str] = None
    size_bytes: int = 0
    mime_type: str = "image/jpeg"
    region: Optional[CropRegion] = None
    attempts: List[CompressionAttempt] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "uri": self.uri,
            "width": self.width,
            "height": self.height,
            "base64": self.base64,
        }
