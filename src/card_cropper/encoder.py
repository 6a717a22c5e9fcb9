"""
Compress-to-budget encoder.

Crop, downscale to the longest-edge limit, encode, then lower the quality
step by step until the payload fits the byte budget or the attempt ceiling
is reached. The loop is bounded: at most ``1 + budget.max_attempts`` codec
calls per run.
"""
import concurrent.futures
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from loguru import logger

from card_cropper.codec import EncodedImage, EncodeOptions, ImageCodec, ManipulateOps
from card_cropper.config import EncodeBudget
from card_cropper.errors import CodecError, CardCropperError, OversizedError, PipelineCancelled
from card_cropper.mapping import CropRegion
from card_cropper.utils import round_half_up


@dataclass(frozen=True)
class CompressionAttempt:
    quality: float
    format: str
    size_bytes: int


@dataclass
class EncodeOutcome:
    image: EncodedImage
    attempts: List[CompressionAttempt] = field(default_factory=list)

    @property
    def final(self) -> CompressionAttempt:
        return self.attempts[-1]

    @property
    def reencodes(self) -> int:
        return len(self.attempts) - 1


def estimate_base64_size(payload: Optional[str]) -> int:
    """
    Decoded byte count of a base64 payload: ceil(len * 3/4) minus padding.
    An approximation of the encoded file size, not the authoritative one.
    """
    if not payload:
        return 0
    padding = len(payload) - len(payload.rstrip("="))
    return math.ceil(len(payload) * 3 / 4) - padding


def downscale_dimensions(width: int, height: int, max_edge: Optional[int]) -> Optional[Tuple[int, int]]:
    """Target size when the longest edge exceeds max_edge, else None."""
    if max_edge is None:
        return None
    longest = max(width, height)
    if longest <= max_edge:
        return None
    scale = max_edge / longest
    return max(1, round_half_up(width * scale)), max(1, round_half_up(height * scale))


class SizeBoundedEncoder:
    """
    Drives an ImageCodec until the output fits an EncodeBudget.

    Args:
        codec: the image codec (only I/O dependency)
        budget: byte / edge / quality policy
        call_timeout: seconds allowed per codec call, None = unbounded
        is_alive: checked before every codec call; False aborts with PipelineCancelled
        on_attempt: called as (attempt_index, CompressionAttempt) after each measurement
        request_id: reported by PipelineCancelled
    """

    def __init__(
        self,
        codec: ImageCodec,
        budget: EncodeBudget,
        call_timeout: Optional[float] = None,
        is_alive: Optional[Callable[[], bool]] = None,
        on_attempt: Optional[Callable[[int, CompressionAttempt], None]] = None,
        request_id: int = -1,
        log=logger,
    ):
        self.codec = codec
        self.budget = budget
        self.call_timeout = call_timeout
        self.is_alive = is_alive or (lambda: True)
        self.on_attempt = on_attempt
        self.request_id = request_id
        self.log = log
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None

    def encode(self, uri: str, region: Optional[CropRegion] = None) -> EncodeOutcome:
        budget = self.budget
        ops: ManipulateOps = {}
        if region is not None:
            ops["crop"] = region
            target = downscale_dimensions(region.width, region.height, budget.max_edge_pixels)
            if target is not None:
                ops["resize"] = target
                self.log.debug(f"Downscale {region.width}x{region.height} -> {target[0]}x{target[1]}")
        elif budget.max_edge_pixels is not None:
            size = self.codec.probe(uri)
            target = downscale_dimensions(size.width, size.height, budget.max_edge_pixels)
            if target is not None:
                ops["resize"] = target

        fmt = budget.format
        quality = budget.initial_quality if fmt == "jpeg" else 1.0
        attempts: List[CompressionAttempt] = []

        result = self._call(uri, ops, EncodeOptions(fmt, quality, budget.emit_base64))
        try:
            size = self._measure(result, fmt, quality, attempts)

            while budget.wants_reencode(len(attempts), size, fmt):
                fmt, quality = self._next_step(fmt, quality)
                if budget.reencode_from == "previous":
                    source, step_ops = result.uri, {}
                else:
                    source, step_ops = uri, ops
                previous = result
                result = self._call(source, step_ops, EncodeOptions(fmt, quality, budget.emit_base64))
                self.codec.release(previous.uri)
                size = self._measure(result, fmt, quality, attempts)
        except CardCropperError:
            self.codec.release(result.uri)
            raise

        if size > budget.hard_ceiling or (budget.emit_base64 and not result.base64):
            self.codec.release(result.uri)
            self.log.warning(
                f"Budget not met after {len(attempts)} encodes: {size} bytes > {budget.hard_ceiling}"
            )
            raise OversizedError(attempts, budget.max_bytes, budget.hard_ceiling, budget.oversize_message_key)

        return EncodeOutcome(result, attempts)

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _next_step(self, fmt: str, quality: float) -> Tuple[str, float]:
        budget = self.budget
        if fmt == "png" and budget.png_fallback_quality is not None:
            return "jpeg", budget.png_fallback_quality
        # Avoid drift like 0.7 - 0.1 = 0.59999...
        return fmt, round(max(budget.min_quality, quality - budget.quality_step), 4)

    def _measure(self, result: EncodedImage, fmt: str, quality: float,
                 attempts: List[CompressionAttempt]) -> int:
        if self.budget.trust_codec_size and result.byte_size is not None:
            size = result.byte_size
        else:
            size = estimate_base64_size(result.base64)
        attempt = CompressionAttempt(quality=quality, format=fmt, size_bytes=size)
        attempts.append(attempt)
        self.log.info(f"Attempt {len(attempts)}: {fmt} q={quality:.2f} -> {size} bytes (budget {self.budget.max_bytes})")
        if self.on_attempt:
            self.on_attempt(len(attempts) - 1, attempt)
        return size

    def _call(self, uri: str, ops: ManipulateOps, options: EncodeOptions) -> EncodedImage:
        if not self.is_alive():
            raise PipelineCancelled(self.request_id)

        try:
            if self.call_timeout is None:
                return self.codec.manipulate(uri, ops, options)
            return self._call_bounded(uri, ops, options)
        except CardCropperError:
            raise
        except Exception as e:
            raise CodecError(f"Codec failure on {uri}: {e}") from e

    def _call_bounded(self, uri: str, ops: ManipulateOps, options: EncodeOptions) -> EncodedImage:
        if self._executor is None:
            # One worker: attempts stay strictly sequential
            self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="codec")
        future = self._executor.submit(self.codec.manipulate, uri, ops, options)
        try:
            return future.result(timeout=self.call_timeout)
        except concurrent.futures.TimeoutError as e:
            future.add_done_callback(self._release_late)
            # The stuck worker would block the next call; start fresh
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            raise CodecError(f"Codec call exceeded {self.call_timeout:.1f}s") from e

    def _release_late(self, future: concurrent.futures.Future):
        if future.cancelled() or future.exception() is not None:
            return
        self.codec.release(future.result().uri)
