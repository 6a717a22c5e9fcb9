"""
Medical certificate intake.

Pick -> validate MIME -> bake orientation -> (auto-crop) -> manual crop ->
compress under 1 MB.
"""
import dataclasses
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from card_cropper import config
from card_cropper.codec import EncodedImage, EncodeOptions, ImageCodec
from card_cropper.encoder import SizeBoundedEncoder
from card_cropper.errors import CardCropperError, CodecError, UnsupportedFormat


@dataclass(frozen=True)
class CompressedImage:
    uri: str
    mime_type: str
    size: int
    width: Optional[int]
    height: Optional[int]
    base64: str


def ensure_supported_mime(mime_type: Optional[str], uri: str = "") -> str:
    """Only JPEG and PNG are accepted; an unknown type is treated as JPEG."""
    if not mime_type:
        return "image/jpeg"
    mime_type = mime_type.lower()
    if mime_type not in config.SUPPORTED_MIME_TYPES:
        raise UnsupportedFormat(uri, mime_type)
    return mime_type


def _format_for(mime_type: str) -> str:
    return "png" if mime_type == "image/png" else "jpeg"


def normalize_orientation(codec: ImageCodec, uri: str, mime_type: Optional[str] = None) -> EncodedImage:
    """
    Re-encode at full quality with a zero rotation so EXIF orientation is
    baked into the pixels; the result is the candidate for manual cropping.
    """
    mime_type = ensure_supported_mime(mime_type, uri)
    try:
        return codec.manipulate(
            uri,
            {"rotate": 0},
            EncodeOptions(format=_format_for(mime_type), quality=1.0, emit_base64=False),
        )
    except CardCropperError:
        raise
    except Exception as e:
        raise CodecError(f"Could not normalise {uri}: {e}") from e


def auto_crop_document(uri: str, width: Optional[int] = None, height: Optional[int] = None,
                       format_hint: Optional[str] = None) -> Optional[EncodedImage]:
    """Document edge detection hook. Not implemented: always None, so the manual crop runs."""
    return None


def compress_image_to_max_size(
    codec: ImageCodec,
    uri: str,
    mime_type: Optional[str] = "image/jpeg",
    max_size_bytes: int = config.CERTIFICATE_BUDGET.max_bytes,
    initial_width: Optional[int] = None,
    initial_height: Optional[int] = None,
    budget: config.EncodeBudget = config.CERTIFICATE_BUDGET,
    call_timeout: Optional[float] = config.DEFAULT_CALL_TIMEOUT,
) -> CompressedImage:
    """
    Certificate compression loop. PNG starts lossless and falls back to
    JPEG; JPEG steps its quality down. Every attempt re-encodes `uri`.

    Raises:
        OversizedError: still above max_size_bytes after the last attempt
    """
    mime_type = ensure_supported_mime(mime_type, uri)
    budget = dataclasses.replace(
        budget,
        max_bytes=max_size_bytes,
        hard_ceiling_bytes=None,
        format=_format_for(mime_type),
    )

    encoder = SizeBoundedEncoder(codec, budget, call_timeout=call_timeout)
    try:
        outcome = encoder.encode(uri)
    finally:
        encoder.close()

    image = outcome.image
    logger.info(f"[Certificate] {image.mime_type} {outcome.final.size_bytes} bytes after {len(outcome.attempts)} encodes")
    return CompressedImage(
        uri=image.uri,
        mime_type=image.mime_type,
        size=outcome.final.size_bytes,
        width=image.width or initial_width,
        height=image.height or initial_height,
        base64=image.base64,
    )
