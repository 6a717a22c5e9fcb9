"""
Error taxonomy for the crop / re-encode pipeline.

Every error carries a ``message_key`` that the i18n layer turns into a
user-facing message. Geometry never raises for bad drag input, so there is
no error type for constraint violations.
"""
from typing import List, Optional


class CardCropperError(Exception):
    message_key = "could_not_process_image"

    def user_message(self, **kwargs) -> str:
        from card_cropper.i18n import tr
        return tr(self.message_key, **kwargs)


class InvalidSource(CardCropperError):
    """The image could not be probed, or reported non-positive dimensions."""
    message_key = "cannot_load_image"

    def __init__(self, uri: str, reason: str = ""):
        self.uri = uri
        self.reason = reason
        super().__init__(f"Cannot load image {uri}: {reason}" if reason else f"Cannot load image {uri}")


class UnsupportedFormat(InvalidSource):
    message_key = "unsupported_format"

    def __init__(self, uri: str, mime_type: Optional[str]):
        self.mime_type = mime_type
        super().__init__(uri, f"unsupported MIME type {mime_type!r}")


class CodecError(CardCropperError):
    """Decode, crop, resize or encode failed (including timeouts)."""
    message_key = "could_not_process_image"


class OversizedError(CardCropperError):
    """The attempt ceiling was exhausted without meeting the byte budget."""
    message_key = "image_too_large"

    def __init__(self, attempts: List, max_bytes: int, hard_ceiling: int, message_key: Optional[str] = None):
        self.attempts = list(attempts)
        self.max_bytes = max_bytes
        self.hard_ceiling = hard_ceiling
        if message_key:
            self.message_key = message_key
        last = self.attempts[-1].size_bytes if self.attempts else None
        super().__init__(
            f"Encoded image is {last} bytes after {len(self.attempts)} attempts "
            f"(budget {max_bytes}, hard ceiling {hard_ceiling})"
        )

    def user_message(self, **kwargs) -> str:
        kwargs.setdefault("limit_kb", self.hard_ceiling // 1000)
        return super().user_message(**kwargs)


class PipelineCancelled(CardCropperError):
    """The caller tore down (modal closed or new image) before the next step."""

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Request {request_id} cancelled")
