"""
Crop modal controller.

Owns the geometry engine for the photo on screen and wires confirm
actions to the pipeline. Rendering is the host's job: it reads
``display_size`` / ``rect`` and forwards drag events here.
"""
from typing import Callable, Optional, Tuple

from loguru import logger

from card_cropper import config
from card_cropper.codec import ImageCodec
from card_cropper.config import EncodeBudget
from card_cropper.errors import InvalidSource
from card_cropper.geometry import CropGeometryEngine, CropRect, DisplaySize, fit_display_size
from card_cropper.mapping import ImageSize
from card_cropper.pipeline.processor import PipelineOrchestrator
from card_cropper.pipeline.request import CropResult
from card_cropper.pipeline.state import PipelineState


class CropModal:
    """
    Host contract: open(uri), drag through begin/update/end, then confirm()
    or cancel().

    on_confirm only ever receives a CropResult that met the budget. A failed
    confirm raises and leaves the session open so the user can adjust the
    rectangle and try again.
    """

    def __init__(
        self,
        codec: ImageCodec,
        on_confirm: Callable[[CropResult], None],
        on_cancel: Optional[Callable[[], None]] = None,
        budget: EncodeBudget = config.CARD_BUDGET,
        window: Tuple[float, float] = config.DEFAULT_WINDOW,
        min_size: float = config.MIN_RECT_SIZE,
        margin: float = config.INSET_MARGIN,
        call_timeout: Optional[float] = config.DEFAULT_CALL_TIMEOUT,
    ):
        self.codec = codec
        self.on_confirm = on_confirm
        self.on_cancel = on_cancel
        self.budget = budget
        self.window = window
        self.min_size = min_size
        self.margin = margin
        self.orchestrator = PipelineOrchestrator(codec, budget, call_timeout)

        self.visible = False
        self.image_uri: Optional[str] = None
        self.image_size: Optional[ImageSize] = None
        self.display_size: Optional[DisplaySize] = None
        self.engine: Optional[CropGeometryEngine] = None

    @property
    def rect(self) -> Optional[CropRect]:
        return self.engine.rect if self.engine else None

    @property
    def state(self) -> PipelineState:
        return self.orchestrator.state

    def open(self, uri: str) -> CropRect:
        """Load a photo; any run for the previous photo is cancelled first."""
        self.orchestrator.cancel()
        self._clear()

        image_size = self.codec.probe(uri)
        try:
            display_size = fit_display_size(image_size.width, image_size.height, *self.window)
        except ValueError as e:
            raise InvalidSource(uri, str(e)) from e

        self.image_uri = uri
        self.image_size = image_size
        self.display_size = display_size
        self.engine = CropGeometryEngine(display_size, self.min_size, self.margin)
        self.orchestrator.begin_cropping()
        self.visible = True
        logger.info(
            f"[Modal] Opened {uri}: {image_size.width}x{image_size.height} "
            f"shown at {display_size.width:.1f}x{display_size.height:.1f}"
        )
        return self.engine.rect

    def begin_drag(self, handle) -> bool:
        engine = self._require_engine()
        started = engine.begin_session(handle)
        if started and self.orchestrator.state in (PipelineState.DONE, PipelineState.FAILED):
            self.orchestrator.begin_cropping()
        return started

    def update_drag(self, dx: float, dy: float) -> CropRect:
        return self._require_engine().update(dx, dy)

    def end_drag(self):
        self._require_engine().end_session()

    def reset_rect(self) -> CropRect:
        engine = self._require_engine()
        engine.reset()
        return engine.rect

    def confirm(self) -> CropResult:
        """
        Crop and compress the current selection.

        Raises:
            OversizedError / CodecError: the session stays open for a retry
            PipelineCancelled: the modal was closed or reopened meanwhile
        """
        engine = self._require_engine()
        # A drag still in progress is committed as-is
        engine.end_session()

        result = self.orchestrator.run(
            self.image_uri,
            engine.rect,
            self.display_size,
            self.image_size,
            self.budget,
        )
        self.on_confirm(result)
        return result

    def cancel(self):
        """User dismissed the modal."""
        self.close()
        if self.on_cancel:
            self.on_cancel()

    def close(self):
        self.orchestrator.cancel()
        self._clear()

    def _clear(self):
        self.visible = False
        self.image_uri = None
        self.image_size = None
        self.display_size = None
        self.engine = None

    def _require_engine(self) -> CropGeometryEngine:
        if self.engine is None:
            raise RuntimeError("No image is open in the crop modal")
        return self.engine
