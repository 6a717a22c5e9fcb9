import threading
from typing import Optional

from card_cropper import config
from card_cropper.codec import ImageCodec
from card_cropper.config import EncodeBudget
from card_cropper.encoder import CompressionAttempt, SizeBoundedEncoder
from card_cropper.errors import CardCropperError, InvalidSource, PipelineCancelled
from card_cropper.geometry import CropRect, DisplaySize
from card_cropper.logger import create_logger
from card_cropper.mapping import CoordinateMapper, ImageSize
from card_cropper.pipeline.request import CropRequest, CropResult
from card_cropper.pipeline.state import PipelineState, PipelineStateMachine


class PipelineOrchestrator:
    """
    Runs one confirm action: mapping -> encoding -> compression -> CropResult.

    Uses the request-id pattern for liveness: every run and every cancel()
    bumps the id, and each step checks its own id is still current before
    doing work. A torn-down run stops at its next step and cleans up its
    temp files instead of delivering a result.
    """

    def __init__(
        self,
        codec: ImageCodec,
        budget: EncodeBudget = config.CARD_BUDGET,
        call_timeout: Optional[float] = config.DEFAULT_CALL_TIMEOUT,
    ):
        self.codec = codec
        self.budget = budget
        self.call_timeout = call_timeout

        self.lock = threading.Lock()
        self.current_request_id = 0
        self.machine = PipelineStateMachine()

    @property
    def state(self) -> PipelineState:
        return self.machine.state

    @property
    def attempt(self) -> Optional[int]:
        return self.machine.attempt

    def is_current(self, request_id: int) -> bool:
        with self.lock:
            return request_id == self.current_request_id

    def begin_cropping(self):
        """Enter (or re-enter) the Cropping state for a fresh or retried selection."""
        with self.lock:
            if self.machine.busy:
                # Superseded run: make it stale so it stops at its next step
                self.current_request_id += 1
                self.machine.reset()
            self.machine.to(PipelineState.CROPPING)

    def cancel(self):
        """Tear down: any run in flight stops before its next step."""
        with self.lock:
            self.current_request_id += 1
            self.machine.reset()

    def run(
        self,
        source_uri: str,
        final_rect: CropRect,
        display_size: DisplaySize,
        image_size: ImageSize,
        budget: Optional[EncodeBudget] = None,
    ) -> CropResult:
        """
        Map, encode and compress; returns a within-budget CropResult.

        Raises:
            OversizedError: attempt ceiling exhausted, no result produced
            CodecError: decode/encode failure or timeout
            InvalidSource: sizes unusable for mapping
            PipelineCancelled: cancel() or a newer run happened meanwhile
        """
        request = self._new_request(source_uri, final_rect, display_size, image_size, budget or self.budget)
        log = create_logger(f"req-{request.request_id}")
        log.info(f"Confirm crop of {source_uri} rect={final_rect.as_tuple()}")

        try:
            self._advance(request, PipelineState.MAPPING)
            try:
                mapper = CoordinateMapper(request.display_size, request.image_size)
            except ValueError as e:
                raise InvalidSource(source_uri, str(e)) from e
            region = mapper.to_source(request.rect)
            log.debug(f"Mapped to source region {region.to_dict()} of {image_size.width}x{image_size.height}")

            self._advance(request, PipelineState.ENCODING)

            def on_attempt(index: int, attempt: CompressionAttempt):
                # Over budget with attempts left: the encoder re-encodes next
                if request.budget.wants_reencode(index + 1, attempt.size_bytes, attempt.format):
                    self._advance(request, PipelineState.COMPRESSING, index + 1)

            encoder = SizeBoundedEncoder(
                self.codec,
                request.budget,
                call_timeout=self.call_timeout,
                is_alive=lambda: self.is_current(request.request_id),
                on_attempt=on_attempt,
                request_id=request.request_id,
                log=log,
            )
            try:
                outcome = encoder.encode(source_uri, region)
            finally:
                encoder.close()

            if not self.is_current(request.request_id):
                self.codec.release(outcome.image.uri)
                raise PipelineCancelled(request.request_id)

            image = outcome.image
            result = CropResult(
                uri=image.uri,
                width=image.width,
                height=image.height,
                base64=image.base64,
                size_bytes=outcome.final.size_bytes,
                mime_type=image.mime_type,
                region=region,
                attempts=list(outcome.attempts),
            )
            self._advance(request, PipelineState.DONE)
            log.success(
                f"Crop ready: {result.width}x{result.height}, {result.size_bytes} bytes "
                f"after {outcome.reencodes} re-encodes"
            )
            return result

        except PipelineCancelled:
            log.info("Cancelled before completion")
            raise
        except CardCropperError as e:
            with self.lock:
                if request.request_id == self.current_request_id:
                    self.machine.fail(e)
            log.warning(f"Crop failed: {e}")
            raise

    def _new_request(self, source_uri, rect, display_size, image_size, budget) -> CropRequest:
        with self.lock:
            if self.machine.busy:
                self.machine.reset()
            if self.machine.state is not PipelineState.CROPPING:
                self.machine.to(PipelineState.CROPPING)
            self.current_request_id += 1
            return CropRequest(
                source_uri=source_uri,
                rect=rect,
                display_size=display_size,
                image_size=image_size,
                budget=budget,
                request_id=self.current_request_id,
            )

    def _advance(self, request: CropRequest, state: PipelineState, attempt: Optional[int] = None):
        with self.lock:
            if request.request_id != self.current_request_id:
                raise PipelineCancelled(request.request_id)
            self.machine.to(state, attempt)
