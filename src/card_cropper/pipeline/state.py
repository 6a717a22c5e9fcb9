from enum import Enum
from typing import Optional


class PipelineState(Enum):
    IDLE = "idle"
    CROPPING = "cropping"
    MAPPING = "mapping"
    ENCODING = "encoding"
    COMPRESSING = "compressing"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.CROPPING},
    PipelineState.CROPPING: {PipelineState.CROPPING, PipelineState.MAPPING, PipelineState.IDLE},
    PipelineState.MAPPING: {PipelineState.ENCODING, PipelineState.FAILED, PipelineState.IDLE},
    PipelineState.ENCODING: {PipelineState.COMPRESSING, PipelineState.DONE, PipelineState.FAILED, PipelineState.IDLE},
    PipelineState.COMPRESSING: {PipelineState.COMPRESSING, PipelineState.DONE, PipelineState.FAILED, PipelineState.IDLE},
    # A finished confirm leaves the session open for another try
    PipelineState.DONE: {PipelineState.CROPPING, PipelineState.IDLE},
    PipelineState.FAILED: {PipelineState.CROPPING, PipelineState.IDLE},
}


class PipelineStateMachine:
    """
    Idle -> Cropping -> Mapping -> Encoding -> Compressing(k) -> Done | Failed

    Cropping may be re-entered any number of times before a confirm; the
    mapping/encoding/compressing steps run once per confirm.
    """

    def __init__(self):
        self.state = PipelineState.IDLE
        self.attempt: Optional[int] = None
        self.error: Optional[BaseException] = None

    def to(self, state: PipelineState, attempt: Optional[int] = None):
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {state.value}")
        self.state = state
        self.attempt = attempt if state is PipelineState.COMPRESSING else None
        if state is not PipelineState.FAILED:
            self.error = None

    def fail(self, error: BaseException):
        self.to(PipelineState.FAILED)
        self.error = error

    def reset(self):
        self.state = PipelineState.IDLE
        self.attempt = None
        self.error = None

    @property
    def busy(self) -> bool:
        return self.state in (PipelineState.MAPPING, PipelineState.ENCODING, PipelineState.COMPRESSING)
