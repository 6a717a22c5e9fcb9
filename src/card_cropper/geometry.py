import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from loguru import logger

from card_cropper import config
from card_cropper.utils import clamp, finite_or_zero


class Handle(str, Enum):
    MOVE = "move"
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"
    TOP_LEFT = "topLeft"
    TOP_RIGHT = "topRight"
    BOTTOM_LEFT = "bottomLeft"
    BOTTOM_RIGHT = "bottomRight"

    @property
    def moves_left(self) -> bool:
        return self in (Handle.LEFT, Handle.TOP_LEFT, Handle.BOTTOM_LEFT)

    @property
    def moves_right(self) -> bool:
        return self in (Handle.RIGHT, Handle.TOP_RIGHT, Handle.BOTTOM_RIGHT)

    @property
    def moves_top(self) -> bool:
        return self in (Handle.TOP, Handle.TOP_LEFT, Handle.TOP_RIGHT)

    @property
    def moves_bottom(self) -> bool:
        return self in (Handle.BOTTOM, Handle.BOTTOM_LEFT, Handle.BOTTOM_RIGHT)


@dataclass(frozen=True)
class DisplaySize:
    width: float
    height: float


@dataclass(frozen=True)
class CropRect:
    """Crop rectangle in display space (floating point pixels)."""
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.left, self.top, self.right, self.bottom)


def fit_display_size(
    image_width: int,
    image_height: int,
    window_width: float,
    window_height: float,
    horizontal_padding: float = config.HORIZONTAL_PADDING,
    max_height_ratio: float = config.MAX_HEIGHT_RATIO,
) -> DisplaySize:
    """
    Size of the rendered image inside the crop sheet: full width minus
    padding, aspect preserved, capped at a fraction of the window height.
    """
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"Invalid image size: {image_width}x{image_height}")

    max_width = window_width - horizontal_padding * 2
    max_height = window_height * max_height_ratio
    if max_width <= 0 or max_height <= 0:
        raise ValueError(f"Window too small: {window_width}x{window_height}")

    width = max_width
    height = (image_height / image_width) * width
    if height > max_height:
        height = max_height
        width = (image_width / image_height) * height
    return DisplaySize(width, height)


def initial_rect(display: DisplaySize, margin: float = config.INSET_MARGIN,
                 min_size: float = config.MIN_RECT_SIZE) -> CropRect:
    """Centered rect inset by `margin` of each dimension, never smaller than min_size."""
    margin_x = display.width * margin
    margin_y = display.height * margin
    left, right = _widen_span(margin_x, display.width - margin_x, min(min_size, display.width), display.width)
    top, bottom = _widen_span(margin_y, display.height - margin_y, min(min_size, display.height), display.height)
    return CropRect(left, top, right, bottom)


def _widen_span(lo: float, hi: float, min_len: float, limit: float) -> Tuple[float, float]:
    if hi - lo >= min_len:
        return lo, hi
    mid = (lo + hi) / 2
    lo = clamp(mid - min_len / 2, 0.0, limit - min_len)
    return _hold_min_len(lo, min(limit, lo + min_len), min_len, limit)


def _shift_span(lo: float, hi: float, delta: float, limit: float, min_len: float) -> Tuple[float, float]:
    # One delta for both edges keeps the length, up to rounding
    delta = clamp(delta, -lo, limit - hi)
    return _hold_min_len(max(0.0, lo + delta), min(limit, hi + delta), min_len, limit)


def _hold_min_len(lo: float, hi: float, min_len: float, limit: float,
                  grow_hi: bool = True) -> Tuple[float, float]:
    """
    Push one edge out by single ulps until hi - lo >= min_len holds exactly.

    lo + min_len - lo can land one ulp short of min_len. The preferred edge
    moves unless it already sits on its bound, then the other one does.
    """
    while hi - lo < min_len:
        if (grow_hi and hi < limit) or lo <= 0.0:
            hi = min(limit, math.nextafter(hi, math.inf))
        else:
            lo = max(0.0, math.nextafter(lo, -math.inf))
    return lo, hi


class CropGeometryEngine:
    """
    Owns one crop rectangle in display space and applies drag sessions to it.

    - begin_session(handle) snapshots the rect as the anchor
    - update(dx, dy) recomputes the rect from the anchor and the cumulative delta
    - end_session() makes the last result the new baseline

    Invariants after every call:
        0 <= left < right <= width, 0 <= top < bottom <= height,
        right - left >= min_size, bottom - top >= min_size
    """

    def __init__(self, display_size: DisplaySize, min_size: float = config.MIN_RECT_SIZE,
                 margin: float = config.INSET_MARGIN):
        if not (display_size.width > 0 and display_size.height > 0):
            raise ValueError(f"Display size must be positive, got {display_size}")
        if min_size <= 0:
            raise ValueError(f"min_size must be positive, got {min_size}")

        self.display_size = display_size
        self.margin = margin
        self.min_size = min_size
        # A display narrower than min_size can only hold a full-width rect
        self.min_width = min(min_size, display_size.width)
        self.min_height = min(min_size, display_size.height)

        self._rect = initial_rect(display_size, margin, min_size)
        self._handle: Optional[Handle] = None
        self._anchor: Optional[CropRect] = None

    @property
    def rect(self) -> CropRect:
        return self._rect

    @property
    def active_handle(self) -> Optional[Handle]:
        return self._handle

    @property
    def session_active(self) -> bool:
        return self._handle is not None

    def begin_session(self, handle) -> bool:
        """Start a drag. Returns False (and changes nothing) if one is already running."""
        if self._handle is not None:
            logger.debug(f"[Crop] Rejected {handle}: session {self._handle.value} still active")
            return False
        self._handle = Handle(handle)
        self._anchor = self._rect
        logger.debug(f"[Crop] Session start: {self._handle.value} @ {self._anchor.as_tuple()}")
        return True

    def update(self, dx: float, dy: float) -> CropRect:
        """Apply the cumulative drag delta of the active session."""
        if self._handle is None:
            return self._rect

        dx = finite_or_zero(dx)
        dy = finite_or_zero(dy)

        if self._handle is Handle.MOVE:
            self._rect = self._moved(self._anchor, dx, dy)
        else:
            self._rect = self._resized(self._anchor, self._handle, dx, dy)
        return self._rect

    def end_session(self):
        if self._handle is not None:
            logger.debug(f"[Crop] Session end: {self._handle.value} -> {self._rect.as_tuple()}")
        self._handle = None
        self._anchor = None

    def reset(self):
        """Back to the centered inset rect; drops any active session."""
        self._handle = None
        self._anchor = None
        self._rect = initial_rect(self.display_size, self.margin, self.min_size)

    def _moved(self, base: CropRect, dx: float, dy: float) -> CropRect:
        left, right = _shift_span(base.left, base.right, dx, self.display_size.width, self.min_width)
        top, bottom = _shift_span(base.top, base.bottom, dy, self.display_size.height, self.min_height)
        return CropRect(left, top, right, bottom)

    def _resized(self, base: CropRect, handle: Handle, dx: float, dy: float) -> CropRect:
        w = self.display_size.width
        h = self.display_size.height
        left, top, right, bottom = base.as_tuple()

        # Bounds first, then min size; min size wins, pulling the edge back toward the anchor
        if handle.moves_left:
            left = min(clamp(base.left + dx, 0.0, w), base.right - self.min_width)
        if handle.moves_right:
            right = max(clamp(base.right + dx, 0.0, w), base.left + self.min_width)
        if handle.moves_top:
            top = min(clamp(base.top + dy, 0.0, h), base.bottom - self.min_height)
        if handle.moves_bottom:
            bottom = max(clamp(base.bottom + dy, 0.0, h), base.top + self.min_height)

        left, right = _hold_min_len(max(0.0, left), min(w, right), self.min_width, w,
                                    grow_hi=not handle.moves_left)
        top, bottom = _hold_min_len(max(0.0, top), min(h, bottom), self.min_height, h,
                                    grow_hi=not handle.moves_top)
        return CropRect(left, top, right, bottom)
