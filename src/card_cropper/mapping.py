from dataclasses import dataclass
from typing import Dict, Tuple

from card_cropper.geometry import CropRect, DisplaySize
from card_cropper.utils import round_half_up


@dataclass(frozen=True)
class ImageSize:
    """Source photo dimensions in pixels."""
    width: int
    height: int


@dataclass(frozen=True)
class CropRegion:
    """Integer crop region in source space."""
    origin_x: int
    origin_y: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """(left, upper, right, lower), the box PIL's Image.crop expects."""
        return (self.origin_x, self.origin_y, self.origin_x + self.width, self.origin_y + self.height)

    def to_dict(self) -> Dict[str, int]:
        return {
            "originX": self.origin_x,
            "originY": self.origin_y,
            "width": self.width,
            "height": self.height,
        }


class CoordinateMapper:
    """
    Translates display-space rectangles to source-pixel crop regions.

    Rounding can shrink the region by up to one pixel per edge; it never
    grows past the image.
    """

    def __init__(self, display_size: DisplaySize, image_size: ImageSize):
        if not (display_size.width > 0 and display_size.height > 0):
            raise ValueError(f"Display size must be positive, got {display_size}")
        if image_size.width <= 0 or image_size.height <= 0:
            raise ValueError(f"Image size must be positive, got {image_size}")
        self.display_size = display_size
        self.image_size = image_size
        self.scale_x = image_size.width / display_size.width
        self.scale_y = image_size.height / display_size.height

    def to_source(self, rect: CropRect) -> CropRegion:
        origin_x, width = self._axis(rect.left, rect.right, self.display_size.width, self.image_size.width)
        origin_y, height = self._axis(rect.top, rect.bottom, self.display_size.height, self.image_size.height)
        return CropRegion(origin_x, origin_y, width, height)

    def to_display(self, region: CropRegion) -> CropRect:
        """Inverse mapping, used to check round trips and to redraw a stored region."""
        return CropRect(
            left=region.origin_x / self.scale_x,
            top=region.origin_y / self.scale_y,
            right=(region.origin_x + region.width) / self.scale_x,
            bottom=(region.origin_y + region.height) / self.scale_y,
        )

    @staticmethod
    def _axis(lo: float, hi: float, display: float, limit: int) -> Tuple[int, int]:
        origin = max(0, round_half_up(lo / display * limit))
        # Keep at least one pixel inside the image
        origin = min(origin, limit - 1)
        length = round_half_up((hi - lo) / display * limit)
        length = max(1, min(length, limit - origin))
        return origin, length
