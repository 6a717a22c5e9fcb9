"""
Image codec: metadata probe plus crop / resize / rotate and JPEG or PNG
encoding, backed by Pillow. HEIC/HEIF phone photos decode through
pillow_heif.

Every encode writes a temporary file; its path is the result's ``uri``.
Callers hand files back with ``release()`` once an attempt is superseded.
"""
import base64
import io
import os
import shutil
import tempfile
import threading
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, TypedDict

import pillow_heif
from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError

from card_cropper.errors import CodecError, InvalidSource
from card_cropper.mapping import CropRegion, ImageSize

pillow_heif.register_heif_opener()


class ManipulateOps(TypedDict, total=False):
    """Operations applied in order: rotate, crop, resize."""
    rotate: int                   # degrees clockwise, multiple of 90
    crop: CropRegion
    resize: Tuple[int, int]       # (width, height)


@dataclass(frozen=True)
class EncodeOptions:
    format: str = "jpeg"          # "jpeg" | "png"
    quality: float = 0.7          # 0..1, ignored for PNG
    emit_base64: bool = True


@dataclass(frozen=True)
class EncodedImage:
    uri: str
    width: int
    height: int
    base64: Optional[str] = None
    byte_size: Optional[int] = None   # authoritative size when the codec knows it

    @property
    def mime_type(self) -> str:
        return "image/png" if self.uri.lower().endswith(".png") else "image/jpeg"


class ImageCodec(Protocol):
    def probe(self, uri: str) -> ImageSize: ...

    def manipulate(self, uri: str, ops: ManipulateOps, options: EncodeOptions) -> EncodedImage: ...

    def release(self, uri: str) -> None: ...


class PillowCodec:
    """
    ImageCodec on top of Pillow.

    EXIF orientation is applied on every decode, so probe() and manipulate()
    agree on what "width" and "height" mean.
    """

    def __init__(self, work_dir: Optional[str] = None):
        self._own_dir = work_dir is None
        self._work_dir = work_dir
        self._produced = set()
        self._lock = threading.Lock()

    @property
    def work_dir(self) -> str:
        if self._work_dir is None:
            self._work_dir = tempfile.mkdtemp(prefix="card_cropper_")
        return self._work_dir

    def probe(self, uri: str) -> ImageSize:
        try:
            with Image.open(uri) as img:
                img = ImageOps.exif_transpose(img)
                width, height = img.size
        except (OSError, UnidentifiedImageError, ValueError, Image.DecompressionBombError) as e:
            logger.warning(f"[Codec] Probe failed for {uri}: {e}")
            raise InvalidSource(uri, str(e)) from e

        if width <= 0 or height <= 0:
            raise InvalidSource(uri, f"non-positive dimensions {width}x{height}")
        return ImageSize(width, height)

    def manipulate(self, uri: str, ops: ManipulateOps, options: EncodeOptions) -> EncodedImage:
        fmt = options.format.lower()
        if fmt not in ("jpeg", "png"):
            raise CodecError(f"Unsupported output format: {options.format}")

        try:
            with Image.open(uri) as src:
                img = ImageOps.exif_transpose(src)
                img.load()
        except (OSError, UnidentifiedImageError, ValueError, Image.DecompressionBombError) as e:
            raise CodecError(f"Failed to decode {uri}: {e}") from e

        try:
            rotate = ops.get("rotate", 0) % 360
            if rotate:
                # PIL rotates counter-clockwise
                img = img.rotate(-rotate, expand=True)

            region = ops.get("crop")
            if region is not None:
                self._check_region(region, img.size, uri)
                img = img.crop(region.box)

            resize = ops.get("resize")
            if resize is not None:
                new_w, new_h = resize
                if new_w <= 0 or new_h <= 0:
                    raise CodecError(f"Invalid resize target: {resize}")
                img = img.resize((new_w, new_h), resample=Image.Resampling.LANCZOS)

            payload = self._encode(img, fmt, options.quality)
        except (OSError, ValueError) as e:
            raise CodecError(f"Failed to process {uri}: {e}") from e

        out_path = self._write(payload, ".png" if fmt == "png" else ".jpg")
        width, height = img.size
        logger.debug(f"[Codec] {fmt.upper()} q={options.quality:.2f} {width}x{height} -> {len(payload)} bytes")

        return EncodedImage(
            uri=out_path,
            width=width,
            height=height,
            base64=base64.b64encode(payload).decode("ascii") if options.emit_base64 else None,
            byte_size=len(payload),
        )

    def release(self, uri: str) -> None:
        """Delete a file this codec produced. Foreign paths are left alone."""
        with self._lock:
            if uri not in self._produced:
                return
            self._produced.discard(uri)
        try:
            os.remove(uri)
        except FileNotFoundError:
            pass

    def close(self):
        """Remove every file still held; the work dir too if we created it."""
        with self._lock:
            leftovers = list(self._produced)
            self._produced.clear()
        for path in leftovers:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
        if self._own_dir and self._work_dir is not None:
            shutil.rmtree(self._work_dir, ignore_errors=True)
            self._work_dir = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @staticmethod
    def _check_region(region: CropRegion, size: Tuple[int, int], uri: str):
        w, h = size
        left, top, right, bottom = region.box
        if region.width <= 0 or region.height <= 0 or left < 0 or top < 0 or right > w or bottom > h:
            raise CodecError(f"Crop {region.to_dict()} outside {w}x{h} image {uri}")

    @staticmethod
    def _encode(img: Image.Image, fmt: str, quality: float) -> bytes:
        buf = io.BytesIO()
        if fmt == "jpeg":
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                # JPEG has no alpha: flatten onto white like a scanned page
                rgba = img.convert("RGBA")
                flat = Image.new("RGB", rgba.size, (255, 255, 255))
                flat.paste(rgba, mask=rgba.getchannel("A"))
                img = flat
            elif img.mode != "RGB":
                img = img.convert("RGB")
            img.save(
                buf,
                format="JPEG",
                quality=max(1, min(95, int(round(quality * 100)))),
                optimize=True,
            )
        else:
            if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                img = img.convert("RGBA")
            img.save(buf, format="PNG", optimize=True)
        return buf.getvalue()

    def _write(self, payload: bytes, suffix: str) -> str:
        fd, path = tempfile.mkstemp(suffix=suffix, dir=self.work_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        with self._lock:
            self._produced.add(path)
        return path
