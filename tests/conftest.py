"""Shared fixtures: a scripted codec and small generated photos."""

import base64
import os
import tempfile
import threading
import time

# Keep test runs out of the user's log directory
os.environ.setdefault("CARD_CROPPER_LOG_DIR", tempfile.mkdtemp(prefix="card_cropper_logs_"))

import pytest
from PIL import Image

from card_cropper.codec import EncodedImage
from card_cropper.errors import CodecError, InvalidSource
from card_cropper.mapping import ImageSize


class FakeCodec:
    """
    ImageCodec double. Each manipulate() call returns the next scripted byte
    size (the last one repeats) and tracks which outputs are still alive.
    """

    def __init__(self, sizes=(100_000,), image_size=(4000, 3000), probe_error=False,
                 fail_on=None, delay=0.0, on_call=None):
        self.sizes = list(sizes)
        self.image_size = ImageSize(*image_size)
        self.probe_error = probe_error
        self.fail_on = fail_on
        self.delay = delay
        self.on_call = on_call

        self.calls = []
        self.released = []
        self.live = set()
        self._dims = {}
        self._lock = threading.Lock()

    def script(self, sizes):
        self.sizes = list(sizes)
        self.calls = []

    def probe(self, uri):
        if self.probe_error:
            raise InvalidSource(uri, "scripted probe failure")
        return self.image_size

    def manipulate(self, uri, ops, options):
        with self._lock:
            index = len(self.calls)
            self.calls.append((uri, dict(ops), options))
        if self.on_call:
            self.on_call(index)
        if self.fail_on is not None and index == self.fail_on:
            raise CodecError("scripted codec failure")
        if self.delay:
            time.sleep(self.delay)

        width, height = self._dims.get(uri, (self.image_size.width, self.image_size.height))
        if "crop" in ops:
            width, height = ops["crop"].width, ops["crop"].height
        if "resize" in ops:
            width, height = ops["resize"]

        size = self.sizes[min(index, len(self.sizes) - 1)]
        ext = "png" if options.format == "png" else "jpg"
        out = f"fake://out-{index}.{ext}"
        with self._lock:
            self.live.add(out)
            self._dims[out] = (width, height)
        payload = base64.b64encode(b"\0" * size).decode("ascii") if options.emit_base64 else None
        return EncodedImage(uri=out, width=width, height=height, base64=payload, byte_size=size)

    def release(self, uri):
        with self._lock:
            self.released.append(uri)
            self.live.discard(uri)


@pytest.fixture
def fake_codec():
    return FakeCodec()


def _noise_image(size, mode="RGB"):
    img = Image.effect_noise(size, 80).convert(mode)
    return img


@pytest.fixture
def noisy_jpeg(tmp_path):
    """400x300 noisy JPEG: compresses poorly, so quality changes are visible in the byte count."""
    path = tmp_path / "photo.jpg"
    _noise_image((400, 300)).save(path, format="JPEG", quality=95)
    return str(path)


@pytest.fixture
def rgba_png(tmp_path):
    path = tmp_path / "scan.png"
    img = Image.new("RGBA", (200, 100), (255, 0, 0, 0))
    img.paste((0, 0, 255, 255), (50, 25, 150, 75))
    img.save(path, format="PNG")
    return str(path)


@pytest.fixture
def rotated_jpeg(tmp_path):
    """Stored as 400x300 with EXIF orientation 6, i.e. displayed as 300x400."""
    path = tmp_path / "rotated.jpg"
    exif = Image.Exif()
    exif[0x0112] = 6
    _noise_image((400, 300)).save(path, format="JPEG", quality=90, exif=exif)
    return str(path)
