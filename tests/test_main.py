"""End-to-end runs of the card-cropper command on generated photos."""

import argparse
import os

import pytest
from loguru import logger
from PIL import Image

from card_cropper import config, i18n, main
from card_cropper.config import EncodeBudget, Settings
from card_cropper.geometry import DisplaySize
from card_cropper.modal import CropModal
from conftest import FakeCodec


@pytest.fixture(autouse=True)
def default_settings(monkeypatch):
    # Ignore whatever ~/.card_cropper/config.json the machine has
    monkeypatch.setattr(config, "load_settings", lambda *a, **kw: Settings())


def test_parse_rect():
    assert main.parse_rect("0.1,0.2,0.9,0.8") == (0.1, 0.2, 0.9, 0.8)
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_rect("0.5,0.2,0.4,0.8")
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_rect("0.1,0.2")
    with pytest.raises(argparse.ArgumentTypeError):
        main.parse_window("wide,tall")


def test_apply_rect_reaches_target():
    modal = CropModal(FakeCodec(), on_confirm=lambda r: None, call_timeout=None)
    modal.open("photo.jpg")
    rect = main.apply_rect(modal, (0.1, 0.2, 0.6, 0.9))

    display: DisplaySize = modal.display_size
    assert rect.as_tuple() == pytest.approx(
        (0.1 * display.width, 0.2 * display.height, 0.6 * display.width, 0.9 * display.height)
    )


def test_card_crop_written(noisy_jpeg, tmp_path):
    out = tmp_path / "card.jpg"
    code = main.main([noisy_jpeg, "--rect", "0,0,0.5,1", "--output", str(out)])

    assert code == main.EXIT_OK
    with Image.open(out) as img:
        assert img.size == (200, 300)
    assert os.path.getsize(out) <= config.CARD_BUDGET.hard_ceiling


def test_default_output_name(noisy_jpeg):
    assert main.main([noisy_jpeg]) == main.EXIT_OK
    assert os.path.exists(noisy_jpeg.replace(".jpg", "_cropped.jpg"))


def test_certificate_keeps_png(rgba_png, tmp_path):
    out = tmp_path / "cert.png"
    code = main.main([rgba_png, "--policy", "certificate", "--no-crop", "--output", str(out)])
    assert code == main.EXIT_OK
    with Image.open(out) as img:
        assert img.format == "PNG"
        assert img.size == (200, 100)


def test_certificate_rejects_unsupported_type(tmp_path):
    path = tmp_path / "scan.gif"
    Image.new("RGB", (100, 100)).save(path, format="GIF")
    assert main.main([str(path), "--policy", "certificate"]) == main.EXIT_FAILED


def test_oversize_exit_code(noisy_jpeg, monkeypatch, tmp_path):
    tiny = EncodeBudget(max_bytes=100, initial_quality=0.5, min_quality=0.4, max_attempts=1)
    monkeypatch.setitem(config.BUDGETS, "card", tiny)
    code = main.main([noisy_jpeg, "--output", str(tmp_path / "out.jpg")])
    assert code == main.EXIT_OVERSIZED
    assert not (tmp_path / "out.jpg").exists()


def test_unreadable_image_exit_code(tmp_path):
    path = tmp_path / "broken.jpg"
    path.write_bytes(b"\x00\x01")
    assert main.main([str(path)]) == main.EXIT_FAILED


def test_malformed_budget_override_uses_preset(noisy_jpeg, monkeypatch, tmp_path):
    bad = Settings(budgets={"card": {"max_bytes": "lots"}})
    monkeypatch.setattr(config, "load_settings", lambda *a, **kw: bad)
    out = tmp_path / "card.jpg"
    assert main.main([noisy_jpeg, "--output", str(out)]) == main.EXIT_OK
    assert out.exists()


def test_certificate_success_announced(rgba_png, tmp_path):
    previous = i18n.get_current_language()
    messages = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="INFO")
    try:
        code = main.main([rgba_png, "--policy", "certificate", "--no-crop", "--lang", "it",
                          "--output", str(tmp_path / "cert.png")])
    finally:
        logger.remove(sink_id)
        i18n.set_language(previous, persist=False)

    assert code == main.EXIT_OK
    assert "Certificato pronto per il salvataggio." in messages


def test_card_success_not_announced_as_certificate(noisy_jpeg, tmp_path):
    messages = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="INFO")
    try:
        assert main.main([noisy_jpeg, "--output", str(tmp_path / "card.jpg")]) == main.EXIT_OK
    finally:
        logger.remove(sink_id)
    assert i18n.tr("certificate_ready") not in messages
