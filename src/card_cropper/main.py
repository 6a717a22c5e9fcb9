import argparse
import dataclasses
import mimetypes
import shutil
import sys
from pathlib import Path

from loguru import logger

from card_cropper import config, i18n
from card_cropper.codec import PillowCodec
from card_cropper.documents import auto_crop_document, compress_image_to_max_size, ensure_supported_mime, normalize_orientation
from card_cropper.errors import CardCropperError, OversizedError, PipelineCancelled
from card_cropper.geometry import Handle
from card_cropper.logger import install_sinks
from card_cropper.modal import CropModal

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_OVERSIZED = 2


def _floats(text: str, count: int, name: str):
    try:
        values = [float(v) for v in text.split(",")]
    except ValueError:
        raise argparse.ArgumentTypeError(f"{name} must be {count} comma separated numbers, got {text!r}") from None
    if len(values) != count:
        raise argparse.ArgumentTypeError(f"{name} must be {count} comma separated numbers, got {text!r}")
    return values


def parse_rect(text: str):
    left, top, right, bottom = _floats(text, 4, "--rect")
    if not (0.0 <= left < right <= 1.0 and 0.0 <= top < bottom <= 1.0):
        raise argparse.ArgumentTypeError("--rect expects fractions with 0 <= L < R <= 1 and 0 <= T < B <= 1")
    return left, top, right, bottom


def parse_window(text: str):
    width, height = _floats(text, 2, "--window")
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError("--window must be positive")
    return width, height


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="card-cropper",
        description="Crop a membership card or certificate photo and compress it under a size budget.",
    )
    ap.add_argument("image", help="Source photo (JPEG, PNG, HEIC, ...)")
    ap.add_argument("--policy", choices=sorted(config.BUDGETS), default="card", help="Encode budget preset")
    ap.add_argument("--rect", type=parse_rect, default=None,
                    help="Crop rectangle as L,T,R,B fractions of the image (default: centered inset)")
    ap.add_argument("--window", type=parse_window, default=config.DEFAULT_WINDOW,
                    help="Window size W,H used to lay out the crop view")
    ap.add_argument("--no-crop", action="store_true", help="Skip cropping, only compress the whole image")
    ap.add_argument("--output", default=None, help="Output file (default: <image>_cropped.<ext>)")
    ap.add_argument("--timeout", type=float, default=None, help="Seconds allowed per codec call")
    ap.add_argument("--lang", choices=i18n.LANGUAGES, default=None, help="Language of user messages")
    ap.add_argument("--verbose", action="store_true", help="Show debug logs on the console")
    return ap


def apply_rect(modal: CropModal, fractions):
    """Drive the engine to the requested rectangle through ordinary drag sessions."""
    display = modal.display_size
    target_left = fractions[0] * display.width
    target_top = fractions[1] * display.height
    target_right = fractions[2] * display.width
    target_bottom = fractions[3] * display.height

    # Open the far corner first so the near corner is never blocked by the minimum size
    steps = (
        (Handle.BOTTOM_RIGHT, lambda r: (display.width - r.right, display.height - r.bottom)),
        (Handle.TOP_LEFT, lambda r: (target_left - r.left, target_top - r.top)),
        (Handle.BOTTOM_RIGHT, lambda r: (target_right - r.right, target_bottom - r.bottom)),
    )
    for handle, delta in steps:
        dx, dy = delta(modal.rect)
        modal.begin_drag(handle)
        modal.update_drag(dx, dy)
        modal.end_drag()
    return modal.rect


def default_output(image: str, mime_type: str) -> str:
    path = Path(image)
    suffix = ".png" if mime_type == "image/png" else ".jpg"
    return str(path.with_name(f"{path.stem}_cropped{suffix}"))


def run(args) -> int:
    settings = config.load_settings()
    timeout = args.timeout if args.timeout is not None else settings.call_timeout
    budget = config.budget_for(args.policy, settings)

    source = args.image
    with PillowCodec() as codec:
        try:
            if args.policy == "certificate":
                # Certificates keep their format; orientation is baked in before cropping
                mime_type = ensure_supported_mime(mimetypes.guess_type(source)[0], source)
                if mime_type == "image/png":
                    budget = dataclasses.replace(budget, format="png")
                normalized = normalize_orientation(codec, source, mime_type)
                source = normalized.uri
                auto = auto_crop_document(source, normalized.width, normalized.height, budget.format)
                if auto is not None:
                    source = auto.uri
                    args.no_crop = True

            if args.no_crop:
                mime_type = "image/png" if budget.format == "png" else "image/jpeg"
                compressed = compress_image_to_max_size(
                    codec, source, mime_type, budget.max_bytes, budget=budget, call_timeout=timeout,
                )
                uri, width, height, size = compressed.uri, compressed.width, compressed.height, compressed.size
                mime_type = compressed.mime_type
            else:
                confirmed = []
                modal = CropModal(codec, on_confirm=confirmed.append, budget=budget,
                                  window=args.window, call_timeout=timeout)
                modal.open(source)
                if args.rect is not None:
                    apply_rect(modal, args.rect)
                logger.info(f"Crop rect (display): {tuple(round(v, 1) for v in modal.rect.as_tuple())}")
                result = modal.confirm()
                modal.close()
                uri, width, height, size = result.uri, result.width, result.height, result.size_bytes
                mime_type = result.mime_type

            output = args.output or default_output(args.image, mime_type)
            shutil.copyfile(uri, output)
        except OversizedError as e:
            logger.error(e.user_message())
            logger.debug(str(e))
            return EXIT_OVERSIZED
        except PipelineCancelled as e:
            logger.warning(str(e))
            return EXIT_FAILED
        except CardCropperError as e:
            logger.error(e.user_message())
            logger.debug(str(e))
            return EXIT_FAILED
        except OSError as e:
            logger.error(f"Could not write output: {e}")
            return EXIT_FAILED

    logger.success(f"Saved {output} ({width}x{height}, {size} bytes)")
    if args.policy == "certificate":
        logger.info(i18n.tr("certificate_ready"))
    return EXIT_OK


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        install_sinks("DEBUG")
    if args.lang:
        i18n.set_language(args.lang, persist=False)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
