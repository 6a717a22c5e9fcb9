"""
Logging setup.
loguru everywhere: colourised console output plus a rotating log file.
"""
from typing import Optional
from loguru import logger
import sys
import os
from pathlib import Path


def get_log_file_path() -> str:
    """Log file location; CARD_CROPPER_LOG_DIR overrides the default under the home directory."""
    log_dir = Path(os.environ.get("CARD_CROPPER_LOG_DIR") or Path.home() / ".card_cropper" / "logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    return str(log_dir / "card_cropper.log")


def install_sinks(console_level: str = "INFO"):
    """Replace loguru's default handler with our console + file sinks."""
    logger.remove()

    if sys.stderr is not None:
        logger.add(
            sys.stderr,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
            level=console_level,  # DEBUG only goes to the file by default
            colorize=True
        )

    try:
        logger.add(
            get_log_file_path(),
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
            level="DEBUG",
            rotation="1 day",
            retention="7 days",
            compression="zip",
            encoding="utf-8"
        )
    except OSError as e:
        # Read-only home (CI, sandboxed hosts): console only
        logger.warning(f"File logging disabled: {e}")


install_sinks()


class TaggedLogger:
    """
    Prefixes every message with a tag so all lines of one request can be
    correlated in the log file.
    """

    def __init__(self, file_id: Optional[str] = None):
        self.file_id = file_id

    def _format_message(self, message: str) -> str:
        if self.file_id:
            return f"[{self.file_id}] {message}"
        return message

    def _output(self, message: str, level: str = "INFO"):
        logger.opt(depth=2).log(level, self._format_message(message))

    def log(self, message: str, level: str = "INFO"):
        self._output(message, level.upper())

    def info(self, message: str):
        self._output(message, "INFO")

    def error(self, message: str):
        self._output(message, "ERROR")

    def success(self, message: str):
        self._output(message, "SUCCESS")

    def warning(self, message: str):
        self._output(message, "WARNING")

    def debug(self, message: str):
        self._output(message, "DEBUG")


def create_logger(file_id: Optional[str] = None) -> TaggedLogger:
    """
    Factory for a tagged logger.

    Args:
        file_id: tag prepended to every message, e.g. "req-3"
    """
    return TaggedLogger(file_id)
