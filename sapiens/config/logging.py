"""
Logging configuration for the sapiens package.

Everything in the package logs through ``logging.getLogger(__name__)``, so all
records land under the ``sapiens`` logger configured here.
"""

import copy
import logging
import sys
from pathlib import Path

from sapiens.config.settings import Settings

PACKAGE_LOGGER = "sapiens"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name on console output."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy: the same record also reaches the (uncolored) file handler
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname)
        if color:
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(settings: Settings) -> logging.Logger:
    """
    Configure the package logger from settings.

    Installs a colored stdout handler and, when ``settings.log_file`` is set, a
    plain file handler. Calling it again replaces the previous handlers.

    Returns:
        The configured ``sapiens`` logger
    """
    level = getattr(logging, settings.log_level)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    package_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    package_logger.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT))
        package_logger.addHandler(file_handler)

    package_logger.propagate = False

    package_logger.debug(f"Logging initialized - Level: {settings.log_level}")
    if settings.log_file:
        package_logger.debug(f"Logging to file: {settings.log_file}")
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the package namespace.

    Args:
        name: Logger name; ``"agent"`` becomes ``"sapiens.agent"``. Names already
              under the package (e.g. a module ``__name__``) are used as-is.
    """
    if name == PACKAGE_LOGGER or name.startswith(f"{PACKAGE_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
