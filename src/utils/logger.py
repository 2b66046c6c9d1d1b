"""
Logging Configuration Module.

Every module logs under the ``id_extraction`` namespace so the command
line and embedding applications can tune the whole pipeline with one
logger. Console output is colorized with colorama; a rotating log file
is optional.

Usage:
    from src.utils.logger import setup_logger, get_logger

    setup_logger()                      # once, at startup
    logger = get_logger(__name__)       # in any module
    logger.info("Scanning document...")
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

import colorama
from colorama import Fore, Style

colorama.init()

# Namespace shared by every logger in the package
ROOT_LOGGER_NAME = "id_extraction"

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors each record by level."""

    COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, '')
        return f"{color}{super().format(record)}{Style.RESET_ALL}"


def _to_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def _console_handler(log_format: str, date_format: str, colorize: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    formatter_cls = ColoredFormatter if colorize else logging.Formatter
    handler.setFormatter(formatter_cls(log_format, datefmt=date_format))
    return handler


def _file_handler(log_file: Union[str, Path], log_format: str, date_format: str,
                  max_bytes: int, backup_count: int) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
    return handler


def setup_logger(
    level: Union[str, int] = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    log_file: Optional[Union[str, Path]] = None,
    max_bytes: int = 10485760,  # 10 MB
    backup_count: int = 5,
    colorize: bool = True
) -> logging.Logger:
    """
    Configure the package logger.

    Calling it again replaces the previous handlers, so the command line
    can reconfigure logging after loading a custom settings file.

    Args:
        level: Logging level name or number.
        log_format: Record format string.
        date_format: Timestamp format string.
        log_file: Rotating log file. None disables file logging.
        max_bytes: Size at which the log file rotates.
        backup_count: Number of rotated files to keep.
        colorize: Color console output by level.

    Returns:
        The package logger.

    Example:
        >>> setup_logger(level="DEBUG", log_file="logs/scanner.log")
    """
    log_format = log_format or DEFAULT_FORMAT
    date_format = date_format or DEFAULT_DATE_FORMAT

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.handlers.clear()
    package_logger.addHandler(_console_handler(log_format, date_format, colorize))
    if log_file:
        package_logger.addHandler(
            _file_handler(log_file, log_format, date_format, max_bytes, backup_count)
        )
    package_logger.propagate = False
    set_log_level(level)

    package_logger.debug(f"Logging initialized (level={logging.getLevelName(package_logger.level)})")
    return package_logger


def set_log_level(level: Union[str, int]) -> None:
    """Change the level of the package logger and all of its handlers."""
    numeric = _to_level(level)
    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    package_logger.setLevel(numeric)
    for handler in package_logger.handlers:
        handler.setLevel(numeric)


def get_logger(name: str) -> logging.Logger:
    """
    Logger for one module, inside the package namespace.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.name
        'id_extraction.src.session.manager'
    """
    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logger_from_config() -> logging.Logger:
    """Configure logging from the ``logging`` section of settings.yaml."""
    from config import get_config

    log_file = get_config("paths.log_file") if get_config("logging.file.enabled", False) else None

    return setup_logger(
        level=get_config("logging.level", "INFO"),
        log_format=get_config("logging.format"),
        date_format=get_config("logging.date_format"),
        log_file=log_file,
        max_bytes=get_config("logging.file.max_bytes", 10485760),
        backup_count=get_config("logging.file.backup_count", 5),
        colorize=get_config("logging.console.colorize", True)
    )
