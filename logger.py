#!/usr/bin/env python3
"""
Centralized logging for the audio pulse detector.

Every module obtains its logger through ``get_logger(__name__)``; the CLI
calls ``configure_from_config`` once with the loaded config.

Usage:
    from logger import get_logger
    log = get_logger(__name__)
    log.info("Monitor started")
    log.error("Failed to open device", exc_info=True)
"""
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union


LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Chatty library loggers (requests logs every connection through urllib3)
QUIET_LOGGERS = ("urllib3",)


class ColoredFormatter(logging.Formatter):
    """Color-coded log formatter for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, fmt=LOG_FORMAT, datefmt=DATE_FORMAT, use_color: Optional[bool] = None):
        super().__init__(fmt, datefmt=datefmt)
        self.use_color = sys.stdout.isatty() if use_color is None else use_color

    def format(self, record):
        if not self.use_color or record.levelname not in self.COLORS:
            return super().format(record)
        # Copy so other handlers do not receive escape codes
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    log_file: Optional[Union[str, Path]] = None,
    level: str = "INFO",
    debug: bool = False
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        log_file: Path to log file (if None, only console logging)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        debug: If True, force DEBUG level and let library loggers through

    Returns:
        Root logger
    """
    if debug:
        level = "DEBUG"
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    return root_logger


def configure_from_config(config: Dict[str, Any], debug: bool = False) -> logging.Logger:
    """Apply the ``logging`` section of the app config."""
    logging_cfg = config.get("logging", {})
    return setup_logging(logging_cfg.get("file"), logging_cfg.get("level", "INFO"), debug=debug)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)
    """
    return logging.getLogger(name)


def log_system_info(logger: logging.Logger) -> None:
    """Log interpreter and platform details at startup."""
    import platform

    logger.debug("Platform: %s", platform.platform())
    logger.debug("Python: %s", sys.version.split()[0])
    logger.debug("Architecture: %s", platform.machine())
