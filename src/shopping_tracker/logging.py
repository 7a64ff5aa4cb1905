import logging
import os
from typing import Optional

PACKAGE_LOGGER = "shopping_tracker"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _coerce_level(value: Optional[str]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def _package_logger() -> logging.Logger:
    """The one logger that owns handlers; module loggers propagate into it."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    if getattr(logger, "_shopping_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler()]
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError:
            log_file = None
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # uvicorn and the root logger keep their own output
    logger.propagate = False
    setattr(logger, "_shopping_configured", True)
    if os.environ.get("LOG_FILE") and not log_file:
        logger.warning("LOG_FILE could not be opened; continuing without file logging")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``shopping_tracker.<name>``, honoring LOG_LEVEL (default INFO) and LOG_FILE."""
    _package_logger()
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
