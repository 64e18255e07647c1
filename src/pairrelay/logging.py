"""Logging configuration for the relay server.

The ``pairrelay`` logger always gets the configured handlers. With
``access_log`` enabled, aiohttp's per-request ``aiohttp.access`` logger
shares them, so request lines and relay events land in one stream.
"""

import logging
from pathlib import Path

from pairrelay.config import Config

ACCESS_LOGGER = "aiohttp.access"

_logger: logging.Logger | None = None
_attached: list[logging.Logger] = []


def _build_handlers(config: Config) -> list[logging.Handler]:
    formatter = logging.Formatter(config.log_format, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = []

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))

    handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def _attach(name: str, level: int, handlers: list[logging.Handler]) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False
    _attached.append(logger)
    return logger


def setup_logging(config: Config) -> logging.Logger:
    """Set up logging based on configuration.

    Idempotent: later calls return the logger from the first call.

    Args:
        config: Configuration object with log settings.

    Returns:
        The configured ``pairrelay`` logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    level = getattr(logging, config.log_level.upper(), logging.INFO)
    handlers = _build_handlers(config)

    _logger = _attach("pairrelay", level, handlers)
    if config.access_log:
        _attach(ACCESS_LOGGER, level, handlers)

    return _logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger

    closed: set[int] = set()
    for logger in _attached:
        for handler in logger.handlers:
            if id(handler) not in closed:
                handler.close()
                closed.add(id(handler))
        logger.handlers.clear()
        logger.propagate = True

    _attached.clear()
    _logger = None
