"""Logging for the verifier: one rotating file plus the console.

Services log to ``fwverify.<component>`` children, so configuring the
``fwverify`` logger once covers all of them.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def resolve_level(level: Union[int, str]) -> int:
    """Numeric level for ``logging.DEBUG`` or a name such as ``"debug"``.

    Raises:
        ValueError: If the name is not a logging level
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level {level!r}")
    return value


def setup_logger(
    name: str = "fwverify",
    log_file: str = "./logs/fwverify.log",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 3,
    level: Union[int, str] = logging.INFO,
) -> logging.Logger:
    """Attach a rotating file handler and a console handler to ``name``.

    Calling it again for a configured logger keeps the handlers and only
    applies the new level, so a restarted app can change verbosity.

    Args:
        name: Logger name
        log_file: Path to log file (parent directories are created)
        max_bytes: Size at which the file rotates
        backup_count: Rotated files to keep
        level: Level number or name

    Returns:
        The configured logger
    """
    numeric = resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(numeric)
        return logger

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [
        RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setLevel(numeric)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
