"""Package logging set-up shared by every pipeline stage."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_logger(name: str, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Create a logger with the shared handlers if it has not been configured."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        attach_file_handler(logger, log_file)

    return logger


def attach_file_handler(logger: logging.Logger, log_file: Union[str, Path]) -> logging.FileHandler:
    """Add a DEBUG-level file handler to ``logger`` and return it."""
    file_handler = logging.FileHandler(str(log_file))
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(file_handler)
    return file_handler


LOGGER = build_logger("agriwater")
