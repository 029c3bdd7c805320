"""Structured logging setup using Loguru."""
from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger


def setup_logger(log_level: str = "INFO", log_file: str | None = "logs/eli.log") -> None:
    """
    Configure loguru for the assistant.

    - Console: coloured, human-readable
    - File: rotating, compressed (skipped when log_file is None)
    """
    logger.remove()

    # Console - coloured
    logger.add(
        sys.stderr,
        level=log_level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if log_file:
        # File - rotating, compressed
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}",
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

    logger.info(f"Logger initialised | level={log_level} | file={log_file}")
