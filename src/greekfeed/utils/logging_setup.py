"""Loguru sink configuration for the entry points."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from greekfeed.config.engine_config import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[component]} | {message}"


def setup_logging(config: Optional[LoggingConfig] = None) -> None:
    """
    Replace the default loguru sink with console and rotating file sinks.

    Args:
        config: Logging settings (level, file, rotation, retention)
    """
    config = config or LoggingConfig()

    logger.remove()
    logger.configure(extra={"component": "greekfeed"})
    logger.add(sys.stderr, level=config.level, format=CONSOLE_FORMAT)

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level=config.level,
            format=FILE_FORMAT,
            rotation=config.rotation,
            retention=config.retention,
            compression=config.compression,
        )
        logger.info(f"Logging to: {log_path}")
