"""
Logging setup for preprocessing runs
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None):
    """Console sink at `level`; optional rotating file sink that always keeps DEBUG"""
    logger.remove()

    logger.add(sys.stderr, level=level.upper(), format=CONSOLE_FORMAT, colorize=True)

    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        # Shard writes log from worker-thread callbacks too
        logger.add(log_file, level="DEBUG", format=FILE_FORMAT, rotation="20 MB", retention=5, enqueue=True)


log = logger
