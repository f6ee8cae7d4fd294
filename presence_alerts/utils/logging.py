import sys
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level.upper())
    if log_file:
        logger.add(
            log_file,
            rotation="500 MB",
            retention="10 days",
            level=level.upper(),
        )
