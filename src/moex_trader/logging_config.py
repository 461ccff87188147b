import sys
from pathlib import Path

from loguru import logger


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Route loguru to stdout and, for scheduled runs, to a rotating file."""
    logger.remove()
    fmt = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}"
    logger.add(sys.stdout, level=level.upper(), format=fmt)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level.upper(), format=fmt, rotation="1 day", retention=14)
