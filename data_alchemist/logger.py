# data_alchemist/logger.py
import logging
import sys
from pathlib import Path

from data_alchemist.config import LOG_LEVEL, LOG_PATH

logger = logging.getLogger("data_alchemist")
logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

# Prevent duplicate handlers if imported multiple times
if not logger.handlers:
    # Stream handler (stdout -> uvicorn / streamlit console)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(stream_handler)

    if LOG_PATH:
        Path(LOG_PATH).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(LOG_PATH, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Child logger under the application logger, e.g. ``data_alchemist.backend``."""
    return logger.getChild(name.rsplit(".", 1)[-1])
