import logging
import os

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logger.setLevel(level)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=os.getenv("LOG_FORMAT", _FORMAT)))
    logger.addHandler(handler)
    # uvicorn/pytest root handlers would print every line twice
    logger.propagate = os.getenv("LOG_PROPAGATE", "0") == "1"
    return logger
