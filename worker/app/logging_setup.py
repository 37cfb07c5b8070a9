import logging
import os
from logging.handlers import RotatingFileHandler

def setup_logger(log_dir: str, name: str = "analysis", level: int = logging.INFO) -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(threadName)s | %(message)s"
    )

    file_path = os.path.join(log_dir, f"{name}.log")
    fh = RotatingFileHandler(file_path, maxBytes=5_000_000, backupCount=5)
    fh.setFormatter(fmt)
    fh.setLevel(level)

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(level)

    if not logger.handlers:
        logger.addHandler(fh)
        logger.addHandler(ch)

    return logger
