import json
import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "signaling"
SECURITY_LOGGER_NAME = f"{ROOT_LOGGER_NAME}.security"


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the application logger once (idempotent).
    Logs go to stdout and, when log_file is given, to that file as well.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))

    # Prevent duplicate handlers on reload / repeated imports
    if logger.handlers:
        return logger

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_logger(module_name: str) -> logging.Logger:
    """
    Return a child of the application logger.
    Example: get_logger("backend") -> signaling.backend
    """
    return logging.getLogger(ROOT_LOGGER_NAME).getChild(module_name)


def log_security_event(event: str, **details) -> None:
    """Write one audit line: `EVENT | {json details}`."""
    logging.getLogger(SECURITY_LOGGER_NAME).info(
        "%s | %s", event, json.dumps(details, default=str, sort_keys=True)
    )
