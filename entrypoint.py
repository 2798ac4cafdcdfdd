import math
import uvicorn
import os
from logging_config import setup_logging

# Setup logging before importing app
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)

from app import app
from constants import HOST, PORT, SHUTDOWN_TIMEOUT_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)


def graceful_shutdown_timeout(seconds: float) -> int:
    """uvicorn takes whole seconds; round up so a fractional drain is never cut to zero."""
    return math.ceil(seconds)


def main():
    logger.info(f"Starting signaling server on {HOST}:{PORT}")
    # uvicorn traps SIGINT/SIGTERM, stops accepting, then runs the app's shutdown within the timeout
    uvicorn.run(app, host=HOST, port=PORT, timeout_graceful_shutdown=graceful_shutdown_timeout(SHUTDOWN_TIMEOUT_SECONDS))


if __name__ == "__main__":
    main()
