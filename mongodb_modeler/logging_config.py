"""
Logging setup for mongodb-modeler.

Log records go to stderr so that command output on stdout (schemas, scripts,
apply results) stays machine-readable. A rotating log file is optional. The
driver's own loggers are held at WARNING unless DEBUG is requested.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import IO

DEFAULT_LOG_FILE = "mongodb_modeler.log"
ENV_PREFIX = "MONGO_MODELER_"
DRIVER_LOGGERS = ("pymongo", "pymongo.connection", "pymongo.serverSelection", "pymongo.command")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(threadName)s - %(pathname)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    enable_file_logging: bool = True,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Set up logging with console and optional file output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (defaults to mongodb_modeler.log)
        enable_file_logging: Whether to enable file logging
        stream: Console stream, stderr when not given

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if enable_file_logging:
        log_path = Path(log_file or DEFAULT_LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Rotating file handler (max 10MB, keep 5 backups); reverse runs log from worker threads
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    driver_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(driver_level)

    return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_from_env() -> logging.Logger:
    """
    Configure logging from environment variables.

    Environment variables:
        MONGO_MODELER_LOG_LEVEL: Logging level (default: INFO)
        MONGO_MODELER_LOG_FILE: Log file path (default: mongodb_modeler.log)
        MONGO_MODELER_DISABLE_FILE_LOGGING: Set to disable file logging
    """
    return setup_logging(
        level=os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "INFO"),
        log_file=os.getenv(f"{ENV_PREFIX}LOG_FILE", DEFAULT_LOG_FILE),
        enable_file_logging=not os.getenv(f"{ENV_PREFIX}DISABLE_FILE_LOGGING"),
    )
