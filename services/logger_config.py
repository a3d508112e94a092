# services/logger_config.py
import logging
from logging.handlers import RotatingFileHandler
import os

from config import settings
from utils.common import get_log_file_path


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure the engine logger: rotating file plus console.
    Safe to call more than once; handlers are replaced, not duplicated.
    """
    logger = logging.getLogger(settings.LOGGER_NAME)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    )

    log_file_path = settings.LOG_FILE_PATH or get_log_file_path()

    # File Handler: Rotates logs to prevent large files.
    try:
        log_dir = os.path.dirname(log_file_path)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        print(f"Error setting up file logger: {e}")

    # Console Handler: For immediate feedback during development.
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.propagate = True

    logger.info(f"Logging configured ({log_file_path}).")
    return logger
