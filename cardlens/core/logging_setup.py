import logging
import logging.handlers
import os

from cardlens.core import constants


def _has_file_handler(logger: logging.Logger, log_file: str) -> bool:
    target = os.path.abspath(log_file)
    return any(
        isinstance(h, logging.handlers.RotatingFileHandler) and h.baseFilename == target
        for h in logger.handlers
    )


def setup_logging(log_dir: str = "logs", level: int = logging.INFO,
                  file_name: str = "cardlens.log") -> logging.Logger:
    """Sends records from every cardlens module to the console and a rotating log file."""
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, file_name)

    logger = logging.getLogger()
    logger.setLevel(level)
    if _has_file_handler(logger, log_file):
        return logger

    formatter = logging.Formatter(constants.LOG_FORMAT, datefmt=constants.LOG_DATE_FORMAT)
    handlers = [
        logging.StreamHandler(),
        logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=constants.LOG_MAX_BYTES,
            backupCount=constants.LOG_BACKUP_COUNT,
            encoding='utf-8',
        ),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
