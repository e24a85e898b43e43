import logging
import sys
from pythonjsonlogger import jsonlogger
from .config import settings

# Libraries whose INFO output drowns the service's own records
QUIET_LOGGERS = ("sqlalchemy.engine", "celery", "kombu", "urllib3")

def setup_logger(name: str = "evalcouncil", level: str = None) -> logging.Logger:
    """
    Structured JSON logging on stdout. Context goes in `extra={...}` so every
    record carries ids (job_id, evaluation_id, user_id) as top-level fields.
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    logger.propagate = False

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    )
    logger.addHandler(handler)

    for noisy in QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger

logger = setup_logger()
