import logging
import sys
from pythonjsonlogger import jsonlogger

from .config import settings

# Every generation poll would otherwise log a line per request.
NOISY_LOGGERS = ("httpx", "httpcore", "botocore", "boto3")


def setup_logger(name: str = "contenthub", level: str = None) -> logging.Logger:
    """
    Structured JSON logs for the pipeline backend.

    Every record carries the service name so job, translation and campaign
    logs can be filtered together downstream.
    """
    logger = logging.getLogger(name)
    logger.setLevel((level or settings.LOG_LEVEL).upper())

    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        static_fields={"service": "contenthub-backend"},
    ))
    logger.addHandler(handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger

logger = setup_logger()
