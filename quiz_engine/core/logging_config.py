"""Root logger configuration for the API process and rq workers."""
import logging

from pythonjsonlogger import jsonlogger

from quiz_engine.core.config import settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    level = (level or settings.LOG_LEVEL).upper()
    fmt = (fmt or settings.LOG_FORMAT).lower()
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(jsonlogger.JsonFormatter(TEXT_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level, logging.INFO))
