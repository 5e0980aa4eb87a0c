import logging
import sys
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure root logging once per process."""
    global _configured
    if _configured:
        return

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    target = log_file or settings.LOG_FILE
    if target:
        handlers.append(logging.FileHandler(target))

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    # httpx logs every request line at INFO; too chatty for token streaming.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
