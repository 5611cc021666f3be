import logging
import os
import sys

from pythonjsonlogger import jsonlogger

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Install a JSON stdout handler on the `stockfront` logger tree.

    Safe to call more than once; the handler is only added the first time.
    """
    logger = logging.getLogger("stockfront")
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    if any(getattr(h, "_stockfront", False) for h in logger.handlers):
        return
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    h._stockfront = True
    logger.addHandler(h)
