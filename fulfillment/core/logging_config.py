"""
Fulfillment Service — Logging setup
"""
import logging
import sys

from fulfillment.core.config import get_settings

settings = get_settings()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once; safe to call repeatedly."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    if not any(getattr(h, "_fulfillment", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._fulfillment = True
        root.addHandler(handler)

    # Third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized for %s at level %s", settings.SERVICE_NAME, logging.getLevelName(root.level)
    )
