"""Logging setup shared by the API process and the billing CLI."""
import logging
import sys

from app.core.settings import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure the root logger once and return the ``app`` logger."""
    resolved = (level or settings.log_level or "INFO").upper()
    root = logging.getLogger()
    if not any(getattr(h, "_modulyn_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._modulyn_handler = True
        root.addHandler(handler)
    root.setLevel(resolved)

    # SQL echo is controlled separately through SQL_DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.sql_debug else logging.WARNING
    )
    return logging.getLogger("app")
