"""
Logging setup.

Every record carries the id of the request that produced it, so a single
request can be followed through the route handler, the Supabase gateway and
the audit writer.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


class RequestContextFilter(logging.Filter):
    """Inject the current request id into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        setattr(record, "request_id", request_id_var.get() or "-")
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a pipe-separated format and the request filter."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)s | %(name)s | rid=%(request_id)s | %(message)s"
        )
    )
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs every storage request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
