from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Optional, Union

# Request-scoped identity stamped onto every log record
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | cid=%(correlation_id)s | "
    "tenant=%(tenant_id)s | user=%(user_id)s | %(message)s"
)

# third-party loggers that drown out request logs at INFO
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine.Engine", "passlib")


class LoggingContextFilter(logging.Filter):
    """
    Copy correlation, tenant and user ids from the current context onto the
    record; '-' outside a request or before the session is verified.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.correlation_id = correlation_id_var.get() or "-"
        record.tenant_id = tenant_id_var.get() or "-"
        record.user_id = user_id_var.get() or "-"
        return True


# PUBLIC_INTERFACE
def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Install a single stdout handler on the root logger with the context filter."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
    handler.addFilter(LoggingContextFilter())

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(level)

    if level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
