"""
Persistence layer: ORM base and models, engine/session management and the
per-transaction tenant context used by row-level security.
"""

from .base import Base
from .config import DatabaseSettings, get_db_settings
from .session import (
    get_async_session,
    get_engine,
    get_session_maker,
    set_current_tenant,
    tenant_context,
)

# registers every mapped class on Base.metadata
from . import models as models  # noqa: F401

__all__ = [
    "Base",
    "DatabaseSettings",
    "get_db_settings",
    "get_engine",
    "get_session_maker",
    "get_async_session",
    "set_current_tenant",
    "tenant_context",
    "models",
]
