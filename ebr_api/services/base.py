from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.errors import ConflictError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated caller on whose behalf a service operation runs."""

    tenant_id: UUID
    user_id: Optional[UUID] = None
    full_name: Optional[str] = None
    role: Optional[str] = None
    ip_address: Optional[str] = None


class BaseService:
    """
    Base class for services. Holds a session for use across multiple repositories.

    Services should keep business logic and orchestration, delegating data access
    to repositories. Each mutating operation runs inside ``unit_of_work`` so that
    the state change and its audit entry commit or roll back together.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def unit_of_work(self, conflict_message: str = "Conflicting record exists") -> AsyncIterator[None]:
        """
        Commit on success, roll back on any failure.

        Unique-constraint violations surface as ConflictError.
        """
        try:
            yield
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            logger.warning("Integrity error, transaction rolled back: %s", exc.orig)
            raise ConflictError(conflict_message) from exc
        except BaseException:
            await self.session.rollback()
            raise
