from __future__ import annotations

import re
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """
    Connection settings for the EBR database (PostgreSQL in every deployment).

    POSTGRES_URL wins when set; otherwise the URL is assembled from
    POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_DB, POSTGRES_HOST and POSTGRES_PORT.
    Row-level security relies on PostgreSQL; other dialects only get the
    explicit tenant predicates of the repositories.
    """

    POSTGRES_URL: Optional[str] = Field(default=None, description="Full connection URL")
    POSTGRES_USER: Optional[str] = Field(default=None)
    POSTGRES_PASSWORD: Optional[str] = Field(default=None)
    POSTGRES_DB: Optional[str] = Field(default=None)
    POSTGRES_HOST: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)

    SQL_ECHO: bool = Field(default=False, description="Log every SQL statement")
    DB_POOL_SIZE: int = Field(default=5, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0)
    DB_POOL_RECYCLE_SECONDS: int = Field(default=1800, description="Recycle pooled connections after this age")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def database_url(self) -> str:
        if self.POSTGRES_URL:
            url = self.POSTGRES_URL
            # Heroku-style scheme
            if url.startswith("postgres://"):
                url = "postgresql://" + url[len("postgres://"):]
            return url
        if not all([self.POSTGRES_USER, self.POSTGRES_PASSWORD, self.POSTGRES_DB]):
            raise ValueError(
                "Database configuration missing: set POSTGRES_URL, or POSTGRES_USER, "
                "POSTGRES_PASSWORD and POSTGRES_DB."
            )
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def async_database_url(self) -> str:
        """URL for the AsyncEngine (asyncpg driver). Non-PostgreSQL URLs pass through."""
        url = self.database_url
        if not url.startswith("postgresql"):
            return url
        return re.sub(r"^postgresql(\+\w+)?://", "postgresql+asyncpg://", url)

    @property
    def sync_database_url(self) -> str:
        """Driverless URL, used by Alembic offline mode."""
        return re.sub(r"^postgresql\+\w+://", "postgresql://", self.database_url)

    @property
    def is_postgres(self) -> bool:
        return self.database_url.startswith("postgresql")


# PUBLIC_INTERFACE
@lru_cache
def get_db_settings() -> DatabaseSettings:
    """Return the cached database settings."""
    return DatabaseSettings()
