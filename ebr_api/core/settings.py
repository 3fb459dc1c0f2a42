from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Application-level settings for the FastAPI service.

    Database connection settings live in ebr_api.db.config.DatabaseSettings.
    """

    # FastAPI metadata
    APP_NAME: str = Field(default="EBR API")
    APP_DESCRIPTION: str = Field(
        default=(
            "Backend API for a multi-tenant Electronic Batch Record system. "
            "Manages recipes, batch execution, electronic signatures and the audit trail."
        )
    )
    APP_VERSION: str = Field(default="1.0.0")

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:5173"],
        description="Comma-separated list or JSON array of allowed origins.",
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)
    CORS_ALLOW_METHODS: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    )
    CORS_ALLOW_HEADERS: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["*"])

    # Startup behavior
    RUN_MIGRATIONS_ON_STARTUP: bool = Field(
        default=True,
        description="If true, run Alembic migrations (upgrade head) at app startup.",
    )
    AUTO_SEED: bool = Field(
        default=False,
        description="If true, seed the demo tenant after migrations.",
    )

    # Tenancy defaults (used by login when no tenant slug is supplied, and by seeding)
    DEFAULT_TENANT_SLUG: str = Field(default="demo")

    # Environment label
    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )
    LOG_LEVEL: str = Field(default="INFO")

    # Sessions
    JWT_SECRET_KEY: str = Field(default="ebr-dev-secret-change-in-production")
    JWT_ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=24 * 60)
    SESSION_COOKIE_NAME: str = Field(default="token")
    SESSION_COOKIE_SECURE: bool = Field(default=False)

    # Batch reports
    REPORT_STORAGE_DIR: str = Field(
        default="storage/pdfs", description="Directory where generated PDF batch records are written."
    )

    # Simulated OPC-UA feed
    OPCUA_ENDPOINT: str = Field(default="opc.tcp://localhost:4840")
    OPCUA_SERVER_NAME: str = Field(default="EBR Simulation Server v1.0")

    # Step execution rules
    STRICT_STEP_TRANSITIONS: bool = Field(
        default=False,
        description="If true, step status may only progress monotonically (pending -> in_progress -> completed|skipped).",
    )
    ENFORCE_STEP_SIGNATURES: bool = Field(
        default=False,
        description="If true, steps flagged requires_signature can only be completed through the sign endpoint.",
    )

    # Audit trail queries
    AUDIT_DEFAULT_LIMIT: int = Field(default=50, ge=1)
    AUDIT_MAX_LIMIT: int = Field(default=200, ge=1)

    # Automatically load from .env at runtime.
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("CORS_ORIGINS", "CORS_ALLOW_METHODS", "CORS_ALLOW_HEADERS", mode="before")
    @classmethod
    def _parse_list(cls, v):
        """
        Accept both JSON array format and comma-separated formats for CORS lists.
        """
        if v is None:
            return ["*"]
        if isinstance(v, str):
            if v.strip().startswith("["):
                return json.loads(v) or ["*"]
            parts = [p.strip() for p in v.split(",") if p.strip()]
            return parts or ["*"]
        if isinstance(v, list):
            return v or ["*"]
        return ["*"]


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """
    Return the process-wide AppSettings instance populated from environment variables.

    Tests that change the environment should call get_app_settings.cache_clear().
    """
    return AppSettings()
