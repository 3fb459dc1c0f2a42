"""Shared fixtures: a throwaway SQLite database per test, two tenants with users, and an API client.

The schema is created from the ORM metadata; PostgreSQL-only pieces (RLS, GUC
defaults) are not exercised here, the explicit tenant predicates are.
"""

from __future__ import annotations

import os

os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("AUTO_SEED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ebr_api.core.security import create_session_token, get_password_hash
from ebr_api.db.base import Base
from ebr_api.db.models.recipes import Recipe, RecipeStep
from ebr_api.db.models.security import User
from ebr_api.db.models.tenancy import Tenant, TenantSettings
from ebr_api.services.base import Actor

PASSWORD = "Password1!"

ROLES = ("admin", "batch_manager", "operator_supervisor", "operator", "qa_qc")


@lru_cache(maxsize=1)
def password_hash() -> str:
    """bcrypt is slow on purpose; hash the shared test password once."""
    return get_password_hash(PASSWORD)


@dataclass
class World:
    """Seeded rows the tests refer to."""

    tenant: Tenant
    other_tenant: Tenant
    users: Dict[str, User] = field(default_factory=dict)
    other_admin: Optional[User] = None
    recipe: Optional[Recipe] = None

    def actor(self, role: str = "batch_manager", ip_address: Optional[str] = "10.0.0.1") -> Actor:
        user = self.users[role]
        return Actor(
            tenant_id=user.tenant_id,
            user_id=user.id,
            full_name=user.full_name,
            role=user.role,
            ip_address=ip_address,
        )

    def other_actor(self) -> Actor:
        return Actor(
            tenant_id=self.other_admin.tenant_id,
            user_id=self.other_admin.id,
            full_name=self.other_admin.full_name,
            role=self.other_admin.role,
        )


def token_for(user: User, tenant: Tenant) -> str:
    return create_session_token(
        user_id=str(user.id),
        tenant_id=str(tenant.id),
        tenant_slug=tenant.slug,
        role=user.role,
        full_name=user.full_name,
        email=user.email,
    )


def auth_headers(user: User, tenant: Tenant) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user, tenant)}"}


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ebr.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def world(session_maker) -> World:
    """Tenant 'demo' with one user per role and a three-step recipe; tenant 'other' with one admin."""
    async with session_maker() as session:
        tenant = Tenant(slug="demo", name="Dicode Demo Labs")
        other = Tenant(slug="other", name="Other Pharma")
        session.add_all([tenant, other])
        await session.flush()

        session.add(
            TenantSettings(
                tenant_id=tenant.id,
                branding={"logoText": "Dicode EBR"},
                feature_flags={"planningModuleEnabled": False},
                compliance={"part11": True},
            )
        )

        world = World(tenant=tenant, other_tenant=other)
        for role in ROLES:
            user = User(
                tenant_id=tenant.id,
                email=f"{role}@dicode-demo.com",
                full_name=role.replace("_", " ").title(),
                hashed_password=password_hash(),
                role=role,
            )
            session.add(user)
            world.users[role] = user
        world.other_admin = User(
            tenant_id=other.id,
            email="admin@other-pharma.com",
            full_name="Other Admin",
            hashed_password=password_hash(),
            role="admin",
        )
        session.add(world.other_admin)

        recipe = Recipe(
            tenant_id=tenant.id,
            name="Paracetamol 500mg Tablet",
            product_name="Paracetamol 500mg",
            version="3.2",
            description="Film-coated tablets",
            created_by="Dr. A. Rossi",
        )
        session.add(recipe)
        await session.flush()
        session.add_all(
            [
                RecipeStep(
                    tenant_id=tenant.id,
                    recipe_id=recipe.id,
                    step_number=1,
                    description="Weigh Raw Materials",
                    step_type="measurement",
                    expected_value=500,
                    unit="kg",
                    requires_signature=True,
                ),
                RecipeStep(
                    tenant_id=tenant.id,
                    recipe_id=recipe.id,
                    step_number=2,
                    description="Granulation",
                    step_type="manual",
                ),
                RecipeStep(
                    tenant_id=tenant.id,
                    recipe_id=recipe.id,
                    step_number=3,
                    description="Final QC Release Check",
                    step_type="verification",
                    requires_signature=True,
                ),
            ]
        )
        await session.commit()
        world.recipe = recipe
        return world


@pytest.fixture
async def client(session_maker, tmp_path):
    from ebr_api.api.main import app
    from ebr_api.api.routes.batches import get_report_generator
    from ebr_api.db.session import get_async_session
    from ebr_api.services.reports import BatchReportGenerator

    async def _session():
        async with session_maker() as session:
            yield session

    report_dir = str(tmp_path / "pdfs")
    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[get_report_generator] = lambda: BatchReportGenerator(storage_dir=report_dir)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
