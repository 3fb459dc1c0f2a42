"""
Database seeding utilities for a demo tenant.

Seeds:
- Demo tenant (Dicode Demo Labs, slug from DEFAULT_TENANT_SLUG) with branding settings
- One user per role, all sharing the demo password
- Two sample recipes (Paracetamol 500mg tablets, Amoxicillin 250mg capsules)

Every step is skipped when its rows already exist, so the seed can be re-run.

Usage:
  python -m ebr_api.db.run_migrations upgrade head
  python -m ebr_api.db.seed
"""

from __future__ import annotations

import asyncio
import logging
from typing import List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.logging import configure_logging
from ebr_api.core.security import get_password_hash
from ebr_api.core.settings import get_app_settings
from ebr_api.db.models.recipes import Recipe, RecipeStep
from ebr_api.db.models.security import User
from ebr_api.db.models.tenancy import Tenant, TenantSettings
from ebr_api.db.session import get_session_maker, tenant_context
from ebr_api.repositories.recipes import RecipeRepository
from ebr_api.repositories.security import UserRepository
from ebr_api.repositories.tenancy import TenantRepository

logger = logging.getLogger(__name__)

DEMO_TENANT_NAME = "Dicode Demo Labs"
DEMO_PASSWORD = "Password1!"

DEMO_BRANDING = {
    "primaryColor": "#1d4ed8",
    "primaryDarkColor": "#1e3a8a",
    "primarySoftColor": "#dbeafe",
    "badgeBackground": "#dcfce7",
    "badgeText": "#047857",
    "logoText": "Dicode EBR",
}
DEMO_FEATURE_FLAGS = {"planningModuleEnabled": False}

DEMO_USERS = [
    ("admin@dicode-demo.com", "Admin User", "admin"),
    ("manager@dicode-demo.com", "Batch Manager", "batch_manager"),
    ("supervisor@dicode-demo.com", "Operator Supervisor", "operator_supervisor"),
    ("operator@dicode-demo.com", "Operator", "operator"),
    ("qa@dicode-demo.com", "QA Officer", "qa_qc"),
]

DEMO_RECIPES = [
    {
        "name": "Paracetamol 500mg Tablet",
        "product_name": "Paracetamol 500mg",
        "version": "3.2",
        "description": "Manufacturing procedure for Paracetamol 500mg film-coated tablets. Batch size 500kg.",
        "created_by": "Dr. A. Rossi",
        "steps": [
            {
                "description": "Weigh Raw Materials",
                "step_type": "measurement",
                "expected_value": 500,
                "unit": "kg",
                "requires_signature": True,
                "duration_minutes": 45,
                "instructions": "Weigh API and excipients on calibrated scales. Verify each material against its CoA.",
            },
            {
                "description": "Pre-blending Verification",
                "step_type": "verification",
                "requires_signature": True,
                "duration_minutes": 15,
                "instructions": "Verify the blender cleanliness log and that equipment calibration is valid.",
            },
            {
                "description": "Granulation - Water Addition",
                "step_type": "measurement",
                "expected_value": 85,
                "unit": "L",
                "duration_minutes": 30,
                "instructions": "Add purified water at 15 L/min. Target moisture content 3-4%.",
            },
            {
                "description": "Fluid Bed Drying",
                "step_type": "measurement",
                "expected_value": 65,
                "unit": "°C",
                "requires_signature": True,
                "duration_minutes": 90,
                "instructions": "Set inlet air temperature to 65°C. Stop drying when LOD <= 2.0%.",
            },
            {
                "description": "Tablet Compression",
                "step_type": "measurement",
                "expected_value": 500,
                "unit": "mg",
                "requires_signature": True,
                "duration_minutes": 120,
                "instructions": "Target tablet weight 500mg +/- 15mg. Check hardness and friability every 30 minutes.",
            },
            {
                "description": "Final QC Release Check",
                "step_type": "verification",
                "requires_signature": True,
                "duration_minutes": 60,
                "instructions": "Perform IPC tests (appearance, assay, dissolution). QC Manager sign-off required.",
            },
        ],
    },
    {
        "name": "Amoxicillin 250mg Capsule",
        "product_name": "Amoxicillin 250mg",
        "version": "2.1",
        "description": "Manufacturing procedure for Amoxicillin trihydrate 250mg hard gelatin capsules. Batch size 200kg.",
        "created_by": "Dr. M. Ferrara",
        "steps": [
            {
                "description": "API Dispensing & Sampling",
                "step_type": "measurement",
                "expected_value": 200,
                "unit": "kg",
                "requires_signature": True,
                "duration_minutes": 30,
                "instructions": "Dispense API from quarantine and take a 50g sample for identity testing.",
            },
            {
                "description": "Blending",
                "step_type": "manual",
                "duration_minutes": 20,
                "instructions": "Blend for 10 minutes at 12 rpm. Take uniformity samples from top, middle and bottom.",
            },
            {
                "description": "Capsule Filling",
                "step_type": "measurement",
                "expected_value": 300,
                "unit": "mg",
                "requires_signature": True,
                "duration_minutes": 180,
                "instructions": "Target fill weight 300mg +/- 7.5mg. Check 20 capsules per hour.",
            },
            {
                "description": "Packaging & Labelling",
                "step_type": "verification",
                "requires_signature": True,
                "duration_minutes": 60,
                "instructions": "Pack into HDPE bottles and reconcile label accountability. QA release required.",
            },
        ],
    },
]


# PUBLIC_INTERFACE
async def seed_all() -> None:
    """
    Seed the database with the demo tenant, its users and sample recipes.
    """
    slug = get_app_settings().DEFAULT_TENANT_SLUG
    async with get_session_maker()() as session:
        tenant_id = await _ensure_tenant(session, slug=slug, name=DEMO_TENANT_NAME)
        async with tenant_context(session, tenant_id):
            await _seed_settings(session, tenant_id)
            await _seed_users(session, tenant_id)
            await _seed_recipes(session, tenant_id)
            await session.commit()
    logger.info("Seeded demo tenant %s", slug)


async def _ensure_tenant(session: AsyncSession, slug: str, name: str) -> UUID:
    """
    Return the id of the tenant with this slug, creating it if missing.
    The tenants table carries no RLS policy, so no tenant context is needed here.
    """
    repo = TenantRepository(session)
    tenant = await repo.get_by_slug(slug)
    if tenant is None:
        tenant = Tenant(slug=slug, name=name)
        await repo.add(tenant)
        await repo.flush()
        logger.info("Created tenant %s", slug)
    return tenant.id


async def _seed_settings(session: AsyncSession, tenant_id: UUID) -> None:
    repo = TenantRepository(session)
    if await repo.get_settings(tenant_id) is not None:
        return
    await repo.add(
        TenantSettings(
            tenant_id=tenant_id,
            branding=dict(DEMO_BRANDING),
            feature_flags=dict(DEMO_FEATURE_FLAGS),
            compliance={},
        )
    )
    await repo.flush()


async def _seed_users(session: AsyncSession, tenant_id: UUID) -> None:
    repo = UserRepository(session)
    hashed = get_password_hash(DEMO_PASSWORD)
    for email, full_name, role in DEMO_USERS:
        if await repo.get_user_by_email(tenant_id, email) is not None:
            continue
        await repo.create_user(
            User(tenant_id=tenant_id, email=email, full_name=full_name, hashed_password=hashed, role=role)
        )
        logger.info("  user %s (%s)", email, role)


async def _seed_recipes(session: AsyncSession, tenant_id: UUID) -> None:
    repo = RecipeRepository(session)
    for template in DEMO_RECIPES:
        existing = await repo.scalar_one_or_none(
            select(Recipe.id).where(
                Recipe.tenant_id == tenant_id,
                Recipe.name == template["name"],
                Recipe.version == template["version"],
            )
        )
        if existing is not None:
            continue
        recipe = Recipe(
            tenant_id=tenant_id,
            name=template["name"],
            product_name=template["product_name"],
            version=template["version"],
            description=template["description"],
            created_by=template["created_by"],
        )
        steps: List[RecipeStep] = [RecipeStep(**step) for step in template["steps"]]
        await repo.create_recipe(recipe, steps)
        logger.info("  recipe %s (%d steps)", recipe.name, len(steps))


# PUBLIC_INTERFACE
def main() -> None:
    """Entrypoint to run the asynchronous seeding."""
    configure_logging(get_app_settings().LOG_LEVEL)
    asyncio.run(seed_all())


if __name__ == "__main__":
    main()
