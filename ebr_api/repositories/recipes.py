from __future__ import annotations

from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select

from ebr_api.db.models.recipes import Recipe, RecipeStep
from .base import BaseRepository


class RecipeRepository(BaseRepository):
    """Repository for recipes and their template steps."""

    async def list_recipes(self, tenant_id: UUID) -> List[Recipe]:
        stmt = select(Recipe).where(Recipe.tenant_id == tenant_id).order_by(Recipe.created_at.desc())
        return list(await self.scalars(stmt))

    async def get_recipe(self, tenant_id: UUID, recipe_id: UUID) -> Optional[Recipe]:
        stmt = (
            select(Recipe)
            .where(Recipe.id == recipe_id, Recipe.tenant_id == tenant_id)
            .execution_options(populate_existing=True)
        )
        return await self.scalar_one_or_none(stmt)

    async def list_steps(self, tenant_id: UUID, recipe_id: UUID) -> List[RecipeStep]:
        stmt = (
            select(RecipeStep)
            .where(RecipeStep.tenant_id == tenant_id, RecipeStep.recipe_id == recipe_id)
            .order_by(RecipeStep.step_number.asc())
        )
        return list(await self.scalars(stmt))

    async def create_recipe(self, recipe: Recipe, steps: Sequence[RecipeStep]) -> Recipe:
        await self.add(recipe)
        await self.flush()
        await self.replace_steps(recipe, steps)
        return recipe

    async def replace_steps(self, recipe: Recipe, steps: Sequence[RecipeStep]) -> None:
        """Delete existing template steps, then insert the given ones renumbered 1..N."""
        # the loaded collection would otherwise still hold the deleted rows
        self.session.expire(recipe, ["steps"])
        await self.execute(
            delete(RecipeStep).where(
                RecipeStep.recipe_id == recipe.id, RecipeStep.tenant_id == recipe.tenant_id
            )
        )
        for number, step in enumerate(steps, start=1):
            step.step_number = number
            step.recipe_id = recipe.id
            step.tenant_id = recipe.tenant_id
        await self.add_all(steps)
        await self.flush()

    async def delete_recipe(self, tenant_id: UUID, recipe_id: UUID) -> bool:
        res = await self.execute(
            delete(Recipe).where(Recipe.id == recipe_id, Recipe.tenant_id == tenant_id)
        )
        return bool(res.rowcount)
