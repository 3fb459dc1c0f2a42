from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.deps import get_tenant_session, require_operation
from ebr_api.core.policy import Operation
from ebr_api.schemas.recipes import RecipeCreate, RecipeDetail, RecipeImport, RecipeRead, RecipeUpdate
from ebr_api.services.base import Actor
from ebr_api.services.recipes import RecipeService

router = APIRouter(prefix="/recipes", tags=["Recipes"])

_read = require_operation(Operation.RECIPE_READ)
_write = require_operation(Operation.RECIPE_WRITE)


# PUBLIC_INTERFACE
@router.get("", response_model=List[RecipeRead], summary="List recipes", description="Newest first.")
async def list_recipes(
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await RecipeService(session).list_recipes(actor.tenant_id)


# PUBLIC_INTERFACE
@router.post(
    "",
    response_model=RecipeDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Create recipe",
    description="Create a recipe; steps are numbered 1..N in the order given.",
)
async def create_recipe(
    payload: RecipeCreate,
    actor: Actor = Depends(_write),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await RecipeService(session).create_recipe(actor, payload)


# PUBLIC_INTERFACE
@router.post(
    "/import",
    response_model=RecipeDetail,
    status_code=status.HTTP_201_CREATED,
    summary="Import recipe",
    description="Import from the JSON export envelope (or a bare recipe object) or from BatchML XML.",
)
async def import_recipe(
    payload: RecipeImport,
    actor: Actor = Depends(_write),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await RecipeService(session).import_recipe(actor, payload)


# PUBLIC_INTERFACE
@router.get("/{recipe_id}", response_model=RecipeDetail, summary="Get recipe with steps")
async def get_recipe(
    recipe_id: UUID = Path(..., description="Recipe ID"),
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await RecipeService(session).get_recipe(actor.tenant_id, recipe_id)


# PUBLIC_INTERFACE
@router.get(
    "/{recipe_id}/export",
    summary="Export recipe",
    description="Download the recipe as a JSON envelope or as BatchML XML.",
    response_description="File download (JSON/XML)",
)
async def export_recipe(
    recipe_id: UUID = Path(..., description="Recipe ID"),
    format: str = Query("json", description="Export format: json | xml"),
    actor: Actor = Depends(_read),
    session: AsyncSession = Depends(get_tenant_session),
):
    file_name, document = await RecipeService(session).export_recipe(actor.tenant_id, recipe_id, format)
    headers = {"Content-Disposition": f'attachment; filename="{file_name}"'}
    if isinstance(document, str):
        return Response(content=document, media_type="application/xml", headers=headers)
    return JSONResponse(content=document, headers=headers)


# PUBLIC_INTERFACE
@router.put(
    "/{recipe_id}",
    response_model=RecipeDetail,
    summary="Update recipe",
    description="Merge header fields; a supplied step list replaces all steps.",
)
async def update_recipe(
    payload: RecipeUpdate,
    recipe_id: UUID = Path(..., description="Recipe ID"),
    actor: Actor = Depends(_write),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await RecipeService(session).update_recipe(actor, recipe_id, payload)


# PUBLIC_INTERFACE
@router.delete("/{recipe_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete recipe")
async def delete_recipe(
    recipe_id: UUID = Path(..., description="Recipe ID"),
    actor: Actor = Depends(_write),
    session: AsyncSession = Depends(get_tenant_session),
) -> Response:
    await RecipeService(session).delete_recipe(actor, recipe_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
