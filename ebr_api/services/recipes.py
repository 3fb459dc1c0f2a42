"""
Recipe store: CRUD over recipe templates plus JSON and BatchML interchange.
"""
from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.errors import NotFoundError, ValidationError
from ebr_api.db.base import utcnow
from ebr_api.db.models.recipes import Recipe, RecipeStep
from ebr_api.repositories.recipes import RecipeRepository
from ebr_api.schemas.recipes import RecipeCreate, RecipeImport, RecipeStepIn, RecipeUpdate
from ebr_api.services.audit import AuditAction, EntityRef, log_event
from ebr_api.services.base import Actor, BaseService

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "dicode-ebr-recipe"
EXPORT_VERSION = "1.0"
BATCHML_NS = "urn:BatchML:V0410"


def _steps_from(payload: List[RecipeStepIn]) -> List[RecipeStep]:
    return [
        RecipeStep(
            step_number=0,
            description=s.description,
            instructions=s.instructions,
            step_type=s.step_type,
            expected_value=s.expected_value,
            unit=s.unit,
            requires_signature=s.requires_signature,
            duration_minutes=s.duration_minutes,
        )
        for s in payload
    ]


def safe_file_name(name: str) -> str:
    """File-name-safe variant of a recipe name."""
    return re.sub(r"[^A-Za-z0-9_-]", "_", name)


# PUBLIC_INTERFACE
def export_json(recipe: Recipe, steps: List[RecipeStep]) -> Dict[str, Any]:
    """Interchange envelope for one recipe."""
    return {
        "format": EXPORT_FORMAT,
        "version": EXPORT_VERSION,
        "exportedAt": datetime.now(timezone.utc).isoformat(),
        "recipe": {
            "name": recipe.name,
            "product_name": recipe.product_name,
            "version": recipe.version,
            "description": recipe.description,
            "steps": [
                {
                    "step_number": s.step_number,
                    "description": s.description,
                    "step_type": s.step_type,
                    "instructions": s.instructions,
                    "expected_value": s.expected_value,
                    "unit": s.unit,
                    "requires_signature": s.requires_signature,
                    "duration_minutes": s.duration_minutes,
                }
                for s in steps
            ],
        },
    }


# PUBLIC_INTERFACE
def export_batchml(recipe: Recipe, steps: List[RecipeStep]) -> str:
    """BatchML (ISA-88) document for one recipe."""
    ET.register_namespace("", BATCHML_NS)

    def sub(parent: ET.Element, tag: str, text: Any = None, **attrs: str) -> ET.Element:
        el = ET.SubElement(parent, f"{{{BATCHML_NS}}}{tag}", attrs)
        if text is not None:
            el.text = str(text)
        return el

    root = ET.Element(f"{{{BATCHML_NS}}}BatchML", {"version": "04.10"})
    header = sub(root, "Header")
    sub(header, "ID", recipe.id)
    sub(header, "Name", recipe.name)
    sub(header, "Description", recipe.description or "")
    sub(header, "Version", recipe.version)
    sub(header, "ProductName", recipe.product_name)
    sub(header, "Author", recipe.created_by or "")
    sub(header, "ExportedOn", datetime.now(timezone.utc).isoformat())
    sub(header, "Source", "Dicode EBR")

    body = sub(root, "RecipeBody")
    for s in steps:
        step_el = sub(body, "RecipeStep", stepNumber=str(s.step_number))
        sub(step_el, "Description", s.description)
        sub(step_el, "StepType", s.step_type)
        sub(step_el, "Instructions", s.instructions or "")
        if s.expected_value is not None:
            sub(step_el, "ExpectedValue", s.expected_value, unit=s.unit or "")
        else:
            sub(step_el, "ExpectedValue")
        sub(step_el, "RequiresSignature", "true" if s.requires_signature else "false")
        sub(step_el, "DurationMinutes", s.duration_minutes if s.duration_minutes is not None else "")

    ET.indent(root)
    return ET.tostring(root, encoding="unicode", xml_declaration=True)


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(el: ET.Element, tag: str) -> Optional[str]:
    for child in el:
        if _local(child.tag) == tag:
            return (child.text or "").strip() or None
    return None


def _child(el: ET.Element, tag: str) -> Optional[ET.Element]:
    for child in el:
        if _local(child.tag) == tag:
            return child
    return None


# PUBLIC_INTERFACE
def parse_batchml(document: str) -> Dict[str, Any]:
    """
    Read a BatchML document into a recipe dict.

    Namespaced and un-namespaced documents are both accepted; steps are
    ordered by their stepNumber attribute.
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as exc:
        raise ValidationError(f"Invalid BatchML document: {exc}")

    header = _child(root, "Header")
    if header is None:
        header = root
    steps: List[Tuple[int, Dict[str, Any]]] = []
    body = _child(root, "RecipeBody")
    for step_el in (body if body is not None else []):
        if _local(step_el.tag) != "RecipeStep":
            continue
        expected = _child(step_el, "ExpectedValue")
        expected_text = (expected.text or "").strip() if expected is not None else ""
        duration = _child_text(step_el, "DurationMinutes")
        try:
            number = int(step_el.get("stepNumber", "0"))
            steps.append(
                (
                    number,
                    {
                        "description": _child_text(step_el, "Description") or "",
                        "step_type": _child_text(step_el, "StepType") or "manual",
                        "instructions": _child_text(step_el, "Instructions"),
                        "expected_value": float(expected_text) if expected_text else None,
                        "unit": (expected.get("unit") or None) if expected is not None else None,
                        "requires_signature": _child_text(step_el, "RequiresSignature") == "true",
                        "duration_minutes": int(duration) if duration else None,
                    },
                )
            )
        except ValueError as exc:
            raise ValidationError(f"Invalid BatchML step: {exc}")
    steps.sort(key=lambda item: item[0])

    return {
        "name": _child_text(header, "Name"),
        "product_name": _child_text(header, "ProductName"),
        "version": _child_text(header, "Version") or "1.0",
        "description": _child_text(header, "Description"),
        "steps": [s for _, s in steps],
    }


# PUBLIC_INTERFACE
def parse_import(payload: RecipeImport) -> RecipeCreate:
    """Turn an import payload (JSON envelope, bare recipe object or BatchML) into a create payload."""
    if payload.format == "xml":
        if not isinstance(payload.data, str):
            raise ValidationError("BatchML import expects the XML document as a string")
        raw = parse_batchml(payload.data)
    else:
        data = payload.data
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Invalid JSON document: {exc}")
        if not isinstance(data, dict):
            raise ValidationError("JSON import expects an object")
        raw = data.get("recipe") or data

    if not raw.get("name") or not raw.get("product_name"):
        raise ValidationError("Recipe name and product_name are required")
    steps = sorted(raw.get("steps") or [], key=lambda s: s.get("step_number") or 0)
    try:
        return RecipeCreate(
            name=raw["name"],
            product_name=raw["product_name"],
            version=raw.get("version") or "1.0",
            description=raw.get("description"),
            steps=steps,
        )
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid recipe document",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        )


class RecipeService(BaseService):
    """Recipe CRUD and interchange, one audit entry per write."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)
        self.repo = RecipeRepository(session)

    async def list_recipes(self, tenant_id: UUID) -> List[Recipe]:
        return await self.repo.list_recipes(tenant_id)

    async def get_recipe(self, tenant_id: UUID, recipe_id: UUID) -> Recipe:
        recipe = await self.repo.get_recipe(tenant_id, recipe_id)
        if recipe is None:
            raise NotFoundError("Recipe not found")
        return recipe

    # PUBLIC_INTERFACE
    async def create_recipe(self, actor: Actor, payload: RecipeCreate, *, imported: bool = False) -> Recipe:
        """Create a recipe; steps are numbered 1..N in the given order."""
        async with self.unit_of_work():
            recipe = Recipe(
                tenant_id=actor.tenant_id,
                name=payload.name,
                product_name=payload.product_name,
                version=payload.version or "1.0",
                description=payload.description,
                created_by=actor.full_name,
            )
            steps = _steps_from(payload.steps)
            await self.repo.create_recipe(recipe, steps)
            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.RECIPE_IMPORTED if imported else AuditAction.RECIPE_CREATED,
                entity=EntityRef.recipe(recipe.id),
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={"name": recipe.name, "version": recipe.version, "step_count": len(steps)},
            )
            recipe_id = recipe.id
        logger.info("Recipe %s %s", recipe_id, "imported" if imported else "created")
        return await self.get_recipe(actor.tenant_id, recipe_id)

    # PUBLIC_INTERFACE
    async def import_recipe(self, actor: Actor, payload: RecipeImport) -> Recipe:
        return await self.create_recipe(actor, parse_import(payload), imported=True)

    # PUBLIC_INTERFACE
    async def update_recipe(self, actor: Actor, recipe_id: UUID, payload: RecipeUpdate) -> Recipe:
        """Merge header fields; a supplied step list replaces all steps."""
        async with self.unit_of_work():
            recipe = await self.get_recipe(actor.tenant_id, recipe_id)
            changes = payload.model_dump(exclude_unset=True, exclude_none=True, exclude={"steps"})
            for field, value in changes.items():
                setattr(recipe, field, value)
            recipe.updated_at = utcnow()
            details: Dict[str, Any] = {"name": recipe.name, "fields": sorted(changes)}
            if payload.steps is not None:
                await self.repo.replace_steps(recipe, _steps_from(payload.steps))
                details["step_count"] = len(payload.steps)
            await self.repo.flush()
            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.RECIPE_UPDATED,
                entity=EntityRef.recipe(recipe.id),
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details=details,
            )
        return await self.get_recipe(actor.tenant_id, recipe_id)

    # PUBLIC_INTERFACE
    async def delete_recipe(self, actor: Actor, recipe_id: UUID) -> None:
        """Delete a recipe and its steps; batches keep their copied steps."""
        async with self.unit_of_work():
            recipe = await self.get_recipe(actor.tenant_id, recipe_id)
            name = recipe.name
            await self.repo.delete_recipe(actor.tenant_id, recipe_id)
            await log_event(
                self.session,
                tenant_id=actor.tenant_id,
                action=AuditAction.RECIPE_DELETED,
                entity=EntityRef.recipe(recipe_id),
                performed_by=actor.full_name,
                ip_address=actor.ip_address,
                details={"name": name},
            )
        logger.info("Recipe %s deleted", recipe_id)

    # PUBLIC_INTERFACE
    async def export_recipe(self, tenant_id: UUID, recipe_id: UUID, export_format: str = "json") -> Tuple[str, Any]:
        """Return (file name, document) in the requested format."""
        recipe = await self.get_recipe(tenant_id, recipe_id)
        steps = await self.repo.list_steps(tenant_id, recipe_id)
        base = safe_file_name(recipe.name)
        if (export_format or "json").lower() == "xml":
            return f"{base}.xml", export_batchml(recipe, steps)
        return f"{base}.json", export_json(recipe, steps)
