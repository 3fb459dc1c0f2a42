from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ebr_api.core.deps import get_tenant_session, require_operation
from ebr_api.core.errors import ValidationError
from ebr_api.core.policy import Operation
from ebr_api.schemas.audit import AuditEventRead
from ebr_api.services.audit import AuditService
from ebr_api.services.base import Actor

# PUBLIC_INTERFACE
router = APIRouter(prefix="/audit", tags=["Audit"])

EXPORT_FORMATS = ("csv", "xlsx")


def _export_dataframe(df: pd.DataFrame, filename_base: str, export_format: str) -> StreamingResponse:
    """
    Convert DataFrame to the requested format and return a StreamingResponse.

    Supported formats:
      - csv: text/csv
      - xlsx: application/vnd.openxmlformats-officedocument.spreadsheetml.sheet
    """
    if export_format == "xlsx":
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="Audit Trail")
        buffer.seek(0)
        headers = {"Content-Disposition": f'attachment; filename="{filename_base}.xlsx"'}
        return StreamingResponse(
            buffer,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers=headers,
        )

    buffer = io.StringIO()
    df.to_csv(buffer, index=False)
    buffer.seek(0)
    headers = {"Content-Disposition": f'attachment; filename="{filename_base}.csv"'}
    return StreamingResponse(buffer, media_type="text/csv", headers=headers)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[AuditEventRead],
    summary="Tenant audit trail",
    description="Audit events of the tenant, newest first. limit defaults to 50 and is capped at 200.",
)
async def list_audit_events(
    entity_type: Optional[str] = Query(None, description="batch | recipe | user | session"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
    offset: int = Query(0, ge=0, description="Rows to skip"),
    actor: Actor = Depends(require_operation(Operation.AUDIT_READ)),
    session: AsyncSession = Depends(get_tenant_session),
):
    return await AuditService(session).list_events(
        actor.tenant_id, entity_type=entity_type, limit=limit, offset=offset
    )


# PUBLIC_INTERFACE
@router.get(
    "/export",
    summary="Export audit trail",
    description="The full audit trail of the tenant as CSV or Excel.",
    response_description="File stream (CSV/XLSX)",
)
async def export_audit_events(
    format: str = Query("csv", description="Export format: csv | xlsx"),
    entity_type: Optional[str] = Query(None, description="batch | recipe | user | session"),
    actor: Actor = Depends(require_operation(Operation.AUDIT_EXPORT)),
    session: AsyncSession = Depends(get_tenant_session),
) -> StreamingResponse:
    export_format = (format or "csv").lower()
    if export_format not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{format}'", details={"formats": list(EXPORT_FORMATS)})
    df = await AuditService(session).export_frame(actor.tenant_id, entity_type=entity_type)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
    return _export_dataframe(df, f"audit_trail_{stamp}", export_format)
