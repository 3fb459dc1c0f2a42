"""
Simulated OPC-UA feed. Values are generated on each request; nothing is persisted.
"""
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ebr_api.core.deps import get_simulator, require_operation
from ebr_api.core.policy import Operation
from ebr_api.schemas.equipment import AlarmsResponse, ConnectionStatus, EquipmentResponse, ReadingsResponse
from ebr_api.services.base import Actor
from ebr_api.services.equipment import (
    SimulatorState,
    active_alarms,
    compute_readings,
    connection_status,
    equipment_status,
)

router = APIRouter(prefix="/integrations", tags=["Integrations"])

_read = require_operation(Operation.INTEGRATIONS_READ)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
@router.get("/status", response_model=ConnectionStatus, summary="OPC-UA connection status")
async def opcua_status(actor: Actor = Depends(_read)) -> ConnectionStatus:
    return connection_status(_now())


# PUBLIC_INTERFACE
@router.get("/readings", response_model=ReadingsResponse, summary="Live process readings")
async def readings(
    actor: Actor = Depends(_read),
    simulator: SimulatorState = Depends(get_simulator),
) -> ReadingsResponse:
    now = _now()
    return ReadingsResponse(readings=compute_readings(simulator, now), timestamp=now)


# PUBLIC_INTERFACE
@router.get("/equipment", response_model=EquipmentResponse, summary="Equipment status")
async def equipment(actor: Actor = Depends(_read)) -> EquipmentResponse:
    return EquipmentResponse(equipment=equipment_status(), timestamp=_now())


# PUBLIC_INTERFACE
@router.get("/alarms", response_model=AlarmsResponse, summary="Active alarms")
async def alarms(actor: Actor = Depends(_read)) -> AlarmsResponse:
    now = _now()
    return AlarmsResponse(alarms=active_alarms(now), timestamp=now)
