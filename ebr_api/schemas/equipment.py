from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ProcessReading(BaseModel):
    """One simulated process variable."""
    tag: str = Field(..., description="OPC-UA style node tag")
    description: str = Field(...)
    value: float = Field(...)
    unit: str = Field(...)
    setpoint: float = Field(...)
    tolerance: float = Field(...)
    timestamp: datetime = Field(...)


class ReadingsResponse(BaseModel):
    readings: Dict[str, ProcessReading] = Field(...)
    timestamp: datetime = Field(...)


class EquipmentItem(BaseModel):
    id: str = Field(...)
    name: str = Field(...)
    type: str = Field(...)
    status: str = Field(..., description="running | idle | maintenance")
    calibration_due: str = Field(...)
    last_cleaned: str = Field(...)
    operator: Optional[str] = Field(None)


class EquipmentResponse(BaseModel):
    equipment: List[EquipmentItem] = Field(...)
    timestamp: datetime = Field(...)


class Alarm(BaseModel):
    id: str = Field(...)
    severity: str = Field(...)
    tag: str = Field(...)
    message: str = Field(...)
    acknowledged: bool = Field(False)
    timestamp: datetime = Field(...)


class AlarmsResponse(BaseModel):
    alarms: List[Alarm] = Field(...)
    timestamp: datetime = Field(...)


class ConnectionStatus(BaseModel):
    connected: bool = Field(...)
    endpoint: str = Field(...)
    server: str = Field(...)
    session_id: str = Field(...)
    timestamp: datetime = Field(...)
