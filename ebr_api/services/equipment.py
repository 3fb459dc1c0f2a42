"""
Simulated OPC-UA equipment feed.

Readings drift sinusoidally with the time elapsed since the simulator was
created, plus bounded jitter. Clock and random source are parameters, so the
functions here are deterministic under test.
"""
from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from ebr_api.core.settings import AppSettings, get_app_settings
from ebr_api.schemas.equipment import Alarm, ConnectionStatus, EquipmentItem, ProcessReading

ALARM_PROBABILITY = 0.3


@dataclass(frozen=True)
class ProcessVariable:
    """Static description of a simulated tag and how its value moves."""

    key: str
    tag: str
    description: str
    unit: str
    setpoint: float
    tolerance: float
    center: float
    jitter: float
    digits: int
    period_s: Optional[float] = None
    amplitude: float = 0.0


PROCESS_VARIABLES: List[ProcessVariable] = [
    ProcessVariable("reactor_temperature", "REACTOR_01.TEMP", "Reactor Temperature", "°C",
                    65, 2, 65, 0.2, 2, period_s=120, amplitude=1.5),
    ProcessVariable("mixer_speed", "MIXER_01.RPM", "Mixer Speed", "RPM", 120, 10, 120, 4, 0),
    ProcessVariable("relative_humidity", "ENV_01.RH", "Relative Humidity", "%RH",
                    45, 10, 45, 0.5, 1, period_s=300, amplitude=3),
    ProcessVariable("pressure", "VESSEL_01.PRESS", "Vessel Pressure", "bar", 1.013, 0.05, 1.013, 0.005, 4),
    ProcessVariable("dryer_outlet_temp", "DRYER_01.OUTLET_TEMP", "Dryer Outlet Temperature", "°C",
                    42, 5, 42, 0.3, 2, period_s=180, amplitude=2),
    ProcessVariable("batch_weight", "SCALE_01.WEIGHT", "Batch Weight", "kg", 500, 2, 499.5, 0.5, 2),
]

EQUIPMENT: List[EquipmentItem] = [
    EquipmentItem(id="EQ-001", name="High-Shear Granulator HSG-300", type="granulator", status="running",
                  calibration_due="2026-05-15", last_cleaned="2026-02-18", operator="S. Conti"),
    EquipmentItem(id="EQ-002", name="Fluid Bed Dryer FBD-150", type="dryer", status="idle",
                  calibration_due="2026-04-30", last_cleaned="2026-02-19"),
    EquipmentItem(id="EQ-003", name="Fette 3090 Tablet Press", type="tablet_press", status="maintenance",
                  calibration_due="2026-03-01", last_cleaned="2026-02-15"),
    EquipmentItem(id="EQ-004", name="Bosch GKF Capsule Filler", type="capsule_filler", status="idle",
                  calibration_due="2026-06-10", last_cleaned="2026-02-17"),
]


@dataclass
class SimulatorState:
    """Per-application simulator state; created once at startup."""

    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _value(var: ProcessVariable, elapsed_s: float, rng: random.Random) -> float:
    base = var.center
    if var.period_s:
        base += var.amplitude * math.sin(2 * math.pi * elapsed_s / var.period_s)
    value = base + (rng.random() - 0.5) * 2 * var.jitter
    return round(value, var.digits) if var.digits else float(round(value))


# PUBLIC_INTERFACE
def compute_readings(
    state: SimulatorState, now: datetime, rng: Optional[random.Random] = None
) -> Dict[str, ProcessReading]:
    """Current value of every simulated process variable."""
    rng = rng or random.Random()
    elapsed = (now - state.start_time).total_seconds()
    return {
        var.key: ProcessReading(
            tag=var.tag,
            description=var.description,
            value=_value(var, elapsed, rng),
            unit=var.unit,
            setpoint=var.setpoint,
            tolerance=var.tolerance,
            timestamp=now,
        )
        for var in PROCESS_VARIABLES
    }


# PUBLIC_INTERFACE
def equipment_status() -> List[EquipmentItem]:
    return [item.model_copy() for item in EQUIPMENT]


# PUBLIC_INTERFACE
def active_alarms(now: datetime, rng: Optional[random.Random] = None) -> List[Alarm]:
    """Occasionally surface a low-severity humidity alarm raised within the last ten minutes."""
    rng = rng or random.Random()
    if rng.random() >= ALARM_PROBABILITY:
        return []
    return [
        Alarm(
            id=f"ALM-{int(now.timestamp() * 1000)}",
            severity="low",
            tag="ENV_01.RH",
            message="Relative humidity approaching upper limit (55% RH)",
            acknowledged=False,
            timestamp=now - timedelta(seconds=rng.random() * 600),
        )
    ]


# PUBLIC_INTERFACE
def connection_status(now: datetime, settings: Optional[AppSettings] = None) -> ConnectionStatus:
    settings = settings or get_app_settings()
    return ConnectionStatus(
        connected=True,
        endpoint=settings.OPCUA_ENDPOINT,
        server=settings.OPCUA_SERVER_NAME,
        session_id=f"SIM-{int(now.timestamp() // 60)}",
        timestamp=now,
    )
