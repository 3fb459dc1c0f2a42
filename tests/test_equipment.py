"""OPC-UA simulator with a pinned clock and random source."""

from datetime import datetime, timedelta, timezone

from ebr_api.core.settings import AppSettings
from ebr_api.services.equipment import (
    SimulatorState,
    active_alarms,
    compute_readings,
    connection_status,
    equipment_status,
)

START = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def test_readings_follow_the_drift_curve():
    now = START + timedelta(seconds=30)
    readings = compute_readings(SimulatorState(start_time=START), now, FixedRandom(0.5))

    assert len(readings) == 6
    assert readings["reactor_temperature"].value == 66.5
    assert readings["reactor_temperature"].tag == "REACTOR_01.TEMP"
    assert readings["mixer_speed"].value == 120.0
    assert readings["batch_weight"].value == 499.5
    assert readings["pressure"].value == 1.013
    assert all(r.timestamp == now for r in readings.values())


def test_jitter_is_bounded():
    state = SimulatorState(start_time=START)
    low = compute_readings(state, START, FixedRandom(0.0))
    high = compute_readings(state, START, FixedRandom(0.999999))

    assert low["mixer_speed"].value == 116.0
    assert high["mixer_speed"].value == 124.0
    assert 44.5 <= low["relative_humidity"].value <= 45.5


def test_equipment_inventory():
    items = equipment_status()
    assert [i.id for i in items] == ["EQ-001", "EQ-002", "EQ-003", "EQ-004"]
    items[0].status = "idle"
    assert equipment_status()[0].status == "running"


def test_alarm_raised_below_probability():
    now = START
    alarms = active_alarms(now, FixedRandom(0.1))
    assert len(alarms) == 1
    assert alarms[0].severity == "low"
    assert alarms[0].acknowledged is False
    assert alarms[0].timestamp == now - timedelta(seconds=60)


def test_no_alarm_above_probability():
    assert active_alarms(START, FixedRandom(0.5)) == []


def test_connection_status():
    settings = AppSettings(OPCUA_ENDPOINT="opc.tcp://sim:4840", OPCUA_SERVER_NAME="Sim Server")
    status = connection_status(START, settings)
    assert status.connected is True
    assert status.endpoint == "opc.tcp://sim:4840"
    assert status.server == "Sim Server"
    assert status.session_id == f"SIM-{int(START.timestamp() // 60)}"
