"""Telemetry emission rules for DeviceSession."""

from __future__ import annotations

import pytest

from shelly_bridge.session import DeviceSession

from conftest import FakeScheduler, RecordingHost, open_session, settle


def _status() -> dict:
    return {"switch:0": {"output": True, "apower": 12.5, "voltage": 230.1}}


@pytest.mark.asyncio
async def test_initial_meta_and_static_deltas() -> None:
    """The first batch carries identity; metadata is sent first, once."""

    host = RecordingHost()
    session, _ = await open_session(host, FakeScheduler(), _status())

    assert len(host.meta) == 1
    meta = {item["path"]: item["value"] for item in host.meta[0]}
    assert meta == {
        "electrical.switches.hallway": {"displayName": "Hallway"},
        "electrical.switches.hallway.state": {"units": "bool"},
        "electrical.switches.hallway.voltage": {"units": "V"},
        "electrical.switches.hallway.apower": {"units": "W"},
    }

    (batch,) = host.deltas
    values = {item["path"]: item["value"] for item in batch}
    assert values == {
        "electrical.switches.hallway.name": "Hallway",
        "electrical.switches.hallway.model": "SNSW-001X16EU",
        "electrical.switches.hallway.address": "10.0.0.2",
        "electrical.switches.hallway.id": "shellyplus1-a8032ab12345",
        "electrical.switches.hallway.state": True,
        "electrical.switches.hallway.voltage": 230.1,
        "electrical.switches.hallway.apower": 12.5,
    }
    await session.disconnect()


@pytest.mark.asyncio
async def test_meta_and_static_not_repeated() -> None:
    """Later batches contain only component values."""

    host = RecordingHost()
    session, transport = await open_session(host, FakeScheduler(), _status())
    transport.push({"method": "NotifyStatus", "params": {"switch:0": {"voltage": 229.0}}})
    await settle()
    await session.poll()

    assert len(host.meta) == 1
    assert len(host.deltas) == 3
    assert host.deltas[1] == [{"path": "electrical.switches.hallway.voltage", "value": 229.0}]
    polled = {item["path"] for item in host.deltas[2]}
    assert "electrical.switches.hallway.name" not in polled
    assert "electrical.switches.hallway.state" in polled
    await session.disconnect()


@pytest.mark.asyncio
async def test_empty_batches_are_not_sent() -> None:
    """Fragments without known components produce no delta batch."""

    host = RecordingHost()
    session, transport = await open_session(host, FakeScheduler(), _status())
    transport.push({"method": "NotifyStatus", "params": {"sys": {"uptime": 10}}})
    await settle()
    assert len(host.deltas) == 1
    session.send_deltas({"wifi": {"rssi": -60}})
    assert len(host.deltas) == 1
    await session.disconnect()


@pytest.mark.asyncio
async def test_disabled_device_is_silent() -> None:
    """A disabled device emits nothing and registers no handlers."""

    host = RecordingHost()
    session, transport = await open_session(
        host, FakeScheduler(), _status(), settings={"enabled": False}
    )
    transport.push({"method": "NotifyStatus", "params": {"switch:0": {"output": False}}})
    await settle()
    await session.poll()

    assert session.connected
    assert host.deltas == []
    assert host.meta == []
    assert host.handlers == {}
    assert session.register_for_puts() == []
    await session.disconnect()


@pytest.mark.asyncio
async def test_poll_is_noop_when_disconnected() -> None:
    """poll() does nothing without a connection."""

    host = RecordingHost()
    session = DeviceSession(host, "10.0.0.2", scheduler=FakeScheduler())
    await session.poll()
    assert host.deltas == []


@pytest.mark.asyncio
async def test_resend_deltas_replays_meta() -> None:
    """resend_deltas refreshes discovery and re-emits everything."""

    host = RecordingHost()
    status = _status()
    session, _ = await open_session(host, FakeScheduler(), status)
    status["switch:1"] = {"output": False}

    await session.resend_deltas()
    assert len(host.meta) == 2
    assert session.components == {"switch": 2}
    values = {item["path"]: item["value"] for item in host.deltas[-1]}
    assert values["electrical.switches.hallway.name"] == "Hallway"
    assert values["electrical.switches.hallway.1.state"] is False
    assert "electrical.switches.hallway.1.state" in host.handlers
    await session.disconnect()


@pytest.mark.asyncio
async def test_settings_change_moves_paths() -> None:
    """New settings recompute the device root from the cached status."""

    host = RecordingHost()
    session, _ = await open_session(host, FakeScheduler(), _status())
    session.set_device_settings({"devicePath": "galley", "displayName": "Galley"})
    assert session.device_path == "electrical.switches.galley"

    await session.resend_deltas()
    assert host.meta_for("electrical.switches.galley") == [{"displayName": "Galley"}]
    assert host.values()["electrical.switches.galley.apower"] == 12.5
    await session.disconnect()


@pytest.mark.asyncio
async def test_disabled_component_excluded() -> None:
    """Disabled instances are skipped while siblings still report."""

    host = RecordingHost()
    status = {"switch:0": {"output": True}, "switch:1": {"output": False}}
    session, _ = await open_session(
        host, FakeScheduler(), status, settings={"switch1": {"enabled": False}}
    )
    values = host.values()
    assert values["electrical.switches.hallway.0.state"] is True
    assert "electrical.switches.hallway.1.state" not in values
    assert list(host.handlers) == ["electrical.switches.hallway.0.state"]
    await session.disconnect()


@pytest.mark.asyncio
async def test_alarm_notifications_from_push() -> None:
    """Smoke pushes produce notification deltas."""

    host = RecordingHost()
    info = {"id": "shellyplussmoke-1", "name": "Hallway", "model": "SNSN-0031Z", "gen": 2}
    session, transport = await open_session(
        host, FakeScheduler(), {"smoke:0": {"alarm": False, "mute": False}}, info=info
    )
    assert host.values()["notifications.environment.smoke.hallway"]["state"] == "normal"

    transport.push({"method": "NotifyStatus", "params": {"smoke:0": {"alarm": True}}})
    await settle()
    assert host.deltas[-1] == [
        {
            "path": "notifications.environment.smoke.hallway",
            "value": {
                "state": "alarm",
                "method": ["visual", "sound"],
                "message": "Smoke detected in Hallway",
            },
        }
    ]
    await session.disconnect()
