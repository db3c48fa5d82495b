"""Write handling for DeviceSession."""

from __future__ import annotations

from typing import Any

import pytest

from shelly_bridge.const import PUT_CONTEXT
from shelly_bridge.errors import InvalidValue, SetMismatch, UnwritableField

from conftest import FakeScheduler, RecordingHost, open_session

RGBW_INFO = {"id": "shellyplusrgbwpm-1", "name": "Deck", "model": "SNDC-0D4P10WW", "gen": 2}
PRESETS = [
    {"name": "Red", "red": 255, "green": 0, "blue": 0, "white": 0, "bright": 80},
    {"name": "Blue", "red": 0, "green": 0, "blue": 255, "white": 0, "bright": 0},
]


def _rgbw_status() -> dict[str, Any]:
    return {"rgbw:0": {"output": True, "rgb": [0, 255, 0], "brightness": 50, "white": 10}}


@pytest.mark.asyncio
async def test_registers_writable_paths() -> None:
    """Handlers exist for every writable field the device reports."""

    host = RecordingHost()
    session, _ = await open_session(
        host, FakeScheduler(), _rgbw_status(), info=RGBW_INFO, settings={"presets": PRESETS}
    )
    assert sorted(host.handlers) == [
        "electrical.switches.deck.dimmingLevel",
        "electrical.switches.deck.preset",
        "electrical.switches.deck.rgb",
        "electrical.switches.deck.state",
        "electrical.switches.deck.white",
    ]
    assert set(host.contexts.values()) == {PUT_CONTEXT}
    assert host.values()["electrical.switches.deck.preset"] == "Unknown"
    await session.disconnect()


@pytest.mark.asyncio
async def test_switch_write_confirms_and_emits() -> None:
    """A state write sends Set, reads back and emits the new value."""

    host = RecordingHost()
    status = {"switch:0": {"output": False}}
    session, transport = await open_session(host, FakeScheduler(), status)
    path = "electrical.switches.hallway.state"
    results: list[dict[str, Any]] = []

    reply = host.handlers[path](PUT_CONTEXT, path, True, results.append)
    assert reply == {"state": "PENDING"}
    await session.async_drain_writes()

    assert results == [{"state": "COMPLETED", "statusCode": 200}]
    assert transport.sent[-2]["method"] == "Switch.Set"
    assert transport.sent[-2]["params"] == {"id": 0, "on": True}
    assert transport.sent[-1]["method"] == "Switch.GetStatus"
    assert transport.sent[-1]["params"] == {"id": 0}
    assert host.deltas[-1] == [{"path": path, "value": True}]
    await session.disconnect()


@pytest.mark.asyncio
async def test_dimming_level_write_scales() -> None:
    """A 0.5 dimming level is sent as brightness 50."""

    host = RecordingHost()
    status = {"light:0": {"output": True, "brightness": 20}}
    session, transport = await open_session(host, FakeScheduler(), status)
    await session.write("electrical.switches.hallway.dimmingLevel", 0.5)
    assert transport.sent[-2]["params"] == {"id": 0, "brightness": 50}
    assert host.values()["electrical.switches.hallway.dimmingLevel"] == 0.5
    await session.disconnect()


@pytest.mark.asyncio
async def test_read_back_mismatch() -> None:
    """A device that ignores the Set fails the write."""

    host = RecordingHost()
    status = {"switch:0": {"output": False}}
    session, _ = await open_session(
        host,
        FakeScheduler(),
        status,
        overrides={"Switch.Set": lambda request: {"id": request["id"], "result": {}}},
    )
    path = "electrical.switches.hallway.state"
    with pytest.raises(SetMismatch) as err:
        await session.write(path, True)
    assert err.value.expected is True
    assert err.value.actual is False

    results: list[dict[str, Any]] = []
    host.handlers[path](PUT_CONTEXT, path, "on", results.append)
    await session.async_drain_writes()
    assert results[0]["statusCode"] == 400
    assert "switch:0" in results[0]["message"]
    assert host.plugin_errors == [results[0]["message"]]
    await session.disconnect()


@pytest.mark.asyncio
async def test_unknown_path_is_unwritable() -> None:
    """Writes to unregistered paths are refused."""

    session, _ = await open_session(RecordingHost(), FakeScheduler(), {"switch:0": {"output": False}})
    with pytest.raises(UnwritableField):
        await session.write("electrical.switches.hallway.apower", 10)
    await session.disconnect()


@pytest.mark.asyncio
async def test_preset_applies_colour_then_brightness() -> None:
    """Presets set colour and white first, then brightness."""

    host = RecordingHost()
    session, transport = await open_session(
        host, FakeScheduler(), _rgbw_status(), info=RGBW_INFO, settings={"presets": PRESETS}
    )
    sent_before = len(transport.sent)
    await session.write("electrical.switches.deck.preset", "Red")

    calls = [(request["method"], request["params"]) for request in transport.sent[sent_before:]]
    assert calls == [
        ("RGBW.Set", {"id": 0, "rgb": [255, 0, 0], "white": 0}),
        ("RGBW.Set", {"id": 0, "brightness": 80}),
        ("RGBW.GetStatus", {"id": 0}),
    ]
    values = host.values()
    assert values["electrical.switches.deck.preset"] == "Red"
    assert values["electrical.switches.deck.rgb"] == [255, 0, 0]
    assert values["electrical.switches.deck.dimmingLevel"] == 0.8
    await session.disconnect()


@pytest.mark.asyncio
async def test_preset_without_brightness_keeps_level() -> None:
    """A preset with zero brightness leaves the level untouched."""

    host = RecordingHost()
    session, transport = await open_session(
        host, FakeScheduler(), _rgbw_status(), info=RGBW_INFO, settings={"presets": PRESETS}
    )
    sent_before = len(transport.sent)
    await session.write("electrical.switches.deck.preset", "Blue")
    assert [request["method"] for request in transport.sent[sent_before:]] == [
        "RGBW.Set",
        "RGBW.GetStatus",
    ]
    assert host.values()["electrical.switches.deck.preset"] == "Blue"
    await session.disconnect()


@pytest.mark.asyncio
async def test_invalid_preset_rejected() -> None:
    """Unknown preset names fail without touching the device."""

    host = RecordingHost()
    session, transport = await open_session(
        host, FakeScheduler(), _rgbw_status(), info=RGBW_INFO, settings={"presets": PRESETS}
    )
    sent_before = len(transport.sent)
    with pytest.raises(InvalidValue):
        await session.write("electrical.switches.deck.preset", "Unknown")

    path = "electrical.switches.deck.preset"
    results: list[dict[str, Any]] = []
    host.handlers[path](PUT_CONTEXT, path, "Green", results.append)
    await session.async_drain_writes()
    assert results == [
        {"state": "COMPLETED", "statusCode": 400, "message": "invalid preset Green"}
    ]
    assert len(transport.sent) == sent_before
    await session.disconnect()


@pytest.mark.asyncio
async def test_invalid_value_rejected() -> None:
    """Out-of-range values fail before any request is sent."""

    host = RecordingHost()
    session, transport = await open_session(
        host, FakeScheduler(), _rgbw_status(), info=RGBW_INFO
    )
    sent_before = len(transport.sent)
    with pytest.raises(InvalidValue):
        await session.write("electrical.switches.deck.white", 300)
    with pytest.raises(InvalidValue):
        await session.write("electrical.switches.deck.rgb", [1, 2])
    assert len(transport.sent) == sent_before
    await session.disconnect()


def _failing_rgbw_set(status: dict[str, Any], failing_param: str):
    def _respond(request: dict[str, Any]) -> dict[str, Any]:
        params = request["params"]
        if failing_param in params:
            return {
                "id": request["id"],
                "error": {"code": -103, "message": f"{failing_param} rejected"},
            }
        for name, value in params.items():
            if name != "id":
                status["rgbw:0"][name] = value
        return {"id": request["id"], "result": {}}

    return _respond


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("failing_param", "expected_calls"),
    [
        ("rgb", ["RGBW.Set"]),
        ("brightness", ["RGBW.Set", "RGBW.Set"]),
    ],
)
async def test_preset_step_failure_reports_device_message(
    failing_param: str, expected_calls: list[str]
) -> None:
    """A failing preset step completes the PUT with the device's error."""

    host = RecordingHost()
    status = _rgbw_status()
    session, transport = await open_session(
        host,
        FakeScheduler(),
        status,
        info=RGBW_INFO,
        settings={"presets": PRESETS},
        overrides={"RGBW.Set": _failing_rgbw_set(status, failing_param)},
    )
    sent_before = len(transport.sent)
    batches = len(host.deltas)
    path = "electrical.switches.deck.preset"
    results: list[dict[str, Any]] = []

    host.handlers[path](PUT_CONTEXT, path, "Red", results.append)
    await session.async_drain_writes()

    assert results == [
        {
            "state": "COMPLETED",
            "statusCode": 400,
            "message": f"RGBW.Set failed (-103): {failing_param} rejected",
        }
    ]
    assert [request["method"] for request in transport.sent[sent_before:]] == expected_calls
    assert len(host.deltas) == batches
    await session.disconnect()
