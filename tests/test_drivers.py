"""
Tests for the device drivers: Sonoff DIY-mode HTTP, the simulator, groups,
and the devices-file loader.
"""

import json

import httpx
import pytest

from lightmon.domain.models import SwitchState
from lightmon.drivers.actuator_sonoff import SonoffSwitch
from lightmon.drivers.actuators_sim import SimFaults, SimulatedSwitch
from lightmon.drivers.group import SwitchGroup
from lightmon.drivers.loader import build_registry, build_switch, load_registry


def sonoff(handler) -> SonoffSwitch:
    return SonoffSwitch(
        device_id="7",
        name="Porch",
        ip="10.0.0.7",
        sonoff_device_id="1000abcd",
        transport=httpx.MockTransport(handler),
    )


class TestSonoffSwitch:
    @pytest.mark.asyncio
    async def test_set_state_posts_switch(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"seq": 1, "error": 0})

        result = await sonoff(handler).set_state(SwitchState.ON)

        assert result.ok
        assert str(seen[0].url) == "http://10.0.0.7:8081/zeroconf/switch"
        assert json.loads(seen[0].content) == {"deviceid": "1000abcd", "data": {"switch": "on"}}

    @pytest.mark.asyncio
    async def test_state_known_only_after_refresh(self):
        def handler(request):
            return httpx.Response(200, json={"error": 0, "data": {"switch": "off"}})

        sw = sonoff(handler)
        assert await sw.current_state() is SwitchState.UNKNOWN

        assert (await sw.refresh()).ok
        assert await sw.current_state() is SwitchState.OFF

    @pytest.mark.asyncio
    async def test_device_error_code_is_failure(self):
        def handler(request):
            return httpx.Response(200, json={"error": 400})

        result = await sonoff(handler).set_state(SwitchState.OFF)

        assert not result.ok
        assert "400" in result.error

    @pytest.mark.asyncio
    async def test_transport_error_keeps_last_report(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                return httpx.Response(200, json={"error": 0, "data": {"switch": "on"}})
            raise httpx.ConnectError("unreachable", request=request)

        sw = sonoff(handler)
        await sw.refresh()
        result = await sw.refresh()

        assert not result.ok
        assert await sw.current_state() is SwitchState.ON


class TestSimulatedSwitch:
    @pytest.mark.asyncio
    async def test_dropped_command_reports_success(self):
        sw = SimulatedSwitch("1", "Hall")
        sw.set_faults(SimFaults(drop_commands=1))

        assert (await sw.set_state(SwitchState.ON)).ok
        assert await sw.current_state() is SwitchState.OFF

        assert (await sw.set_state(SwitchState.ON)).ok
        assert await sw.current_state() is SwitchState.ON
        assert sw.commands_received == 2

    @pytest.mark.asyncio
    async def test_failed_command(self):
        sw = SimulatedSwitch("1", "Hall")
        sw.set_faults(SimFaults(fail_commands=1, drop_commands=1))

        assert not (await sw.set_state(SwitchState.ON)).ok
        assert sw.faults.fail_commands == 0
        assert sw.faults.drop_commands == 1

    @pytest.mark.asyncio
    async def test_read_and_refresh_faults(self):
        sw = SimulatedSwitch("1", "Hall", on=True)
        sw.set_faults(SimFaults(fail_refresh=True, fail_read=True))

        assert not (await sw.refresh()).ok
        assert await sw.current_state() is SwitchState.UNKNOWN

    def test_press_returns_device_event(self):
        sw = SimulatedSwitch("1", "Hall")

        ev = sw.press(SwitchState.ON)

        assert ev.device_id == "1"
        assert ev.value is SwitchState.ON
        assert ev.source == "DEVICE"
        assert sw.status()["actual"] == "on"


class TestSwitchGroup:
    @pytest.mark.asyncio
    async def test_fan_out(self):
        a, b = SimulatedSwitch("1", "A"), SimulatedSwitch("2", "B")
        group = SwitchGroup("g", "Both", [a, b])

        assert (await group.set_state(SwitchState.ON)).ok
        assert await group.current_state() is SwitchState.ON

    @pytest.mark.asyncio
    async def test_partial_failure(self):
        a, b = SimulatedSwitch("1", "A"), SimulatedSwitch("2", "B")
        b.set_faults(SimFaults(fail_commands=1))
        group = SwitchGroup("g", "Both", [a, b])

        result = await group.set_state(SwitchState.ON)

        assert not result.ok
        assert result.error.startswith("B:")
        assert await a.current_state() is SwitchState.ON
        assert await group.current_state() is SwitchState.UNKNOWN


class TestLoader:
    def test_build_registry(self):
        data = {
            "devices": [
                {"id": 1, "name": "Hall"},
                {"id": "2", "name": "Porch", "driver": "sonoff", "ip": "10.0.0.2"},
            ],
            "groups": [{"id": "g1", "name": "All", "members": ["1", "2", "9"]}],
        }

        reg = build_registry(data, monitored_ids=["1"])

        assert isinstance(reg.get("1"), SimulatedSwitch)
        assert isinstance(reg.get("2"), SonoffSwitch)
        assert [m.device_id for m in reg.get_group("g1").members] == ["1", "2"]
        assert reg.is_monitored("1") and not reg.is_monitored("2")

    def test_unknown_driver(self):
        with pytest.raises(ValueError):
            build_switch({"id": "1", "driver": "zigbee"})

    def test_bundled_devices_file(self):
        reg = load_registry()

        assert len(reg.all()) == 4
        assert reg.get_group("g1") is not None

    def test_missing_file_gives_empty_registry(self, tmp_path):
        reg = load_registry(str(tmp_path / "nope.json"))

        assert reg.all() == []
