import asyncio

import pytest

from core import TelemetryPoller
from device import ChannelKind
from error_handler import ErrorCategory


@pytest.fixture
def poller(node_client, error_handler):
    p = TelemetryPoller(node_client, interval=0.01, error_handler=error_handler)
    yield p
    p.stop_all()


async def wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


async def test_poll_merges_sensor_fields_only(poller, device, node):
    device.set_channel(ChannelKind.DIGITAL, 0, 1)
    device.set_channel(ChannelKind.PWM, 1, 77)
    node.sensors = {"temp": 26.0, "gas": 31, "hum": 55, "d4": 0, "pwm10": 0}

    assert await poller.poll_once(device) is True

    assert device.state.temperature == 26.0
    assert device.state.gas_level == 31
    assert device.state.outputs == [1, 0, 0, 0]
    assert device.state.pwm_b == 77


async def test_poll_accepts_numeric_strings_and_ignores_junk(poller, device, node):
    node.sensors = {"temp": "21.5", "gas": True}

    assert await poller.poll_once(device) is True
    assert device.state.temperature == 21.5
    assert device.state.gas_level == 0.0


@pytest.mark.parametrize("setup", [
    lambda n: setattr(n, "offline", True),
    lambda n: setattr(n, "raw_sensor_body", "<html>not json</html>"),
    lambda n: setattr(n, "raw_sensor_body", "[1, 2, 3]"),
    lambda n: setattr(n, "sensor_status", 503),
])
async def test_failed_poll_leaves_state_unchanged(poller, device, node, setup):
    device.set_channel(ChannelKind.PWM, 0, 12)
    before = device.state.as_dict()
    setup(node)

    assert await poller.poll_once(device) is False
    assert device.state.as_dict() == before
    assert device.last_seen == 0


async def test_malformed_payload_is_counted(poller, device, node, error_handler):
    node.raw_sensor_body = "garbage"
    await poller.poll_once(device)

    assert error_handler.get_stats()["errors_by_category"][ErrorCategory.MALFORMED_TELEMETRY] == 1


async def test_loop_keeps_polling_after_failures(poller, device, node):
    node.offline = True
    poller.start(device)

    await wait_for(lambda: node.sensor_reads() >= 2)
    assert device.state.temperature == 0.0

    node.offline = False
    await wait_for(lambda: device.state.temperature == 24.5)
    assert device.state.gas_level == 12


async def test_stop_prevents_further_requests(poller, device, node):
    handle = poller.start(device)
    await wait_for(lambda: node.sensor_reads() >= 1)

    assert poller.stop(handle) is True
    reads = node.sensor_reads()
    await asyncio.sleep(0.05)

    assert node.sensor_reads() == reads
    assert not poller.is_polling(device.id)
    assert handle.cancelled


async def test_stop_twice_is_a_noop(poller, device):
    handle = poller.start(device)

    assert poller.stop(handle) is True
    assert poller.stop(handle) is False


async def test_restart_replaces_previous_loop(poller, device):
    first = poller.start(device)
    second = poller.start(device)

    assert first.cancelled
    assert not second.cancelled
    assert poller.get_handle(device.id) is second


async def test_first_read_waits_one_period(node_client, device, node):
    poller = TelemetryPoller(node_client, interval=3600)
    handle = poller.start(device)
    await asyncio.sleep(0.02)

    assert node.sensor_reads() == 0
    poller.stop(handle)
