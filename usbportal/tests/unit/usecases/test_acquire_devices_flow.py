import asyncio

import pytest

from usbportal.adapters.bus_mock import PortalBusMock
from usbportal.domain.devices import AcquiredDevice, DeviceAcquireRequest
from usbportal.domain.errors import RequestCancelledError, RequestFailedError
from usbportal.usecases.acquire_devices import AcquireDevices, AcquireState
from usbportal.usecases.cancellation import CancelToken
from usbportal.usecases.request_driver import RequestDriver


class _DeferredParent:
    """Parent window whose export completes when the test says so."""

    def __init__(self):
        self.handle = None
        self.pending = None

    async def export(self):
        self.pending = asyncio.get_running_loop().create_future()
        return await self.pending


class _ExportedParent:
    handle = "wayland:abc"

    async def export(self):  # pragma: no cover - must not be called
        raise AssertionError("already exported")


async def _settle(rounds=6):
    for _ in range(rounds):
        await asyncio.sleep(0)


def _use_case(bus, states=None):
    driver = RequestDriver(bus, token_factory=lambda: "portal1")
    return AcquireDevices(driver, on_state=states.append if states is not None else None)


def test_request_waits_for_parent_export():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}})
        states = []
        parent = _DeferredParent()
        uc = _use_case(bus, states)

        task = asyncio.ensure_future(uc(parent, [DeviceAcquireRequest("usb:001", writable=True)]))
        await _settle()
        assert bus.calls_to("AcquireDevices") == []
        assert states == [AcquireState.NEED_PARENT_HANDLE]

        parent.pending.set_result("x11:1f")
        result = await task
        return bus, states, result

    bus, states, result = asyncio.run(scenario())

    (call,) = bus.calls_to("AcquireDevices")
    assert call.body[0] == "x11:1f"
    assert call.body[1] == [("usb:001", {"writable": True})]
    assert call.body[2] == {"handle_token": "portal1"}
    assert states == [
        AcquireState.NEED_PARENT_HANDLE,
        AcquireState.REQUEST_SENT,
        AcquireState.AWAITING_RESPONSE,
        AcquireState.RESOLVED,
    ]
    assert result.request_path == "/org/freedesktop/portal/desktop/request/1_42/portal1"
    assert result.devices == (AcquiredDevice.granted("usb:001", 100),)


def test_cancel_during_export_never_sends_request():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}})
        parent = _DeferredParent()
        token = CancelToken()
        task = asyncio.ensure_future(_use_case(bus)(parent, [DeviceAcquireRequest("usb:001")], cancel_token=token))
        await _settle()
        token.cancel()
        with pytest.raises(RequestCancelledError):
            await task
        parent.pending.set_result("x11:1f")
        await _settle()
        return bus

    bus = asyncio.run(scenario())

    assert bus.calls == []
    assert bus.sent == []
    assert bus.subscription_count == 0


def test_missing_parent_uses_empty_handle_and_exported_handle_is_reused():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}})
        uc = _use_case(bus)
        await uc(None, [DeviceAcquireRequest("usb:001")])
        await uc(_ExportedParent(), [DeviceAcquireRequest("usb:001")])
        return bus

    bus = asyncio.run(scenario())

    assert [call.body[0] for call in bus.calls_to("AcquireDevices")] == ["", "wayland:abc"]


def test_denied_device_is_reported_inline():
    async def scenario():
        bus = PortalBusMock(outcomes={"usb:001": {"success": False, "error": "denied"}})
        return await _use_case(bus)(None, [DeviceAcquireRequest("usb:001")])

    result = asyncio.run(scenario())

    assert list(result.devices) == [
        AcquiredDevice(device_id="usb:001", success=False, fd=-1, error="denied")
    ]
    assert result.granted == []


def test_status_one_is_cancellation_without_devices():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}}, response_status=1)
        with pytest.raises(RequestCancelledError):
            await _use_case(bus)(None, [DeviceAcquireRequest("usb:001")])
        return bus

    bus = asyncio.run(scenario())

    assert bus.subscription_count == 0
    assert bus.sent == []


def test_other_status_is_failure():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}}, response_status=2)
        with pytest.raises(RequestFailedError) as exc_info:
            await _use_case(bus)(None, [DeviceAcquireRequest("usb:001")])
        return exc_info.value

    err = asyncio.run(scenario())

    assert err.status == 2
    assert not isinstance(err, RequestCancelledError)


def test_partial_failure_keeps_request_order():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}, "usb:002": {}})
        requests = [
            DeviceAcquireRequest("usb:002"),
            DeviceAcquireRequest("usb:404"),
            DeviceAcquireRequest("usb:001", writable=True),
        ]
        return await _use_case(bus)(None, requests)

    result = asyncio.run(scenario())

    assert [(dev.device_id, dev.success) for dev in result.devices] == [
        ("usb:002", True),
        ("usb:404", False),
        ("usb:001", True),
    ]
    assert result.failed[0].error == "No such device"


def test_empty_batch_is_rejected():
    async def scenario():
        with pytest.raises(ValueError):
            await _use_case(PortalBusMock())(None, [])

    asyncio.run(scenario())
