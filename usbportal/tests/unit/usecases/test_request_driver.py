import asyncio

import pytest

from usbportal.adapters.bus_mock import MockCall, PortalBusMock
from usbportal.domain.bus_names import REQUEST_INTERFACE
from usbportal.domain.errors import RequestCancelledError, TransportError
from usbportal.usecases.cancellation import CancelToken
from usbportal.usecases.request_driver import RequestDriver, new_handle_token

PREDICTED = "/org/freedesktop/portal/desktop/request/1_42/portal7"
BODY = ["", [("usb:001", {"writable": False})], {"handle_token": "portal7"}]


class _OrderedBus(PortalBusMock):
    def __post_init__(self):
        super().__post_init__()
        self.events = []

    def subscribe(self, interface, member, handler, object_path=None):
        self.events.append(("subscribe", member, object_path))
        return super().subscribe(interface, member, handler, object_path)

    async def call(self, object_path, interface, member, signature="", body=()):
        self.events.append(("call", member))
        return await super().call(object_path, interface, member, signature, body)


def _status(path, status, results):
    return path, status, dict(results)


async def _settle(rounds=6):
    for _ in range(rounds):
        await asyncio.sleep(0)


def _request(driver, **kwargs):
    return driver.request_call(
        "AcquireDevices",
        "sa(sa{sv})a{sv}",
        BODY,
        token="portal7",
        decode_response=_status,
        **kwargs,
    )


def test_handle_tokens_look_like_portal_tokens():
    token = new_handle_token()

    assert token.startswith("portal")
    assert token[len("portal"):].isdigit()


def test_response_subscription_precedes_request():
    async def scenario():
        bus = _OrderedBus(devices={"usb:001": {}}, respond_before_reply=True)
        driver = RequestDriver(bus, token_factory=lambda: "portal7")
        result = await _request(driver)
        return bus, result

    bus, (path, status, results) = asyncio.run(scenario())

    assert bus.events[:2] == [("subscribe", "Response", PREDICTED), ("call", "AcquireDevices")]
    assert path == PREDICTED
    assert status == 0
    assert results["devices"] == [["usb:001", {"success": True, "fd": 100}]]
    assert bus.subscription_count == 0


def test_transport_failure_resolves_with_error_and_unsubscribes():
    async def scenario():
        bus = PortalBusMock(
            failures={"AcquireDevices": TransportError("broker gone", error_name="org.freedesktop.DBus.Error.NoReply")}
        )
        driver = RequestDriver(bus)
        with pytest.raises(TransportError) as exc_info:
            await _request(driver)
        return bus, exc_info.value

    bus, err = asyncio.run(scenario())

    assert err.error_name == "org.freedesktop.DBus.Error.NoReply"
    assert bus.subscription_count == 0
    assert bus.sent == []


def test_cancel_token_sends_close_on_request_path():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}}, auto_respond=False)
        driver = RequestDriver(bus)
        token = CancelToken()
        task = asyncio.ensure_future(_request(driver, cancel_token=token))
        await _settle()
        token.cancel()
        with pytest.raises(RequestCancelledError):
            await task
        token.cancel()
        late = bus.respond(PREDICTED, 0, {"devices": []})
        return bus, late

    bus, late = asyncio.run(scenario())

    assert bus.sent == [MockCall(PREDICTED, REQUEST_INTERFACE, "Close", ())]
    assert bus.subscription_count == 0
    assert late == 0


def test_pre_cancelled_token_never_reaches_broker():
    async def scenario():
        bus = PortalBusMock()
        driver = RequestDriver(bus)
        token = CancelToken()
        token.cancel()
        with pytest.raises(RequestCancelledError):
            await _request(driver, cancel_token=token)
        return bus

    bus = asyncio.run(scenario())

    assert bus.calls == []
    assert bus.sent == []
    assert bus.subscription_count == 0


def test_cancelling_awaiting_task_closes_request():
    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}}, auto_respond=False)
        driver = RequestDriver(bus)
        task = asyncio.ensure_future(_request(driver))
        await _settle()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return bus

    bus = asyncio.run(scenario())

    assert [call.member for call in bus.sent] == ["Close"]
    assert bus.subscription_count == 0


def test_response_moves_to_path_chosen_by_broker():
    other = "/org/freedesktop/portal/desktop/request/1_42/legacy"

    async def scenario():
        bus = PortalBusMock(devices={"usb:001": {}}, auto_respond=False, request_path_override=other)
        driver = RequestDriver(bus)
        seen = []
        task = asyncio.ensure_future(_request(driver, on_request_path=seen.append))
        await _settle()
        stale = bus.respond(PREDICTED, 0, {})
        delivered = bus.respond(other, 2, {"reason": "x"})
        result = await task
        return bus, seen, stale, delivered, result

    bus, seen, stale, delivered, result = asyncio.run(scenario())

    assert seen == [other]
    assert stale == 0
    assert delivered == 1
    assert result == (other, 2, {"reason": "x"})
    assert bus.subscription_count == 0


def test_direct_call_late_reply_goes_to_orphan_handler():
    async def scenario():
        bus = PortalBusMock()
        driver = RequestDriver(bus)
        token = CancelToken()
        orphans = []
        task = asyncio.ensure_future(
            driver.direct_call(
                "CreateSession",
                "a{sv}",
                [{"session_handle_token": "s1"}],
                decode=lambda body: body[0],
                cancel_token=token,
                on_orphan=orphans.append,
            )
        )
        await asyncio.sleep(0)
        token.cancel()
        with pytest.raises(RequestCancelledError):
            await task
        await _settle()
        return orphans, driver

    orphans, driver = asyncio.run(scenario())

    assert orphans == ["/org/freedesktop/portal/desktop/session/1_42/s1"]
    assert driver.inflight == 0
