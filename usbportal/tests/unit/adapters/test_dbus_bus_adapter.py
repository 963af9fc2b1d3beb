import asyncio
import logging

import pytest
from dbus_fast import DBusError, Message, MessageFlag, MessageType, Variant

from usbportal.adapters.dbus_bus import DbusFastBus
from usbportal.domain.bus_names import (
    PORTAL_BUS_NAME,
    PORTAL_OBJECT_PATH,
    REQUEST_INTERFACE,
    SESSION_INTERFACE,
    USB_INTERFACE,
)
from usbportal.domain.errors import TransportError

REQUEST_PATH = "/org/freedesktop/portal/desktop/request/1_42/portal7"
SESSION_PATH = "/org/freedesktop/portal/desktop/session/1_42/s1"


class _MessageBusStub:
    unique_name = ":1.42"

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []
        self.sent = []
        self.handlers = []
        self.next_send = None
        self.disconnected = False

    def add_message_handler(self, handler):
        self.handlers.append(handler)

    def remove_message_handler(self, handler):
        self.handlers.remove(handler)

    def send(self, msg):
        self.sent.append(msg)
        return self.next_send

    async def call(self, msg):
        self.calls.append(msg)
        if self.error is not None:
            raise self.error
        return self.reply

    def disconnect(self):
        self.disconnected = True

    def deliver(self, msg):
        for handler in list(self.handlers):
            handler(msg)

    def match_calls(self):
        return [(msg.member, msg.body[0]) for msg in self.sent if msg.path == "/org/freedesktop/DBus"]


def _signal(path, interface, member, signature="", body=None, unix_fds=None):
    return Message.new_signal(path, interface, member, signature, body, unix_fds)


def test_subscribe_registers_handler_and_match_rule():
    raw = _MessageBusStub()
    bus = DbusFastBus(raw)

    sub_id = bus.subscribe(REQUEST_INTERFACE, "Response", lambda path, body: None, REQUEST_PATH)
    bus.subscribe(USB_INTERFACE, "DeviceEvents", lambda path, body: None)

    assert raw.handlers == [bus._dispatch]
    assert raw.match_calls() == [
        (
            "AddMatch",
            "type='signal',sender='org.freedesktop.portal.Desktop',"
            "interface='org.freedesktop.portal.Request',member='Response',"
            f"path='{REQUEST_PATH}'",
        ),
        (
            "AddMatch",
            "type='signal',sender='org.freedesktop.portal.Desktop',"
            "interface='org.freedesktop.portal.Usb',member='DeviceEvents'",
        ),
    ]
    assert all(msg.flags == MessageFlag.NO_REPLY_EXPECTED for msg in raw.sent)

    bus.unsubscribe(sub_id)
    bus.unsubscribe(sub_id)

    assert [member for member, _ in raw.match_calls()] == ["AddMatch", "AddMatch", "RemoveMatch"]
    assert raw.match_calls()[-1][1].endswith(f"path='{REQUEST_PATH}'")


def test_dispatch_matches_interface_member_and_path():
    raw = _MessageBusStub()
    bus = DbusFastBus(raw)
    seen = []
    bus.subscribe(REQUEST_INTERFACE, "Response", lambda path, body: seen.append(("response", path, body)), REQUEST_PATH)
    bus.subscribe(USB_INTERFACE, "DeviceEvents", lambda path, body: seen.append(("events", path, body)))

    raw.deliver(_signal(REQUEST_PATH + "x", REQUEST_INTERFACE, "Response", "ua{sv}", [0, {}]))
    raw.deliver(_signal(REQUEST_PATH, SESSION_INTERFACE, "Closed", "a{sv}", [{}]))
    raw.deliver(
        _signal(REQUEST_PATH, REQUEST_INTERFACE, "Response", "ua{sv}", [0, {"fd": Variant("h", 0)}], [33])
    )
    raw.deliver(_signal(PORTAL_OBJECT_PATH, USB_INTERFACE, "DeviceEvents", "sa(ssa{sv})", [SESSION_PATH, []]))
    raw.deliver(Message.new_method_return(Message(path=PORTAL_OBJECT_PATH, member="Ping", serial=3)))

    assert seen == [
        ("response", REQUEST_PATH, [0, {"fd": 33}]),
        ("events", PORTAL_OBJECT_PATH, [SESSION_PATH, []]),
    ]


def test_handler_dropping_later_subscription_stops_its_delivery(caplog):
    raw = _MessageBusStub()
    bus = DbusFastBus(raw)
    seen = []
    ids = {}

    def first(path, body):
        seen.append("first")
        bus.unsubscribe(ids["second"])
        raise RuntimeError("handler failed")

    ids["first"] = bus.subscribe(SESSION_INTERFACE, "Closed", first, SESSION_PATH)
    ids["second"] = bus.subscribe(SESSION_INTERFACE, "Closed", lambda path, body: seen.append("second"), SESSION_PATH)

    with caplog.at_level(logging.ERROR, logger="usbportal.adapters.dbus_bus"):
        raw.deliver(_signal(SESSION_PATH, SESSION_INTERFACE, "Closed", "a{sv}", [{}]))

    assert seen == ["first"]
    assert "Signal handler for org.freedesktop.portal.Session.Closed failed" in caplog.text


def test_call_wraps_body_and_unwraps_reply():
    reply = Message(
        message_type=MessageType.METHOD_RETURN,
        reply_serial=1,
        signature="o",
        body=[REQUEST_PATH],
    )
    raw = _MessageBusStub(reply=reply)
    bus = DbusFastBus(raw)

    result = asyncio.run(
        bus.call(PORTAL_OBJECT_PATH, USB_INTERFACE, "CreateSession", "a{sv}", [{"session_handle_token": "portal7"}])
    )

    (msg,) = raw.calls
    assert result == [REQUEST_PATH]
    assert msg.destination == PORTAL_BUS_NAME
    assert (msg.path, msg.interface, msg.member) == (PORTAL_OBJECT_PATH, USB_INTERFACE, "CreateSession")
    assert msg.body == [{"session_handle_token": Variant("s", "portal7")}]


def test_call_translates_error_reply():
    reply = Message(
        message_type=MessageType.ERROR,
        error_name="org.freedesktop.DBus.Error.AccessDenied",
        reply_serial=1,
        signature="s",
        body=["Not allowed"],
    )
    bus = DbusFastBus(_MessageBusStub(reply=reply))

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(bus.call(PORTAL_OBJECT_PATH, USB_INTERFACE, "EnumerateDevices", "a{sv}", [{}]))

    assert excinfo.value.error_name == "org.freedesktop.DBus.Error.AccessDenied"
    assert "Not allowed" in excinfo.value.message


def test_call_translates_raised_bus_error():
    error = DBusError("org.freedesktop.DBus.Error.ServiceUnknown", "The name is not activatable")
    bus = DbusFastBus(_MessageBusStub(error=error))

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(bus.call(PORTAL_OBJECT_PATH, USB_INTERFACE, "EnumerateDevices", "a{sv}", [{}]))

    assert excinfo.value.error_name == "org.freedesktop.DBus.Error.ServiceUnknown"
    assert excinfo.value.context == "org.freedesktop.portal.Usb.EnumerateDevices"


def test_send_no_reply_logs_failed_write(caplog):
    async def scenario(raw, bus):
        raw.next_send = asyncio.get_running_loop().create_future()
        bus.send_no_reply(SESSION_PATH, SESSION_INTERFACE, "Close")
        raw.next_send.set_exception(EOFError("connection lost"))
        await asyncio.sleep(0)

    raw = _MessageBusStub()
    bus = DbusFastBus(raw)

    with caplog.at_level(logging.DEBUG, logger="usbportal.adapters.dbus_bus"):
        asyncio.run(scenario(raw, bus))

    (msg,) = raw.sent
    assert msg.flags == MessageFlag.NO_REPLY_EXPECTED
    assert (msg.path, msg.member) == (SESSION_PATH, "Close")
    assert f"org.freedesktop.portal.Session.Close on {SESSION_PATH} not sent: connection lost" in caplog.text


def test_disconnect_drops_handler_and_subscriptions():
    raw = _MessageBusStub()
    bus = DbusFastBus(raw)
    seen = []
    bus.subscribe(SESSION_INTERFACE, "Closed", lambda path, body: seen.append(path), SESSION_PATH)

    bus.disconnect()
    bus._dispatch(_signal(SESSION_PATH, SESSION_INTERFACE, "Closed", "a{sv}", [{}]))

    assert raw.handlers == []
    assert raw.disconnected is True
    assert seen == []
    assert bus.unique_name == ":1.42"
