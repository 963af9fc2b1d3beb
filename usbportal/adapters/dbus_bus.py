"""BusPort implementation on top of ``dbus-fast`` (pure asyncio).

Dependencies:
    - ``dbus_fast.aio.MessageBus`` for the connection, method calls and
      signal delivery.
    - ``usbportal.adapters.variant_codec`` to wrap plain bodies into
      variants and to unwrap replies/signals (including unix fds).

Call context:
    Built by ``usbportal.app.portal.UsbPortal.connect`` and shared read-only
    by every use case. All callbacks run on the loop that owns the bus.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from dbus_fast import BusType, DBusError, Message, MessageFlag, MessageType
from dbus_fast.aio import MessageBus

from usbportal.domain.bus_names import PORTAL_BUS_NAME
from usbportal.domain.ports import BusPort, ObjectPath, SignalHandler, SubscriptionId
from usbportal.domain.settings import PortalSettings

from .bus_errors import stringify, transport_error, transport_error_from_reply
from .variant_codec import from_wire, to_wire

log = logging.getLogger(__name__)

_DBUS_NAME = "org.freedesktop.DBus"
_DBUS_PATH = "/org/freedesktop/DBus"


@dataclass
class _Subscription:
    interface: str
    member: str
    object_path: Optional[ObjectPath]
    handler: SignalHandler
    rule: str

    def matches(self, msg: Message) -> bool:
        if msg.interface != self.interface or msg.member != self.member:
            return False
        return self.object_path is None or msg.path == self.object_path


class DbusFastBus(BusPort):
    """Broker transport over a connected ``dbus_fast.aio.MessageBus``."""

    def __init__(self, bus: MessageBus, *, destination: str = PORTAL_BUS_NAME) -> None:
        self._bus = bus
        self._destination = destination
        self._subscriptions: Dict[SubscriptionId, _Subscription] = {}
        self._next_id: SubscriptionId = 1
        self._bus.add_message_handler(self._dispatch)

    @classmethod
    async def connect(cls, settings: Optional[PortalSettings] = None) -> "DbusFastBus":
        """Open a bus connection as described by ``settings``.

        Raises:
            TransportError: If the bus daemon cannot be reached.
        """
        cfg = settings or PortalSettings()
        bus_type = BusType.SYSTEM if cfg.bus_type == "system" else BusType.SESSION
        context = f"connect {cfg.bus_type} bus"
        try:
            bus = await MessageBus(bus_type=bus_type, negotiate_unix_fd=True).connect()
        except (DBusError, OSError, EOFError) as exc:
            raise transport_error(exc, context=context) from exc
        log.debug("Connected to %s bus as %s", cfg.bus_type, bus.unique_name)
        return cls(bus, destination=cfg.bus_name)

    @property
    def unique_name(self) -> str:
        return self._bus.unique_name or ""

    async def call(
        self,
        object_path: ObjectPath,
        interface: str,
        member: str,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> List[Any]:
        context = f"{interface}.{member}"
        msg = Message(
            destination=self._destination,
            path=object_path,
            interface=interface,
            member=member,
            signature=signature,
            body=to_wire(signature, list(body)),
        )
        try:
            reply = await self._bus.call(msg)
        except (DBusError, OSError, EOFError) as exc:
            raise transport_error(exc, context=context) from exc
        if reply is None:
            return []
        if reply.message_type == MessageType.ERROR:
            raise transport_error_from_reply(reply, context=context)
        result = [from_wire(value, reply.unix_fds) for value in reply.body]
        log.debug("%s on %s -> %s", context, object_path, stringify(result))
        return result

    def send_no_reply(
        self,
        object_path: ObjectPath,
        interface: str,
        member: str,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> None:
        msg = Message(
            destination=self._destination,
            path=object_path,
            interface=interface,
            member=member,
            signature=signature,
            body=to_wire(signature, list(body)),
            flags=MessageFlag.NO_REPLY_EXPECTED,
        )
        self._send_detached(msg, f"{interface}.{member} on {object_path}")

    def subscribe(
        self,
        interface: str,
        member: str,
        handler: SignalHandler,
        object_path: Optional[ObjectPath] = None,
    ) -> SubscriptionId:
        rule = self._match_rule(interface, member, object_path)
        sub_id = self._next_id
        self._next_id += 1
        # Registered before AddMatch goes out; the daemon handles messages
        # of one connection in order, so a later request cannot outrun it.
        self._subscriptions[sub_id] = _Subscription(interface, member, object_path, handler, rule)
        self._send_match("AddMatch", rule)
        log.debug("Subscribed #%d %s.%s path=%s", sub_id, interface, member, object_path)
        return sub_id

    def unsubscribe(self, subscription_id: SubscriptionId) -> None:
        sub = self._subscriptions.pop(subscription_id, None)
        if sub is None:
            return
        self._send_match("RemoveMatch", sub.rule)
        log.debug("Unsubscribed #%d %s.%s", subscription_id, sub.interface, sub.member)

    def disconnect(self) -> None:
        self._bus.remove_message_handler(self._dispatch)
        self._subscriptions.clear()
        self._bus.disconnect()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _dispatch(self, msg: Message) -> None:
        if msg.message_type != MessageType.SIGNAL:
            return None
        matching = [
            (sub_id, sub) for sub_id, sub in list(self._subscriptions.items()) if sub.matches(msg)
        ]
        if not matching:
            return None
        body = [from_wire(value, msg.unix_fds) for value in msg.body]
        for sub_id, sub in matching:
            # A handler may have dropped a later subscription.
            if self._subscriptions.get(sub_id) is not sub:
                continue
            try:
                sub.handler(msg.path, body)
            except Exception:
                log.exception("Signal handler for %s.%s failed", msg.interface, msg.member)
        return None

    def _match_rule(self, interface: str, member: str, object_path: Optional[ObjectPath]) -> str:
        parts = [
            "type='signal'",
            f"sender='{self._destination}'",
            f"interface='{interface}'",
            f"member='{member}'",
        ]
        if object_path:
            parts.append(f"path='{object_path}'")
        return ",".join(parts)

    def _send_match(self, member: str, rule: str) -> None:
        msg = Message(
            destination=_DBUS_NAME,
            path=_DBUS_PATH,
            interface=_DBUS_NAME,
            member=member,
            signature="s",
            body=[rule],
            flags=MessageFlag.NO_REPLY_EXPECTED,
        )
        self._send_detached(msg, f"{member} {rule}")

    def _send_detached(self, msg: Message, label: str) -> None:
        """Send without awaiting; failures are logged and otherwise dropped."""
        try:
            pending = self._bus.send(msg)
        except (DBusError, OSError, EOFError) as exc:
            log.debug("%s not sent: %s", label, exc)
            return
        if isinstance(pending, asyncio.Future):
            pending.add_done_callback(partial(_log_send_outcome, label))


def _log_send_outcome(label: str, fut: "asyncio.Future[None]") -> None:
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        log.debug("%s not sent: %s", label, exc)


__all__ = ["DbusFastBus"]
