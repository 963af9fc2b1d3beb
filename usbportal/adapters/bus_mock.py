from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Set, Tuple

from usbportal.domain.bus_names import (
    PORTAL_OBJECT_PATH,
    REQUEST_INTERFACE,
    RESPONSE_SUCCESS,
    SESSION_INTERFACE,
    USB_INTERFACE,
    request_path_for,
    sender_path_component,
)
from usbportal.domain.errors import TransportError
from usbportal.domain.ports import BusPort, ObjectPath, SignalHandler, SubscriptionId

log = logging.getLogger(__name__)

SESSION_PATH_PREFIX = "/org/freedesktop/portal/desktop/session/"


class MockCall(NamedTuple):
    object_path: str
    interface: str
    member: str
    body: Tuple[Any, ...]


@dataclass
class _MockSubscription:
    interface: str
    member: str
    object_path: Optional[str]
    handler: SignalHandler


@dataclass
class PortalBusMock(BusPort):
    """In-memory USB broker used for tests and offline development.

    Method calls are answered from ``devices`` and ``outcomes``; Response
    signals are queued on the running loop behind the AcquireDevices reply
    unless ``respond_before_reply`` or ``auto_respond`` say otherwise.
    ``finish_page_size=None`` answers AcquireDevicesFinish one device per
    page; an int switches to the array form with that many per page.
    """

    devices: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    outcomes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    response_status: int = RESPONSE_SUCCESS
    auto_respond: bool = True
    respond_before_reply: bool = False
    finish_page_size: Optional[int] = None
    failures: Dict[str, TransportError] = field(default_factory=dict)
    sender: str = ":1.42"
    request_path_override: Optional[str] = None

    def __post_init__(self) -> None:
        self.calls: List[MockCall] = []
        self.sent: List[MockCall] = []
        self.released: List[str] = []
        self.unsubscribed: List[SubscriptionId] = []
        self.stale_unsubscribes: List[SubscriptionId] = []
        self.sessions: Set[str] = set()
        self.closed_requests: Set[str] = set()
        self._subs: Dict[SubscriptionId, _MockSubscription] = {}
        self._next_id: SubscriptionId = 1
        self._next_fd = 100
        self._pending: Dict[str, List[Tuple[str, Dict[str, Any]]]] = {}

    @classmethod
    def with_demo_devices(cls) -> "PortalBusMock":
        """Broker preloaded with a few devices, used by ``usbportal --mock``."""
        return cls(
            devices={
                "usb:001": {"vendor": "Acme", "product": "Gamepad", "writable": True},
                "usb:002": {"vendor": "Acme", "product": "Serial adapter", "writable": True},
                "usb:003": {"vendor": "Initech", "product": "Security key", "writable": False},
            },
            outcomes={"usb:003": {"success": False, "error": "Permission denied"}},
        )

    # ---------- BusPort ----------

    @property
    def unique_name(self) -> str:
        return self.sender

    async def call(
        self,
        object_path: ObjectPath,
        interface: str,
        member: str,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> List[Any]:
        self.calls.append(MockCall(object_path, interface, member, tuple(body)))
        await asyncio.sleep(0)
        failure = self.failures.get(member)
        if failure is not None:
            raise failure
        if interface != USB_INTERFACE or object_path != PORTAL_OBJECT_PATH:
            raise TransportError(
                f"{interface}.{member}: no such object {object_path}",
                error_name="org.freedesktop.DBus.Error.UnknownObject",
            )
        if member == "CreateSession":
            return self._create_session(body)
        if member == "EnumerateDevices":
            return [[[dev_id, dict(props)] for dev_id, props in self.devices.items()]]
        if member == "AcquireDevices":
            return self._acquire_devices(body)
        if member == "AcquireDevicesFinish":
            return self._finish_page(body)
        if member == "ReleaseDevices":
            self.released.extend(str(dev) for dev in body[0])
            return []
        raise TransportError(
            f"{interface}.{member}: unknown method",
            error_name="org.freedesktop.DBus.Error.UnknownMethod",
        )

    def send_no_reply(
        self,
        object_path: ObjectPath,
        interface: str,
        member: str,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> None:
        self.sent.append(MockCall(object_path, interface, member, tuple(body)))
        if interface == REQUEST_INTERFACE and member == "Close":
            self.closed_requests.add(object_path)
            self._pending.pop(object_path, None)
        elif interface == SESSION_INTERFACE and member == "Close":
            self.sessions.discard(object_path)

    def subscribe(
        self,
        interface: str,
        member: str,
        handler: SignalHandler,
        object_path: Optional[ObjectPath] = None,
    ) -> SubscriptionId:
        sub_id = self._next_id
        self._next_id += 1
        self._subs[sub_id] = _MockSubscription(interface, member, object_path, handler)
        return sub_id

    def unsubscribe(self, subscription_id: SubscriptionId) -> None:
        if self._subs.pop(subscription_id, None) is None:
            self.stale_unsubscribes.append(subscription_id)
            return
        self.unsubscribed.append(subscription_id)

    # ---------- Broker-side helpers for tests ----------

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    def subscriptions_for(self, member: str) -> List[_MockSubscription]:
        return [sub for sub in self._subs.values() if sub.member == member]

    def calls_to(self, member: str) -> List[MockCall]:
        return [call for call in self.calls if call.member == member]

    def emit_signal(self, interface: str, member: str, object_path: str, body: Sequence[Any]) -> int:
        """Deliver a signal to matching subscribers; returns the delivery count."""
        delivered = 0
        for sub_id, sub in list(self._subs.items()):
            if self._subs.get(sub_id) is not sub:
                continue
            if sub.interface != interface or sub.member != member:
                continue
            if sub.object_path is not None and sub.object_path != object_path:
                continue
            sub.handler(object_path, list(body))
            delivered += 1
        return delivered

    def respond(self, request_path: str, status: int, results: Optional[Dict[str, Any]] = None) -> int:
        return self.emit_signal(REQUEST_INTERFACE, "Response", request_path, [status, dict(results or {})])

    def emit_device_events(self, session_path: str, events: Sequence[Any]) -> int:
        return self.emit_signal(USB_INTERFACE, "DeviceEvents", PORTAL_OBJECT_PATH, [session_path, list(events)])

    def close_session_from_broker(self, session_path: str) -> int:
        self.sessions.discard(session_path)
        return self.emit_signal(SESSION_INTERFACE, "Closed", session_path, [{}])

    # ------------------------------------------------------------------
    # Method handlers
    # ------------------------------------------------------------------
    def _create_session(self, body: Sequence[Any]) -> List[Any]:
        options = dict(body[0] or {}) if body else {}
        token = str(options.get("session_handle_token") or "session")
        path = f"{SESSION_PATH_PREFIX}{sender_path_component(self.sender)}/{token}"
        self.sessions.add(path)
        return [path]

    def _acquire_devices(self, body: Sequence[Any]) -> List[Any]:
        _parent_handle, entries, options = body
        token = str(dict(options or {}).get("handle_token") or "request")
        path = self.request_path_override or request_path_for(self.sender, token)
        results = [(str(dev_id), self._outcome_for(str(dev_id))) for dev_id, _opts in entries]
        self._pending[path] = list(results)
        if self.auto_respond:
            if self.respond_before_reply:
                self._emit_response(path, results)
            else:
                # Two hops so the caller has handled the method reply first.
                loop = asyncio.get_running_loop()
                loop.call_soon(loop.call_soon, self._emit_response, path, results)
        return [path]

    def _emit_response(self, path: str, results: List[Tuple[str, Dict[str, Any]]]) -> None:
        if path in self.closed_requests:
            log.debug("Request %s was closed, dropping response", path)
            return
        payload: Dict[str, Any] = {}
        if self.response_status == RESPONSE_SUCCESS:
            payload["devices"] = [[dev_id, dict(result)] for dev_id, result in results]
        self.respond(path, self.response_status, payload)

    def _finish_page(self, body: Sequence[Any]) -> List[Any]:
        path = str(body[0])
        pending = self._pending.get(path)
        if pending is None:
            raise TransportError(
                f"AcquireDevicesFinish: no pending request {path}",
                error_name="org.freedesktop.portal.Error.NotFound",
            )
        if self.finish_page_size is None:
            if not pending:
                del self._pending[path]
                return ["", {}, True]
            dev_id, result = pending.pop(0)
            finished = not pending
            if finished:
                del self._pending[path]
            return [dev_id, dict(result), finished]
        page = pending[: self.finish_page_size]
        del pending[: self.finish_page_size]
        finished = not pending
        if finished:
            del self._pending[path]
        return [[[dev_id, dict(result)] for dev_id, result in page], finished]

    def _outcome_for(self, device_id: str) -> Dict[str, Any]:
        if device_id in self.outcomes:
            return dict(self.outcomes[device_id])
        if device_id not in self.devices:
            return {"success": False, "error": "No such device"}
        fd = self._next_fd
        self._next_fd += 1
        return {"success": True, "fd": fd}


__all__ = ["PortalBusMock", "MockCall", "SESSION_PATH_PREFIX"]
