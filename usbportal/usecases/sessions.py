"""Broker sessions and the USB monitoring session built over them.

Ownership:
    A ``UsbSession`` holds a strong reference to its ``Session``; the
    ``Session`` and the bus only hold weak callbacks into the ``UsbSession``.
    The ``Session`` finds its USB session through the ``SessionRegistry``
    (a weak link keyed by session path), so asking whether one exists never
    extends its lifetime.

Teardown:
    ``UsbSession.close()`` drops the DeviceEvents subscription, unlinks
    itself from the registry and releases its ``Session`` in one step.
    A ``UsbSession`` collected while still open runs the same close.
    Destroying a ``Session`` that still has a live USB session, or closing
    a USB session whose ``Session`` is already gone, is a caller bug. Both
    are logged as critical and cleanup continues.
"""

from __future__ import annotations

import logging
import weakref
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..domain.bus_names import SESSION_INTERFACE, USB_INTERFACE
from ..domain.devices import DeviceEvent
from ..domain.errors import PayloadError
from ..domain.payloads import decode_device_events
from ..domain.ports import BusPort, ObjectPath, SubscriptionId
from .session_registry import SessionRegistry

log = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CREATING = "creating"
    ACTIVE = "active"
    CLOSED = "closed"


ClosedCallback = Callable[["Session"], None]
DeviceEventCallback = Callable[["UsbSession", List[DeviceEvent]], None]


class Session:
    """Generic broker session identified by ``path``."""

    def __init__(self, bus: BusPort, path: ObjectPath, registry: SessionRegistry) -> None:
        self.bus = bus
        self.path = path
        self.registry = registry
        self.state = SessionState.ACTIVE
        self._destroyed = False
        self._closed_callbacks: Dict[int, ClosedCallback] = {}
        self._next_handler = 1
        registry.add(self)
        self._closed_signal_id: SubscriptionId = bus.subscribe(
            SESSION_INTERFACE, "Closed", self._on_closed_signal, path
        )

    @property
    def usb_session(self) -> Optional["UsbSession"]:
        return self.registry.usb_for(self.path)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    def connect_closed(self, callback: ClosedCallback) -> int:
        handler_id = self._next_handler
        self._next_handler += 1
        self._closed_callbacks[handler_id] = callback
        return handler_id

    def disconnect_closed(self, handler_id: int) -> None:
        self._closed_callbacks.pop(handler_id, None)

    def close(self) -> None:
        """Ask the broker to close the session; safe to call repeatedly."""
        if self.state == SessionState.CLOSED:
            return
        log.debug("Closing session %s", self.path)
        self.bus.send_no_reply(self.path, SESSION_INTERFACE, "Close")
        self._mark_closed()

    def destroy(self) -> None:
        """Release the session's subscriptions and registry slot."""
        if self._destroyed:
            return
        usb = self.registry.usb_for(self.path)
        if usb is not None and not usb.closed:
            log.critical(
                "Session %s destroyed before its USB session; session references were lost",
                self.path,
            )
            usb._session_destroyed(self)
        self._destroyed = True
        self._drop_closed_signal()
        self._closed_callbacks.clear()
        self.registry.remove(self.path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _on_closed_signal(self, path: ObjectPath, body: List[object]) -> None:
        if path != self.path or self.state == SessionState.CLOSED:
            return
        log.info("Session %s closed by the broker", self.path)
        self._mark_closed()

    def _mark_closed(self) -> None:
        self.state = SessionState.CLOSED
        self._drop_closed_signal()
        for callback in list(self._closed_callbacks.values()):
            try:
                callback(self)
            except Exception:
                log.exception("Closed handler for session %s failed", self.path)

    def _drop_closed_signal(self) -> None:
        if self._closed_signal_id:
            self.bus.unsubscribe(self._closed_signal_id)
            self._closed_signal_id = 0


def _weak_callback(method: Callable[..., None]) -> Callable[..., None]:
    """Wrap a bound method so the caller's registry does not keep its owner alive."""
    ref = weakref.WeakMethod(method)

    def forward(*args: object) -> None:
        target = ref()
        if target is not None:
            target(*args)

    return forward


class _UsbTeardown:
    """What a ``UsbSession`` must release; never refers back to it."""

    def __init__(self, session: Session) -> None:
        self.path = session.path
        self.bus = session.bus
        self.session: Optional[Session] = session
        self.signal_id: SubscriptionId = 0
        self.closed_handler = 0

    def close(self) -> None:
        session = self.session
        if session is not None and not session.destroyed:
            session.close()
        self.release()

    def release(self) -> None:
        self.drop_subscription()
        session = self.session
        if session is None:
            log.critical(
                "Session %s destroyed before its USB session; session references were lost",
                self.path,
            )
            return
        session.disconnect_closed(self.closed_handler)
        self.session = None
        session.destroy()

    def drop_subscription(self) -> None:
        if self.signal_id:
            self.bus.unsubscribe(self.signal_id)
            self.signal_id = 0


class UsbSession:
    """USB device monitoring session bound one-to-one to a ``Session``.

    Dropping the last reference to an open ``UsbSession`` closes it the
    same way ``close()`` does.
    """

    def __init__(self, session: Session) -> None:
        if session.usb_session is not None:
            raise ValueError(f"Session {session.path} already has a USB session.")
        self.path = session.path
        self._bus = session.bus
        self._registry = session.registry
        self._res = _UsbTeardown(session)
        self._observers: Dict[int, DeviceEventCallback] = {}
        self._next_handler = 1
        self._closed = False
        self._registry.link_usb(self.path, self)
        self._res.closed_handler = session.connect_closed(_weak_callback(self._on_session_closed))
        # DeviceEvents is not scoped to a path; foreign sessions are filtered below.
        self._res.signal_id = self._bus.subscribe(
            USB_INTERFACE, "DeviceEvents", _weak_callback(self._on_device_events), None
        )
        self._finalizer = weakref.finalize(self, self._res.close)
        # Skipped at interpreter exit; the broker drops sessions with the connection.
        self._finalizer.atexit = False

    def __enter__(self) -> "UsbSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def signal_id(self) -> SubscriptionId:
        return self._res.signal_id

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        session = self._res.session
        if session is None:
            return SessionState.CLOSED
        return session.state

    def get_session(self) -> Optional[Session]:
        """Underlying generic session, ``None`` once torn down."""
        return self._res.session

    def connect(self, callback: DeviceEventCallback) -> int:
        handler_id = self._next_handler
        self._next_handler += 1
        self._observers[handler_id] = callback
        return handler_id

    def disconnect(self, handler_id: int) -> None:
        self._observers.pop(handler_id, None)

    def close(self) -> None:
        """Close the session on the broker and tear this object down."""
        if self._closed:
            return
        self._closed = True
        self._finalizer.detach()
        self._observers.clear()
        self._registry.unlink_usb(self.path, self)
        self._res.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _session_destroyed(self, session: Session) -> None:
        if self._res.session is session:
            self._res.session = None
        self._registry.unlink_usb(self.path, self)

    def _on_session_closed(self, session: Session) -> None:
        log.debug("Session %s closed, dropping device events", self.path)
        self._res.drop_subscription()

    def _on_device_events(self, path: ObjectPath, body: List[object]) -> None:
        try:
            session_path, events = decode_device_events(body)
        except PayloadError as exc:
            log.warning("Ignoring malformed DeviceEvents signal: %s", exc)
            return
        if session_path != self.path:
            return
        log.debug("Session %s: %d device event(s)", self.path, len(events))
        for callback in list(self._observers.values()):
            try:
                callback(self, events)
            except Exception:
                log.exception("Device event handler for session %s failed", self.path)


__all__ = [
    "Session",
    "SessionState",
    "UsbSession",
    "ClosedCallback",
    "DeviceEventCallback",
]
