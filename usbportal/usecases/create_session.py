from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..domain.bus_names import SESSION_INTERFACE
from ..domain.payloads import decode_object_path
from .cancellation import CancelToken
from .request_driver import RequestDriver
from .session_registry import SessionRegistry
from .sessions import Session, SessionState, UsbSession

log = logging.getLogger(__name__)

_LABEL = "Create USB session"


@dataclass
class CreateUsbSession:
    """Create a broker session and wrap it into a ``UsbSession``."""

    driver: RequestDriver
    registry: SessionRegistry
    on_state: Optional[Callable[[SessionState], None]] = None

    async def __call__(self, *, cancel_token: Optional[CancelToken] = None) -> UsbSession:
        self._enter(SessionState.UNINITIALIZED)
        token = self.driver.new_token()
        self._enter(SessionState.CREATING)
        path = await self.driver.direct_call(
            "CreateSession",
            "a{sv}",
            [{"session_handle_token": token}],
            decode=lambda body: decode_object_path(body, ctx="CreateSession"),
            cancel_token=cancel_token,
            on_orphan=self._close_orphan,
            label=_LABEL,
        )
        session = Session(self.driver.bus, path, self.registry)
        usb_session = UsbSession(session)
        self._enter(SessionState.ACTIVE)
        log.info("USB session created at %s", path)
        return usb_session

    def _enter(self, state: SessionState) -> None:
        log.debug("%s: %s", _LABEL, state.value)
        if self.on_state is not None:
            self.on_state(state)

    def _close_orphan(self, path: str) -> None:
        log.info("Session %s was created after cancellation, closing it", path)
        self.driver.bus.send_no_reply(path, SESSION_INTERFACE, "Close")
