"""Single in-flight broker operation.

A ``CallContext`` owns the Response subscription of one call, the hook
attached to the caller's ``CancelToken`` and the future the caller awaits.
It resolves exactly once: the first of ``resolve``, ``fail`` or ``cancel``
wins and tears the context down; later attempts return ``False`` and change
nothing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from ..domain.errors import RequestCancelledError
from ..domain.ports import BusPort, ObjectPath, SignalHandler, SubscriptionId
from .cancellation import CancelToken

log = logging.getLogger(__name__)


class CallContext:
    """Completion sink plus the subscriptions of one outstanding call.

    Args:
        bus: Transport shared by every context of the client.
        label: Human readable operation name used in errors and logs.
        cancel_token: Optional token; firing it cancels this context.
        on_cancel: Invoked with the context right before a cancellation
            resolves it, e.g. to notify the broker.
    """

    def __init__(
        self,
        bus: BusPort,
        *,
        label: str,
        cancel_token: Optional[CancelToken] = None,
        on_cancel: Optional[Callable[["CallContext"], None]] = None,
    ) -> None:
        self.bus = bus
        self.label = label
        self.request_path: Optional[ObjectPath] = None
        self.request_sent = False
        self.signal_id: SubscriptionId = 0
        self.cancel_hook_id = 0
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._cancel_token = cancel_token
        self._on_cancel = on_cancel
        self._torn_down = False
        if cancel_token is not None:
            self.cancel_hook_id = cancel_token.connect(self.cancel)

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def watch(
        self,
        interface: str,
        member: str,
        handler: SignalHandler,
        object_path: ObjectPath,
    ) -> None:
        """Subscribe ``handler`` for this call, replacing any previous subscription."""
        if self.done:
            return
        if self.signal_id:
            self.bus.unsubscribe(self.signal_id)
            self.signal_id = 0
        self.signal_id = self.bus.subscribe(interface, member, handler, object_path)

    def resolve(self, value: Any) -> bool:
        if self._future.done():
            log.debug("%s already resolved, dropping result", self.label)
            return False
        self._future.set_result(value)
        self._teardown()
        return True

    def fail(self, exc: BaseException) -> bool:
        if self._future.done():
            log.debug("%s already resolved, dropping error: %s", self.label, exc)
            return False
        self._future.set_exception(exc)
        self._teardown()
        return True

    def cancel(self) -> None:
        if self._future.done():
            return
        log.debug("%s cancelled (request path %s)", self.label, self.request_path)
        if self._on_cancel is not None:
            try:
                self._on_cancel(self)
            except Exception:
                log.exception("%s: cancel notification failed", self.label)
        self.fail(RequestCancelledError(f"{self.label} canceled", context=self.label))

    async def wait(self) -> Any:
        return await asyncio.shield(self._future)

    def abandon(self) -> None:
        """Cancel on behalf of an awaiting task that was itself cancelled."""
        self.cancel()
        if self._future.done() and not self._future.cancelled():
            self._future.exception()

    def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        if self.signal_id:
            self.bus.unsubscribe(self.signal_id)
            self.signal_id = 0
        if self.cancel_hook_id and self._cancel_token is not None:
            self._cancel_token.disconnect(self.cancel_hook_id)
            self.cancel_hook_id = 0


__all__ = ["CallContext"]
