"""Request/Response driver shared by every broker-mediated operation.

Two call shapes exist:

* ``direct_call``: the method reply is the result (CreateSession).
* ``request_call``: the reply only names a correlation path; the result
  arrives later as ``org.freedesktop.portal.Request::Response`` on that
  path (AcquireDevices). The Response subscription is made before the
  request is sent.

Bus calls run as tasks on the loop and are never cancelled mid-flight; a
cancelled context simply ignores their outcome.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import Any, Callable, List, Mapping, Optional, Sequence, Set

from ..domain.bus_names import (
    PORTAL_OBJECT_PATH,
    REQUEST_INTERFACE,
    USB_INTERFACE,
    request_path_for,
)
from ..domain.errors import PortalError, RequestCancelledError
from ..domain.payloads import decode_object_path
from ..domain.payloads import decode_response as split_response
from ..domain.ports import BusPort, ObjectPath
from .call_context import CallContext
from .cancellation import CancelToken

log = logging.getLogger(__name__)

_TOKEN_RANGE = 2**31 - 1

# (request_path, status, results) -> value; raise PortalError to fail the call
ResponseDecoder = Callable[[ObjectPath, int, Mapping[str, Any]], Any]


def new_handle_token() -> str:
    """Random per-call token, e.g. ``portal1804289383``."""
    return f"portal{secrets.randbelow(_TOKEN_RANGE)}"


class RequestDriver:
    def __init__(
        self,
        bus: BusPort,
        *,
        token_factory: Callable[[], str] = new_handle_token,
    ) -> None:
        self.bus = bus
        self._token_factory = token_factory
        self._inflight: Set[asyncio.Future] = set()

    def new_token(self) -> str:
        return self._token_factory()

    def request_path(self, token: str) -> ObjectPath:
        return request_path_for(self.bus.unique_name, token)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def plain_call(self, member: str, signature: str, body: Sequence[Any]) -> List[Any]:
        """Blocking-style round trip without a call context."""
        return await self.bus.call(PORTAL_OBJECT_PATH, USB_INTERFACE, member, signature, body)

    async def direct_call(
        self,
        member: str,
        signature: str,
        body: Sequence[Any],
        *,
        decode: Callable[[List[Any]], Any],
        cancel_token: Optional[CancelToken] = None,
        on_orphan: Optional[Callable[[Any], None]] = None,
        label: Optional[str] = None,
    ) -> Any:
        """Call ``member`` and resolve with ``decode(reply)``.

        ``on_orphan`` receives a decoded reply that arrived after the call
        was cancelled, so the caller can release what the broker created.
        """
        label = label or member
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(label)
        ctx = CallContext(self.bus, label=label, cancel_token=cancel_token)
        log.debug("%s: calling %s", label, member)

        def _on_reply(fut: asyncio.Future) -> None:
            self._inflight.discard(fut)
            if fut.cancelled():
                ctx.fail(RequestCancelledError(f"{label} canceled", context=label))
                return
            exc = fut.exception()
            if exc is not None:
                if not ctx.fail(exc):
                    log.debug("%s failed after it was resolved: %s", label, exc)
                return
            try:
                value = decode(fut.result())
            except PortalError as err:
                ctx.fail(err)
                return
            if not ctx.resolve(value) and on_orphan is not None:
                on_orphan(value)

        self._start(member, signature, body, _on_reply)
        try:
            return await ctx.wait()
        except asyncio.CancelledError:
            ctx.abandon()
            raise

    async def request_call(
        self,
        member: str,
        signature: str,
        body: Sequence[Any],
        *,
        token: str,
        decode_response: ResponseDecoder,
        cancel_token: Optional[CancelToken] = None,
        on_request_path: Optional[Callable[[ObjectPath], None]] = None,
        label: Optional[str] = None,
    ) -> Any:
        """Send ``member`` and resolve with the decoded Response signal.

        Raises:
            TransportError: If the method call itself fails.
            RequestCancelledError: If ``cancel_token`` fires first, or the
                decoder reports a cancelled status.
            RequestFailedError: If the decoder reports a failure status.
        """
        label = label or member
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(label)
        ctx = CallContext(
            self.bus,
            label=label,
            cancel_token=cancel_token,
            on_cancel=self._close_request,
        )
        ctx.request_path = self.request_path(token)

        def _on_response(path: ObjectPath, signal_body: List[Any]) -> None:
            if ctx.done:
                return
            try:
                status, results = split_response(signal_body)
                log.debug("%s: response status %d on %s", label, status, path)
                value = decode_response(path, status, results)
            except PortalError as err:
                ctx.fail(err)
                return
            ctx.resolve(value)

        ctx.watch(REQUEST_INTERFACE, "Response", _on_response, ctx.request_path)

        def _on_reply(fut: asyncio.Future) -> None:
            self._inflight.discard(fut)
            if fut.cancelled():
                ctx.fail(RequestCancelledError(f"{label} canceled", context=label))
                return
            exc = fut.exception()
            if exc is not None:
                ctx.fail(exc)
                return
            try:
                path = decode_object_path(fut.result(), ctx=label)
            except PortalError as err:
                ctx.fail(err)
                return
            if ctx.done:
                return
            if path != ctx.request_path:
                log.debug("%s: broker chose %s instead of %s", label, path, ctx.request_path)
                ctx.request_path = path
                ctx.watch(REQUEST_INTERFACE, "Response", _on_response, path)
            if on_request_path is not None:
                on_request_path(path)

        ctx.request_sent = True
        log.debug("%s: calling %s, expecting response on %s", label, member, ctx.request_path)
        self._start(member, signature, body, _on_reply)
        try:
            return await ctx.wait()
        except asyncio.CancelledError:
            ctx.abandon()
            raise

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _start(
        self,
        member: str,
        signature: str,
        body: Sequence[Any],
        on_reply: Callable[[asyncio.Future], None],
    ) -> None:
        call = asyncio.ensure_future(
            self.bus.call(PORTAL_OBJECT_PATH, USB_INTERFACE, member, signature, body)
        )
        self._inflight.add(call)
        call.add_done_callback(on_reply)

    def _close_request(self, ctx: CallContext) -> None:
        if not ctx.request_sent or not ctx.request_path:
            return
        log.debug("%s: closing request %s", ctx.label, ctx.request_path)
        self.bus.send_no_reply(ctx.request_path, REQUEST_INTERFACE, "Close")


__all__ = ["RequestDriver", "ResponseDecoder", "new_handle_token"]
