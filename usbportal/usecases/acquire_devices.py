"""Device acquisition workflow.

States run ``NEED_PARENT_HANDLE -> REQUEST_SENT -> AWAITING_RESPONSE ->
RESOLVED``. The AcquireDevices request is only submitted once the caller's
parent window has a handle; a cancellation while the handle is being
exported stops the workflow before anything reaches the broker.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

from ..domain.bus_names import RESPONSE_CANCELLED, RESPONSE_SUCCESS
from ..domain.devices import AcquireResult, DeviceAcquireRequest
from ..domain.errors import PortalError, RequestCancelledError, RequestFailedError
from ..domain.payloads import decode_device_results, encode_acquire_requests
from ..domain.ports import ObjectPath, ParentWindow
from .cancellation import CancelToken
from .request_driver import RequestDriver

log = logging.getLogger(__name__)

_LABEL = "Acquire USB devices"
_SIGNATURE = "sa(sa{sv})a{sv}"


class AcquireState(str, Enum):
    NEED_PARENT_HANDLE = "need_parent_handle"
    REQUEST_SENT = "request_sent"
    AWAITING_RESPONSE = "awaiting_response"
    RESOLVED = "resolved"


def decode_acquire_response(path: ObjectPath, status: int, results: Mapping[str, Any]) -> AcquireResult:
    """Turn a Response into an ``AcquireResult``.

    Denied devices stay in the list with their error so callers can tell a
    partial failure from a full success.
    """
    if status == RESPONSE_SUCCESS:
        devices = decode_device_results(results.get("devices"), ctx="AcquireDevices")
        return AcquireResult(request_path=path, devices=tuple(devices))
    if status == RESPONSE_CANCELLED:
        raise RequestCancelledError(f"{_LABEL} canceled", context=path)
    raise RequestFailedError(f"{_LABEL} failed (status {status})", status=status, context=path)


@dataclass
class AcquireDevices:
    driver: RequestDriver
    on_state: Optional[Callable[[AcquireState], None]] = None

    async def __call__(
        self,
        parent: Optional[ParentWindow],
        devices: Sequence[DeviceAcquireRequest],
        *,
        cancel_token: Optional[CancelToken] = None,
    ) -> AcquireResult:
        """Request access to ``devices`` on behalf of ``parent``.

        Args:
            parent: Window to parent the broker's dialog to, or ``None``.
            devices: Batch to acquire; copied before use.
            cancel_token: Cancels the export or the pending request.

        Returns:
            AcquireResult: Correlation path plus one record per device.

        Raises:
            RequestCancelledError: Cancelled locally or by the user.
            RequestFailedError: The broker denied the request as a whole.
            TransportError: The AcquireDevices call itself failed.
        """
        requests = [request.copy() for request in devices]
        if not requests:
            raise ValueError("AcquireDevices requires at least one device.")
        if cancel_token is not None:
            cancel_token.raise_if_cancelled(_LABEL)

        self._enter(AcquireState.NEED_PARENT_HANDLE)
        parent_handle = await self._parent_handle(parent, cancel_token)

        token = self.driver.new_token()
        body = [parent_handle, encode_acquire_requests(requests), {"handle_token": token}]
        self._enter(AcquireState.REQUEST_SENT)
        result = await self.driver.request_call(
            "AcquireDevices",
            _SIGNATURE,
            body,
            token=token,
            decode_response=decode_acquire_response,
            cancel_token=cancel_token,
            on_request_path=lambda _path: self._enter(AcquireState.AWAITING_RESPONSE),
            label=_LABEL,
        )
        self._enter(AcquireState.RESOLVED)
        log.info(
            "Acquired %d of %d device(s) via %s",
            len(result.granted),
            len(requests),
            result.request_path,
        )
        return result

    def _enter(self, state: AcquireState) -> None:
        log.debug("%s: %s", _LABEL, state.value)
        if self.on_state is not None:
            self.on_state(state)

    async def _parent_handle(
        self,
        parent: Optional[ParentWindow],
        cancel_token: Optional[CancelToken],
    ) -> str:
        if parent is None:
            return ""
        if parent.handle:
            return str(parent.handle)
        export = asyncio.ensure_future(parent.export())
        if cancel_token is None:
            return await self._exported(export)

        cancelled = asyncio.get_running_loop().create_future()

        def _on_cancel() -> None:
            if not cancelled.done():
                cancelled.set_result(None)

        hook_id = cancel_token.connect(_on_cancel)
        try:
            await asyncio.wait({export, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            export.cancel()
            raise
        finally:
            cancel_token.disconnect(hook_id)
        if cancelled.done():
            log.debug("%s: cancelled while exporting the parent window", _LABEL)
            if export.done():
                self._discard(export)
            else:
                export.add_done_callback(self._discard)
            raise RequestCancelledError(f"{_LABEL} canceled", context=_LABEL)
        return await self._exported(export)

    @staticmethod
    async def _exported(export: "asyncio.Future[str]") -> str:
        try:
            handle = await export
        except PortalError:
            raise
        except Exception as exc:
            raise RequestFailedError(f"{_LABEL}: exporting the parent window failed: {exc}") from exc
        return str(handle or "")

    @staticmethod
    def _discard(export: "asyncio.Future[str]") -> None:
        if export.cancelled():
            return
        exc = export.exception()
        if exc is not None:
            log.debug("%s: late parent export failed: %s", _LABEL, exc)
