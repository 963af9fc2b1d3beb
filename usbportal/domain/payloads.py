"""Encode and decode the plain-value bodies exchanged with the USB broker.

Bodies arrive here already unwrapped from wire variants (see
``usbportal.adapters.variant_codec``), so every helper works on lists,
dicts, strings, ints and bools. Shape violations raise ``PayloadError``.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from .devices import (
    AcquiredDevice,
    DeviceAcquireRequest,
    DeviceEvent,
    FinishPage,
    UsbDeviceInfo,
)
from .errors import PayloadError


def encode_acquire_requests(requests: Iterable[DeviceAcquireRequest]) -> List[Tuple[str, dict]]:
    """Encode a device batch as the ``a(sa{sv})`` argument of AcquireDevices."""
    return [request.to_payload() for request in requests]


def decode_acquire_requests(entries: Any) -> List[DeviceAcquireRequest]:
    """Inverse of :func:`encode_acquire_requests`."""
    try:
        return [DeviceAcquireRequest.from_payload(entry) for entry in _as_list(entries, "devices")]
    except ValueError as exc:
        raise PayloadError(str(exc)) from exc


def decode_object_path(body: Sequence[Any], *, ctx: str) -> str:
    """Return the single object path a method reply carries."""
    if not body or not isinstance(body[0], str) or not body[0].startswith("/"):
        raise PayloadError(f"{ctx}: expected an object path reply, got {list(body or [])!r}")
    return body[0]


def decode_enumerated_devices(body: Sequence[Any]) -> List[UsbDeviceInfo]:
    """Decode the ``(a(sa{sv}))`` reply of EnumerateDevices."""
    if not body:
        return []
    try:
        return [UsbDeviceInfo.from_payload(entry) for entry in _as_list(body[0], "devices")]
    except ValueError as exc:
        raise PayloadError(f"EnumerateDevices: {exc}") from exc


def decode_response(body: Sequence[Any]) -> Tuple[int, Mapping[str, Any]]:
    """Split a Request::Response body into ``(status, results)``."""
    if not body or len(body) < 2:
        raise PayloadError(f"Response: expected (status, results), got {list(body or [])!r}")
    status, results = body[0], body[1]
    if isinstance(status, bool) or not isinstance(status, int):
        raise PayloadError(f"Response: status must be an integer, got {status!r}")
    if not isinstance(results, Mapping):
        raise PayloadError(f"Response: results must be a map, got {results!r}")
    return status, results


def decode_device_results(entries: Any, *, ctx: str) -> List[AcquiredDevice]:
    """Decode an ``a(sa{sv})`` list of per-device outcomes, preserving order."""
    devices: List[AcquiredDevice] = []
    for entry in _as_list(entries, ctx):
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise PayloadError(f"{ctx}: malformed device result {entry!r}")
        device_id, result = entry
        if not isinstance(result, Mapping):
            raise PayloadError(f"{ctx}: result for {device_id!r} is not a map")
        try:
            devices.append(AcquiredDevice.from_payload(device_id, result))
        except ValueError as exc:
            raise PayloadError(f"{ctx}: {exc}") from exc
    return devices


def decode_finish_page(body: Sequence[Any]) -> FinishPage:
    """Decode one AcquireDevicesFinish reply.

    Accepts ``(s id, a{sv} result, b finished)`` as well as the array form
    ``(a(sa{sv}) results, b finished)``.
    """
    ctx = "AcquireDevicesFinish"
    body = list(body or [])
    if len(body) == 3 and isinstance(body[0], str):
        device_id, result, finished = body
        if not isinstance(result, Mapping):
            raise PayloadError(f"{ctx}: result for {device_id!r} is not a map")
        if not device_id:
            # An empty id marks a page without a device, e.g. the final one.
            return FinishPage(devices=(), finished=_as_bool(finished, ctx))
        devices = decode_device_results([(device_id, result)], ctx=ctx)
        return FinishPage(devices=tuple(devices), finished=_as_bool(finished, ctx))
    if len(body) == 2:
        entries, finished = body
        devices = decode_device_results(entries, ctx=ctx)
        return FinishPage(devices=tuple(devices), finished=_as_bool(finished, ctx))
    raise PayloadError(f"{ctx}: unexpected reply shape {body!r}")


def decode_device_events(body: Sequence[Any]) -> Tuple[str, List[DeviceEvent]]:
    """Decode a DeviceEvents signal into ``(session_path, events)``."""
    if not body or len(body) < 2:
        raise PayloadError(f"DeviceEvents: expected (session, events), got {list(body or [])!r}")
    session_path, entries = body[0], body[1]
    try:
        events = [DeviceEvent.from_payload(entry) for entry in _as_list(entries, "DeviceEvents")]
    except ValueError as exc:
        raise PayloadError(f"DeviceEvents: {exc}") from exc
    return str(session_path), events


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------
def _as_list(value: Any, ctx: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    raise PayloadError(f"{ctx}: expected a list, got {type(value).__name__}")


def _as_bool(value: Any, ctx: str) -> bool:
    if isinstance(value, bool):
        return value
    raise PayloadError(f"{ctx}: finished flag must be a boolean, got {value!r}")


__all__ = [
    "encode_acquire_requests",
    "decode_acquire_requests",
    "decode_object_path",
    "decode_enumerated_devices",
    "decode_response",
    "decode_device_results",
    "decode_finish_page",
    "decode_device_events",
]
