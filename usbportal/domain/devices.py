"""Domain DTOs for USB device requests, grants and events."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class DeviceAcquireRequest:
    """One item of a batch acquisition request."""

    device_id: str
    writable: bool = False

    def __post_init__(self) -> None:
        if not str(self.device_id or "").strip():
            raise ValueError("DeviceAcquireRequest requires a device id.")

    def copy(self) -> "DeviceAcquireRequest":
        """Return an independent copy of this request."""
        return replace(self)

    def to_payload(self) -> Tuple[str, Dict[str, Any]]:
        """Build the ``(s a{sv})`` entry sent to AcquireDevices."""
        return (str(self.device_id), {"writable": bool(self.writable)})

    @classmethod
    def from_payload(cls, entry: Any) -> "DeviceAcquireRequest":
        """Rebuild a request from its ``(id, {writable})`` wire entry."""
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise ValueError(f"Malformed device request entry: {entry!r}")
        device_id, options = entry
        options = options if isinstance(options, Mapping) else {}
        return cls(device_id=str(device_id), writable=bool(options.get("writable", False)))


@dataclass(frozen=True)
class AcquiredDevice:
    """Outcome of acquiring a single device.

    ``fd`` is owned by the caller once returned and stays ``-1`` when the
    device was not granted. ``error`` carries the broker's message for a
    denied device.
    """

    device_id: str
    success: bool
    fd: int = -1
    error: Optional[str] = None

    @classmethod
    def granted(cls, device_id: str, fd: int) -> "AcquiredDevice":
        return cls(device_id=device_id, success=True, fd=int(fd), error=None)

    @classmethod
    def denied(cls, device_id: str, error: Optional[str]) -> "AcquiredDevice":
        return cls(device_id=device_id, success=False, fd=-1, error=error)

    @classmethod
    def from_payload(cls, device_id: Any, result: Mapping[str, Any]) -> "AcquiredDevice":
        """Build a record from a per-device result map (``success``/``fd``/``error``).

        A device only counts as granted when the broker also handed over a
        descriptor; ``success`` without a usable ``fd`` is recorded as denied.
        """
        ident = str(device_id or "").strip()
        if not ident:
            raise ValueError("Missing device id in acquisition result.")
        if result.get("success") is True:
            fd = result.get("fd")
            if isinstance(fd, int) and not isinstance(fd, bool) and fd >= 0:
                return cls.granted(ident, fd)
            return cls.denied(ident, "no file descriptor")
        error = result.get("error")
        return cls.denied(ident, str(error) if error is not None else None)


@dataclass(frozen=True)
class UsbDeviceInfo:
    """Enumerated device with the broker-reported properties."""

    device_id: str
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, entry: Any) -> "UsbDeviceInfo":
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            raise ValueError(f"Malformed device entry: {entry!r}")
        device_id, props = entry
        properties = dict(props) if isinstance(props, Mapping) else {}
        return cls(device_id=str(device_id), properties=properties)


@dataclass(frozen=True)
class DeviceEvent:
    """Unsolicited add/change/remove notification for one device."""

    action: str
    device_id: str
    properties: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, entry: Any) -> "DeviceEvent":
        if isinstance(entry, (list, tuple)) and len(entry) == 3:
            action, device_id, props = entry
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            action = ""
            device_id, props = entry
        else:
            raise ValueError(f"Malformed device event: {entry!r}")
        properties = dict(props) if isinstance(props, Mapping) else {}
        return cls(action=str(action), device_id=str(device_id), properties=properties)


@dataclass(frozen=True)
class AcquireResult:
    """Result of an AcquireDevices request.

    ``request_path`` is the handle to pass to the finishing query.
    """

    request_path: str
    devices: Tuple[AcquiredDevice, ...] = ()

    @property
    def granted(self) -> List[AcquiredDevice]:
        return [dev for dev in self.devices if dev.success]

    @property
    def failed(self) -> List[AcquiredDevice]:
        return [dev for dev in self.devices if not dev.success]


@dataclass(frozen=True)
class FinishPage:
    """One page returned by AcquireDevicesFinish."""

    devices: Tuple[AcquiredDevice, ...]
    finished: bool


__all__ = [
    "DeviceAcquireRequest",
    "AcquiredDevice",
    "UsbDeviceInfo",
    "DeviceEvent",
    "AcquireResult",
    "FinishPage",
]
