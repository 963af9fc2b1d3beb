
"""Domain package exports for value objects, errors and ports."""

from .devices import (
    AcquiredDevice,
    AcquireResult,
    DeviceAcquireRequest,
    DeviceEvent,
    FinishPage,
    UsbDeviceInfo,
)
from .errors import (
    AcquireFinishError,
    PayloadError,
    PortalError,
    RequestCancelledError,
    RequestFailedError,
    TransportError,
)
from .ports import BusPort, ParentWindow, SettingsPort, UseCaseError
from .settings import PortalSettings

__all__ = [
    "AcquiredDevice",
    "AcquireResult",
    "DeviceAcquireRequest",
    "DeviceEvent",
    "FinishPage",
    "UsbDeviceInfo",
    "AcquireFinishError",
    "PayloadError",
    "PortalError",
    "RequestCancelledError",
    "RequestFailedError",
    "TransportError",
    "BusPort",
    "ParentWindow",
    "SettingsPort",
    "UseCaseError",
    "PortalSettings",
]
