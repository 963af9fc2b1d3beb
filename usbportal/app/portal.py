"""Composition root exposing the caller-facing USB portal surface.

``UsbPortal`` wires one ``BusPort`` into the request driver, the session
registry and the use cases. Errors propagate as the domain exceptions of
``usbportal.domain.errors``; presentation layers map them with
``map_portal_error``.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Union

from ..adapters.dbus_bus import DbusFastBus
from ..domain.devices import AcquiredDevice, AcquireResult, DeviceAcquireRequest, UsbDeviceInfo
from ..domain.ports import BusPort, ParentWindow
from ..domain.settings import DEFAULT_MAX_FINISH_PAGES, PortalSettings
from ..usecases.acquire_devices import AcquireDevices
from ..usecases.cancellation import CancelToken
from ..usecases.create_session import CreateUsbSession
from ..usecases.enumerate_devices import EnumerateDevices
from ..usecases.finish_acquire_devices import FinishAcquireDevices
from ..usecases.release_devices import ReleaseDevices
from ..usecases.request_driver import RequestDriver
from ..usecases.session_registry import SessionRegistry
from ..usecases.sessions import UsbSession

log = logging.getLogger(__name__)


class UsbPortal:
    def __init__(
        self,
        bus: BusPort,
        *,
        max_finish_pages: int = DEFAULT_MAX_FINISH_PAGES,
        driver: Optional[RequestDriver] = None,
    ) -> None:
        self.bus = bus
        self.driver = driver or RequestDriver(bus)
        self.registry = SessionRegistry()
        self.uc_create_session = CreateUsbSession(self.driver, self.registry)
        self.uc_enumerate = EnumerateDevices(self.driver)
        self.uc_acquire = AcquireDevices(self.driver)
        self.uc_finish = FinishAcquireDevices(self.driver, max_pages=max_finish_pages)
        self.uc_release = ReleaseDevices(self.driver)

    @classmethod
    async def connect(cls, settings: Optional[PortalSettings] = None) -> "UsbPortal":
        """Connect to the bus named in ``settings`` and build a portal on it."""
        cfg = settings or PortalSettings()
        bus = await DbusFastBus.connect(cfg)
        log.info("USB portal client on %s bus (%s)", cfg.bus_type, cfg.bus_name)
        return cls(bus, max_finish_pages=cfg.max_finish_pages)

    async def create_session(self, *, cancel_token: Optional[CancelToken] = None) -> UsbSession:
        return await self.uc_create_session(cancel_token=cancel_token)

    async def enumerate_devices(self) -> List[UsbDeviceInfo]:
        return await self.uc_enumerate()

    async def acquire_devices(
        self,
        parent: Optional[ParentWindow],
        devices: Sequence[DeviceAcquireRequest],
        *,
        cancel_token: Optional[CancelToken] = None,
    ) -> AcquireResult:
        return await self.uc_acquire(parent, devices, cancel_token=cancel_token)

    async def finish_acquire_devices(self, request: Union[AcquireResult, str]) -> List[AcquiredDevice]:
        return await self.uc_finish(request)

    async def release_devices(self, device_ids: Iterable[str]) -> List[str]:
        return await self.uc_release(device_ids)

    def close(self) -> None:
        """Close every USB session still attached and drop the bus connection."""
        for path in self.registry.paths():
            usb_session = self.registry.usb_for(path)
            if usb_session is not None:
                usb_session.close()
            session = self.registry.get(path)
            if session is not None:
                session.destroy()
        disconnect = getattr(self.bus, "disconnect", None)
        if callable(disconnect):
            disconnect()


__all__ = ["UsbPortal"]
