from __future__ import annotations

from dataclasses import dataclass
from typing import List

from ..domain.devices import UsbDeviceInfo
from ..domain.payloads import decode_enumerated_devices
from .request_driver import RequestDriver


@dataclass
class EnumerateDevices:
    driver: RequestDriver

    async def __call__(self) -> List[UsbDeviceInfo]:
        body = await self.driver.plain_call("EnumerateDevices", "a{sv}", [{}])
        return decode_enumerated_devices(body)
