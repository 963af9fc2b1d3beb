from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Set

from .request_driver import RequestDriver

log = logging.getLogger(__name__)


@dataclass
class ReleaseDevices:
    """Tell the broker the caller no longer needs the given devices."""

    driver: RequestDriver

    async def __call__(self, device_ids: Iterable[str]) -> List[str]:
        seen: Set[str] = set()
        ids: List[str] = []
        for device_id in device_ids:
            ident = str(device_id or "").strip()
            if not ident or ident in seen:
                continue
            seen.add(ident)
            ids.append(ident)
        if not ids:
            log.debug("ReleaseDevices: nothing to release")
            return ids
        await self.driver.plain_call("ReleaseDevices", "as", [ids])
        log.debug("Released %d device(s)", len(ids))
        return ids
