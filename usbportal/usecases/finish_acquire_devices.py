from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Union

from ..domain.devices import AcquiredDevice, AcquireResult
from ..domain.errors import AcquireFinishError, PortalError
from ..domain.payloads import decode_finish_page
from ..domain.settings import DEFAULT_MAX_FINISH_PAGES
from .request_driver import RequestDriver

log = logging.getLogger(__name__)


@dataclass
class FinishAcquireDevices:
    """Drain the AcquireDevicesFinish pages of an acquisition request.

    Each page is one round trip. The loop stops at the first page flagged
    ``finished`` and never polls the path again; a failing page aborts it.
    """

    driver: RequestDriver
    max_pages: int = DEFAULT_MAX_FINISH_PAGES

    async def __call__(self, request: Union[AcquireResult, str]) -> List[AcquiredDevice]:
        path = request.request_path if isinstance(request, AcquireResult) else str(request or "")
        if not path.startswith("/"):
            raise ValueError(f"Invalid request path: {path!r}")
        devices: List[AcquiredDevice] = []
        for page_no in range(1, self.max_pages + 1):
            try:
                body = await self.driver.plain_call("AcquireDevicesFinish", "oa{sv}", [path, {}])
                page = decode_finish_page(body)
            except PortalError as exc:
                raise AcquireFinishError(
                    f"Finishing {path} failed on page {page_no}: {exc.message}",
                    pages_read=page_no - 1,
                    context=path,
                ) from exc
            devices.extend(page.devices)
            if page.finished:
                log.debug("Finished %s after %d page(s), %d device(s)", path, page_no, len(devices))
                return devices
        raise AcquireFinishError(
            f"Broker did not finish {path} within {self.max_pages} pages",
            pages_read=self.max_pages,
            context=path,
        )
