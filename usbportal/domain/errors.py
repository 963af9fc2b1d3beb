"""Domain-level error types shared by adapters, use cases and the app layer.

Callers tell the outcomes of a broker operation apart by exception class:
``RequestCancelledError`` (user or caller cancellation),
``RequestFailedError`` (broker denied the request) and ``TransportError``
(the bus call itself failed). Per-device failures are never raised; they are
reported inline on ``AcquiredDevice`` records.
"""
from __future__ import annotations

from typing import Optional


class PortalError(RuntimeError):
    """Base class for failures of a broker-mediated operation."""

    code = "PORTAL_ERROR"

    def __init__(self, message: str, *, context: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class TransportError(PortalError):
    """The bus call itself failed (broker unavailable, bus error reply)."""

    code = "TRANSPORT_FAILED"

    def __init__(
        self,
        message: str,
        *,
        error_name: Optional[str] = None,
        context: Optional[str] = None,
    ) -> None:
        super().__init__(message, context=context)
        self.error_name = error_name


class RequestFailedError(PortalError):
    """The broker answered the request with a failure status."""

    code = "REQUEST_FAILED"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        context: Optional[str] = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status = status


class RequestCancelledError(PortalError):
    """The request was cancelled by the user or by the caller."""

    code = "CANCELLED"


class PayloadError(PortalError):
    """A reply or signal body did not have the expected shape."""

    code = "BAD_PAYLOAD"


class AcquireFinishError(PortalError):
    """Draining the AcquireDevicesFinish pages was aborted."""

    code = "FINISH_FAILED"

    def __init__(
        self,
        message: str,
        *,
        pages_read: int = 0,
        context: Optional[str] = None,
    ) -> None:
        super().__init__(message, context=context)
        self.pages_read = pages_read


__all__ = [
    "PortalError",
    "TransportError",
    "RequestFailedError",
    "RequestCancelledError",
    "PayloadError",
    "AcquireFinishError",
]
