"""Translate portal errors into user-facing UseCaseError instances."""

from __future__ import annotations

from typing import Optional

from ..domain.errors import (
    AcquireFinishError,
    PayloadError,
    PortalError,
    RequestCancelledError,
    RequestFailedError,
    TransportError,
)
from ..domain.ports import UseCaseError

_UNAVAILABLE_ERRORS = (
    "org.freedesktop.DBus.Error.ServiceUnknown",
    "org.freedesktop.DBus.Error.NameHasNoOwner",
    "org.freedesktop.DBus.Error.UnknownMethod",
    "org.freedesktop.DBus.Error.UnknownInterface",
)
_ACCESS_ERRORS = (
    "org.freedesktop.DBus.Error.AccessDenied",
    "org.freedesktop.portal.Error.NotAllowed",
)


def map_portal_error(
    exc: Exception,
    *,
    default_code: str,
    default_message: Optional[str] = None,
) -> UseCaseError:
    """Map portal exceptions to stable UseCaseError codes.

    Args:
        exc (Exception): Error raised by a use case.
        default_code (str): Code used for errors outside the portal taxonomy.
        default_message (Optional[str]): Message used for such errors.

    Returns:
        UseCaseError: Presentable error; cancellation keeps its own code so
        callers can treat it differently from a denial.
    """
    if isinstance(exc, UseCaseError):
        return exc
    if isinstance(exc, RequestCancelledError):
        return UseCaseError("CANCELLED", "Request canceled.")
    if isinstance(exc, RequestFailedError):
        label = f"Request denied (status {exc.status})" if exc.status is not None else "Request denied"
        return UseCaseError("REQUEST_FAILED", label)
    if isinstance(exc, TransportError):
        name = exc.error_name or ""
        if name in _UNAVAILABLE_ERRORS:
            return UseCaseError("PORTAL_UNAVAILABLE", "USB portal is not available on this bus.")
        if name in _ACCESS_ERRORS:
            return UseCaseError("ACCESS_DENIED", _compose_error_message("Access denied", exc.message))
        return UseCaseError("TRANSPORT_FAILED", _compose_error_message("Bus call failed", exc.message))
    if isinstance(exc, AcquireFinishError):
        return UseCaseError("FINISH_FAILED", exc.message)
    if isinstance(exc, PayloadError):
        return UseCaseError("BAD_PAYLOAD", _compose_error_message("Unexpected broker reply", exc.message))
    if isinstance(exc, PortalError):
        return UseCaseError(exc.code, exc.message)

    message = default_message or str(exc) or "Unexpected error."
    return UseCaseError(default_code, message)


def _compose_error_message(base: str, hint: Optional[str]) -> str:
    hint_text = (hint or "").strip()
    if not hint_text:
        return base
    return f"{base}: {hint_text}"


__all__ = ["map_portal_error"]
