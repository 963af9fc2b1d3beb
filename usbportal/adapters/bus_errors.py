from __future__ import annotations

from typing import Any, Optional

from usbportal.domain.errors import TransportError


def transport_error(exc: BaseException, *, context: str) -> TransportError:
    """Translate a dbus-fast or socket failure into a ``TransportError``."""
    error_name = getattr(exc, "type", None)
    text = getattr(exc, "text", None) or str(exc) or exc.__class__.__name__
    if error_name:
        message = f"{context}: {text} ({error_name})"
    else:
        message = f"{context}: {text}"
    return TransportError(message, error_name=error_name, context=context)


def transport_error_from_reply(reply: Any, *, context: str) -> TransportError:
    """Build a ``TransportError`` from an ERROR-typed reply message."""
    error_name: Optional[str] = getattr(reply, "error_name", None)
    detail = first_string(getattr(reply, "body", None))
    message = f"{context}: {detail or 'bus error'}"
    if error_name:
        message = f"{message} ({error_name})"
    return TransportError(message, error_name=error_name, context=context)


def first_string(payload: Any) -> Optional[str]:
    if isinstance(payload, str):
        text = payload.strip()
        return text or None
    if isinstance(payload, (list, tuple)):
        for item in payload:
            candidate = first_string(item)
            if candidate:
                return candidate
    return None


def stringify(data: Any, *, limit: int = 200) -> Optional[str]:
    """Short single-line rendering of a body for debug logs."""
    if data is None:
        return None
    if isinstance(data, str):
        cleaned = data.strip()
        return cleaned[:limit] if cleaned else None
    if isinstance(data, (list, tuple)):
        parts = []
        for item in data:
            text = stringify(item, limit=limit)
            if text:
                parts.append(text)
            if len(parts) >= 3:
                break
        if not parts:
            return None
        return ", ".join(parts)[:limit]
    if isinstance(data, dict):
        pairs = []
        for key, value in list(data.items())[:4]:
            value_text = stringify(value, limit=limit)
            if value_text:
                pairs.append(f"{key}={value_text}")
        if not pairs:
            return None
        return ", ".join(pairs)[:limit]
    text = str(data).strip()
    return text[:limit] if text else None


__all__ = ["transport_error", "transport_error_from_reply", "first_string", "stringify"]
