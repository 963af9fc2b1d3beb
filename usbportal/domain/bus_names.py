"""Well-known names and object paths of the desktop portal USB broker."""

from __future__ import annotations

PORTAL_BUS_NAME = "org.freedesktop.portal.Desktop"
PORTAL_OBJECT_PATH = "/org/freedesktop/portal/desktop"

USB_INTERFACE = "org.freedesktop.portal.Usb"
REQUEST_INTERFACE = "org.freedesktop.portal.Request"
SESSION_INTERFACE = "org.freedesktop.portal.Session"

REQUEST_PATH_PREFIX = "/org/freedesktop/portal/desktop/request/"

# Response status codes of org.freedesktop.portal.Request::Response
RESPONSE_SUCCESS = 0
RESPONSE_CANCELLED = 1


def sender_path_component(unique_name: str) -> str:
    """Turn a unique bus name (``:1.42``) into a path element (``1_42``)."""
    name = str(unique_name or "").strip()
    if name.startswith(":"):
        name = name[1:]
    return name.replace(".", "_")


def request_path_for(unique_name: str, token: str) -> str:
    """Predict the correlation path the broker uses for ``token``."""
    return f"{REQUEST_PATH_PREFIX}{sender_path_component(unique_name)}/{token}"


__all__ = [
    "PORTAL_BUS_NAME",
    "PORTAL_OBJECT_PATH",
    "USB_INTERFACE",
    "REQUEST_INTERFACE",
    "SESSION_INTERFACE",
    "REQUEST_PATH_PREFIX",
    "RESPONSE_SUCCESS",
    "RESPONSE_CANCELLED",
    "sender_path_component",
    "request_path_for",
]
