from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from .sessions import Session, UsbSession

# Arena of live sessions keyed by broker session path. Sessions are held
# strongly until destroyed; the USB session attached to a path is only
# looked up, never kept alive, by the registry.


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, "Session"] = {}
        self._usb_links: "weakref.WeakValueDictionary[str, UsbSession]" = weakref.WeakValueDictionary()

    def add(self, session: "Session") -> None:
        if session.path in self._sessions:
            raise ValueError(f"Session {session.path} is already registered.")
        self._sessions[session.path] = session

    def get(self, path: str) -> Optional["Session"]:
        return self._sessions.get(path)

    def remove(self, path: str) -> Optional["Session"]:
        self._usb_links.pop(path, None)
        return self._sessions.pop(path, None)

    def link_usb(self, path: str, usb_session: "UsbSession") -> None:
        if path not in self._sessions:
            raise KeyError(f"No session registered for {path}.")
        self._usb_links[path] = usb_session

    def unlink_usb(self, path: str, usb_session: Optional["UsbSession"] = None) -> None:
        current = self._usb_links.get(path)
        if current is None:
            return
        if usb_session is not None and current is not usb_session:
            return
        del self._usb_links[path]

    def usb_for(self, path: str) -> Optional["UsbSession"]:
        return self._usb_links.get(path)

    def paths(self) -> List[str]:
        return list(self._sessions)

    def __contains__(self, path: object) -> bool:
        return path in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["SessionRegistry"]
