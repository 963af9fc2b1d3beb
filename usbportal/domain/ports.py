from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

ObjectPath = str
SubscriptionId = int

# (object_path, body) of a received signal
SignalHandler = Callable[[ObjectPath, List[Any]], None]


# ---- Error model ----
class UseCaseError(Exception):
    """Base class for use case level errors (user-presentable)."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


# ---- Ports (Hexagonal boundaries) ----
class BusPort(Protocol):
    """Method calls and signal subscriptions against the broker's bus.

    Bodies are plain Python values; wrapping into wire variants is the
    adapter's job. Failed calls raise ``TransportError``. Subscription ids
    are positive; ``0`` never names a live subscription.
    """

    @property
    def unique_name(self) -> str: ...

    async def call(
        self,
        object_path: ObjectPath,
        interface: str,
        member: str,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> List[Any]: ...

    def send_no_reply(
        self,
        object_path: ObjectPath,
        interface: str,
        member: str,
        signature: str = "",
        body: Sequence[Any] = (),
    ) -> None: ...  # fire-and-forget, outcome discarded

    def subscribe(
        self,
        interface: str,
        member: str,
        handler: SignalHandler,
        object_path: Optional[ObjectPath] = None,
    ) -> SubscriptionId: ...

    def unsubscribe(self, subscription_id: SubscriptionId) -> None: ...


class ParentWindow(Protocol):
    """Caller window that the broker parents its dialogs to.

    ``handle`` is set when the window was exported already; otherwise
    ``export`` produces the handle string asynchronously.
    """

    handle: Optional[str]

    async def export(self) -> str: ...


class SettingsPort(Protocol):
    """Persistence of client settings as a JSON-compatible mapping."""

    def load_settings(self) -> Optional[Dict[str, Any]]: ...  # None when nothing saved
    def save_settings(self, payload: Dict[str, Any]) -> None: ...
