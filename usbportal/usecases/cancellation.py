from __future__ import annotations

import logging
from typing import Callable, Dict

from ..domain.errors import RequestCancelledError

log = logging.getLogger(__name__)

CancelCallback = Callable[[], None]


class CancelToken:
    """Cooperative cancellation flag shared between a caller and its calls.

    Hooks run once, on the loop thread that calls :meth:`cancel`. Cancelling
    twice is a no-op.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: Dict[int, CancelCallback] = {}
        self._next_id = 1

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def connect(self, callback: CancelCallback) -> int:
        """Register ``callback``; returns a hook id (``0`` if it already ran)."""
        if self._cancelled:
            callback()
            return 0
        hook_id = self._next_id
        self._next_id += 1
        self._callbacks[hook_id] = callback
        return hook_id

    def disconnect(self, hook_id: int) -> None:
        self._callbacks.pop(hook_id, None)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks = list(self._callbacks.values())
        self._callbacks.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("Cancellation hook failed")

    def raise_if_cancelled(self, label: str) -> None:
        if self._cancelled:
            raise RequestCancelledError(f"{label} canceled", context=label)


__all__ = ["CancelToken", "CancelCallback"]
