"""Conversion between plain Python bodies and dbus-fast wire values.

Use cases build bodies from plain values (``{"handle_token": "portal7"}``).
:func:`to_wire` walks the method signature and wraps every ``v`` slot in a
``dbus_fast.Variant`` with an inferred type; :func:`from_wire` strips the
variants from received bodies again and swaps ``h`` indices for the file
descriptors attached to the message.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from dbus_fast import Variant
from dbus_fast.signature import SignatureType, get_signature_tree

log = logging.getLogger(__name__)


def to_wire(signature: str, body: Sequence[Any]) -> List[Any]:
    """Wrap a plain body so dbus-fast can marshal it under ``signature``."""
    if not signature:
        return []
    types = get_signature_tree(signature).types
    if len(types) != len(body):
        raise ValueError(
            f"Body has {len(body)} values but signature '{signature}' expects {len(types)}"
        )
    return [_wrap(type_, value) for type_, value in zip(types, body)]


def from_wire(value: Any, unix_fds: Sequence[int] = ()) -> Any:
    """Recursively unwrap variants; ``h`` variants resolve to real fds."""
    if isinstance(value, Variant):
        if value.signature == "h":
            return _resolve_fd(value.value, unix_fds)
        return from_wire(value.value, unix_fds)
    if isinstance(value, dict):
        return {key: from_wire(item, unix_fds) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [from_wire(item, unix_fds) for item in value]
    return value


def guess_variant(value: Any) -> Variant:
    """Wrap a plain value in a ``Variant`` using its Python type."""
    if isinstance(value, Variant):
        return value
    if isinstance(value, bool):
        return Variant("b", value)
    if isinstance(value, int):
        return Variant("i", value)
    if isinstance(value, float):
        return Variant("d", value)
    if isinstance(value, str):
        return Variant("s", value)
    if isinstance(value, (bytes, bytearray)):
        return Variant("ay", bytes(value))
    if isinstance(value, dict):
        return Variant("a{sv}", {str(key): guess_variant(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return Variant("as", list(value))
    raise TypeError(f"Cannot infer a D-Bus type for {type(value).__name__}")


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------
def _wrap(type_: SignatureType, value: Any) -> Any:
    token = type_.token
    if token == "v":
        return guess_variant(value)
    if token == "a":
        child = type_.children[0]
        if child.token == "{":
            key_type, value_type = child.children
            mapping: Dict[Any, Any] = {}
            for key, item in dict(value or {}).items():
                mapping[_wrap(key_type, key)] = _wrap(value_type, item)
            return mapping
        if child.token == "y" and isinstance(value, (bytes, bytearray)):
            return bytes(value)
        return [_wrap(child, item) for item in (value or [])]
    if token == "(":
        items = list(value)
        if len(items) != len(type_.children):
            raise ValueError(f"Struct '{type_.signature}' expects {len(type_.children)} fields")
        return [_wrap(child, item) for child, item in zip(type_.children, items)]
    return value


def _resolve_fd(index: Any, unix_fds: Sequence[int]) -> int:
    if not unix_fds:
        log.warning("Handle index %r arrived without attached file descriptors", index)
        return -1
    try:
        return int(unix_fds[int(index)])
    except (IndexError, TypeError, ValueError):
        return -1


__all__ = ["to_wire", "from_wire", "guess_variant"]
