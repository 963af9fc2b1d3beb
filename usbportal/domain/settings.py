"""Typed runtime settings for the portal client."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Mapping, Optional

from ..utils.logging import env_requests_debug
from .bus_names import PORTAL_BUS_NAME

BUS_TYPES = ("session", "system")
DEFAULT_MAX_FINISH_PAGES = 1024


def _default_debug_logging() -> bool:
    return env_requests_debug()


@dataclass(frozen=True)
class PortalSettings:
    """Settings persisted by ``SettingsLocal`` and overridable from the environment."""

    bus_type: str = "session"
    bus_name: str = PORTAL_BUS_NAME
    max_finish_pages: int = DEFAULT_MAX_FINISH_PAGES
    debug_logging: bool = False

    @classmethod
    def from_dict(cls, payload: Optional[Mapping[str, Any]]) -> "PortalSettings":
        """Build settings from a loaded JSON mapping; bad fields keep defaults."""
        base = cls(debug_logging=_default_debug_logging())
        data = dict(payload or {})
        return replace(
            base,
            bus_type=_coerce_bus_type(data.get("bus_type"), base.bus_type),
            bus_name=_coerce_text(data.get("bus_name"), base.bus_name),
            max_finish_pages=_coerce_positive_int(data.get("max_finish_pages"), base.max_finish_pages),
            debug_logging=_coerce_bool(data.get("debug_logging"), base.debug_logging),
        )

    def with_env_overrides(self, environ: Optional[Mapping[str, str]] = None) -> "PortalSettings":
        """Apply ``USBPORTAL_*`` environment overrides."""
        env = os.environ if environ is None else environ
        return replace(
            self,
            bus_type=_coerce_bus_type(env.get("USBPORTAL_BUS"), self.bus_type),
            bus_name=_coerce_text(env.get("USBPORTAL_BUS_NAME"), self.bus_name),
            max_finish_pages=_coerce_positive_int(
                env.get("USBPORTAL_MAX_FINISH_PAGES"), self.max_finish_pages
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ------------------------------------------------------------------
# Coercion helpers
# ------------------------------------------------------------------
def _coerce_bus_type(value: Any, fallback: str) -> str:
    text = str(value or "").strip().lower()
    return text if text in BUS_TYPES else fallback


def _coerce_text(value: Any, fallback: str) -> str:
    if not isinstance(value, str):
        return fallback
    text = value.strip()
    return text or fallback


def _coerce_positive_int(value: Any, fallback: int) -> int:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def _coerce_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return fallback


__all__ = ["PortalSettings", "BUS_TYPES", "DEFAULT_MAX_FINISH_PAGES"]
