from __future__ import annotations

import logging
import os
from typing import Mapping, Optional, Union

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%H:%M:%S"
LEVEL_ENV_VAR = "USBPORTAL_LOG_LEVEL"
DEBUG_ENV_VAR = "USBPORTAL_DEBUG"
# Bus library loggers stay at WARNING unless the client itself runs at DEBUG.
_LIBRARY_LOGGERS = ("dbus_fast",)

LevelLike = Union[int, str]


def parse_level(value: Optional[LevelLike], fallback: int = logging.INFO) -> int:
    """Turn ``"debug"``, ``"10"`` or ``10`` into a logging level."""
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        return value
    text = value.strip()
    if not text:
        return fallback
    if text.isdigit():
        return int(text)
    candidate = logging.getLevelName(text.upper())
    return candidate if isinstance(candidate, int) else fallback


def env_level(environ: Optional[Mapping[str, str]] = None) -> Optional[int]:
    """Level forced through the environment, or ``None``."""
    env = os.environ if environ is None else environ
    explicit = env.get(LEVEL_ENV_VAR)
    if explicit and explicit.strip():
        return parse_level(explicit)
    flag = (env.get(DEBUG_ENV_VAR) or "").strip().lower()
    if flag in {"1", "true", "yes", "on"}:
        return logging.DEBUG
    return None


def env_requests_debug(environ: Optional[Mapping[str, str]] = None) -> bool:
    forced = env_level(environ)
    return forced is not None and forced <= logging.DEBUG


def configure_root(default_level: LevelLike = logging.INFO) -> int:
    """
    Configure the root logger with a compact format.

    Environment overrides:
      - USBPORTAL_LOG_LEVEL: explicit log level
      - USBPORTAL_DEBUG: truthy -> DEBUG
    """
    forced = env_level()
    effective = forced if forced is not None else parse_level(default_level)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=effective, format=_FORMAT, datefmt=_DATEFMT)
    _set_level(effective)
    return effective


def apply_preferences(debug_enabled: bool) -> int:
    """Apply the persisted debug preference unless the environment decides."""
    forced = env_level()
    if forced is not None:
        level = forced
    else:
        level = logging.DEBUG if debug_enabled else logging.INFO
    _set_level(level)
    return level


def level_name(level: int) -> str:
    return logging.getLevelName(level)


def _set_level(level: int) -> None:
    logging.getLogger().setLevel(level)
    library_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)
