"""Utility helpers for Media Forge."""

from __future__ import annotations

import logging
import math
import os
from typing import Any, Iterable, Mapping, Optional

from .contracts import Credentials

_MISSING = object()
_TRUTHY = {"1", "true", "yes", "on"}

DEBUG_IDENTITY_ENV = "MEDIA_FORGE_DEBUG_IDENTITY"


def env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in _TRUTHY


def is_identity_debug_enabled() -> bool:
    return env_flag(DEBUG_IDENTITY_ENV)


def debug_log_identity(logger: logging.Logger, message: str, *args: Any) -> None:
    """Trace identity and session lifecycle when MEDIA_FORGE_DEBUG_IDENTITY is set."""
    if not is_identity_debug_enabled():
        return
    logger.info("[media-forge] " + message, *args)


def is_defined(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return True


def lookup_path(payload: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path (``queue.position``) from nested mappings."""
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def first_present(payload: Mapping[str, Any], paths: Iterable[str]) -> Optional[Any]:
    for path in paths:
        value = lookup_path(payload, path)
        if value is not _MISSING and is_defined(value):
            return value
    return None


def load_credentials() -> Credentials:
    username = os.getenv("MEDIA_FORGE_USERNAME")
    password = os.getenv("MEDIA_FORGE_PASSWORD")
    if not username or not password:
        raise RuntimeError("MEDIA_FORGE_USERNAME and MEDIA_FORGE_PASSWORD must be set.")
    return Credentials(
        username=username,
        password=password,
        app_id=os.getenv("MEDIA_FORGE_APP_ID") or None,
    )
