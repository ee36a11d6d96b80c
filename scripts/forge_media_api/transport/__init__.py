"""Transport registry."""

from __future__ import annotations

import os
from typing import Dict, Optional

from .base import JobEvent, Transport, TransportFactory, TransportHandle


_FACTORIES: Dict[str, TransportFactory] = {}


def _build_factory(name: str) -> TransportFactory:
    key = name.strip().lower()
    if key == "supernet":
        from .supernet import SupernetTransport
        return SupernetTransport
    raise ValueError(f"No transport registered under '{name}'.")


def register_transport(name: str, factory: TransportFactory) -> None:
    _FACTORIES[name.strip().lower()] = factory


def get_transport_factory(name: Optional[str] = None) -> TransportFactory:
    key = (name or os.getenv("MEDIA_FORGE_TRANSPORT") or "supernet").strip().lower()
    factory = _FACTORIES.get(key)
    if factory is not None:
        return factory
    factory = _build_factory(key)
    _FACTORIES[key] = factory
    return factory


__all__ = [
    "JobEvent",
    "Transport",
    "TransportFactory",
    "TransportHandle",
    "get_transport_factory",
    "register_transport",
]
