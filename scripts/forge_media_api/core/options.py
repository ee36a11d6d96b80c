"""Searchable model option lists for pickers."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence, Union

from forge_media_api.transport.base import TransportFactory
from .capabilities import ModelFamily, get_family
from .contracts import Credentials, OptionEntry
from .identity import allocate_lookup_identity
from .session import LOOKUP_CLOSE_TIMEOUT_MS, Session
from .utils import debug_log_identity

logger = logging.getLogger(__name__)

RECOMMENDED_MIN_WORKERS = 5
DEFAULT_LIMIT = 100


def worker_count(model: Mapping[str, Any]) -> int:
    for key in ("workerCount", "workers"):
        value = model.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return 0


def is_healthy(model: Mapping[str, Any]) -> bool:
    if model.get("health") == "healthy" or model.get("status") == "healthy":
        return True
    healthy = model.get("healthy")
    if isinstance(healthy, bool):
        return healthy
    return worker_count(model) > 0


def is_recommended(model: Mapping[str, Any]) -> bool:
    return is_healthy(model) and worker_count(model) >= RECOMMENDED_MIN_WORKERS


def to_option(model: Mapping[str, Any]) -> OptionEntry:
    workers = worker_count(model)
    badge = f" • {workers} workers" if workers else ""
    suffix = " (recommended)" if is_recommended(model) else ""
    label = model.get("name") or model.get("id") or ""
    return OptionEntry(
        name=f"{label}{badge}{suffix}",
        value=str(model.get("id") or ""),
        description=model.get("description") or None,
    )


def build_options(
    models: Sequence[Mapping[str, Any]],
    family: Optional[ModelFamily] = None,
) -> List[OptionEntry]:
    selected = [model for model in models if family is None or family.matches(model)]
    options = [to_option(model) for model in selected]
    if family is not None and not options:
        options.append(
            OptionEntry(
                name=family.placeholder,
                value="",
                description=f"No {family.name} models matched the current search",
            )
        )
    return options


class ModelOptionProvider:
    """Lists models through a short-lived session with its own identity."""

    def __init__(
        self,
        credentials: Credentials,
        transport_factory: TransportFactory,
        *,
        close_timeout_ms: int = LOOKUP_CLOSE_TIMEOUT_MS,
    ) -> None:
        self.credentials = credentials
        self.transport_factory = transport_factory
        self.close_timeout_ms = close_timeout_ms

    async def list(
        self,
        search_text: str = "",
        family: Union[str, ModelFamily, None] = None,
    ) -> List[OptionEntry]:
        model_family = get_family(family) if isinstance(family, str) else family
        identity = allocate_lookup_identity()
        debug_log_identity(logger, "lookup:models identity=%s family=%s", identity.value, family)
        session = Session(
            self.transport_factory,
            self.credentials,
            identity,
            label="lookup:models",
            close_timeout_ms=self.close_timeout_ms,
        )
        search = (search_text or "").strip()
        try:
            await session.connect()
            models = await session.list_models(
                {
                    "sortByWorkers": True,
                    "minWorkers": 0,
                    "search": search or None,
                    "limit": DEFAULT_LIMIT,
                }
            )
        finally:
            await session.close()
        return build_options(models, model_family)
