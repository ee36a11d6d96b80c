"""Operation routing and alias normalization."""

from __future__ import annotations

import re
from typing import Dict, Tuple

from .contracts import OperationKind
from .errors import InvalidRequestError


RESOURCE_ALIASES: Dict[str, str] = {
    "image": "image",
    "images": "image",
    "video": "video",
    "videos": "video",
    "model": "model",
    "models": "model",
    "account": "account",
}

OPERATION_ALIASES: Dict[str, str] = {
    "generate": "generate",
    "create": "generate",
    "edit": "edit",
    "estimatecost": "estimate-cost",
    "estimate-cost": "estimate-cost",
    "estimate": "estimate-cost",
    "getall": "get-all",
    "get-all": "get-all",
    "list": "get-all",
    "get": "get",
    "getbalance": "get-balance",
    "get-balance": "get-balance",
    "balance": "get-balance",
}

_ROUTES: Dict[Tuple[str, str], OperationKind] = {
    ("image", "generate"): "generate-image",
    ("image", "edit"): "edit-image",
    ("video", "generate"): "generate-video",
    ("video", "estimate-cost"): "estimate-video-cost",
    ("model", "get-all"): "list-models",
    ("model", "get"): "get-model",
    ("account", "get-balance"): "get-balance",
}


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


def normalize_operation(operation: str) -> str:
    slug = _slug(operation)
    return OPERATION_ALIASES.get(slug, OPERATION_ALIASES.get(slug.replace("-", ""), slug))


def resolve_operation(resource: str | None, operation: str | None) -> OperationKind:
    resource_key = RESOURCE_ALIASES.get(_slug(resource or "image"), _slug(resource or ""))
    operation_key = normalize_operation(operation or "generate")
    kind = _ROUTES.get((resource_key, operation_key))
    if kind is None:
        raise InvalidRequestError(
            f"Unsupported operation '{operation}' for resource '{resource}'."
        )
    return kind
