"""Identity allocation.

The Supernet keeps one live connection per identity: opening a second connection
under the same value silently drops the first one's event stream. Every call site
that opens a session gets its identity from here.

- Execution runs use ``EXECUTION_NAMESPACE`` and honor an explicit override.
- Option lookups use ``LOOKUP_NAMESPACE`` and never honor an override, so an editor
  refreshing a model list cannot evict a running execution.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from .contracts import Identity
from .utils import debug_log_identity

logger = logging.getLogger(__name__)

EXECUTION_NAMESPACE = "media-forge"
LOOKUP_NAMESPACE = "media-forge-lookup"


def normalize_override(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def allocate_identity(
    explicit_override: Optional[str] = None,
    namespace: str = EXECUTION_NAMESPACE,
) -> Identity:
    override = normalize_override(explicit_override)
    if override is not None:
        identity = Identity(value=override, source="override")
    else:
        identity = Identity(value=f"{namespace}-{uuid.uuid4()}", source="generated")
    debug_log_identity(logger, "allocate identity=%s source=%s", identity.value, identity.source)
    return identity


def allocate_lookup_identity() -> Identity:
    return allocate_identity(None, namespace=LOOKUP_NAMESPACE)
