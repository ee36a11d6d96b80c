"""Error taxonomy for Media Forge."""

from __future__ import annotations

import builtins
from typing import Any, Mapping, Optional


class ForgeError(Exception):
    """Base class for every error raised by this package."""


class ConnectionError(ForgeError, builtins.ConnectionError):
    """Authentication or transport failure while opening a session."""


class TimeoutError(ForgeError, builtins.TimeoutError):
    """A submitted job did not reach a terminal state within its timeout."""

    def __init__(self, message: str, *, timeout_ms: int, elapsed_ms: int) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms


class MissingAssetError(ForgeError):
    """A required binary input is absent from the item's store."""

    def __init__(self, property_name: str, item_index: int) -> None:
        super().__init__(
            f'No binary data found in property "{property_name}" for item {item_index}.'
        )
        self.property_name = property_name
        self.item_index = item_index


class DownloadError(ForgeError):
    def __init__(self, url: str, index: int, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.index = index
        self.status_code = status_code


class RemoteJobError(ForgeError):
    """The remote service reported a failed job."""

    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = dict(details or {})


class InvalidRequestError(ForgeError, ValueError):
    pass


class SessionStateError(ForgeError, RuntimeError):
    pass
