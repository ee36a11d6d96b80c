"""Transport interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping, Optional, Protocol, Sequence

from forge_media_api.core.contracts import Credentials, Identity


@dataclass
class JobEvent:
    type: str
    project_id: Optional[str] = None
    progress: Optional[float] = None
    result: Mapping[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.type in {"completed", "failed"}


JobListener = Callable[[JobEvent], None]


class TransportHandle(Protocol):
    """Low-level connection owned by a transport.

    Sessions use it to converge to a closed state even when the graceful
    disconnect hangs.
    """

    @property
    def closed(self) -> bool:
        ...

    def close(self) -> None:
        ...

    def force_close(self) -> None:
        ...

    def detach_listeners(self) -> None:
        ...


class Transport(Protocol):
    name: str

    async def connect(self) -> None:
        ...

    def submit(self, kind: str, payload: Mapping[str, Any]) -> AsyncIterator[JobEvent]:
        ...

    async def estimate_cost(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        ...

    async def list_models(self, filters: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        ...

    async def get_model(self, model_id: str) -> Mapping[str, Any]:
        ...

    async def get_balance(self) -> Mapping[str, Any]:
        ...

    async def disconnect(self) -> None:
        ...

    def handle(self) -> Optional[TransportHandle]:
        ...

    def add_listener(self, listener: JobListener) -> None:
        ...


TransportFactory = Callable[[Credentials, Identity], Transport]
