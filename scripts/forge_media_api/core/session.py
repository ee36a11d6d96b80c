"""Session ownership of one Supernet connection.

A session binds exactly one transport to one identity and is owned by the call
path that created it (an execution run or a single option lookup). The remote
service keeps one live connection per identity, so a session that is not closed
keeps its identity occupied and a leaked socket can break a later caller.

Lifecycle::

    idle -> connecting -> connected -> shutting_down -> closed
                                                     -> closed_forced

``close()`` is best-effort convergence: it races the graceful disconnect against
a bound, then closes, force-closes and detaches the low-level handle no matter
how the graceful step ended. It never raises, except to pass on cancellation of
the closing task once the teardown has run.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from forge_media_api.transport.base import JobEvent, Transport, TransportFactory
from .contracts import Credentials, Identity
from .errors import ConnectionError, ForgeError, RemoteJobError, SessionStateError, TimeoutError
from .utils import debug_log_identity

logger = logging.getLogger(__name__)

EXECUTION_CLOSE_TIMEOUT_MS = 5000
LOOKUP_CLOSE_TIMEOUT_MS = 2000
DEFAULT_CALL_TIMEOUT_MS = 30_000


class SessionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"
    CLOSED_FORCED = "closed_forced"


_CLOSED_STATES = {SessionState.CLOSED, SessionState.CLOSED_FORCED}


class Session:
    def __init__(
        self,
        transport_factory: TransportFactory,
        credentials: Credentials,
        identity: Identity,
        *,
        label: str = "execute",
        close_timeout_ms: int = EXECUTION_CLOSE_TIMEOUT_MS,
        call_timeout_ms: int = DEFAULT_CALL_TIMEOUT_MS,
    ) -> None:
        self.identity = identity
        self.label = label
        self.close_timeout_ms = close_timeout_ms
        self.call_timeout_ms = call_timeout_ms
        self.created_at = datetime.now(timezone.utc)
        self.state = SessionState.IDLE
        self._credentials = credentials
        self._transport_factory = transport_factory
        self._transport: Optional[Transport] = None

    @property
    def tag(self) -> str:
        return f"{self.label} identity={self.identity.value}"

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    async def __aenter__(self) -> "Session":
        try:
            await self.connect()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def connect(self) -> None:
        if self.state is not SessionState.IDLE:
            raise SessionStateError(f"Cannot connect a session in state '{self.state.value}'.")
        self.state = SessionState.CONNECTING
        debug_log_identity(logger, "connect:start (%s)", self.tag)
        try:
            self._transport = self._transport_factory(self._credentials, self.identity)
            self._transport.add_listener(self._log_event)
            await self._transport.connect()
        except ConnectionError:
            self.state = SessionState.IDLE
            raise
        except Exception as exc:
            self.state = SessionState.IDLE
            raise ConnectionError(f"Failed to connect ({self.tag}): {exc}") from exc
        self.state = SessionState.CONNECTED
        debug_log_identity(logger, "connect:done (%s)", self.tag)

    def _log_event(self, event: JobEvent) -> None:
        logger.debug(
            "Job %s %s progress=%s (%s)", event.project_id, event.type, event.progress, self.tag
        )

    def _require_connected(self, action: str) -> Transport:
        if self.state is not SessionState.CONNECTED or self._transport is None:
            raise SessionStateError(f"Cannot {action}: session is {self.state.value}.")
        return self._transport

    async def _await_terminal(self, transport: Transport, kind: str, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        event: Optional[JobEvent] = None
        async for event in transport.submit(kind, payload):
            if event.type == "completed":
                return event.result
            if event.type == "failed":
                raise RemoteJobError(event.message or "Remote job failed.", event.data)
        project = event.project_id if event is not None else None
        raise RemoteJobError(f"Job stream for project {project} ended without a terminal state.")

    async def submit(self, kind: str, payload: Mapping[str, Any], *, timeout_ms: int) -> Mapping[str, Any]:
        """Submit a job and wait for its terminal event.

        Raises ``TimeoutError`` when ``timeout_ms`` elapses first; the session stays
        connected so the caller can retry or move on.
        """
        transport = self._require_connected("submit")
        started = time.monotonic()
        try:
            return await asyncio.wait_for(
                self._await_terminal(transport, kind, payload),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError as exc:
            if isinstance(exc, ForgeError):
                raise
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise TimeoutError(
                f"{kind} did not complete within {timeout_ms}ms",
                timeout_ms=timeout_ms,
                elapsed_ms=elapsed_ms,
            ) from exc

    async def _call(self, action: str, coro_factory) -> Any:
        transport = self._require_connected(action)
        started = time.monotonic()
        try:
            return await asyncio.wait_for(coro_factory(transport), timeout=self.call_timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            if isinstance(exc, ForgeError):
                raise
            elapsed_ms = int((time.monotonic() - started) * 1000)
            raise TimeoutError(
                f"{action} did not complete within {self.call_timeout_ms}ms",
                timeout_ms=self.call_timeout_ms,
                elapsed_ms=elapsed_ms,
            ) from exc

    async def estimate_cost(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self._call("estimate cost", lambda t: t.estimate_cost(payload))

    async def list_models(self, filters: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        return await self._call("list models", lambda t: t.list_models(filters))

    async def get_model(self, model_id: str) -> Mapping[str, Any]:
        return await self._call("get model", lambda t: t.get_model(model_id))

    async def get_balance(self) -> Mapping[str, Any]:
        return await self._call("get balance", lambda t: t.get_balance())

    async def close(self, timeout_ms: Optional[int] = None) -> None:
        """Close the session; idempotent, and raises only to propagate cancellation."""
        if self.state in _CLOSED_STATES:
            return
        bound_ms = timeout_ms if timeout_ms and timeout_ms > 0 else self.close_timeout_ms
        self.state = SessionState.SHUTTING_DOWN
        transport = self._transport
        forced = False

        try:
            if transport is not None:
                debug_log_identity(logger, "disconnect:start (%s)", self.tag)
                await asyncio.wait_for(transport.disconnect(), timeout=bound_ms / 1000)
                debug_log_identity(logger, "disconnect:done (%s)", self.tag)
        except asyncio.TimeoutError:
            forced = True
            logger.warning("Disconnect timed out after %sms (%s)", bound_ms, self.tag)
        except asyncio.CancelledError:
            forced = True
            logger.warning("Disconnect cancelled (%s)", self.tag)
            raise
        except Exception as exc:
            forced = True
            logger.warning("Disconnect failed (%s): %s", self.tag, exc)
        finally:
            if transport is not None:
                self._hard_close(transport)
            self._transport = None
            self.state = SessionState.CLOSED_FORCED if forced else SessionState.CLOSED

    def _hard_close(self, transport: Transport) -> None:
        try:
            handle = transport.handle()
        except Exception as exc:
            logger.warning("Could not obtain transport handle (%s): %s", self.tag, exc)
            return
        if handle is None:
            return

        try:
            already_closed = bool(handle.closed)
        except Exception:
            already_closed = False
        if not already_closed:
            for step in (handle.close, handle.force_close):
                try:
                    step()
                except Exception as exc:
                    logger.warning(
                        "Handle %s failed (%s): %s", getattr(step, "__name__", "close"), self.tag, exc
                    )
        try:
            handle.detach_listeners()
        except Exception as exc:
            logger.warning("Detaching listeners failed (%s): %s", self.tag, exc)
        debug_log_identity(logger, "disconnect:hard-close attempted (%s)", self.tag)
