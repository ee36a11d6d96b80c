"""Supernet transport over an authenticated HTTP session."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence

import requests
from requests.hooks import default_hooks

from forge_media_api.core.contracts import BinaryAsset, Credentials, Identity
from forge_media_api.core.errors import ConnectionError, RemoteJobError, SessionStateError
from .base import JobEvent, JobListener, TransportHandle

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.sogni.ai"
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0
READY_STATUSES = {"completed", "done", "ready"}
FAILURE_STATUSES = {"failed", "error", "canceled", "cancelled", "content moderated"}

LOGIN_PATH = "/v1/account/login"
LOGOUT_PATH = "/v1/account/logout"
BALANCE_PATH = "/v1/account/balance"
PROJECTS_PATH = "/v1/projects"
ESTIMATE_PATH = "/v1/projects/estimate"
MODELS_PATH = "/v1/models"


def _resolve_base_url(base_url: Optional[str]) -> str:
    return (base_url or os.getenv("MEDIA_FORGE_API_URL") or API_BASE_URL).rstrip("/")


def _summarize_error(response: requests.Response) -> str:
    detail = ""
    try:
        detail = json.dumps(response.json(), ensure_ascii=True)
    except ValueError:
        detail = response.text or ""
    detail = detail.strip().replace("\n", " ")
    if len(detail) > 500:
        detail = detail[:500].rstrip() + "..."
    return detail


def _failure_message(response: requests.Response, label: str) -> str:
    parts = [f"Supernet {label} failed ({response.status_code})"]
    detail = _summarize_error(response)
    if detail:
        parts.append(detail)
    return ": ".join(parts)


def _encode_value(value: Any) -> Any:
    if isinstance(value, BinaryAsset):
        encoded: Dict[str, Any] = {"data": base64.b64encode(value.data).decode("ascii")}
        if value.mime_type:
            encoded["mimeType"] = value.mime_type
        if value.file_name:
            encoded["fileName"] = value.file_name
        return encoded
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, Mapping):
        return {str(k): _encode_value(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_encode_value(item) for item in value]
    return value


class _HttpHandle:
    """TransportHandle over a ``requests.Session``."""

    def __init__(self, http: requests.Session, listeners: List[JobListener]) -> None:
        self._http = http
        self._listeners = listeners
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._http.close()
        self._closed = True

    def force_close(self) -> None:
        for adapter in list(self._http.adapters.values()):
            adapter.close()
        # Without mounted adapters any late request fails instead of reopening a pool.
        self._http.adapters.clear()
        self._closed = True

    def detach_listeners(self) -> None:
        self._http.hooks = default_hooks()
        self._listeners.clear()


class SupernetTransport:
    name = "supernet"

    def __init__(
        self,
        credentials: Credentials,
        identity: Identity,
        *,
        base_url: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.credentials = credentials
        self.identity = identity
        self.base_url = _resolve_base_url(base_url)
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._http_factory = http_factory
        self._http: Optional[requests.Session] = None
        self._handle: Optional[_HttpHandle] = None
        self._listeners: List[JobListener] = []

    def handle(self) -> Optional[TransportHandle]:
        return self._handle

    def add_listener(self, listener: JobListener) -> None:
        self._listeners.append(listener)

    def _notify(self, event: JobEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _require_http(self) -> requests.Session:
        if self._http is None:
            raise SessionStateError("Supernet transport is not connected.")
        return self._http

    async def _call(self, method: str, path: str, *, label: str, **kwargs: Any) -> Any:
        http = self._require_http()
        try:
            response = await asyncio.to_thread(
                http.request,
                method,
                f"{self.base_url}{path}",
                timeout=self.request_timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise ConnectionError(f"Supernet {label} failed: {exc}") from exc
        if not response.ok:
            raise RemoteJobError(_failure_message(response, label), {"status_code": response.status_code})
        if not response.content:
            return {}
        return response.json()

    async def connect(self) -> None:
        http = self._http_factory()
        http.headers.update({"accept": "application/json", "X-App-Id": self.identity.value})
        self._http = http
        self._handle = _HttpHandle(http, self._listeners)
        try:
            response = await asyncio.to_thread(
                http.post,
                f"{self.base_url}{LOGIN_PATH}",
                json={
                    "username": self.credentials.username,
                    "password": self.credentials.password,
                    "appId": self.identity.value,
                },
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            raise ConnectionError(f"Supernet connection failed: {exc}") from exc
        if not response.ok:
            raise ConnectionError(_failure_message(response, "login"))
        payload = response.json() if response.content else {}
        token = payload.get("token") or payload.get("accessToken")
        if not token:
            raise ConnectionError("Supernet login response missing access token.")
        http.headers["Authorization"] = f"Bearer {token}"

    async def submit(self, kind: str, payload: Mapping[str, Any]) -> AsyncIterator[JobEvent]:
        body = {"type": kind, **_encode_value(payload)}
        created = await self._call("POST", PROJECTS_PATH, label="submit", json=body)
        project_id = created.get("projectId") or created.get("id")
        if not project_id:
            raise RemoteJobError("Supernet response missing project id.", created)

        while True:
            state = await self._call("GET", f"{PROJECTS_PATH}/{project_id}", label="poll")
            status = str(state.get("status") or "").lower()
            if status in READY_STATUSES:
                event = JobEvent(type="completed", project_id=project_id, result=state)
            elif status in FAILURE_STATUSES:
                message = state.get("error") or state.get("message") or f"Project {project_id} {status}."
                event = JobEvent(type="failed", project_id=project_id, message=str(message), data=state)
            else:
                event = JobEvent(
                    type="progress",
                    project_id=project_id,
                    progress=state.get("progress"),
                    data=state,
                )
            self._notify(event)
            yield event
            if event.terminal:
                return
            await asyncio.sleep(self.poll_interval)

    async def estimate_cost(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self._call("POST", ESTIMATE_PATH, label="estimate", json=_encode_value(payload))

    async def list_models(self, filters: Mapping[str, Any]) -> Sequence[Mapping[str, Any]]:
        params = {key: value for key, value in filters.items() if value is not None}
        payload = await self._call("GET", MODELS_PATH, label="list models", params=params)
        if isinstance(payload, Mapping):
            return list(payload.get("models") or payload.get("data") or [])
        return list(payload or [])

    async def get_model(self, model_id: str) -> Mapping[str, Any]:
        return await self._call("GET", f"{MODELS_PATH}/{model_id}", label="get model")

    async def get_balance(self) -> Mapping[str, Any]:
        return await self._call("GET", BALANCE_PATH, label="balance")

    async def disconnect(self) -> None:
        if self._http is None:
            return
        try:
            await self._call("POST", LOGOUT_PATH, label="logout")
        finally:
            self._http.close()
            if self._handle is not None:
                self._handle.close()
