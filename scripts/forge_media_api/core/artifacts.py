"""Download result URLs into named output slots."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional, Sequence
from urllib.parse import unquote

import requests

from .contracts import Artifact, DownloadFailure, Materialization, MediaKind
from .errors import DownloadError

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_TIMEOUT = 60.0
OCTET_STREAM = "application/octet-stream"

_PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
_JPEG_SIGNATURE = b"\xff\xd8\xff"
_GIF_SIGNATURES = (b"GIF87a", b"GIF89a")

_EXTENDED_FILENAME_RE = re.compile(r"filename\*\s*=\s*UTF-8''([^;]+)", re.IGNORECASE)
_QUOTED_FILENAME_RE = re.compile(r'filename\s*=\s*"([^"]+)"', re.IGNORECASE)
_BARE_FILENAME_RE = re.compile(r"filename\s*=\s*([^;]+)", re.IGNORECASE)

_FALLBACK_BASE = {"image": "media", "video": "media_video"}


def sniff_mime_type(data: bytes) -> Optional[str]:
    if not data or len(data) < 4:
        return None
    if data.startswith(_JPEG_SIGNATURE):
        return "image/jpeg"
    if data.startswith(_PNG_SIGNATURE):
        return "image/png"
    if data[:6] in _GIF_SIGNATURES:
        return "image/gif"
    return None


def extension_from_mime(mime_type: Optional[str], fallback: str = "bin") -> str:
    if mime_type:
        mime = mime_type.lower()
        if mime in {"image/jpeg", "image/jpg"}:
            return "jpg"
        if mime in {"image/png", "image/gif", "image/webp"}:
            return mime.split("/", 1)[1]
        if mime.startswith("video/"):
            return mime.split("/", 1)[1]
    return fallback


def _safe_filename(name: str) -> Optional[str]:
    """Keep only the final path component of a server-supplied name."""
    base = name.replace("\\", "/").rsplit("/", 1)[-1].strip()
    if base in {"", ".", ".."}:
        return None
    return base


def parse_content_disposition_filename(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    match = _EXTENDED_FILENAME_RE.search(header)
    if match:
        return _safe_filename(unquote(match.group(1)))
    match = _QUOTED_FILENAME_RE.search(header) or _BARE_FILENAME_RE.search(header)
    if match:
        return _safe_filename(match.group(1).replace('"', ""))
    return None


def slot_name(kind: MediaKind, index: int) -> str:
    return kind if index == 0 else f"{kind}_{index}"


def resolve_content_type(
    declared: Optional[str],
    data: bytes,
    kind: MediaKind,
    output_format: Optional[str] = None,
) -> str:
    if declared:
        media_type = declared.split(";", 1)[0].strip().lower()
        if media_type:
            return media_type
    sniffed = sniff_mime_type(data)
    if sniffed:
        return sniffed
    if kind == "video":
        return f"video/{output_format or 'mp4'}"
    return OCTET_STREAM


class ArtifactMaterializer:
    def __init__(
        self,
        http: Optional[requests.Session] = None,
        *,
        timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
    ) -> None:
        self._http = http
        self.timeout = timeout

    async def materialize(
        self,
        urls: Sequence[str],
        kind_hint: MediaKind,
        *,
        base_name: Optional[str] = None,
        output_format: Optional[str] = None,
    ) -> Materialization:
        """Fetch every URL; a failed download is recorded and the batch continues."""
        batch = Materialization()
        if not urls:
            return batch
        http = self._http or requests.Session()
        try:
            for index, url in enumerate(urls):
                try:
                    artifact = await self._fetch(
                        http, index, url, kind_hint, base_name=base_name, output_format=output_format
                    )
                except DownloadError as exc:
                    logger.warning("Failed to download %s %s from %s: %s", kind_hint, index, url, exc)
                    batch.failures.append(
                        DownloadFailure(index=index, url=url, message=str(exc), status_code=exc.status_code)
                    )
                    continue
                batch.artifacts.append(artifact)
        finally:
            if self._http is None:
                http.close()
        return batch

    async def _fetch(
        self,
        http: requests.Session,
        index: int,
        url: str,
        kind: MediaKind,
        *,
        base_name: Optional[str],
        output_format: Optional[str],
    ) -> Artifact:
        try:
            response = await asyncio.to_thread(http.get, url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise DownloadError(url, index, f"Failed to download {kind}: {exc}") from exc
        if not response.ok:
            raise DownloadError(
                url,
                index,
                f"Failed to download {kind}: {response.status_code} {response.reason or ''}".rstrip(),
                status_code=response.status_code,
            )

        data = response.content or b""
        content_type = resolve_content_type(
            response.headers.get("content-type"), data, kind, output_format
        )
        filename = parse_content_disposition_filename(response.headers.get("content-disposition"))
        if not filename:
            fallback_ext = (output_format or "mp4") if kind == "video" else "bin"
            ext = extension_from_mime(content_type, fallback_ext)
            filename = f"{base_name or _FALLBACK_BASE[kind]}_{index}.{ext}"

        return Artifact(
            slot=slot_name(kind, index),
            index=index,
            url=url,
            data=data,
            content_type=content_type,
            filename=filename,
        )
