"""Submit canonical requests and normalize remote results."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .contracts import BinaryAsset, CostEstimate, JobResult, JobSummary, ResolvedRequest
from .session import Session
from .utils import first_present

PROJECT_ID_PATHS = ("projectId", "project.id", "id")
IMAGE_URL_KEYS = ("imageUrls", "resultUrls", "urls")
VIDEO_URL_KEYS = ("videoUrls", "resultUrls", "urls")

_META_PATHS = {
    "cost": ("cost", "costTokens", "tokensUsed", "tokenCost", "costInSpark"),
    "queuePosition": ("queuePosition", "queue.position", "position"),
    "workerId": ("workerId", "worker.id"),
    "modelVersion": ("modelVersion", "model.version"),
    "raw": ("meta", "metadata"),
}
_LATENCY_PATHS = {
    "queueMs": ("queueTimeMs", "latencies.queueMs", "metrics.queueTimeMs"),
    "generationMs": ("generationTimeMs", "latencies.generationMs", "metrics.generationTimeMs"),
    "totalMs": ("totalTimeMs", "latencies.totalMs", "metrics.totalTimeMs"),
}


def build_project_payload(request: ResolvedRequest, assets: Mapping[str, BinaryAsset]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "modelId": request.model_id,
        "positivePrompt": request.positive_prompt,
        "negativePrompt": request.negative_prompt,
        "stylePrompt": request.style_prompt,
        "steps": request.steps,
        "guidance": request.guidance,
        "numberOfMedia": request.number_of_media,
        "network": request.network,
        "tokenType": request.token_type,
        "outputFormat": request.output_format,
        "sizePreset": request.size_preset,
        "width": request.width,
        "height": request.height,
        "seed": request.seed,
        "waitForCompletion": True,
        "timeout": request.timeout_ms,
    }
    if request.frames is not None:
        payload["frames"] = request.frames
        payload["fps"] = request.fps

    if request.control_net is not None:
        cn = request.control_net
        payload["controlNet"] = {
            "name": cn.name,
            "image": assets.get("controlNet"),
            "strength": cn.strength,
            "mode": cn.mode,
            "guidanceStart": cn.guidance_start,
            "guidanceEnd": cn.guidance_end,
        }

    context_images = [
        assets[f"contextImage{idx}"] for idx in (1, 2, 3) if f"contextImage{idx}" in assets
    ]
    if context_images:
        payload["contextImages"] = context_images

    for role in ("referenceImage", "referenceImageEnd", "referenceAudio", "referenceVideo"):
        if role in assets:
            payload[role] = assets[role]
    return payload


def _summarize_jobs(raw_jobs: Any) -> Optional[List[JobSummary]]:
    if not isinstance(raw_jobs, list):
        return None
    summaries: List[JobSummary] = []
    for job in raw_jobs:
        if isinstance(job, Mapping):
            summaries.append(JobSummary(id=job.get("id"), status=job.get("status")))
        else:
            summaries.append(JobSummary(id=getattr(job, "id", None), status=getattr(job, "status", None)))
    return summaries


def extract_meta(raw: Mapping[str, Any]) -> Dict[str, Any]:
    meta: Dict[str, Any] = {}
    for key, paths in _META_PATHS.items():
        value = first_present(raw, paths)
        if value is not None:
            meta[key] = value
    latencies = {
        key: value
        for key, value in ((k, first_present(raw, p)) for k, p in _LATENCY_PATHS.items())
        if value is not None
    }
    if latencies:
        meta["latencies"] = latencies
    return meta


def normalize_result(raw: Mapping[str, Any], request: ResolvedRequest) -> JobResult:
    url_keys = VIDEO_URL_KEYS if request.media_kind == "video" else IMAGE_URL_KEYS
    urls: List[str] = []
    for key in url_keys:
        value = raw.get(key)
        if isinstance(value, list):
            urls = [str(url) for url in value if url]
            break

    completed = raw.get("completed")
    if completed is None:
        completed = str(raw.get("status") or "").lower() == "completed"
    completed = bool(completed)

    if completed:
        status = "completed"
    elif urls:
        status = "partial"
    else:
        status = "failed"

    project_id = first_present(raw, PROJECT_ID_PATHS)
    return JobResult(
        status=status,
        project_id=str(project_id) if project_id is not None else None,
        result_urls=urls,
        jobs=_summarize_jobs(raw.get("jobs")),
        meta=extract_meta(raw),
        completed=completed,
    )


class JobSubmitter:
    def __init__(self, session: Session) -> None:
        self.session = session

    async def submit(self, request: ResolvedRequest, assets: Mapping[str, BinaryAsset]) -> JobResult:
        payload = build_project_payload(request, assets)
        raw = await self.session.submit(request.media_kind, payload, timeout_ms=request.timeout_ms)
        return normalize_result(raw, request)

    async def estimate(self, request: ResolvedRequest) -> CostEstimate:
        payload = build_project_payload(request, {})
        payload.pop("waitForCompletion", None)
        payload["type"] = request.media_kind
        raw = await self.session.estimate_cost(payload)
        token = first_present(raw, ("token", "tokens", "costInSpark", "cost"))
        usd = first_present(raw, ("usd", "costInUSD", "usdCost"))
        return CostEstimate(
            token=float(token) if token is not None else None,
            usd=float(usd) if usd is not None else None,
            raw=raw,
        )
