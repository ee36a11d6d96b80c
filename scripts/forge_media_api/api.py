"""Public API for Media Forge."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from forge_media_api.core.artifacts import ArtifactMaterializer
from forge_media_api.core.assets import AssetResolver
from forge_media_api.core.capabilities import ModelFamily
from forge_media_api.core.contracts import (
    JOB_OPERATIONS,
    BinaryInput,
    Credentials,
    ItemInput,
    ItemOutput,
    OperationKind,
    OptionEntry,
    ResolvedRequest,
)
from forge_media_api.core.errors import InvalidRequestError
from forge_media_api.core.identity import allocate_identity
from forge_media_api.core.options import ModelOptionProvider
from forge_media_api.core.router import resolve_operation
from forge_media_api.core.session import EXECUTION_CLOSE_TIMEOUT_MS, Session
from forge_media_api.core.solver import resolve_from_parameters
from forge_media_api.core.submitter import JobSubmitter
from forge_media_api.core.utils import debug_log_identity, load_credentials
from forge_media_api.transport import TransportFactory, get_transport_factory

logger = logging.getLogger(__name__)


def _resolved_echo(request: ResolvedRequest) -> Dict[str, Any]:
    echo: Dict[str, Any] = {
        "steps": request.steps,
        "guidance": request.guidance,
        "numberOfMedia": request.number_of_media,
        "timeoutMs": request.timeout_ms,
    }
    if request.frames is not None:
        echo["frames"] = request.frames
        echo["fps"] = request.fps
    return echo


def _model_record(model: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": model.get("id"),
        "name": model.get("name"),
        "workerCount": model.get("workerCount"),
        "recommendedSettings": model.get("recommendedSettings"),
    }


async def _run_job(
    kind: OperationKind,
    index: int,
    item: ItemInput,
    *,
    session: Session,
    assets: AssetResolver,
    materializer: ArtifactMaterializer,
) -> ItemOutput:
    request = resolve_from_parameters(kind, item.parameters)
    bindings = assets.resolve_bindings(index, request)
    result = await JobSubmitter(session).submit(request, bindings)

    payload: Dict[str, Any] = {
        "projectId": result.project_id,
        "modelId": request.model_id,
        "prompt": request.positive_prompt,
        "resultUrls": list(result.result_urls),
        "completed": result.completed,
        "status": result.status,
        "meta": {
            "network": request.network,
            "tokenType": request.token_type,
            "resolved": _resolved_echo(request),
            **result.meta,
        },
    }
    if result.jobs is not None:
        payload["jobs"] = [{"id": job.id, "status": job.status} for job in result.jobs]

    output = ItemOutput(json=payload, item_index=index)
    if request.download and result.result_urls:
        batch = await materializer.materialize(
            result.result_urls,
            request.media_kind,
            base_name=result.project_id,
            output_format=request.output_format,
        )
        output.binary = batch.slots()
        if batch.failures:
            payload["downloadFailures"] = [
                {
                    "index": failure.index,
                    "url": failure.url,
                    "error": failure.message,
                    "statusCode": failure.status_code,
                }
                for failure in batch.failures
            ]
    return output


async def _run_item(
    index: int,
    item: ItemInput,
    *,
    session: Session,
    assets: AssetResolver,
    materializer: ArtifactMaterializer,
) -> List[ItemOutput]:
    params = item.parameters
    kind = resolve_operation(params.get("resource"), params.get("operation"))

    if kind in JOB_OPERATIONS:
        output = await _run_job(
            kind, index, item, session=session, assets=assets, materializer=materializer
        )
        return [output]

    if kind == "estimate-video-cost":
        request = resolve_from_parameters(kind, params)
        estimate = await JobSubmitter(session).estimate(request)
        return [
            ItemOutput(
                json={
                    "modelId": request.model_id,
                    "network": request.network,
                    "tokenType": request.token_type,
                    "frames": request.frames,
                    "fps": request.fps,
                    "estimate": {"token": estimate.token, "usd": estimate.usd, "raw": dict(estimate.raw)},
                },
                item_index=index,
            )
        ]

    if kind == "list-models":
        options = params.get("options") or {}
        models = await session.list_models(
            {
                "sortByWorkers": options.get("sortByWorkers") is not False,
                "minWorkers": options.get("minWorkers") or 0,
            }
        )
        return [ItemOutput(json=_model_record(model), item_index=index) for model in models]

    if kind == "get-model":
        model_id = str(params.get("modelId") or "").strip()
        if not model_id:
            raise InvalidRequestError("A model id is required for get-model.")
        model = await session.get_model(model_id)
        return [ItemOutput(json=_model_record(model), item_index=index)]

    balance = await session.get_balance()
    return [ItemOutput(json={"sogni": balance.get("sogni"), "spark": balance.get("spark")}, item_index=index)]


async def execute(
    items: Sequence[ItemInput],
    credentials: Optional[Credentials] = None,
    *,
    continue_on_fail: bool = False,
    transport_factory: Optional[TransportFactory] = None,
    materializer: Optional[ArtifactMaterializer] = None,
) -> List[ItemOutput]:
    """Run every item in order over one session, closing it on every path.

    With ``continue_on_fail`` a failing item yields ``{"error": message}`` and the
    run moves on; otherwise the first failure aborts the remaining items.
    """
    credentials = credentials or load_credentials()
    factory = transport_factory or get_transport_factory()
    identity = allocate_identity(credentials.app_id)
    debug_log_identity(
        logger, "execute identity=%s source=%s items=%d", identity.value, identity.source, len(items)
    )

    session = Session(
        factory,
        credentials,
        identity,
        label="execute",
        close_timeout_ms=EXECUTION_CLOSE_TIMEOUT_MS,
    )
    assets = AssetResolver(items)
    materializer = materializer or ArtifactMaterializer()
    outputs: List[ItemOutput] = []
    try:
        await session.connect()
        for index, item in enumerate(items):
            try:
                outputs.extend(
                    await _run_item(
                        index, item, session=session, assets=assets, materializer=materializer
                    )
                )
            except Exception as exc:
                if not continue_on_fail:
                    raise
                logger.warning("Item %d failed: %s", index, exc)
                outputs.append(ItemOutput(json={"error": str(exc) or "Unknown error"}, item_index=index))
    finally:
        await session.close()
    return outputs


def run(
    items: Sequence[ItemInput],
    credentials: Optional[Credentials] = None,
    *,
    continue_on_fail: bool = False,
    transport_factory: Optional[TransportFactory] = None,
) -> List[ItemOutput]:
    return asyncio.run(
        execute(
            items,
            credentials,
            continue_on_fail=continue_on_fail,
            transport_factory=transport_factory,
        )
    )


def _single(
    parameters: Dict[str, Any],
    binary: Optional[Mapping[str, BinaryInput]],
    credentials: Optional[Credentials],
    transport_factory: Optional[TransportFactory],
) -> ItemOutput:
    outputs = run(
        [ItemInput(parameters=parameters, binary=dict(binary or {}))],
        credentials,
        transport_factory=transport_factory,
    )
    return outputs[0]


def generate_image(
    *,
    model_id: str,
    prompt: str,
    network: str = "fast",
    options: Optional[Mapping[str, Any]] = None,
    binary: Optional[Mapping[str, BinaryInput]] = None,
    credentials: Optional[Credentials] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> ItemOutput:
    parameters = {
        "resource": "image",
        "operation": "generate",
        "modelId": model_id,
        "positivePrompt": prompt,
        "network": network,
        "additionalFields": dict(options or {}),
    }
    return _single(parameters, binary, credentials, transport_factory)


def edit_image(
    *,
    model_id: str,
    prompt: str,
    context_images: Sequence[bytes],
    network: str = "fast",
    options: Optional[Mapping[str, Any]] = None,
    credentials: Optional[Credentials] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> ItemOutput:
    binary = {f"context{idx + 1}": data for idx, data in enumerate(context_images[:3])}
    parameters: Dict[str, Any] = {
        "resource": "image",
        "operation": "edit",
        "imageEditModelId": model_id,
        "imageEditPrompt": prompt,
        "imageEditNetwork": network,
        "imageEditAdditionalFields": dict(options or {}),
    }
    for prop in binary:
        parameters[f"contextImage{prop[-1]}Property"] = prop
    return _single(parameters, binary, credentials, transport_factory)


def generate_video(
    *,
    model_id: str,
    prompt: str,
    network: str = "fast",
    options: Optional[Mapping[str, Any]] = None,
    binary: Optional[Mapping[str, BinaryInput]] = None,
    credentials: Optional[Credentials] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> ItemOutput:
    parameters = {
        "resource": "video",
        "operation": "generate",
        "videoModelId": model_id,
        "videoPositivePrompt": prompt,
        "videoNetwork": network,
        "videoAdditionalFields": dict(options or {}),
    }
    return _single(parameters, binary, credentials, transport_factory)


def estimate_video_cost(
    *,
    model_id: str,
    network: str = "fast",
    options: Optional[Mapping[str, Any]] = None,
    credentials: Optional[Credentials] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> ItemOutput:
    parameters = {
        "resource": "video",
        "operation": "estimateCost",
        "videoModelId": model_id,
        "videoNetwork": network,
        "videoAdditionalFields": dict(options or {}),
    }
    return _single(parameters, None, credentials, transport_factory)


async def list_model_options(
    search_text: str = "",
    family: str | ModelFamily | None = None,
    *,
    credentials: Optional[Credentials] = None,
    transport_factory: Optional[TransportFactory] = None,
) -> List[OptionEntry]:
    provider = ModelOptionProvider(
        credentials or load_credentials(),
        transport_factory or get_transport_factory(),
    )
    return await provider.list(search_text, family)
