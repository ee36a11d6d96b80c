"""Resolve canonical requests from layered parameter sources."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .capabilities import (
    EDIT_FAST_GUIDANCE,
    EDIT_FAST_STEPS,
    EDIT_STANDARD_GUIDANCE,
    EDIT_STANDARD_STEPS,
    is_fast_variant,
    is_frame_quantized,
    quantize_frames,
)
from .contracts import (
    ControlNetSettings,
    OperationKind,
    ParameterLayer,
    ResolvedRequest,
    VideoReferences,
)
from .errors import InvalidRequestError
from .utils import is_defined


_MISSING = object()

NETWORKS = ("fast", "relaxed")
TOKEN_TYPES = ("spark", "sogni")

# (fast, relaxed) timeout defaults in milliseconds.
IMAGE_TIMEOUTS_MS = (60_000, 600_000)
VIDEO_TIMEOUTS_MS = (120_000, 1_200_000)

DEFAULT_STEPS = 20
DEFAULT_GUIDANCE = 7.5
DEFAULT_FRAMES = 30
DEFAULT_FPS = 30
DEFAULT_VIDEO_SIZE = 512

_CONTAINERS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "generate-image": (
        "additionalFields",
        ("generationSettings", "output", "advanced", "controlNet"),
    ),
    "edit-image": (
        "imageEditAdditionalFields",
        ("generationSettings", "inputs", "output", "advanced"),
    ),
    "generate-video": (
        "videoAdditionalFields",
        ("videoSettings", "inputs", "workflowControls", "output", "advanced"),
    ),
    "estimate-video-cost": (
        "videoAdditionalFields",
        ("videoSettings", "inputs", "workflowControls", "output", "advanced"),
    ),
}

_MODEL_KEYS = {
    "generate-image": ("modelId",),
    "edit-image": ("imageEditModelId", "modelId"),
    "generate-video": ("videoModelId", "modelId"),
    "estimate-video-cost": ("videoModelId", "modelId"),
}
_PROMPT_KEYS = {
    "generate-image": ("positivePrompt",),
    "edit-image": ("imageEditPrompt", "positivePrompt"),
    "generate-video": ("videoPositivePrompt", "positivePrompt"),
    "estimate-video-cost": ("videoPositivePrompt", "positivePrompt"),
}
_NETWORK_KEYS = {
    "generate-image": ("network",),
    "edit-image": ("imageEditNetwork", "network"),
    "generate-video": ("videoNetwork", "network"),
    "estimate-video-cost": ("videoNetwork", "network"),
}

LayerSource = Union[ParameterLayer, Mapping[str, Any]]


def layers_from_parameters(kind: OperationKind, parameters: Mapping[str, Any]) -> List[ParameterLayer]:
    """Split a host parameter bag into ordered layers, most specific first.

    Top-level fields come first, then each known group of the additional-fields
    collection, then the collection itself as the legacy flat shape.
    """
    if kind not in _CONTAINERS:
        raise InvalidRequestError(f"Operation '{kind}' has no request parameters.")
    container_name, groups = _CONTAINERS[kind]
    container = parameters.get(container_name)
    if not isinstance(container, Mapping) and kind == "edit-image":
        container = parameters.get("additionalFields")
    if not isinstance(container, Mapping):
        container = {}

    top_level = {
        key: value
        for key, value in parameters.items()
        if key not in {"additionalFields", "videoAdditionalFields", "imageEditAdditionalFields"}
    }
    layers = [ParameterLayer(name="parameters", values=top_level)]
    for group in groups:
        values = container.get(group)
        if isinstance(values, Mapping):
            layers.append(ParameterLayer(name=f"{container_name}.{group}", values=values))
    layers.append(ParameterLayer(name=f"{container_name} (legacy)", values=container))
    return layers


def _coerce_layers(sources: Iterable[LayerSource]) -> List[ParameterLayer]:
    layers: List[ParameterLayer] = []
    for idx, source in enumerate(sources):
        if isinstance(source, ParameterLayer):
            layers.append(source)
        elif isinstance(source, Mapping):
            layers.append(ParameterLayer(name=f"source[{idx}]", values=source))
        else:
            raise TypeError(f"Unsupported parameter source: {type(source)}")
    return layers


def _pick(layers: Sequence[ParameterLayer], *keys: str, default: Any = None) -> Any:
    for layer in layers:
        for key in keys:
            if key in layer.values and is_defined(layer.values[key]):
                return layer.values[key]
    return default


def _as_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidRequestError(f"{field_name} must be an integer, got {value!r}.") from exc


def _as_float(value: Any, field_name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidRequestError(f"{field_name} must be a number, got {value!r}.") from exc


_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def _as_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
        raise InvalidRequestError(f"{field_name} must be a boolean, got {value!r}.")
    return bool(value)


def _as_choice(value: Any, choices: Sequence[str], field_name: str) -> str:
    normalized = str(value).strip().lower()
    if normalized not in choices:
        raise InvalidRequestError(
            f"Unsupported {field_name} '{value}'; expected one of {', '.join(choices)}."
        )
    return normalized


def _as_property(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def default_timeout_ms(kind: OperationKind, network: str) -> int:
    fast, relaxed = VIDEO_TIMEOUTS_MS if kind in {"generate-video", "estimate-video-cost"} else IMAGE_TIMEOUTS_MS
    return fast if network == "fast" else relaxed


def edit_defaults(model_id: str) -> Tuple[int, float]:
    if is_fast_variant(model_id):
        return EDIT_FAST_STEPS, EDIT_FAST_GUIDANCE
    return EDIT_STANDARD_STEPS, EDIT_STANDARD_GUIDANCE


def _resolve_control_net(layers: Sequence[ParameterLayer]) -> Optional[ControlNetSettings]:
    if not _as_bool(_pick(layers, "enableControlNet", default=False), "enableControlNet"):
        return None
    return ControlNetSettings(
        name=str(_pick(layers, "controlNetType", default="canny")),
        image_property=str(_pick(layers, "controlNetImageProperty", default="data")),
        strength=_as_float(_pick(layers, "controlNetStrength", default=0.5), "controlNetStrength"),
        mode=str(_pick(layers, "controlNetMode", default="balanced")),
        guidance_start=_as_float(_pick(layers, "controlNetGuidanceStart", default=0), "controlNetGuidanceStart"),
        guidance_end=_as_float(_pick(layers, "controlNetGuidanceEnd", default=1), "controlNetGuidanceEnd"),
    )


def _resolve_context_images(layers: Sequence[ParameterLayer]) -> Tuple[str, ...]:
    properties: List[str] = []
    first = _as_property(_pick(layers, "contextImage1Property", default="data"))
    if first is None:
        raise InvalidRequestError("contextImage1Property must name a binary property.")
    properties.append(first)
    for key in ("contextImage2Property", "contextImage3Property"):
        prop = _as_property(_pick(layers, key))
        if prop is not None:
            properties.append(prop)
    return tuple(properties)


def _resolve_video_references(layers: Sequence[ParameterLayer]) -> Optional[VideoReferences]:
    references = VideoReferences(
        image_property=_as_property(_pick(layers, "referenceImageProperty")),
        end_image_property=_as_property(_pick(layers, "referenceImageEndProperty")),
        audio_property=_as_property(_pick(layers, "referenceAudioProperty")),
        video_property=_as_property(_pick(layers, "referenceVideoProperty")),
    )
    if references == VideoReferences():
        return None
    return references


def resolve_request(kind: OperationKind, sources: Iterable[LayerSource]) -> ResolvedRequest:
    if kind not in _MODEL_KEYS:
        raise InvalidRequestError(f"Operation '{kind}' does not take a generation request.")
    layers = _coerce_layers(sources)
    is_video = kind in {"generate-video", "estimate-video-cost"}

    model_id = str(_pick(layers, *_MODEL_KEYS[kind], default="")).strip()
    if not model_id:
        raise InvalidRequestError(f"A model id is required for {kind}.")

    network = _as_choice(_pick(layers, *_NETWORK_KEYS[kind], default="fast"), NETWORKS, "network")
    token_type = _as_choice(_pick(layers, "tokenType", default="spark"), TOKEN_TYPES, "tokenType")

    timeout_ms = _as_int(_pick(layers, "timeout", "timeoutMs"), "timeout")
    if timeout_ms is None:
        timeout_ms = default_timeout_ms(kind, network)

    if kind == "edit-image":
        default_steps, default_guidance = edit_defaults(model_id)
    else:
        default_steps, default_guidance = DEFAULT_STEPS, DEFAULT_GUIDANCE

    media_keys = ("numberOfMedia", "numberOfVideos") if is_video else ("numberOfMedia", "numberOfImages")
    download_keys = ("downloadVideos", "download") if is_video else ("downloadImages", "download")

    request = ResolvedRequest(
        kind=kind,
        model_id=model_id,
        positive_prompt=str(_pick(layers, *_PROMPT_KEYS[kind], default="")),
        negative_prompt=str(_pick(layers, "negativePrompt", default="")),
        style_prompt=str(_pick(layers, "stylePrompt", default="")),
        steps=_as_int(_pick(layers, "steps", default=default_steps), "steps"),
        guidance=_as_float(_pick(layers, "guidance", default=default_guidance), "guidance"),
        seed=_as_int(_pick(layers, "seed"), "seed"),
        number_of_media=_as_int(_pick(layers, *media_keys, default=1), "numberOfMedia"),
        network=network,
        token_type=token_type,
        timeout_ms=timeout_ms,
        output_format=str(_pick(layers, "outputFormat", default="mp4" if is_video else "png")).lower(),
        download=_as_bool(_pick(layers, *download_keys, default=True), download_keys[0]),
        width=_as_int(_pick(layers, "width", default=DEFAULT_VIDEO_SIZE if is_video else None), "width"),
        height=_as_int(_pick(layers, "height", default=DEFAULT_VIDEO_SIZE if is_video else None), "height"),
    )

    if kind == "generate-image":
        request.size_preset = _as_property(_pick(layers, "sizePreset"))
        request.control_net = _resolve_control_net(layers)
    elif kind == "edit-image":
        request.size_preset = _as_property(_pick(layers, "sizePreset"))
        request.context_image_properties = _resolve_context_images(layers)
    else:
        frames = _as_int(_pick(layers, "frames", default=DEFAULT_FRAMES), "frames")
        if is_frame_quantized(model_id):
            frames = quantize_frames(frames)
        request.frames = frames
        request.fps = _as_int(_pick(layers, "fps", default=DEFAULT_FPS), "fps")
        request.video_references = _resolve_video_references(layers)

    return request


def resolve_from_parameters(kind: OperationKind, parameters: Mapping[str, Any]) -> ResolvedRequest:
    return resolve_request(kind, layers_from_parameters(kind, parameters))
