"""Core data contracts for Media Forge."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Union


OperationKind = Literal[
    "generate-image",
    "edit-image",
    "generate-video",
    "estimate-video-cost",
    "list-models",
    "get-model",
    "get-balance",
]
MediaKind = Literal["image", "video"]
Network = Literal["fast", "relaxed"]
TokenType = Literal["spark", "sogni"]
JobStatus = Literal["completed", "partial", "failed"]

JOB_OPERATIONS = frozenset({"generate-image", "edit-image", "generate-video"})
VIDEO_OPERATIONS = frozenset({"generate-video", "estimate-video-cost"})


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str
    app_id: Optional[str] = None


@dataclass(frozen=True)
class Identity:
    """Capability token naming one connection at the remote service."""

    value: str
    source: Literal["override", "generated"] = "generated"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class BinaryAsset:
    property_name: str
    data: bytes
    mime_type: Optional[str] = None
    file_name: Optional[str] = None


BinaryInput = Union[bytes, BinaryAsset]


@dataclass
class ItemInput:
    parameters: Mapping[str, Any] = field(default_factory=dict)
    binary: Mapping[str, BinaryInput] = field(default_factory=dict)


@dataclass(frozen=True)
class ParameterLayer:
    name: str
    values: Mapping[str, Any]


@dataclass(frozen=True)
class ControlNetSettings:
    name: str
    image_property: str
    strength: float
    mode: str
    guidance_start: float
    guidance_end: float


@dataclass(frozen=True)
class VideoReferences:
    image_property: Optional[str] = None
    end_image_property: Optional[str] = None
    audio_property: Optional[str] = None
    video_property: Optional[str] = None


@dataclass
class ResolvedRequest:
    kind: OperationKind
    model_id: str
    positive_prompt: str
    negative_prompt: str
    style_prompt: str
    steps: int
    guidance: float
    seed: Optional[int]
    number_of_media: int
    network: Network
    token_type: TokenType
    timeout_ms: int
    output_format: str
    download: bool
    width: Optional[int] = None
    height: Optional[int] = None
    size_preset: Optional[str] = None
    frames: Optional[int] = None
    fps: Optional[int] = None
    control_net: Optional[ControlNetSettings] = None
    context_image_properties: Sequence[str] = ()
    video_references: Optional[VideoReferences] = None

    @property
    def media_kind(self) -> MediaKind:
        return "video" if self.kind in VIDEO_OPERATIONS else "image"


@dataclass
class JobSummary:
    id: Optional[str]
    status: Optional[str]


@dataclass
class JobResult:
    status: JobStatus
    project_id: Optional[str]
    result_urls: List[str] = field(default_factory=list)
    jobs: Optional[List[JobSummary]] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    completed: bool = False


@dataclass
class CostEstimate:
    token: Optional[float] = None
    usd: Optional[float] = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Artifact:
    slot: str
    index: int
    url: str
    data: bytes
    content_type: str
    filename: str


@dataclass
class DownloadFailure:
    index: int
    url: str
    message: str
    status_code: Optional[int] = None


@dataclass
class Materialization:
    artifacts: List[Artifact] = field(default_factory=list)
    failures: List[DownloadFailure] = field(default_factory=list)

    def slots(self) -> Dict[str, Artifact]:
        return {artifact.slot: artifact for artifact in self.artifacts}


@dataclass
class OptionEntry:
    name: str
    value: str
    description: Optional[str] = None


@dataclass
class ItemOutput:
    json: Dict[str, Any]
    binary: Dict[str, Artifact] = field(default_factory=dict)
    item_index: int = 0
