"""Model family registry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ModelFamily:
    name: str
    keywords: FrozenSet[str] = frozenset()
    prefixes: Tuple[str, ...] = ()
    placeholder: str = "No models available - check back later"

    def matches(self, model: Mapping[str, Any]) -> bool:
        fields = [
            str(model.get(key) or "").lower()
            for key in ("id", "name", "description")
        ]
        for text in fields:
            if any(text.startswith(prefix) for prefix in self.prefixes):
                return True
            if any(keyword in text for keyword in self.keywords):
                return True
        return False


_FAMILIES: Dict[str, ModelFamily] = {
    "video": ModelFamily(
        name="video",
        keywords=frozenset({"video", "vid", "t2v", "i2v", "animation", "motion", "animate"}),
        prefixes=("wan_", "ltx"),
        placeholder="No video models available - check back later",
    ),
    "edit": ModelFamily(
        name="edit",
        keywords=frozenset({"image_edit", "image-edit", "kontext"}),
        prefixes=("qwen_image_edit",),
        placeholder="No image edit models available - check back later",
    ),
    "wan": ModelFamily(
        name="wan",
        prefixes=("wan_", "wan-"),
        placeholder="No Wan models available - check back later",
    ),
}

# Model ids carrying this marker are distilled variants tuned for few steps.
FAST_VARIANT_MARKER = "lightning"

# The Wan family only accepts frame counts of the form 8n+1.
WAN_FRAME_STEP = 8
WAN_MIN_FRAMES = 17

EDIT_FAST_STEPS = 4
EDIT_FAST_GUIDANCE = 1.0
EDIT_STANDARD_STEPS = 20
EDIT_STANDARD_GUIDANCE = 4.0


def get_family(name: str) -> ModelFamily:
    key = name.strip().lower()
    if key not in _FAMILIES:
        raise ValueError(f"Unknown model family '{name}'")
    return _FAMILIES[key]


def is_fast_variant(model_id: Optional[str]) -> bool:
    return FAST_VARIANT_MARKER in (model_id or "").lower()


def is_frame_quantized(model_id: Optional[str]) -> bool:
    return get_family("wan").matches({"id": model_id or ""})


def quantize_frames(frames: int) -> int:
    """Round up to the nearest 8n+1 frame count, never below the family floor."""
    frames = int(frames)
    if frames <= 1:
        quantized = 1
    else:
        quantized = -(-(frames - 1) // WAN_FRAME_STEP) * WAN_FRAME_STEP + 1
    return max(WAN_MIN_FRAMES, quantized)
