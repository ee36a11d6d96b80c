"""MEDIA FORGE public surface."""

from .api import (
    edit_image,
    estimate_video_cost,
    execute,
    generate_image,
    generate_video,
    list_model_options,
    run,
)
from .core import Credentials, Identity, ItemInput, ItemOutput, OptionEntry, ResolvedRequest

__all__ = [
    "edit_image",
    "estimate_video_cost",
    "execute",
    "generate_image",
    "generate_video",
    "list_model_options",
    "run",
    "Credentials",
    "Identity",
    "ItemInput",
    "ItemOutput",
    "OptionEntry",
    "ResolvedRequest",
]
