"""Core contracts and helpers."""

from .contracts import Credentials, Identity, ItemInput, ItemOutput, OptionEntry, ResolvedRequest

__all__ = [
    "Credentials",
    "Identity",
    "ItemInput",
    "ItemOutput",
    "OptionEntry",
    "ResolvedRequest",
]
