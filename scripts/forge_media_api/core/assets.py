"""Resolve named binary inputs from per-item stores."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from .contracts import BinaryAsset, BinaryInput, ItemInput, ResolvedRequest
from .errors import MissingAssetError


class AssetResolver:
    def __init__(self, items: Sequence[ItemInput]) -> None:
        self._items = items

    def resolve(self, item_index: int, property_name: str, required: bool = True) -> Optional[BinaryAsset]:
        store = self._items[item_index].binary if 0 <= item_index < len(self._items) else {}
        entry: Optional[BinaryInput] = store.get(property_name) if property_name else None
        if entry is None:
            if required:
                raise MissingAssetError(property_name, item_index)
            return None
        if isinstance(entry, BinaryAsset):
            return entry
        if isinstance(entry, (bytes, bytearray, memoryview)):
            return BinaryAsset(property_name=property_name, data=bytes(entry))
        raise TypeError(f"Unsupported binary entry for '{property_name}': {type(entry)}")

    def resolve_bindings(self, item_index: int, request: ResolvedRequest) -> Dict[str, BinaryAsset]:
        """Return role -> asset for every binding the request declares."""
        bindings: Dict[str, BinaryAsset] = {}

        if request.control_net is not None:
            bindings["controlNet"] = self.resolve(item_index, request.control_net.image_property)

        for idx, prop in enumerate(request.context_image_properties):
            asset = self.resolve(item_index, prop, required=idx == 0)
            if asset is not None:
                bindings[f"contextImage{idx + 1}"] = asset

        refs = request.video_references
        if refs is not None:
            for role, prop in (
                ("referenceImage", refs.image_property),
                ("referenceImageEnd", refs.end_image_property),
                ("referenceAudio", refs.audio_property),
                ("referenceVideo", refs.video_property),
            ):
                if prop is None:
                    continue
                asset = self.resolve(item_index, prop, required=False)
                if asset is not None:
                    bindings[role] = asset
        return bindings
