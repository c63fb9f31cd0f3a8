"""
Computing and sanitizing the patches from the desired to the live objects.
"""
from collections.abc import Mapping
from typing import Any

from steward._cogs.structs import patches, references, strategic
from steward._core.apply import ownership, snapshots

# The fields which are never patched: they are either the identity or server-managed.
IGNORED_FIELDS = ('kind', 'apiVersion', 'status')


def create_patch(
        gvk: references.GVK,
        original: Mapping[str, Any] | None,
        modified: Mapping[str, Any],
        current: Mapping[str, Any],
) -> tuple[patches.PatchType, dict[str, Any]]:
    """
    Build a three-way patch as ``kubectl apply`` does.

    The built-in resource kinds are patched with the strategic merge patches,
    all other kinds (e.g. the custom resources) with the JSON merge patches.
    """
    patch_type = strategic.patch_type_for(gvk)
    if patch_type == patches.PatchType.STRATEGIC:
        patch = strategic.create_three_way_strategic_patch(gvk, original, modified, current)
    else:
        patch = patches.create_three_way_merge_patch(original, modified, current)
    return patch_type, patch


def sanitize_patch(
        patch: Mapping[str, Any],
        keys: ownership.AnnotationKeys,
) -> dict[str, Any]:
    """
    Remove the unpatchable fields; return an empty patch if there is nothing else to patch.

    A patch of the applied snapshot alone is considered empty: the snapshot
    can differ due to the changes in serialization, not in the content.
    """
    data = dict(patch)
    for field in IGNORED_FIELDS:
        data.pop(field, None)
    if isinstance(data.get('metadata'), Mapping):
        data['metadata'] = dict(data['metadata'])
        snapshots.remove_metadata_fields(data)

    if empty_maps(data, 'metadata', 'annotations'):
        return {}
    if empty_maps(data, 'metadata', 'annotations', keys.applied):
        return {}
    return data


def empty_maps(data: Any, *keys: str) -> bool:
    """
    Check if the dict has nothing but the nested chain of single keys.

    E.g., ``{"metadata": {"annotations": {}}}`` is empty for the keys
    ``metadata`` & ``annotations``, but ``{"metadata": {"labels": {}}}`` is not.
    A non-dict at the end of the chain is also considered empty.
    """
    for key in keys:
        if not isinstance(data, Mapping) or not data:
            return True
        if len(data) > 1 or key not in data:
            return False
        data = data[key]
    return not isinstance(data, Mapping) or not data
