"""
Strategic merge patches for the built-in resource kinds.

A strategic merge patch is a JSON merge patch, except that some lists
are merged by the "merge keys" of their items instead of being replaced
as a whole: e.g. the containers of a pod are matched by their names,
so a patch to one container's image does not drop the other containers.
The deleted items of such lists are marked with ``{"$patch": "delete"}``.

Only the built-in resource kinds support the strategic merge patches.
The merge keys are declared statically per kind and per field path
(the list indices are not part of the paths). The paths not declared
are treated as in the JSON merge patches (lists are atomic).
"""
import copy
from collections.abc import Mapping
from typing import Any

from steward._cogs.structs import patches, references

FieldPath = tuple[str, ...]

DIRECTIVE = '$patch'
DELETE = 'delete'

_CONTAINER_KEYS: dict[FieldPath, str] = {
    ('env',): 'name',
    ('ports',): 'containerPort',
    ('volumeMounts',): 'mountPath',
    ('volumeDevices',): 'devicePath',
}

_POD_SPEC_KEYS: dict[FieldPath, str] = {
    ('containers',): 'name',
    ('initContainers',): 'name',
    ('ephemeralContainers',): 'name',
    ('volumes',): 'name',
    ('imagePullSecrets',): 'name',
    ('hostAliases',): 'ip',
    ('topologySpreadConstraints',): 'topologyKey',
    **{('containers', *path): key for path, key in _CONTAINER_KEYS.items()},
    **{('initContainers', *path): key for path, key in _CONTAINER_KEYS.items()},
    **{('ephemeralContainers', *path): key for path, key in _CONTAINER_KEYS.items()},
}

_METADATA_KEYS: dict[FieldPath, str] = {
    ('metadata', 'ownerReferences'): 'uid',
}


def _pod_spec_at(*prefix: str) -> dict[FieldPath, str]:
    return {
        **_METADATA_KEYS,
        **{(*prefix, *path): key for path, key in _POD_SPEC_KEYS.items()},
    }


# The registry of the built-in kinds: GVK -> field path -> merge key.
MERGE_KEYS: dict[references.GVK, dict[FieldPath, str]] = {
    references.GVK('', 'v1', 'ConfigMap'): dict(_METADATA_KEYS),
    references.GVK('', 'v1', 'Secret'): dict(_METADATA_KEYS),
    references.GVK('', 'v1', 'ServiceAccount'): {
        **_METADATA_KEYS,
        ('secrets',): 'name',
        ('imagePullSecrets',): 'name',
    },
    references.GVK('', 'v1', 'Namespace'): dict(_METADATA_KEYS),
    references.GVK('', 'v1', 'PersistentVolumeClaim'): dict(_METADATA_KEYS),
    references.GVK('', 'v1', 'PersistentVolume'): dict(_METADATA_KEYS),
    references.GVK('', 'v1', 'Endpoints'): dict(_METADATA_KEYS),
    references.GVK('', 'v1', 'Service'): {
        **_METADATA_KEYS,
        ('spec', 'ports'): 'port',
    },
    references.GVK('', 'v1', 'Pod'): _pod_spec_at('spec'),
    references.GVK('apps', 'v1', 'Deployment'): _pod_spec_at('spec', 'template', 'spec'),
    references.GVK('apps', 'v1', 'StatefulSet'): _pod_spec_at('spec', 'template', 'spec'),
    references.GVK('apps', 'v1', 'DaemonSet'): _pod_spec_at('spec', 'template', 'spec'),
    references.GVK('apps', 'v1', 'ReplicaSet'): _pod_spec_at('spec', 'template', 'spec'),
    references.GVK('batch', 'v1', 'Job'): _pod_spec_at('spec', 'template', 'spec'),
    references.GVK('batch', 'v1', 'CronJob'): _pod_spec_at('spec', 'jobTemplate', 'spec', 'template', 'spec'),
    references.GVK('rbac.authorization.k8s.io', 'v1', 'Role'): dict(_METADATA_KEYS),
    references.GVK('rbac.authorization.k8s.io', 'v1', 'RoleBinding'): dict(_METADATA_KEYS),
    references.GVK('rbac.authorization.k8s.io', 'v1', 'ClusterRole'): dict(_METADATA_KEYS),
    references.GVK('rbac.authorization.k8s.io', 'v1', 'ClusterRoleBinding'): dict(_METADATA_KEYS),
    references.GVK('networking.k8s.io', 'v1', 'Ingress'): dict(_METADATA_KEYS),
    references.GVK('networking.k8s.io', 'v1', 'NetworkPolicy'): dict(_METADATA_KEYS),
    references.GVK('policy', 'v1', 'PodDisruptionBudget'): dict(_METADATA_KEYS),
}


def is_strategic(gvk: references.GVK) -> bool:
    return gvk in MERGE_KEYS


def patch_type_for(gvk: references.GVK) -> patches.PatchType:
    return patches.PatchType.STRATEGIC if is_strategic(gvk) else patches.PatchType.MERGE


def create_three_way_strategic_patch(
        gvk: references.GVK,
        original: Mapping[str, Any] | None,
        modified: Mapping[str, Any],
        current: Mapping[str, Any],
) -> dict[str, Any]:
    """
    Build a three-way patch with the lists merged by the kind's merge keys.

    The additions & changes come from the current-to-modified difference
    (ignoring the deletions), the deletions come from the original-to-modified
    difference (ignoring the additions & changes). The changes win.
    """
    keys = MERGE_KEYS.get(gvk, {})
    additions = _diff_maps(current, modified, (), keys, deletions=False, changes=True)
    deletions = _diff_maps(original or {}, modified, (), keys, deletions=True, changes=False)
    return _merge_patches(deletions, additions, (), keys)


def apply_strategic_patch(
        gvk: references.GVK,
        target: Mapping[str, Any],
        patch: Mapping[str, Any],
) -> dict[str, Any]:
    """
    Apply a strategic merge patch to a document; return the new document.
    """
    return _apply(target, patch, (), MERGE_KEYS.get(gvk, {}))


def _diff_maps(
        original: Mapping[str, Any],
        modified: Mapping[str, Any],
        path: FieldPath,
        keys: Mapping[FieldPath, str],
        *,
        deletions: bool,
        changes: bool,
) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    for key, value in modified.items():
        subpath = (*path, key)
        if key not in original:
            if changes:
                patch[key] = copy.deepcopy(value)
        elif isinstance(value, Mapping) and isinstance(original[key], Mapping):
            subpatch = _diff_maps(original[key], value, subpath, keys,
                                  deletions=deletions, changes=changes)
            if subpatch:
                patch[key] = subpatch
        elif isinstance(value, list) and isinstance(original[key], list) and subpath in keys:
            sublist = _diff_lists(original[key], value, subpath, keys,
                                  deletions=deletions, changes=changes)
            if sublist:
                patch[key] = sublist
        elif value != original[key]:
            if changes:
                patch[key] = copy.deepcopy(value)
    if deletions:
        for key in original:
            if key not in modified:
                patch[key] = None
    return patch


def _diff_lists(
        original: list[Any],
        modified: list[Any],
        path: FieldPath,
        keys: Mapping[FieldPath, str],
        *,
        deletions: bool,
        changes: bool,
) -> list[Any]:
    merge_key = keys[path]
    originals = {item.get(merge_key): item for item in original if isinstance(item, Mapping)}
    modifieds = {item.get(merge_key): item for item in modified if isinstance(item, Mapping)}
    patch: list[Any] = []
    for item in modified:
        if not isinstance(item, Mapping):
            continue
        keyval = item.get(merge_key)
        if keyval not in originals:
            if changes:
                patch.append(copy.deepcopy(item))
        else:
            subpatch = _diff_maps(originals[keyval], item, path, keys,
                                  deletions=deletions, changes=changes)
            if subpatch:
                patch.append({merge_key: keyval, **subpatch})
    if deletions:
        for keyval in originals:
            if keyval not in modifieds:
                patch.append({DIRECTIVE: DELETE, merge_key: keyval})
    return patch


def _merge_patches(
        first: Mapping[str, Any],
        second: Mapping[str, Any],
        path: FieldPath,
        keys: Mapping[FieldPath, str],
) -> dict[str, Any]:
    result = copy.deepcopy(dict(first))
    for key, value in second.items():
        subpath = (*path, key)
        existing = result.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            result[key] = _merge_patches(existing, value, subpath, keys)
        elif isinstance(value, list) and isinstance(existing, list) and subpath in keys:
            merge_key = keys[subpath]
            merged = list(existing)
            for item in value:
                idx = next((i for i, old in enumerate(merged)
                            if isinstance(old, Mapping) and isinstance(item, Mapping)
                            and old.get(merge_key) == item.get(merge_key)), None)
                if idx is None:
                    merged.append(copy.deepcopy(item))
                else:
                    merged[idx] = _merge_patches(merged[idx], item, subpath, keys)
            result[key] = merged
        else:
            result[key] = copy.deepcopy(value)
    return result


def _apply(
        target: Any,
        patch: Mapping[str, Any],
        path: FieldPath,
        keys: Mapping[FieldPath, str],
) -> dict[str, Any]:
    result = copy.deepcopy(dict(target)) if isinstance(target, Mapping) else {}
    for key, value in patch.items():
        subpath = (*path, key)
        if key.startswith('$'):
            continue
        elif value is None:
            result.pop(key, None)
        elif isinstance(value, Mapping):
            result[key] = _apply(result.get(key), value, subpath, keys)
        elif isinstance(value, list) and subpath in keys and isinstance(result.get(key), list):
            result[key] = _apply_list(result[key], value, subpath, keys)
        elif isinstance(value, list) and subpath in keys:
            result[key] = _apply_list([], value, subpath, keys)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _apply_list(
        target: list[Any],
        patch: list[Any],
        path: FieldPath,
        keys: Mapping[FieldPath, str],
) -> list[Any]:
    merge_key = keys[path]
    result = copy.deepcopy(target)
    for item in patch:
        if not isinstance(item, Mapping):
            continue
        keyval = item.get(merge_key)
        idx = next((i for i, old in enumerate(result)
                    if isinstance(old, Mapping) and old.get(merge_key) == keyval), None)
        if item.get(DIRECTIVE) == DELETE:
            if idx is not None:
                del result[idx]
        elif idx is None:
            result.append(_apply({}, item, path, keys))
        else:
            result[idx] = _apply(result[idx], item, path, keys)
    return result
