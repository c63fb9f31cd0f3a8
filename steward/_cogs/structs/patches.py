"""
JSON merge patches (RFC 7386): creation, three-way creation, and application.

A merge patch is a partial document: the present keys are set to the given
values, the keys with ``None`` values are removed, the nested dicts
are merged recursively, and the lists are always replaced as a whole.

The three-way patch is used to converge the live objects to the desired
state without clobbering the fields set by other writers: the additions
and changes are taken from the difference between the live (current)
and the desired (modified) objects; the deletions are taken from
the difference between the last applied (original) and the desired objects,
so only the fields that we set before and do not want anymore are removed.
"""
import copy
import enum
from collections.abc import Mapping
from typing import Any


class PatchType(str, enum.Enum):
    MERGE = 'application/merge-patch+json'
    STRATEGIC = 'application/strategic-merge-patch+json'
    JSON = 'application/json-patch+json'


class PatchConflictError(ValueError):
    """ Raised when the additions and the deletions of a three-way patch overlap. """


def create_merge_patch(original: Mapping[str, Any], modified: Mapping[str, Any]) -> dict[str, Any]:
    """
    Build a patch that turns the ``original`` into the ``modified`` document.
    """
    patch: dict[str, Any] = {}
    for key, value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
        elif isinstance(value, Mapping) and isinstance(original[key], Mapping):
            subpatch = create_merge_patch(original[key], value)
            if subpatch:
                patch[key] = subpatch
        elif value != original[key]:
            patch[key] = copy.deepcopy(value)
    for key in original:
        if key not in modified:
            patch[key] = None
    return patch


def keep_or_delete_nulls(patch: Mapping[str, Any], *, keep_nulls: bool) -> dict[str, Any]:
    """
    Keep only the deletions (``keep_nulls=True``) or only the additions & changes.

    Explicitly set empty dicts are the values (not the empty patches),
    so they are kept as additions.
    """
    result: dict[str, Any] = {}
    for key, value in patch.items():
        if value is None:
            if keep_nulls:
                result[key] = None
        elif isinstance(value, Mapping):
            if not value:
                if not keep_nulls:
                    result[key] = {}
                continue
            subresult = keep_or_delete_nulls(value, keep_nulls=keep_nulls)
            if subresult:
                result[key] = subresult
        elif not keep_nulls:
            result[key] = value
    return result


def has_conflicts(left: Any, right: Any) -> bool:
    """
    Check if two patches set the same fields to different values.
    """
    if isinstance(left, Mapping):
        if not isinstance(right, Mapping):
            return True
        return any(key in right and has_conflicts(value, right[key]) for key, value in left.items())
    if isinstance(left, list):
        if not isinstance(right, list) or len(left) != len(right):
            return True
        return any(has_conflicts(lval, rval) for lval, rval in zip(left, right))
    return bool(left != right)


def merge_patches(first: Mapping[str, Any], second: Mapping[str, Any]) -> dict[str, Any]:
    """
    Combine two patches into one, with the second one taking precedence.

    Unlike the application of a patch, the deletions (``None``) are preserved.
    """
    result = copy.deepcopy(dict(first))
    for key, value in second.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = merge_patches(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def create_three_way_merge_patch(
        original: Mapping[str, Any] | None,
        modified: Mapping[str, Any],
        current: Mapping[str, Any],
) -> dict[str, Any]:
    original = original or {}
    additions = keep_or_delete_nulls(create_merge_patch(current, modified), keep_nulls=False)
    deletions = keep_or_delete_nulls(create_merge_patch(original, modified), keep_nulls=True)
    if has_conflicts(additions, deletions):
        raise PatchConflictError(f"Additions {additions!r} conflict with deletions {deletions!r}.")
    return merge_patches(deletions, additions)


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """
    Apply a merge patch to a document; return the new document (the target is not modified).
    """
    if not isinstance(patch, Mapping):
        return copy.deepcopy(patch)
    result = copy.deepcopy(dict(target)) if isinstance(target, Mapping) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result
