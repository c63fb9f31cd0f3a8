"""
Detection of the changes that cannot be patched, only re-created.

Some fields of the built-in resources are immutable: e.g. the type
of a secret, or the selector of a deployment. The patches of such fields
are rejected by the API, so the objects are deleted and created anew.

The detectors are registered statically per resource type. They get
the old state (the last applied one if known, otherwise the live one)
and the new desired state, and return ``True`` if a re-creation is needed.
"""
from collections.abc import Callable, Mapping
from typing import Any

from steward._cogs.structs import dicts, references
from steward._core.apply import ownership, snapshots

ReplaceDetector = Callable[[Mapping[str, Any], Mapping[str, Any], ownership.AnnotationKeys], bool]

REPLACERS: dict[references.GVK, ReplaceDetector] = {}


def register(*gvks: references.GVK) -> Callable[[ReplaceDetector], ReplaceDetector]:
    def decorator(fn: ReplaceDetector) -> ReplaceDetector:
        for gvk in gvks:
            REPLACERS[gvk] = fn
        return fn
    return decorator


def needs_replace(
        gvk: references.GVK,
        old: Mapping[str, Any],
        new: Mapping[str, Any],
        keys: ownership.AnnotationKeys,
) -> bool:
    detector = REPLACERS.get(gvk)
    return detector is not None and detector(old, new, keys)


@register(references.GVK('', 'v1', 'Secret'))
def secret_type_changed(old: Mapping[str, Any], new: Mapping[str, Any], keys: ownership.AnnotationKeys) -> bool:
    new_type = new.get('type') or ''
    return bool(new_type) and (old.get('type') or '') != new_type


@register(references.GVK('', 'v1', 'Service'))
def service_type_changed(old: Mapping[str, Any], new: Mapping[str, Any], keys: ownership.AnnotationKeys) -> bool:
    new_type = dicts.resolve(new, 'spec.type') or ''
    return bool(new_type) and (dicts.resolve(old, 'spec.type') or '') != new_type


@register(references.GVK('apps', 'v1', 'Deployment'),
          references.GVK('apps', 'v1', 'DaemonSet'))
def selector_changed(old: Mapping[str, Any], new: Mapping[str, Any], keys: ownership.AnnotationKeys) -> bool:
    return not dicts.semantically_equal(dicts.resolve(old, 'spec.selector'),
                                        dicts.resolve(new, 'spec.selector'))


@register(references.GVK('batch', 'v1', 'Job'))
def job_template_changed(old: Mapping[str, Any], new: Mapping[str, Any], keys: ownership.AnnotationKeys) -> bool:
    # The old state is restored from the truncated snapshot, so the new one is truncated too.
    gvk = references.GVK('batch', 'v1', 'Job')
    pruned = snapshots.get_original(gvk, new, keys)
    return not dicts.semantically_equal(dicts.resolve(old, 'spec.template'),
                                        dicts.resolve(pruned, 'spec.template'))
