"""
Ownership of the managed objects: who has created them and who can prune them.

The owner of the applied objects is persisted on the objects themselves:
as the plain annotations (for introspection and adoption checks), and as
a hash of these annotations in a label (for listing all the owned objects
with one label selector). There is no other storage of the ownership.

The hash and the annotations' format must not change: they are used
to find the objects created by the previous versions of the controllers.
"""
import dataclasses
import hashlib
from collections.abc import Collection, Mapping
from typing import Any

from steward._cogs.structs import bodies, references, selectors


@dataclasses.dataclass(frozen=True)
class AnnotationKeys:
    """
    The names of the labels & annotations used by the apply engine.

    All of them share the same configurable prefix (see ``settings.apply.prefix``).
    """
    prefix: str

    @property
    def hash(self) -> str:
        return f'{self.prefix}hash'

    @property
    def sub_context(self) -> str:
        return f'{self.prefix}owner-sub-context'

    @property
    def owner_gvk(self) -> str:
        return f'{self.prefix}owner-gvk'

    @property
    def owner_name(self) -> str:
        return f'{self.prefix}owner-name'

    @property
    def owner_namespace(self) -> str:
        return f'{self.prefix}owner-namespace'

    @property
    def applied(self) -> str:
        return f'{self.prefix}applied'

    @property
    def create(self) -> str:
        return f'{self.prefix}create'

    @property
    def update(self) -> str:
        return f'{self.prefix}update'

    @property
    def prune(self) -> str:
        return f'{self.prefix}prune'

    @property
    def hash_order(self) -> tuple[str, ...]:
        return (self.sub_context, self.owner_gvk, self.owner_name, self.owner_namespace)


@dataclasses.dataclass(frozen=True)
class Unowned:
    """
    No owner: the objects are upserted, never listed as owned, never pruned.
    """

    def annotations(self, keys: AnnotationKeys) -> dict[str, str]:
        return {}

    def labels(self, keys: AnnotationKeys) -> dict[str, str]:
        return {}

    def selector(self, keys: AnnotationKeys) -> selectors.LabelSelector | None:
        return None

    @property
    def debug_id(self) -> str:
        return ''


@dataclasses.dataclass(frozen=True, eq=False)
class Owned:
    """
    An owner object, or a sub-context only, or both.

    The sub-context separates several sets of objects of the same owner,
    which are applied independently (e.g. by different handlers).
    Without the owner object, the sub-context alone defines the ownership.
    """
    owner: Mapping[str, Any] | None
    sub_context: str = ''

    def annotations(self, keys: AnnotationKeys) -> dict[str, str]:
        annotations = {keys.sub_context: self.sub_context}
        if self.owner is not None:
            annotations[keys.owner_gvk] = str(references.GVK.for_body(self.owner))
            annotations[keys.owner_name] = bodies.get_name(self.owner)
            annotations[keys.owner_namespace] = bodies.get_namespace(self.owner)
        return annotations

    def labels(self, keys: AnnotationKeys) -> dict[str, str]:
        return {keys.hash: calculate_hash(self.annotations(keys), keys)}

    def selector(self, keys: AnnotationKeys) -> selectors.LabelSelector | None:
        return selectors.LabelSelector.from_mapping(self.labels(keys))

    @property
    def debug_id(self) -> str:
        if self.owner is None:
            return self.sub_context
        return f"{self.sub_context} {references.ObjectKey.for_body(self.owner)}"


Ownership = Unowned | Owned


def resolve(owner: Mapping[str, Any] | None, sub_context: str) -> Ownership:
    if owner is None and not sub_context:
        return Unowned()
    return Owned(owner=owner, sub_context=sub_context)


def calculate_hash(annotations: Mapping[str, str], keys: AnnotationKeys) -> str:
    digest = hashlib.sha1()
    for key in keys.hash_order:
        digest.update(annotations.get(key, '').encode('utf-8'))
    return digest.hexdigest()


def is_assigning_sub_context(
        existing: Mapping[str, Any],
        desired: Mapping[str, Any],
        keys: AnnotationKeys,
) -> bool:
    """
    Check if an object of the same owner without a sub-context gets one now.
    """
    old = bodies.get_annotations(existing)
    new = bodies.get_annotations(desired)
    return (
        old.get(keys.sub_context, '') == '' and
        new.get(keys.sub_context, '') != '' and
        _same_owner(old, new, keys)
    )


def is_allow_owner_transition(
        existing: Mapping[str, Any],
        desired: Mapping[str, Any],
        keys: AnnotationKeys,
        allowed: Collection[str],
) -> bool:
    """
    Check if an object of the same owner moves between explicitly allowed sub-contexts.

    The allowed transitions are written as ``"old => new"``.
    """
    old = bodies.get_annotations(existing)
    new = bodies.get_annotations(desired)
    transition = f"{old.get(keys.sub_context, '')} => {new.get(keys.sub_context, '')}"
    return (
        new.get(keys.sub_context, '') != '' and
        _same_owner(old, new, keys) and
        transition in allowed
    )


def _same_owner(old: bodies.Annotations, new: bodies.Annotations, keys: AnnotationKeys) -> bool:
    return all(old.get(key, '') == new.get(key, '')
               for key in (keys.owner_gvk, keys.owner_namespace, keys.owner_name))
