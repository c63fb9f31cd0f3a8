"""
All the structures coming from/to the Kubernetes API.

The objects are kept as plain JSON-decoded dicts everywhere: as received from
the API, as stored in caches, as produced by handlers, as sent back to the API.
There is no typed object model: the type of an object is declared
by its own ``apiVersion`` and ``kind`` fields (see :class:`references.GVK`).

For strict type-checking, the well-known fields are detailed
in the `TypedDict` definitions below. The handlers can use arbitrary
fields at runtime, which are not declared at type-checking time.

The accessors below never fail on missing fields: the desired objects
produced by handlers are often sparse (no ``metadata.namespace``,
no ``metadata.labels``, etc).
"""
from collections.abc import Mapping, MutableMapping
from typing import Any, Literal, TypedDict, cast

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

# A body as used in the framework: JSON-decoded, mutable where we own it.
Body = MutableMapping[str, Any]

# ``None`` is used for the listing, when the pseudo-watch-stream is simulated.
RawInputType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED', 'ERROR', 'BOOKMARK']
RawEventType = Literal[None, 'ADDED', 'MODIFIED', 'DELETED']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Annotations
    finalizers: list[str]
    resourceVersion: str
    deletionTimestamp: str
    creationTimestamp: str
    ownerReferences: list["OwnerReference"]


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: RawBody


class RawEvent(TypedDict, total=True):
    type: RawEventType
    object: RawBody


class OwnerReference(TypedDict, total=False):
    controller: bool
    blockOwnerDeletion: bool
    apiVersion: str
    kind: str
    name: str
    uid: str


def get_name(body: Mapping[str, Any]) -> str:
    return cast(str, body.get('metadata', {}).get('name') or '')


def get_namespace(body: Mapping[str, Any]) -> str:
    return cast(str, body.get('metadata', {}).get('namespace') or '')


def get_uid(body: Mapping[str, Any]) -> str:
    return cast(str, body.get('metadata', {}).get('uid') or '')


def get_resource_version(body: Mapping[str, Any]) -> str:
    return cast(str, body.get('metadata', {}).get('resourceVersion') or '')


def get_labels(body: Mapping[str, Any]) -> Labels:
    return cast(Labels, body.get('metadata', {}).get('labels') or {})


def get_annotations(body: Mapping[str, Any]) -> Annotations:
    return cast(Annotations, body.get('metadata', {}).get('annotations') or {})


def get_finalizers(body: Mapping[str, Any]) -> list[str]:
    return list(body.get('metadata', {}).get('finalizers') or [])


def get_owner_references(body: Mapping[str, Any]) -> list[OwnerReference]:
    return list(body.get('metadata', {}).get('ownerReferences') or [])


def is_deleting(body: Mapping[str, Any]) -> bool:
    return bool(body.get('metadata', {}).get('deletionTimestamp'))


def set_namespace(body: Body, namespace: str) -> None:
    metadata = body.setdefault('metadata', {})
    if namespace:
        metadata['namespace'] = namespace
    else:
        metadata.pop('namespace', None)


def set_labels(body: Body, labels: Labels) -> None:
    """ Merge the labels into the body's labels (creating them if absent). """
    if labels:
        _merge_metadata(body, 'labels', labels)


def set_annotations(body: Body, annotations: Annotations) -> None:
    """ Merge the annotations into the body's annotations (creating them if absent). """
    if annotations:
        _merge_metadata(body, 'annotations', annotations)


def _merge_metadata(body: Body, field: str, values: Mapping[str, str]) -> None:
    # Explicit nulls (e.g. `labels: null` in YAML) are the same as the absent fields.
    if body.get('metadata') is None:
        body['metadata'] = {}
    if body['metadata'].get(field) is None:
        body['metadata'][field] = {}
    body['metadata'][field].update(values)


def build_owner_reference(
        body: Mapping[str, Any],
) -> OwnerReference:
    """
    Construct an owner reference object for the parent-children relationships.

    The structure needed to link the children objects to the current object as a parent.
    See https://kubernetes.io/docs/concepts/workloads/controllers/garbage-collection/
    """
    ref = dict(
        apiVersion=body.get('apiVersion'),
        kind=body.get('kind'),
        name=body.get('metadata', {}).get('name'),
        uid=body.get('metadata', {}).get('uid'),
        controller=True,
        blockOwnerDeletion=True,
    )
    return cast(OwnerReference, {key: val for key, val in ref.items() if val})
