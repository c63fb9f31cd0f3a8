"""
An in-memory object store: the API server for tests and dry runs.

It behaves like the API server in the aspects that matter to the controllers:
resource versions grow with every write, the creation fails if the object
exists, the updates fail on outdated resource versions, the deletion is
blocked by the finalizers until they are removed, and the changes are
streamed to the watchers.

It does not validate the objects, does not default them, and does not
collect the garbage by the owner references.
"""
import asyncio
import copy
import dataclasses
import datetime
import itertools
from collections.abc import AsyncIterator, Iterable, Mapping
from typing import Any

from steward._cogs.clients import errors, watching
from steward._cogs.structs import bodies, patches, references, selectors, strategic

CLUSTER_SCOPED = frozenset({
    references.GVK('', 'v1', 'Namespace'),
    references.GVK('', 'v1', 'Node'),
    references.GVK('', 'v1', 'PersistentVolume'),
    references.GVK('rbac.authorization.k8s.io', 'v1', 'ClusterRole'),
    references.GVK('rbac.authorization.k8s.io', 'v1', 'ClusterRoleBinding'),
    references.GVK('storage.k8s.io', 'v1', 'StorageClass'),
    references.GVK('apiextensions.k8s.io', 'v1', 'CustomResourceDefinition'),
})


@dataclasses.dataclass(frozen=True)
class Call:
    """ A write to the store, as logged for the assertions in tests. """
    verb: str
    gvk: references.GVK
    key: references.ObjectKey
    payload: Mapping[str, Any] | None = None


class MemoryStore:

    def __init__(
            self,
            *objs: Mapping[str, Any],
            cluster_scoped: Iterable[references.GVK] = CLUSTER_SCOPED,
    ) -> None:
        super().__init__()
        self.cluster_scoped = frozenset(cluster_scoped)
        self.objects: dict[references.GVK, dict[references.ObjectKey, bodies.Body]] = {}
        self.calls: list[Call] = []
        self._versions = itertools.count(1)
        self._watchers: dict[references.GVK, list[asyncio.Queue[bodies.RawEvent]]] = {}
        self.add(*objs)

    def add(self, *objs: Mapping[str, Any]) -> None:
        """ Put the objects to the store as existing, without logging them as writes. """
        for obj in objs:
            body = self._prepare(obj)
            gvk = references.GVK.for_body(body)
            self.objects.setdefault(gvk, {})[references.ObjectKey.for_body(body)] = body

    def writes(self, *verbs: str) -> list[Call]:
        return [call for call in self.calls if not verbs or call.verb in verbs]

    def _prepare(self, obj: Mapping[str, Any]) -> bodies.Body:
        body = copy.deepcopy(dict(obj))
        gvk = references.GVK.for_body(body)
        if gvk in self.cluster_scoped:
            bodies.set_namespace(body, '')
        metadata = body.setdefault('metadata', {})
        metadata.setdefault('uid', f"uid-{next(self._versions)}")
        metadata.setdefault('creationTimestamp', _now())
        metadata['resourceVersion'] = str(next(self._versions))
        return body

    def _find(self, gvk: references.GVKLike, namespace: str, name: str) -> bodies.Body:
        gvk = references.unwrap(gvk)
        namespace = '' if gvk in self.cluster_scoped else namespace
        key = references.ObjectKey(namespace=namespace, name=name)
        try:
            return self.objects[gvk][key]
        except KeyError:
            raise errors.APINotFoundError(
                errors.build_status(404, 'NotFound', f"{gvk} {key} not found", name=name),
                status=404,
            ) from None

    def _store(self, verb: str, body: bodies.Body, payload: Mapping[str, Any] | None = None) -> bodies.Body:
        gvk = references.GVK.for_body(body)
        key = references.ObjectKey.for_body(body)
        self.calls.append(Call(verb=verb, gvk=gvk, key=key, payload=copy.deepcopy(payload)))
        body['metadata']['resourceVersion'] = str(next(self._versions))

        # The deletion completes when the last finalizer is removed.
        if bodies.is_deleting(body) and not bodies.get_finalizers(body):
            self.objects.get(gvk, {}).pop(key, None)
            self._notify(gvk, 'DELETED', body)
        else:
            existed = key in self.objects.get(gvk, {})
            self.objects.setdefault(gvk, {})[key] = body
            self._notify(gvk, 'MODIFIED' if existed else 'ADDED', body)
        return copy.deepcopy(body)

    def _notify(self, gvk: references.GVK, event_type: bodies.RawEventType, body: bodies.Body) -> None:
        for queue in self._watchers.get(gvk, []):
            queue.put_nowait({'type': event_type, 'object': copy.deepcopy(body)})  # type: ignore

    def _check_version(self, existing: bodies.Body, body: Mapping[str, Any]) -> None:
        version = bodies.get_resource_version(body)
        if version and version != bodies.get_resource_version(existing):
            raise errors.APIConflictError(
                errors.build_status(409, 'Conflict', f"The object has been modified: {bodies.get_name(body)}"),
                status=409,
            )

    def _select(
            self,
            gvk: references.GVK,
            namespace: str,
            label_selector: selectors.LabelSelector | None,
            field_selector: selectors.FieldSelector | None,
    ) -> list[bodies.Body]:
        return [
            body for key, body in sorted(self.objects.get(gvk, {}).items())
            if not namespace or gvk in self.cluster_scoped or key.namespace == namespace
            if label_selector is None or label_selector.matches(bodies.get_labels(body))
            if field_selector is None or field_selector.matches(body)
        ]

    async def get(self, gvk: references.GVKLike, namespace: str, name: str) -> bodies.Body:
        return copy.deepcopy(self._find(gvk, namespace, name))

    async def list(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> list[bodies.Body]:
        return [copy.deepcopy(body) for body in self._select(references.unwrap(gvk), namespace,
                                                             label_selector, field_selector)]

    async def create(self, body: Mapping[str, Any]) -> bodies.Body:
        gvk = references.GVK.for_body(body)
        key = references.ObjectKey.for_body(body)
        if gvk in self.cluster_scoped:
            key = references.ObjectKey(namespace='', name=key.name)
        elif not key.namespace:
            raise errors.APIError(
                errors.build_status(400, 'BadRequest', f"The namespace is required for {gvk}"),
                status=400,
            )
        if key in self.objects.get(gvk, {}):
            raise errors.APIAlreadyExistsError(
                errors.build_status(409, 'AlreadyExists', f"{gvk} {key} already exists", name=key.name),
                status=409,
            )
        obj = self._prepare({**body, 'metadata': {
            field: val for field, val in body.get('metadata', {}).items()
            if field not in {'uid', 'resourceVersion', 'creationTimestamp', 'deletionTimestamp'}
        }})
        return self._store('create', obj, body)

    async def update(self, body: Mapping[str, Any]) -> bodies.Body:
        gvk = references.GVK.for_body(body)
        existing = self._find(gvk, bodies.get_namespace(body), bodies.get_name(body))
        self._check_version(existing, body)
        obj = copy.deepcopy(dict(body))
        obj.pop('status', None)
        if 'status' in existing:
            obj['status'] = copy.deepcopy(existing['status'])
        obj['metadata'] = {
            **obj.get('metadata', {}),
            'uid': bodies.get_uid(existing),
            'creationTimestamp': existing['metadata'].get('creationTimestamp'),
        }
        if bodies.is_deleting(existing):
            obj['metadata']['deletionTimestamp'] = existing['metadata']['deletionTimestamp']
        return self._store('update', obj, body)

    async def update_status(self, body: Mapping[str, Any]) -> bodies.Body:
        gvk = references.GVK.for_body(body)
        existing = self._find(gvk, bodies.get_namespace(body), bodies.get_name(body))
        self._check_version(existing, body)
        obj = copy.deepcopy(existing)
        obj['status'] = copy.deepcopy(body.get('status'))
        return self._store('update_status', obj, {'status': body.get('status')})

    async def patch(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
            patch: Mapping[str, Any],
            patch_type: patches.PatchType = patches.PatchType.MERGE,
    ) -> bodies.Body:
        gvk = references.unwrap(gvk)
        existing = self._find(gvk, namespace, name)
        match patch_type:
            case patches.PatchType.MERGE:
                obj = patches.apply_merge_patch(copy.deepcopy(existing), patch)
            case patches.PatchType.STRATEGIC:
                obj = strategic.apply_strategic_patch(gvk, copy.deepcopy(existing), patch)
            case _:
                raise errors.APIError(
                    errors.build_status(415, 'UnsupportedMediaType', f"Unsupported patch: {patch_type}"),
                    status=415,
                )
        obj['metadata'] = {**obj.get('metadata', {}),
                           'name': name, 'uid': bodies.get_uid(existing),
                           'resourceVersion': bodies.get_resource_version(existing)}
        bodies.set_namespace(obj, bodies.get_namespace(existing))
        return self._store('patch', obj, patch)

    async def delete(self, gvk: references.GVKLike, namespace: str, name: str) -> None:
        existing = self._find(gvk, namespace, name)
        gvk = references.unwrap(gvk)
        key = references.ObjectKey.for_body(existing)
        if bodies.get_finalizers(existing):
            if not bodies.is_deleting(existing):
                obj = copy.deepcopy(existing)
                obj['metadata']['deletionTimestamp'] = _now()
                self._store('delete', obj)
        else:
            self.calls.append(Call(verb='delete', gvk=gvk, key=key))
            del self.objects[gvk][key]
            self._notify(gvk, 'DELETED', existing)

    async def delete_all_of(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> None:
        for body in self._select(references.unwrap(gvk), namespace, label_selector, field_selector):
            await self.delete(gvk, bodies.get_namespace(body), bodies.get_name(body))

    async def watch(
            self,
            gvk: references.GVK,
            *,
            namespace: str = '',
    ) -> AsyncIterator[watching.Bookmark | bodies.RawEvent]:
        queue: asyncio.Queue[bodies.RawEvent] = asyncio.Queue()
        self._watchers.setdefault(gvk, []).append(queue)
        try:
            for body in self._select(gvk, namespace, None, None):
                yield {'type': None, 'object': copy.deepcopy(body)}  # type: ignore
            yield watching.Bookmark.LISTED
            while True:
                event = await queue.get()
                if not namespace or gvk in self.cluster_scoped or bodies.get_namespace(event['object']) == namespace:
                    yield event
        finally:
            self._watchers[gvk].remove(queue)

    async def is_namespaced(self, gvk: references.GVKLike) -> bool:
        return references.unwrap(gvk) not in self.cluster_scoped


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
