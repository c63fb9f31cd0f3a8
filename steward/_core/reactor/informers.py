"""
Informers: local caches of the objects, continuously filled from the watch-streams.

Every resource type has one informer, started on the first demand:
either when the type is watched for processing, or when the objects
of this type are first read by the handlers. The readers wait until
the initial listing is over, so that they never see a partial state.

The informers notify their subscribers with the keys of the changed objects,
not with the objects themselves: the processing always reads the latest
state of the object from the cache by its key.
"""
import asyncio
import copy
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any

from steward._cogs.aiokits import aiotasks
from steward._cogs.clients import errors, stores, watching
from steward._cogs.structs import bodies, patches, references, selectors

logger = logging.getLogger(__name__)

# A subscriber of the changes: gets the keys of the changed objects.
EventHandler = Callable[[references.ObjectKey], None]


class Informer:

    def __init__(
            self,
            gvk: references.GVK,
            store: stores.ObjectStore,
            *,
            namespace: str = '',
    ) -> None:
        super().__init__()
        self.gvk = gvk
        self.store = store
        self.namespace = namespace
        self.synced = asyncio.Event()
        self.handlers: list[EventHandler] = []
        self._objects: dict[references.ObjectKey, bodies.Body] = {}

    def __len__(self) -> int:
        return len(self._objects)

    def add_handler(self, handler: EventHandler) -> None:
        self.handlers.append(handler)
        for key in list(self._objects):  # the late subscribers still see all the objects
            handler(key)

    def get(self, namespace: str, name: str) -> bodies.Body | None:
        body = self._objects.get(references.ObjectKey(namespace=namespace, name=name))
        return copy.deepcopy(body) if body is not None else None

    def list(
            self,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> list[bodies.Body]:
        return [
            copy.deepcopy(body) for key, body in sorted(self._objects.items())
            if not namespace or key.namespace == namespace
            if label_selector is None or label_selector.matches(bodies.get_labels(body))
            if field_selector is None or field_selector.matches(body)
        ]

    def _notify(self, key: references.ObjectKey) -> None:
        for handler in self.handlers:
            handler(key)

    async def run(self) -> None:
        listing: dict[references.ObjectKey, bodies.Body] | None = None
        async for event in self.store.watch(self.gvk, namespace=self.namespace):
            if event is watching.Bookmark.LISTED:
                listed = listing if listing is not None else {}
                gone = set(self._objects) - set(listed)
                self._objects = dict(listed)
                listing = None
                self.synced.set()
                logger.debug(f"Informer for {self.gvk} is synced: {len(listed)} objects.")
                for key in sorted(gone):
                    self._notify(key)
                for key in sorted(listed):
                    self._notify(key)
                continue

            body = event['object']
            key = references.ObjectKey.for_body(body)
            match event['type']:
                case None:
                    listing = listing if listing is not None else {}
                    listing[key] = body
                case 'DELETED':
                    self._objects.pop(key, None)
                    self._notify(key)
                case _:
                    self._objects[key] = body
                    self._notify(key)


class InformerStore:
    """
    A store with the reads served from the informers and the writes sent live.

    The informers are started lazily, on the first read of their type,
    and stopped only when the whole store is stopped.
    """

    def __init__(
            self,
            live: stores.ObjectStore,
            *,
            namespace: str = '',
    ) -> None:
        super().__init__()
        self.live = live
        self.namespace = namespace
        self.informers: dict[references.GVK, Informer] = {}
        self._tasks: dict[references.GVK, aiotasks.Task] = {}
        self._failed = asyncio.Event()
        self._failure: BaseException | None = None

    def informer(self, gvk: references.GVK) -> Informer:
        """ Get the informer of the resource type, and start it if not yet. """
        if gvk not in self.informers:
            informer = Informer(gvk, self.live, namespace=self.namespace)
            self.informers[gvk] = informer
            self._tasks[gvk] = aiotasks.create_guarded_task(
                name=f"informer for {gvk}",
                coro=informer.run(),
                cancellable=True,
                logger=logger,
            )
            self._tasks[gvk].add_done_callback(self._check)
        return self.informers[gvk]

    async def stop(self) -> None:
        await aiotasks.stop(list(self._tasks.values()), title="informers", logger=logger)
        self._tasks.clear()

    def _check(self, task: aiotasks.Task) -> None:
        if not task.cancelled() and task.exception() is not None and not self._failed.is_set():
            self._failure = task.exception()
            self._failed.set()

    async def wait_for_failure(self) -> None:
        """ Block until any informer fails (e.g. the type cannot be watched), and re-raise. """
        await self._failed.wait()
        if self._failure is not None:
            raise self._failure

    async def _synced(self, gvk: references.GVKLike) -> Informer:
        informer = self.informer(references.unwrap(gvk))
        await informer.synced.wait()
        return informer

    async def get(self, gvk: references.GVKLike, namespace: str, name: str) -> bodies.Body:
        if isinstance(gvk, references.Uncached):
            return await self.live.get(gvk, namespace, name)
        informer = await self._synced(gvk)
        body = informer.get(namespace, name)
        if body is None:
            key = references.ObjectKey(namespace=namespace, name=name)
            raise errors.APINotFoundError(
                errors.build_status(404, 'NotFound', f"{gvk} {key} not found", name=name),
                status=404,
            )
        return body

    async def list(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> list[bodies.Body]:
        if isinstance(gvk, references.Uncached):
            return await self.live.list(gvk, namespace=namespace,
                                        label_selector=label_selector,
                                        field_selector=field_selector)
        informer = await self._synced(gvk)
        return informer.list(namespace=namespace,
                             label_selector=label_selector, field_selector=field_selector)

    async def create(self, body: Mapping[str, Any]) -> bodies.Body:
        return await self.live.create(body)

    async def update(self, body: Mapping[str, Any]) -> bodies.Body:
        return await self.live.update(body)

    async def update_status(self, body: Mapping[str, Any]) -> bodies.Body:
        return await self.live.update_status(body)

    async def patch(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
            patch: Mapping[str, Any],
            patch_type: patches.PatchType = patches.PatchType.MERGE,
    ) -> bodies.Body:
        return await self.live.patch(gvk, namespace, name, patch, patch_type)

    async def delete(self, gvk: references.GVKLike, namespace: str, name: str) -> None:
        await self.live.delete(gvk, namespace, name)

    async def delete_all_of(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> None:
        await self.live.delete_all_of(gvk, namespace=namespace,
                                      label_selector=label_selector, field_selector=field_selector)

    def watch(
            self,
            gvk: references.GVK,
            *,
            namespace: str = '',
    ) -> AsyncIterator[watching.Bookmark | bodies.RawEvent]:
        return self.live.watch(gvk, namespace=namespace)

    async def is_namespaced(self, gvk: references.GVKLike) -> bool:
        return await self.live.is_namespaced(gvk)
