"""
The requests to the handlers, and their responses.

A handler gets a request with the object being processed (or ``None``
if it does not exist anymore), and a scoped client to read & write
other objects. Every access via the scoped client is remembered
as a dependency of the processed object (see :mod:`triggers`).

A handler responds by emitting the desired children objects, requesting
a delayed re-processing, or disabling the pruning of the children
not emitted in this run. The responses of all the handlers of the object
are accumulated in one response object, and applied once at the end.
"""
import dataclasses
import logging
import threading
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any, Optional

from steward._cogs.clients import stores, watching
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import bodies, patches, references, selectors
from steward._core.reactor import triggers

logger = logging.getLogger(__name__)

# Persisting of the handlers' results: the status & the children. Returns the stored object.
Saver = Callable[[Optional[bodies.Body], "Request", "Response"], Awaitable[Optional[bodies.Body]]]


class TriggerRegistry:
    """
    The dependencies of one processing of one object.

    Besides registering the dependencies in the global triggers,
    it remembers which resource types were touched, so that they can be
    watched after the processing (a dependency is useless if its changes
    are not seen).
    """

    def __init__(
            self,
            triggers: triggers.Triggers,
            gvk: references.GVK,
            key: references.ObjectKey,
            *,
            generation: int = 0,
    ) -> None:
        super().__init__()
        self.triggers = triggers
        self.gvk = gvk
        self.key = key
        self.generation = generation
        self._gvks: dict[references.GVK, None] = {}  # ordered set
        self._lock = threading.Lock()

    @property
    def gvks(self) -> list[references.GVK]:
        with self._lock:
            return list(self._gvks)

    def watch(self, gvk: references.GVKLike) -> None:
        if not isinstance(gvk, references.Uncached):
            with self._lock:
                self._gvks[gvk] = None

    def register(self, gvk: references.GVKLike, matcher: triggers.Matcher) -> None:
        self.watch(gvk)
        self.triggers.register(self.gvk, self.key, gvk, matcher, generation=self.generation)


class ScopedClient:
    """
    A store wrapper that registers every accessed object as a dependency.

    The reads of the selected objects (lists, bulk deletes) register
    the selectors, so that the new objects matching them are also noticed.
    """

    def __init__(self, store: stores.ObjectStore, registry: TriggerRegistry) -> None:
        super().__init__()
        self.store = store
        self.registry = registry

    def _register_body(self, body: Mapping[str, Any]) -> None:
        self.registry.register(references.GVK.for_body(body), triggers.Matcher(
            namespace=bodies.get_namespace(body),
            name=bodies.get_name(body),
        ))

    async def get(self, gvk: references.GVKLike, namespace: str, name: str) -> bodies.Body:
        self.registry.register(gvk, triggers.Matcher(namespace=namespace, name=name))
        return await self.store.get(gvk, namespace, name)

    async def list(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> list[bodies.Body]:
        self.registry.register(gvk, triggers.Matcher(
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        ))
        return await self.store.list(gvk, namespace=namespace,
                                     label_selector=label_selector, field_selector=field_selector)

    async def create(self, body: Mapping[str, Any]) -> bodies.Body:
        self._register_body(body)
        return await self.store.create(body)

    async def update(self, body: Mapping[str, Any]) -> bodies.Body:
        self._register_body(body)
        return await self.store.update(body)

    async def update_status(self, body: Mapping[str, Any]) -> bodies.Body:
        self._register_body(body)
        return await self.store.update_status(body)

    async def patch(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
            patch: Mapping[str, Any],
            patch_type: patches.PatchType = patches.PatchType.MERGE,
    ) -> bodies.Body:
        self.registry.register(gvk, triggers.Matcher(namespace=namespace, name=name))
        return await self.store.patch(gvk, namespace, name, patch, patch_type)

    async def delete(self, gvk: references.GVKLike, namespace: str, name: str) -> None:
        self.registry.register(gvk, triggers.Matcher(namespace=namespace, name=name))
        await self.store.delete(gvk, namespace, name)

    async def delete_all_of(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> None:
        self.registry.register(gvk, triggers.Matcher(
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        ))
        await self.store.delete_all_of(gvk, namespace=namespace,
                                       label_selector=label_selector, field_selector=field_selector)

    def watch(
            self,
            gvk: references.GVK,
            *,
            namespace: str = '',
    ) -> AsyncIterator[watching.Bookmark | bodies.RawEvent]:
        return self.store.watch(gvk, namespace=namespace)

    async def is_namespaced(self, gvk: references.GVKLike) -> bool:
        return await self.store.is_namespaced(gvk)


@dataclasses.dataclass
class Request:
    gvk: references.GVK
    key: references.ObjectKey
    object: bodies.Body | None
    client: ScopedClient
    settings: configuration.OperatorSettings
    logger: typedefs.Logger
    saver: Saver
    from_trigger: bool = False

    @property
    def namespace(self) -> str:
        return self.key.namespace

    @property
    def name(self) -> str:
        return self.key.name


class Response:

    def __init__(self, registry: TriggerRegistry | None = None) -> None:
        super().__init__()
        self.registry = registry
        self.collected: list[bodies.Body] = []
        self.delay: float = 0
        self.no_prune = False

    def objects(self, *objs: bodies.Body | None) -> None:
        """ Emit the desired children; their types become watched. """
        for obj in objs:
            if obj is None:
                continue
            if self.registry is not None:
                self.registry.watch(references.GVK.for_body(obj))
            self.collected.append(obj)

    def retry_after(self, delay: float) -> None:
        """ Request a re-processing; the shortest of all requested delays wins. """
        if delay <= 0:
            return
        if self.delay == 0 or delay < self.delay:
            self.delay = delay

    def disable_prune(self) -> None:
        self.no_prune = True
