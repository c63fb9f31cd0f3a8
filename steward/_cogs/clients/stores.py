"""
The object stores: the uniform access to the objects of any resource type.

All the framework's components (the apply engine, the caches, the handlers'
scoped clients) access the objects only via the store protocol,
never via the API functions directly. This allows layering: a cache in front
of the API, an overlay of the recent writes in front of the cache, a per-request
recorder of the dependencies in front of everything.

The store methods address the objects by their resource type (:class:`GVK`,
optionally wrapped into :class:`Uncached`), namespace, and name.
The full bodies carry their type & identity in their own fields.
"""
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

from steward._cogs.clients import creating, deleting, discovery, fetching, patching, watching
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import bodies, patches, references, selectors

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):

    async def get(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
    ) -> bodies.Body: ...

    async def list(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> list[bodies.Body]: ...

    async def create(self, body: Mapping[str, Any]) -> bodies.Body: ...

    async def update(self, body: Mapping[str, Any]) -> bodies.Body: ...

    async def update_status(self, body: Mapping[str, Any]) -> bodies.Body: ...

    async def patch(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
            patch: Mapping[str, Any],
            patch_type: patches.PatchType = patches.PatchType.MERGE,
    ) -> bodies.Body: ...

    async def delete(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
    ) -> None: ...

    async def delete_all_of(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> None: ...

    def watch(
            self,
            gvk: references.GVK,
            *,
            namespace: str = '',
    ) -> AsyncIterator[watching.Bookmark | bodies.RawEvent]: ...

    async def is_namespaced(self, gvk: references.GVKLike) -> bool: ...


class KubernetesStore:
    """
    The live store: every call goes to the Kubernetes API.

    The API context (the session & credentials) is taken from the current
    router's context (see :data:`auth.context_var`), so the store itself
    holds only the settings.
    """

    def __init__(
            self,
            *,
            settings: configuration.OperatorSettings,
            logger: typedefs.Logger = logger,
    ) -> None:
        super().__init__()
        self.settings = settings
        self.logger = logger

    async def _discover(self, gvk: references.GVKLike) -> references.Resource:
        return await discovery.discover(references.unwrap(gvk),
                                        settings=self.settings, logger=self.logger)

    async def get(self, gvk: references.GVKLike, namespace: str, name: str) -> bodies.Body:
        resource = await self._discover(gvk)
        return await fetching.read_obj(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            name=name,
            logger=self.logger,
        )

    async def list(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> list[bodies.Body]:
        resource = await self._discover(gvk)
        items, _ = await fetching.list_objs(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
            logger=self.logger,
        )
        return list(items)

    async def create(self, body: Mapping[str, Any]) -> bodies.Body:
        resource = await self._discover(references.GVK.for_body(body))
        return await creating.create_obj(
            settings=self.settings,
            resource=resource,
            namespace=bodies.get_namespace(body),
            body=body,
            logger=self.logger,
        )

    async def update(self, body: Mapping[str, Any]) -> bodies.Body:
        resource = await self._discover(references.GVK.for_body(body))
        return await patching.update_obj(
            settings=self.settings,
            resource=resource,
            namespace=bodies.get_namespace(body),
            body=body,
            logger=self.logger,
        )

    async def update_status(self, body: Mapping[str, Any]) -> bodies.Body:
        resource = await self._discover(references.GVK.for_body(body))
        return await patching.update_obj(
            settings=self.settings,
            resource=resource,
            namespace=bodies.get_namespace(body),
            body=body,
            subresource='status',
            logger=self.logger,
        )

    async def patch(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
            patch: Mapping[str, Any],
            patch_type: patches.PatchType = patches.PatchType.MERGE,
    ) -> bodies.Body:
        resource = await self._discover(gvk)
        return await patching.patch_obj(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            name=name,
            patch=patch,
            patch_type=patch_type,
            logger=self.logger,
        )

    async def delete(self, gvk: references.GVKLike, namespace: str, name: str) -> None:
        resource = await self._discover(gvk)
        await deleting.delete_obj(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            name=name,
            logger=self.logger,
        )

    async def delete_all_of(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> None:
        resource = await self._discover(gvk)
        await deleting.delete_collection(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
            logger=self.logger,
        )

    async def watch(
            self,
            gvk: references.GVK,
            *,
            namespace: str = '',
    ) -> AsyncIterator[watching.Bookmark | bodies.RawEvent]:
        resource = await self._discover(gvk)
        async for event in watching.infinite_watch(
            settings=self.settings,
            resource=resource,
            namespace=namespace,
        ):
            yield event

    async def is_namespaced(self, gvk: references.GVKLike) -> bool:
        resource = await self._discover(gvk)
        return resource.namespaced
