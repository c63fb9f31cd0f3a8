"""
Smoothing of the read-after-write inconsistencies of the watch-caches.

The caches of the objects are filled from the watch-streams, so they lag
behind the writes: a handler that has just updated an object can read
its previous version from the cache on the next run, and patch it again
with the outdated assumptions.

To hide this lag, every written object is remembered for a short time
(the overlay), and is returned instead of the cached one when the cached
one is older. Listings are not smoothed: they come from the cache as is.
"""
import asyncio
import copy
import dataclasses
import logging
import re
import threading
import time
from collections.abc import AsyncIterator, Mapping
from typing import Any

from steward._cogs.clients import stores, watching
from steward._cogs.configs import configuration
from steward._cogs.structs import bodies, patches, references, selectors

logger = logging.getLogger(__name__)

OverlayKey = tuple[references.GVK, str, str]

# Decimal integers with an optional sign; no whitespace, no underscores.
INTEGER = re.compile(r"[+-]?[0-9]+")


@dataclasses.dataclass(frozen=True)
class OverlayEntry:
    body: bodies.Body
    inserted: float  # monotonic time


def newer(old: str, new: str) -> bool:
    """
    Check if the new resource version is newer than the old one.

    The resource versions are opaque strings, but in practice they are
    ever-increasing integers. The strings of the same length are compared
    as strings, so that the non-integer versions are still comparable.
    """
    if len(old) == len(new):
        return old < new
    if not INTEGER.fullmatch(old):
        return True
    if not INTEGER.fullmatch(new):
        return False
    return int(old) < int(new)


class SmoothingStore:
    """
    A store that masks the cache's lag with the recently written objects.

    All the writes go to the live store. All the cached reads go to the cached
    store, except when a fresher version of the same object was written
    recently. ``Uncached`` reads go to the live store, bypassing the overlay.
    """

    def __init__(
            self,
            cached: stores.ObjectStore,
            live: stores.ObjectStore,
            *,
            settings: configuration.OperatorSettings | None = None,
    ) -> None:
        super().__init__()
        self.cached = cached
        self.live = live
        self.settings = settings if settings is not None else configuration.OperatorSettings()
        self._overlay: dict[OverlayKey, OverlayEntry] = {}
        self._lock = threading.Lock()  # sync handlers can write from the executor's threads

    def __len__(self) -> int:
        return len(self._overlay)

    def _store(self, body: bodies.Body) -> bodies.Body:
        key = (references.GVK.for_body(body), bodies.get_namespace(body), bodies.get_name(body))
        with self._lock:
            self._overlay[key] = OverlayEntry(body=copy.deepcopy(body), inserted=time.monotonic())
        return body

    def _recall(self, gvk: references.GVK, namespace: str, name: str) -> bodies.Body | None:
        with self._lock:
            entry = self._overlay.get((gvk, namespace, name))
        return copy.deepcopy(entry.body) if entry is not None else None

    def _forget(self, gvk: references.GVK, namespace: str, name: str) -> None:
        with self._lock:
            self._overlay.pop((gvk, namespace, name), None)

    def purge(self) -> None:
        """ Remove the overlay entries that are old enough to be seen in the cache. """
        cutoff = time.monotonic() - self.settings.caching.overlay_ttl
        with self._lock:
            expired = [key for key, entry in self._overlay.items() if entry.inserted < cutoff]
            for key in expired:
                del self._overlay[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired overlay entries.")

    async def run_purging(self) -> None:
        while True:
            await asyncio.sleep(self.settings.caching.purge_interval)
            self.purge()

    async def get(self, gvk: references.GVKLike, namespace: str, name: str) -> bodies.Body:
        if isinstance(gvk, references.Uncached):
            return await self.live.get(gvk, namespace, name)

        body = await self.cached.get(gvk, namespace, name)  # NotFound propagates as is
        recent = self._recall(gvk, namespace, name)
        if recent is not None:
            if newer(bodies.get_resource_version(body), bodies.get_resource_version(recent)):
                return recent
        return body

    async def list(
            self,
            gvk: references.GVKLike,
            *,
            namespace: str = '',
            label_selector: selectors.LabelSelector | None = None,
            field_selector: selectors.FieldSelector | None = None,
    ) -> list[bodies.Body]:
        store = self.live if isinstance(gvk, references.Uncached) else self.cached
        return await store.list(gvk, namespace=namespace,
                                label_selector=label_selector, field_selector=field_selector)

    async def create(self, body: Mapping[str, Any]) -> bodies.Body:
        return self._store(await self.live.create(body))

    async def update(self, body: Mapping[str, Any]) -> bodies.Body:
        return self._store(await self.live.update(body))

    async def update_status(self, body: Mapping[str, Any]) -> bodies.Body:
        return self._store(await self.live.update_status(body))

    async def patch(
            self,
            gvk: references.GVKLike,
            namespace: str,
            name: str,
            patch: Mapping[str, Any],
            patch_type: patches.PatchType = patches.PatchType.MERGE,
    ) -> bodies.Body:
        return self._store(await self.live.patch(gvk, namespace, name, patch, patch_type))

    async def delete(self, gvk: references.GVKLike, namespace: str, name: str) -> None:
        await self.live.delete(gvk, namespace, name)
        self._forget(references.unwrap(gvk), namespace, name)

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
