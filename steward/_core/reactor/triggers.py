"""
The dependencies between the objects, as derived from the handlers' reads & writes.

When a handler of one object (the source) touches another object (the target)
via its scoped client, the target is remembered as a dependency of the source.
When the target changes later, the source is re-processed, even if the source
itself did not change.

The registrations are tagged with the generation of the source's processing.
With ``settings.triggers.prune_stale``, the registrations of the older
generations are collected after every successful processing, so that only
the dependencies of the latest run are kept. Otherwise, they are kept forever.
"""
import dataclasses
import logging
import threading
from collections.abc import Mapping
from typing import Any

from steward._cogs.structs import references, selectors

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class Matcher:
    """ The criteria of the target objects: by identity or by selectors. """
    namespace: str = ''
    name: str = ''
    label_selector: selectors.LabelSelector | None = None
    field_selector: selectors.FieldSelector | None = None

    def matches(self, namespace: str, name: str, body: Mapping[str, Any] | None) -> bool:
        if self.name:
            return self.name == name and self.namespace == namespace
        if self.namespace and self.namespace != namespace:
            return False
        if self.label_selector is not None:
            if body is None:
                return False
            labels = body.get('metadata', {}).get('labels') or {}
            return self.label_selector.matches(labels)
        if self.field_selector is not None:
            return self.field_selector.matches(body)
        return self.namespace == namespace


@dataclasses.dataclass(frozen=True, order=True)
class Target:
    """ The source object to re-process when its dependency changes. """
    gvk: references.GVK
    key: references.ObjectKey


class Triggers:
    """
    The registry of the dependencies: target type -> source -> matchers.

    Guarded by a lock: the synchronous handlers register the dependencies
    from the executor's threads.
    """

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._matchers: dict[references.GVK, dict[Target, dict[Matcher, int]]] = {}
        self._generations: dict[Target, int] = {}

    def __len__(self) -> int:
        with self._lock:
            return sum(len(matchers)
                       for sources in self._matchers.values()
                       for matchers in sources.values())

    def begin(self, gvk: references.GVK, key: references.ObjectKey) -> int:
        """ Start a new generation of the source's dependencies. """
        source = Target(gvk=gvk, key=key)
        with self._lock:
            generation = self._generations.get(source, 0) + 1
            self._generations[source] = generation
            return generation

    def register(
            self,
            source_gvk: references.GVK,
            source_key: references.ObjectKey,
            target_gvk: references.GVKLike,
            matcher: Matcher,
            *,
            generation: int = 0,
    ) -> bool:
        """
        Remember the dependency; return ``True`` if it was not known before.

        The uncached reads are not remembered: they are intentionally
        not a part of the dependencies (e.g. the existence checks).
        """
        if isinstance(target_gvk, references.Uncached):
            return False
        source = Target(gvk=source_gvk, key=source_key)
        with self._lock:
            matchers = self._matchers.setdefault(target_gvk, {}).setdefault(source, {})
            known = matcher in matchers
            matchers[matcher] = max(generation, matchers.get(matcher, 0))
        return not known

    def collect(self, gvk: references.GVK, key: references.ObjectKey, generation: int) -> int:
        """ Forget the source's dependencies of the generations before the given one. """
        source = Target(gvk=gvk, key=key)
        removed = 0
        with self._lock:
            for target_gvk, sources in list(self._matchers.items()):
                matchers = sources.get(source, {})
                for matcher, tag in list(matchers.items()):
                    if tag < generation:
                        del matchers[matcher]
                        removed += 1
                if source in sources and not matchers:
                    del sources[source]
                if not sources:
                    del self._matchers[target_gvk]
        return removed

    def invoke(
            self,
            gvk: references.GVK,
            key: references.ObjectKey,
            body: Mapping[str, Any] | None,
    ) -> list[Target]:
        """ Find the sources that depend on the changed object (except itself). """
        with self._lock:
            sources = {source: list(matchers) for source, matchers in self._matchers.get(gvk, {}).items()}
        targets: list[Target] = []
        for source, matchers in sorted(sources.items()):
            if source.gvk == gvk and source.key == key:
                continue
            if any(matcher.matches(key.namespace, key.name, body) for matcher in matchers):
                logger.debug(f"Triggering [{source.key}] [{source.gvk}] from [{key}] [{gvk}]")
                targets.append(source)
        return targets
