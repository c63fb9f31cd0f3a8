"""
A set of the desired objects for one reconciliation pass.

The objects are indexed by their resource types and their keys
(namespaces & names), with the order of the first appearance of every
resource type preserved: the types are reconciled in that order.

Adding an object with the same type & key as an existing one replaces it:
the last write wins. This is not an error and is not reported.
"""
from collections.abc import Iterator, Mapping

from steward._cogs.structs import bodies, references


class ObjectSet:

    def __init__(self, *objs: bodies.Body | None) -> None:
        super().__init__()
        self._objects: dict[references.GVK, dict[references.ObjectKey, bodies.Body]] = {}
        self._by_group_kind: dict[tuple[str, str], dict[references.ObjectKey, bodies.Body]] = {}
        self._order: list[bodies.Body] = []
        self.add(*objs)

    def __len__(self) -> int:
        return sum(len(objs) for objs in self._objects.values())

    def __iter__(self) -> Iterator[bodies.Body]:
        return iter(self.all())

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {len(self)} objects of {len(self._objects)} types>'

    def add(self, *objs: bodies.Body | None) -> None:
        for obj in objs:
            if obj is None:
                continue
            gvk = references.GVK.for_body(obj)
            key = references.ObjectKey.for_body(obj)
            self._objects.setdefault(gvk, {})[key] = obj
            self._by_group_kind.setdefault(gvk.group_kind, {})[key] = obj
            self._order.append(obj)

    def all(self) -> list[bodies.Body]:
        """ All the objects as they were added, including the overridden ones. """
        return list(self._order)

    def is_empty(self) -> bool:
        return not self._objects

    def gvks(self) -> list[references.GVK]:
        return list(self._objects)

    def gvk_order(self, *known: references.GVK) -> list[references.GVK]:
        """
        The resource types in the order of their first appearance.

        The known types that have no objects in this set are appended
        in a stable (alphabetical) order: they are still reconciled,
        so that their previously created objects are pruned.
        """
        rest = sorted({gvk for gvk in known if gvk not in self._objects}, key=str)
        return list(self._objects) + rest

    def objects(self, gvk: references.GVK) -> Mapping[references.ObjectKey, bodies.Body]:
        return self._objects.get(gvk, {})

    def contains(self, group_kind: tuple[str, str], key: references.ObjectKey) -> bool:
        """ Check for an object in any version of the same group & kind. """
        return key in self._by_group_kind.get(group_kind, {})

    def namespaces(self) -> list[str]:
        return sorted({key.namespace for objs in self._objects.values() for key in objs})
