"""
References to the resource types and to the individual objects.

A resource type is identified by its group, version, and kind (:class:`GVK`),
as declared in the objects' own ``apiVersion`` & ``kind`` fields.
The API URLs, however, need the plural names and the scope of the resources,
which are discovered from the cluster (:class:`Resource`).
"""
import dataclasses
import urllib.parse
from collections.abc import Mapping
from typing import Any


@dataclasses.dataclass(frozen=True, order=True)
class GVK:
    """
    A reference to a resource type: its group, version, and kind.

    The string form is the same as used in the owner annotations
    of the managed objects, so it must not change: e.g. ``"apps/v1, Kind=Deployment"``
    or ``"/v1, Kind=Secret"`` for the core resources.
    """
    group: str
    version: str
    kind: str

    def __str__(self) -> str:
        return f"{self.group}/{self.version}, Kind={self.kind}"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def group_kind(self) -> tuple[str, str]:
        return self.group, self.kind

    @classmethod
    def parse(cls, api_version: str, kind: str) -> "GVK":
        group, _, version = api_version.rpartition('/')
        return cls(group=group, version=version, kind=kind)

    @classmethod
    def for_body(cls, body: Mapping[str, Any]) -> "GVK":
        api_version = body.get('apiVersion')
        kind = body.get('kind')
        if not api_version or not kind:
            name = body.get('metadata', {}).get('name')
            raise TypeError(f"The object has no apiVersion/kind, the type is unknown: {name!r}")
        return cls.parse(api_version, kind)


@dataclasses.dataclass(frozen=True)
class Uncached:
    """
    A marker to read the objects directly from the API, not from the caches.

    Used where the freshest state is critical (e.g. the checks of existence
    before creation). The reads with such a marker are not remembered
    as the dependencies of the object being processed.
    """
    gvk: GVK

    def __str__(self) -> str:
        return str(self.gvk)


# Either a plain resource type or a resource type with reading instructions.
GVKLike = GVK | Uncached


def unwrap(gvk: GVKLike) -> GVK:
    return gvk.gvk if isinstance(gvk, Uncached) else gvk


@dataclasses.dataclass(frozen=True, order=True)
class ObjectKey:
    """
    A reference to an object within its resource type.

    Cluster-scoped objects have an empty namespace.
    """
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def parse(cls, key: str) -> "ObjectKey":
        namespace, sep, name = key.partition('/')
        return cls(namespace=namespace, name=name) if sep else cls(namespace='', name=key)

    @classmethod
    def for_body(cls, body: Mapping[str, Any]) -> "ObjectKey":
        metadata = body.get('metadata', {})
        return cls(namespace=metadata.get('namespace') or '', name=metadata.get('name') or '')


@dataclasses.dataclass(frozen=True)
class Resource:
    """
    A resource type as served by the API: with the plural name and the scope.
    """
    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def gvk(self) -> GVK:
        return GVK(self.group, self.version, self.kind)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def get_url(
            self,
            *,
            server: str | None = None,
            namespace: str | None = None,
            name: str | None = None,
            subresource: str | None = None,
            params: Mapping[str, str] | None = None,
    ) -> str:
        """
        Build a URL to be used with K8s API.

        If the namespace is not set, a cluster-wide URL is returned.
        For cluster-scoped resources, the namespace is ignored.

        If the name is not set, the URL for the resource list is returned.
        Otherwise (if set), the URL for the individual resource is returned.

        Params go to the query parameters (``?param1=value1&param2=value2...``).
        """
        if subresource is not None and name is None:
            raise ValueError("Subresources can be used only with specific resources by their name.")
        if self.namespaced and not namespace and name is not None:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        parts: list[str | None] = [
            '/api' if self.group == '' and self.version == 'v1' else '/apis',
            self.group,
            self.version,
            'namespaces' if self.namespaced and namespace else None,
            namespace if self.namespaced and namespace else None,
            self.plural,
            name,
            subresource,
        ]

        query = urllib.parse.urlencode(params, encoding='utf-8') if params else ''
        path = '/'.join([part for part in parts if part])
        url = path + ('?' if query else '') + query
        return url if server is None else server.rstrip('/') + '/' + url.lstrip('/')
