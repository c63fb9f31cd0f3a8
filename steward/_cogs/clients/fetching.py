from collections.abc import Collection

from steward._cogs.clients import api
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import bodies, references, selectors


async def read_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        name: str,
        logger: typedefs.Logger,
) -> bodies.Body:
    """
    Read one object by its name; raise ``APINotFoundError`` if it is absent.
    """
    body: bodies.Body = await api.get(
        url=resource.get_url(namespace=namespace, name=name),
        logger=logger,
        settings=settings,
    )
    body.setdefault('apiVersion', resource.api_version)
    body.setdefault('kind', resource.kind)
    return body


async def list_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        label_selector: selectors.LabelSelector | None = None,
        field_selector: selectors.FieldSelector | None = None,
        logger: typedefs.Logger,
) -> tuple[Collection[bodies.Body], str | None]:
    """
    List the objects of specific resource type.

    The cluster-wide call is used if the resource is cluster-scoped,
    or if the namespace is not specified (all namespaces are listed).
    Otherwise, the namespace-scoped call is used.

    The items of the lists have no ``kind`` & ``apiVersion`` in the API
    responses, so they are restored from the list's own fields.
    """
    params: dict[str, str] = {}
    if label_selector:
        params['labelSelector'] = str(label_selector)
    if field_selector:
        params['fieldSelector'] = str(field_selector)

    rsp = await api.get(
        url=resource.get_url(namespace=namespace or None, params=params),
        logger=logger,
        settings=settings,
    )

    items: list[bodies.Body] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', []):
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'].removesuffix('List'))
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
