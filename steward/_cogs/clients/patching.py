from collections.abc import Mapping
from typing import Any

from steward._cogs.clients import api
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import bodies, patches, references


async def patch_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        name: str,
        patch: Mapping[str, Any],
        patch_type: patches.PatchType = patches.PatchType.MERGE,
        logger: typedefs.Logger,
) -> bodies.Body:
    """
    Patch an object of specific kind; return the patched object.

    The patch semantics is defined by its content type: JSON merge patches
    and strategic merge patches are the same JSON documents, interpreted
    differently by the server (the lists are atomic or merged by keys).

    Unlike the update, the patch is not checked against the resource
    version unless the patch itself contains ``metadata.resourceVersion``.
    """
    patched: bodies.Body = await api.patch(
        url=resource.get_url(namespace=namespace, name=name),
        headers={'Content-Type': patch_type.value},
        payload=patch,
        settings=settings,
        logger=logger,
    )
    return patched


async def update_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        body: Mapping[str, Any],
        subresource: str | None = None,
        logger: typedefs.Logger,
) -> bodies.Body:
    """
    Replace an object (or its subresource, such as the status) as a whole.

    The replacement is guarded by the body's resource version: if the object
    was changed in the meantime, the server responds with a conflict.
    """
    updated: bodies.Body = await api.put(
        url=resource.get_url(namespace=namespace, name=bodies.get_name(body),
                             subresource=subresource),
        payload=body,
        settings=settings,
        logger=logger,
    )
    return updated
