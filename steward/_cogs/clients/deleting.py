from steward._cogs.clients import api
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import references, selectors


async def delete_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        name: str,
        logger: typedefs.Logger,
) -> None:
    """
    Delete one object by its name.

    The objects with finalizers are not deleted immediately: they get
    the deletion timestamp and stay until their finalizers are released.
    """
    await api.delete(
        url=resource.get_url(namespace=namespace, name=name),
        payload={'propagationPolicy': 'Background'},
        settings=settings,
        logger=logger,
    )


async def delete_collection(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        label_selector: selectors.LabelSelector | None = None,
        field_selector: selectors.FieldSelector | None = None,
        logger: typedefs.Logger,
) -> None:
    params: dict[str, str] = {}
    if label_selector:
        params['labelSelector'] = str(label_selector)
    if field_selector:
        params['fieldSelector'] = str(field_selector)
    await api.delete(
        url=resource.get_url(namespace=namespace or None, params=params),
        payload={'propagationPolicy': 'Background'},
        settings=settings,
        logger=logger,
    )
