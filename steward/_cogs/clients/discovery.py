"""
Discovery of the resources: from the kinds to the plural names & scopes.

The objects only declare their ``apiVersion`` and ``kind``, while the API URLs
need the plural names and the knowledge if the resource is namespaced.
The resources are discovered once per api-version and cached in the context.
"""
from steward._cogs.clients import api, auth, errors
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import references


@auth.authenticated
async def discover(
        gvk: references.GVK,
        *,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
        context: auth.APIContext | None = None,  # injected by the decorator
) -> references.Resource:
    if context is None:
        raise RuntimeError("API instance is not injected by the decorator.")

    if gvk.api_version not in context.discovered:
        async with context.discovery_lock:
            if gvk.api_version not in context.discovered:
                url = f'/api/{gvk.version}' if not gvk.group else f'/apis/{gvk.group}/{gvk.version}'
                try:
                    rsp = await api.get(url, settings=settings, logger=logger, context=context)
                except (errors.APINotFoundError, errors.APIForbiddenError):
                    rsp = {'resources': []}
                context.discovered[gvk.api_version] = {
                    info['kind']: references.Resource(
                        group=gvk.group,
                        version=gvk.version,
                        kind=info['kind'],
                        plural=info['name'],
                        namespaced=info.get('namespaced', True),
                    )
                    for info in rsp.get('resources', [])
                    if '/' not in info['name']  # subresources
                }

    try:
        return context.discovered[gvk.api_version][gvk.kind]
    except KeyError:
        raise errors.APINotFoundError(
            errors.build_status(404, 'NotFound', f"The resource type is not served: {gvk}"),
            status=404,
        ) from None
