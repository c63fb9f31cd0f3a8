from collections.abc import Mapping
from typing import Any

from steward._cogs.clients import api
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import bodies, references


async def create_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        body: Mapping[str, Any],
        logger: typedefs.Logger,
) -> bodies.Body:
    """
    Create an object; return it as stored by the server.

    Raises ``APIAlreadyExistsError`` if an object with the same name exists.
    """
    created: bodies.Body = await api.post(
        url=resource.get_url(namespace=namespace),
        payload=body,
        logger=logger,
        settings=settings,
    )
    return created
