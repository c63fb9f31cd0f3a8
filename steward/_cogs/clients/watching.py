"""
Watching and streaming the watch-events.

The watch-streams of Kubernetes are finite: they are closed by the server
after some timeout, or when the resource version becomes too old (410 Gone).
To get an infinite stream of changes, the listing and the watching
are repeated in cycles, and continued from the latest seen resource version.

The initial listing is simulated as a series of pseudo-events with ``None``
as their type, followed by a bookmark that the listing is over: the informers
use it to replace their whole local state with the listed objects.
"""
import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from typing import cast

import aiohttp

from steward._cogs.clients import api, errors, fetching
from steward._cogs.configs import configuration
from steward._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

HTTP_TOO_MANY_REQUESTS_CODE = 429
DEFAULT_RETRY_DELAY_SECONDS = 1


class WatchingError(Exception):
    """
    Raised when an unexpected error happens in the watch-stream API.
    """


class Bookmark(enum.Enum):
    """ Special marks sent in the stream among raw events. """
    LISTED = enum.auto()  # the listing is over, now streaming.


async def infinite_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        _iterations: int | None = None,  # used in tests/mocks/fixtures
) -> AsyncIterator[Bookmark | bodies.RawEvent]:
    """
    Stream the watch-events infinitely.

    This routine never ends gracefully. If a watcher's stream fails,
    a new one is recreated, and the stream continues.
    It only exits with unrecoverable exceptions.
    """
    where = f'in {namespace!r}' if namespace else 'cluster-wide'
    logger.debug(f"Starting the watch-stream for {resource.gvk} {where}.")
    try:
        while _iterations is None or _iterations > 0:  # equivalent to `while True` in non-test mode
            _iterations = None if _iterations is None else _iterations - 1
            stream = continuous_watch(
                settings=settings,
                resource=resource,
                namespace=namespace,
            )
            try:
                async for raw_event in stream:
                    yield raw_event
            except errors.APIError as ex:
                if ex.status != HTTP_TOO_MANY_REQUESTS_CODE:
                    raise

                retry_after = ex.details.get("retryAfterSeconds") if ex.details else None
                retry_wait = retry_after or DEFAULT_RETRY_DELAY_SECONDS
                logger.warning(
                    f"Receiving `too many requests` error from server, will retry after "
                    f"{retry_wait} seconds. Error details: {ex}"
                )
                await asyncio.sleep(retry_wait)
            await asyncio.sleep(settings.watching.reconnect_backoff)
    finally:
        logger.debug(f"Stopping the watch-stream for {resource.gvk} {where}.")


async def continuous_watch(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
) -> AsyncIterator[Bookmark | bodies.RawEvent]:

    # First, list the resources regularly, and get the list's resource version.
    try:
        objs, resource_version = await fetching.list_objs(
            logger=logger,
            settings=settings,
            resource=resource,
            namespace=namespace,
        )
        for obj in objs:
            yield cast(bodies.RawEvent, {'type': None, 'object': obj})

    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError):
        return

    # Notify the watcher that the initial listing is over, even if there was nothing yielded.
    yield Bookmark.LISTED

    # Repeat through disconnects of the watch as long as the resource version is valid (no errors).
    # The individual watching API calls are disconnected by timeout even if the stream is fine.
    while True:
        stream = watch_objs(
            settings=settings,
            resource=resource,
            namespace=namespace,
            since=resource_version,
        )
        async for raw_input in stream:
            raw_type = raw_input['type']
            raw_object = raw_input['object']

            # "410 Gone" is for the "resource version too old" error, we must restart watching.
            if raw_type == 'ERROR' and cast(errors.RawStatus, raw_object).get('code') == 410:
                where = f'in {namespace!r}' if namespace else 'cluster-wide'
                logger.debug(f"Restarting the watch-stream for {resource.gvk} {where}.")
                return  # out of the regular stream, to the infinite stream.

            # Other watch errors should be fatal for the controller.
            if raw_type == 'ERROR':
                raise WatchingError(f"Error in the watch-stream: {raw_object}")

            # The bookmarks only move the resource version forward, they carry no objects.
            if raw_type == 'BOOKMARK':
                resource_version = raw_object.get('metadata', {}).get('resourceVersion', resource_version)
                continue

            if raw_type not in ['ADDED', 'MODIFIED', 'DELETED']:
                logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                continue

            # Keep the latest seen resource version for continuation of the stream on disconnects.
            body = cast(bodies.RawBody, raw_object)
            body.setdefault('apiVersion', resource.api_version)
            body.setdefault('kind', resource.kind)
            resource_version = body.get('metadata', {}).get('resourceVersion', resource_version)

            yield cast(bodies.RawEvent, raw_input)


async def watch_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: str | None,
        since: str | None = None,
) -> AsyncIterator[bodies.RawInput]:
    """
    Watch objects of a specific resource type since the specific resource version.
    """
    params: dict[str, str] = {}
    params['watch'] = 'true'
    params['allowWatchBookmarks'] = 'true'
    if since is not None:
        params['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(settings.watching.server_timeout)

    connect_timeout = (
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    # Stream the parsed events from the response until it is closed server-side.
    try:
        async for raw_input in api.stream(
            url=resource.get_url(namespace=namespace or None, params=params),
            logger=logger,
            settings=settings,
            timeout=aiohttp.ClientTimeout(
                total=settings.watching.client_timeout,
                sock_connect=connect_timeout,
            ),
        ):
            yield raw_input

    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError):
        pass
