import asyncio
import collections.abc
import itertools
import json
from collections.abc import AsyncIterator, Mapping
from typing import Any

import aiohttp

from steward._cogs.aiokits import aiotasks
from steward._cogs.clients import auth, errors
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs


@auth.authenticated
async def get_default_namespace(
        *,
        context: auth.APIContext | None = None,
) -> str | None:
    if context is None:
        raise RuntimeError("API instance is not injected by the decorator.")
    return context.default_namespace


@auth.authenticated
async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        context: auth.APIContext | None = None,  # injected by the decorator
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    if context is None:  # for type-checking!
        raise RuntimeError("API instance is not injected by the decorator.")

    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')

    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    backoffs = settings.networking.error_backoffs
    backoffs = backoffs if isinstance(backoffs, collections.abc.Iterable) else [backoffs]
    count = len(backoffs) + 1 if isinstance(backoffs, collections.abc.Sized) else None
    backoff: float | None
    for retry, backoff in enumerate(itertools.chain(backoffs, [None]), start=1):
        idx = f"#{retry}/{count}" if count is not None else f"#{retry}"
        what = f"{method.upper()} {url}"
        try:
            if retry > 1:
                logger.debug(f"Request attempt {idx}: {what}")

            # The patch bodies are sent as is: their content type defines their semantics.
            data = json.dumps(payload) if payload is not None else None
            response = await context.session.request(
                method=method,
                url=url,
                data=data,
                headers={'Content-Type': 'application/json', **(headers or {})},
                timeout=timeout,
            )
            await errors.check_response(response)  # but do not parse it!

        except (aiohttp.ClientConnectionError, errors.APIServerError, asyncio.TimeoutError) as e:
            if backoff is None:  # i.e. the last or the only attempt.
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            else:
                logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
                await asyncio.sleep(backoff)  # non-awakable! but still cancellable.
        else:
            if retry > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("Broken retryable routine.")  # impossible, but needed for type-checking.


async def _call(
        method: str,
        url: str,
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        context: auth.APIContext | None = None,
        logger: typedefs.Logger,
) -> Any:
    response = await request(
        method=method,
        url=url,
        context=context,
        payload=payload,
        headers=headers,
        timeout=timeout,
        settings=settings,
        logger=logger,
    )
    async with response:
        return await response.json()


async def get(url: str, **kwargs: Any) -> Any:
    return await _call('get', url, **kwargs)


async def post(url: str, **kwargs: Any) -> Any:
    return await _call('post', url, **kwargs)


async def put(url: str, **kwargs: Any) -> Any:
    return await _call('put', url, **kwargs)


async def patch(url: str, **kwargs: Any) -> Any:
    return await _call('patch', url, **kwargs)


async def delete(url: str, **kwargs: Any) -> Any:
    return await _call('delete', url, **kwargs)


async def stream(
        url: str,  # relative to the server/api root.
        *,
        settings: configuration.OperatorSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        stopper: aiotasks.Future | None = None,
        logger: typedefs.Logger,
) -> AsyncIterator[Any]:
    response = await request(
        method='get',
        url=url,
        payload=payload,
        headers=headers,
        timeout=timeout,
        settings=settings,
        logger=logger,
    )
    response_close_callback = lambda _: response.close()  # to remove the positional arg.
    if stopper is not None:
        stopper.add_done_callback(response_close_callback)
    try:
        async with response:
            async for line in iter_jsonlines(response.content):
                yield json.loads(line.decode('utf-8'))
    except aiohttp.ClientConnectionError:
        if stopper is not None and stopper.done():
            pass
        else:
            raise
    finally:
        if stopper is not None:
            stopper.remove_done_callback(response_close_callback)


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Iterate line by line over the response's content.

    The aiohttp's own line iteration fails if the accumulated buffer
    length is above 2**17 bytes, i.e. 128 KB. Kubernetes objects
    (e.g. secrets with the applied snapshots) can be much longer.
    """
    buffer = b''
    async for data in content.iter_chunked(chunk_size):
        buffer += data
        del data

        start = 0
        index = buffer.find(b'\n', start)
        while index >= 0:
            line = buffer[start:index]
            if line:
                yield line
            del line
            start = index + 1
            index = buffer.find(b'\n', start)

        if start > 0:
            buffer = buffer[start:]

    if buffer:
        yield buffer
