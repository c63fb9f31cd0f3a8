import json

import aiohttp.web
import pytest

from steward._cogs.clients.watching import Bookmark, WatchingError, continuous_watch, infinite_watch


def _stream(*events):
    return aiohttp.web.Response(text=''.join(json.dumps(event) + '\n' for event in events))


@pytest.fixture()
def listing(resp_mocker, aresponses, hostname):
    result = {'apiVersion': 'example.com/v1', 'kind': 'AppList',
              'metadata': {'resourceVersion': '5'},
              'items': [{'metadata': {'name': 'a1', 'resourceVersion': '4'}}]}
    callback = resp_mocker(return_value=aiohttp.web.json_response(result))
    aresponses.add(hostname, '/apis/example.com/v1/apps', 'get', callback)
    return callback


async def test_listing_then_watching(
        listing, resp_mocker, aresponses, hostname, resource, settings):
    watch = resp_mocker(return_value=_stream(
        {'type': 'ADDED', 'object': {'metadata': {'name': 'a2', 'resourceVersion': '6'}}},
        {'type': 'BOOKMARK', 'object': {'metadata': {'resourceVersion': '7'}}},
        {'type': 'UNKNOWN', 'object': {}},
        {'type': 'ERROR', 'object': {'code': 410}},
    ))
    aresponses.add(hostname, '/apis/example.com/v1/apps', 'get', watch)

    events = []
    async for event in continuous_watch(settings=settings, resource=resource, namespace=None):
        events.append(event)

    assert events == [
        {'type': None, 'object': {'apiVersion': 'example.com/v1', 'kind': 'App',
                                  'metadata': {'name': 'a1', 'resourceVersion': '4'}}},
        Bookmark.LISTED,
        {'type': 'ADDED', 'object': {'apiVersion': 'example.com/v1', 'kind': 'App',
                                     'metadata': {'name': 'a2', 'resourceVersion': '6'}}},
    ]
    query = watch.call_args_list[0][0][0].query
    assert query['watch'] == 'true'
    assert query['resourceVersion'] == '5'


async def test_watching_continues_from_the_latest_version(
        listing, resp_mocker, aresponses, hostname, resource, settings):
    first = resp_mocker(return_value=_stream(
        {'type': 'MODIFIED', 'object': {'metadata': {'name': 'a1', 'resourceVersion': '8'}}},
    ))
    second = resp_mocker(return_value=_stream(
        {'type': 'BOOKMARK', 'object': {'metadata': {'resourceVersion': '9'}}},
    ))
    third = resp_mocker(return_value=_stream(
        {'type': 'ERROR', 'object': {'code': 410}},
    ))
    aresponses.add(hostname, '/apis/example.com/v1/apps', 'get', first)
    aresponses.add(hostname, '/apis/example.com/v1/apps', 'get', second)
    aresponses.add(hostname, '/apis/example.com/v1/apps', 'get', third)

    async for _ in continuous_watch(settings=settings, resource=resource, namespace=None):
        pass

    assert second.call_args_list[0][0][0].query['resourceVersion'] == '8'
    assert third.call_args_list[0][0][0].query['resourceVersion'] == '9'


async def test_unexpected_errors_are_fatal(
        listing, resp_mocker, aresponses, hostname, resource, settings):
    watch = resp_mocker(return_value=_stream({'type': 'ERROR', 'object': {'code': 666}}))
    aresponses.add(hostname, '/apis/example.com/v1/apps', 'get', watch)

    with pytest.raises(WatchingError):
        async for _ in continuous_watch(settings=settings, resource=resource, namespace=None):
            pass


async def test_infinite_watch_restarts_with_listings(
        resp_mocker, aresponses, hostname, resource, settings):
    settings.watching.reconnect_backoff = 0
    for idx in range(2):
        listing = {'items': [{'metadata': {'name': f'a{idx}'}}], 'metadata': {'resourceVersion': '1'}}
        aresponses.add(hostname, '/apis/example.com/v1/apps', 'get',
                       resp_mocker(return_value=aiohttp.web.json_response(listing)))
        aresponses.add(hostname, '/apis/example.com/v1/apps', 'get',
                       resp_mocker(return_value=_stream({'type': 'ERROR', 'object': {'code': 410}})))

    events = []
    async for event in infinite_watch(settings=settings, resource=resource, namespace=None, _iterations=2):
        events.append(event)

    assert [event if isinstance(event, Bookmark) else event['object']['metadata']['name']
            for event in events] == ['a0', Bookmark.LISTED, 'a1', Bookmark.LISTED]
