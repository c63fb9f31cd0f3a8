import dataclasses
import json
import logging

import aiohttp.web
import pytest
from aresponses import ResponsesMockServer

import steward
from steward._cogs.clients import auth
from steward._cogs.clients.auth import APIContext
from steward._cogs.configs.configuration import OperatorSettings
from steward._cogs.structs.credentials import ConnectionInfo
from steward._cogs.structs.references import GVK, Resource
from steward._kits.memory import MemoryStore


def pytest_configure(config):
    # Unexpected warnings should fail the tests. Use `-Wignore` to explicitly disable it.
    config.addinivalue_line('filterwarnings', 'error')


@pytest.fixture()
def settings():
    return OperatorSettings()


@pytest.fixture()
def logger():
    return logging.getLogger('steward.tests')


@pytest.fixture()
def app_gvk():
    return GVK('example.com', 'v1', 'App')


@pytest.fixture()
def owner(app_gvk):
    return {
        'apiVersion': app_gvk.api_version,
        'kind': app_gvk.kind,
        'metadata': {'namespace': 'ns1', 'name': 'app1', 'uid': 'uid-app1'},
        'spec': {},
    }


@pytest.fixture()
def store(owner):
    return MemoryStore(owner)


#
# Mocks for the HTTP API. All the API clients are tested via `aresponses`:
# no external calls must be made under any circumstances.
#

@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
async def aresponses():
    """ The mocked HTTP server, bound to the test's own event loop. """
    async with ResponsesMockServer() as server:
        yield server


@pytest.fixture()
def resource():
    return Resource('example.com', 'v1', 'App', 'apps', namespaced=True)


@pytest.fixture()
async def api_context(hostname):
    info = ConnectionInfo(server=f'http://{hostname}', default_namespace='default')
    context = APIContext(info)
    yield context
    await context.close()


@pytest.fixture()
def fake_context(api_context):
    """
    Provide a freshly created API context for every test, as the router would do.

    The context variable is set in a sync fixture, so that the test's task inherits it.
    """
    token = auth.context_var.set(api_context)
    try:
        yield api_context
    finally:
        auth.context_var.reset(token)


@pytest.fixture()
def resp_mocker(fake_context, mocker):
    """
    A factory of server-side callbacks for `aresponses` with mocking/spying.

    The value of the fixture is a function, which returns a coroutine mock.
    That coroutine mock should be passed to `aresponses.add` as a response
    callback function. When called, it returns the response as defined
    by the function's arguments (specifically, return_value or side_effect).

    Sample usage::

        def test_me(resp_mocker):
            response = aiohttp.web.json_response({'a': 'b'})
            callback = resp_mocker(return_value=response)
            aresponses.add(hostname, '/path/', 'get', callback)
            do_something()
            assert callback.called
            assert callback.call_count == 1
    """
    def resp_maker(*args, **kwargs):
        actual_response = mocker.MagicMock(*args, **kwargs)

        async def resp_mock_effect(request):
            # The request's content can be read inside of the handler only. We preserve
            # the data into a conventional field, so that they could be asserted later.
            text = await request.text()
            try:
                request['data'] = json.loads(text) if text else None
            except json.JSONDecodeError:
                request['data'] = text
            return actual_response()

        return mocker.AsyncMock(side_effect=resp_mock_effect)
    return resp_maker


@pytest.fixture()
def version_api(resp_mocker, aresponses, hostname, resource):
    result = {'resources': [
        {'name': resource.plural, 'kind': resource.kind, 'namespaced': resource.namespaced},
        {'name': f'{resource.plural}/status', 'kind': resource.kind, 'namespaced': resource.namespaced},
    ]}
    version_url = f'/apis/{resource.group}/{resource.version}'
    list_mock = resp_mocker(return_value=aiohttp.web.json_response(result))
    aresponses.add(hostname, version_url, 'get', list_mock)
    return list_mock


@pytest.fixture(autouse=True)
def clean_default_router():
    router = steward.Router()
    steward.set_default_router(router)
    yield router


@dataclasses.dataclass(frozen=True)
class Sample:
    """ Shortcuts to build the sample objects in the tests. """

    @staticmethod
    def configmap(name: str, namespace: str = 'ns1', **data: str) -> dict:
        return {'apiVersion': 'v1', 'kind': 'ConfigMap',
                'metadata': {'name': name, 'namespace': namespace}, 'data': dict(data)}

    @staticmethod
    def secret(name: str, namespace: str = 'ns1', type: str | None = None, **data: str) -> dict:
        body = {'apiVersion': 'v1', 'kind': 'Secret',
                'metadata': {'name': name, 'namespace': namespace}, 'data': dict(data)}
        if type is not None:
            body['type'] = type
        return body


@pytest.fixture()
def sample():
    return Sample()
