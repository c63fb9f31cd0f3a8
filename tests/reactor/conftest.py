import logging

import pytest

from steward._cogs.structs.references import ObjectKey
from steward._core.reactor.requests import Request, Response, ScopedClient, TriggerRegistry
from steward._core.reactor.triggers import Triggers


@pytest.fixture()
def triggers():
    return Triggers()


@pytest.fixture()
def registry(triggers, app_gvk):
    return TriggerRegistry(triggers, app_gvk, ObjectKey('ns1', 'app1'), generation=1)


@pytest.fixture()
def saver(mocker):
    async def _keep(unmodified, request, response):
        return request.object
    return mocker.AsyncMock(side_effect=_keep)


@pytest.fixture()
def make_request(store, registry, settings, saver, app_gvk):
    """ A factory of the requests for the owner object (or any other given body). """
    def factory(body, **kwargs):
        return Request(
            gvk=app_gvk,
            key=ObjectKey('ns1', 'app1'),
            object=body,
            client=ScopedClient(store, registry),
            settings=settings,
            logger=logging.getLogger('steward.tests'),
            saver=saver,
            **kwargs,
        )
    return factory


@pytest.fixture()
def response(registry):
    return Response(registry=registry)


@pytest.fixture()
def handler():
    """ An async handler that only remembers its calls. """
    async def fn(request, response):
        fn.calls.append((request, response))
    fn.calls = []
    return fn
