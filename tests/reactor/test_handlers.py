import pytest

from steward._cogs.structs.selectors import FieldSelector, LabelSelector
from steward._core.reactor.handlers import ErrorPrefix, FieldSelectorFilter, HandlerError, \
                                           IgnoreRemove, NameNamespaceFilter, SelectorFilter


async def test_ignore_remove_passes_existing_objects(handler, make_request, response, owner):
    request = make_request(owner)
    await IgnoreRemove(handler)(request, response)
    assert handler.calls == [(request, response)]


@pytest.mark.parametrize('body', [
    None,
    {'metadata': {'name': 'app1', 'deletionTimestamp': '2020-01-01T00:00:00Z'}},
])
async def test_ignore_remove_skips_absent_and_deleted(handler, make_request, response, body):
    await IgnoreRemove(handler)(make_request(body), response)
    assert not handler.calls


@pytest.mark.parametrize('name, namespace, expected', [
    ('', '', True),
    ('app1', '', True),
    ('', 'ns1', True),
    ('app1', 'ns1', True),
    ('app2', '', False),
    ('', 'ns2', False),
])
async def test_name_namespace_filter(handler, make_request, response, owner, name, namespace, expected):
    await NameNamespaceFilter(handler, name=name, namespace=namespace)(make_request(owner), response)
    assert bool(handler.calls) is expected


async def test_label_selector_filter(handler, make_request, response, owner):
    owner['metadata']['labels'] = {'tier': 'web'}
    await SelectorFilter(handler, LabelSelector.parse('tier=db'))(make_request(owner), response)
    assert not handler.calls
    await SelectorFilter(handler, LabelSelector.parse('tier=web'))(make_request(owner), response)
    assert handler.calls


async def test_label_selector_filter_skips_absent(handler, make_request, response):
    await SelectorFilter(handler, LabelSelector())(make_request(None), response)
    assert not handler.calls


async def test_field_selector_filter(handler, make_request, response, owner):
    await FieldSelectorFilter(handler, FieldSelector.parse('metadata.name=other'))(make_request(owner), response)
    assert not handler.calls
    await FieldSelectorFilter(handler, FieldSelector.parse('metadata.name=app1'))(make_request(owner), response)
    assert handler.calls


async def test_error_prefix(make_request, response, owner):
    async def fn(request, response):
        raise ValueError("boom")

    with pytest.raises(HandlerError, match=r"^\[route\] boom$") as err:
        await ErrorPrefix(fn, '[route] ')(make_request(owner), response)
    assert isinstance(err.value.__cause__, ValueError)


async def test_sync_handlers_are_wrapped(make_request, response, owner, sample):
    def fn(request, response):
        response.objects(sample.configmap('c1'))

    await IgnoreRemove(fn)(make_request(owner), response)
    assert len(response.collected) == 1
