import asyncio
import builtins

import pytest

from steward._cogs.clients.errors import APIAlreadyExistsError, APIConflictError, APIError, \
                                         APINotFoundError
from steward._cogs.clients.watching import Bookmark
from steward._cogs.structs.patches import PatchType
from steward._cogs.structs.references import GVK, ObjectKey, Uncached
from steward._cogs.structs.selectors import FieldSelector, LabelSelector
from steward._kits.memory import MemoryStore

CONFIGMAP = GVK('', 'v1', 'ConfigMap')
NAMESPACE = GVK('', 'v1', 'Namespace')
DEPLOYMENT = GVK('apps', 'v1', 'Deployment')


@pytest.mark.parametrize('method', ['_select', 'list'])
def test_list_annotations_refer_to_the_builtin(method):
    # The `list` method shadows the builtin in the class body while it is being built.
    annotation = getattr(MemoryStore, method).__annotations__['return']
    assert annotation.__origin__ is builtins.list


async def test_preexisting_objects_are_not_writes(sample):
    store = MemoryStore(sample.configmap('c1'))
    assert store.calls == []
    body = await store.get(CONFIGMAP, 'ns1', 'c1')
    assert body['metadata']['uid']
    assert body['metadata']['resourceVersion']
    assert body['metadata']['creationTimestamp']


async def test_reads_are_copies(sample):
    store = MemoryStore(sample.configmap('c1'))
    body = await store.get(CONFIGMAP, 'ns1', 'c1')
    body['data']['x'] = 'y'
    assert 'x' not in (await store.get(CONFIGMAP, 'ns1', 'c1'))['data']


async def test_absent_objects(sample):
    store = MemoryStore()
    with pytest.raises(APINotFoundError):
        await store.get(CONFIGMAP, 'ns1', 'c1')
    with pytest.raises(APINotFoundError):
        await store.get(Uncached(CONFIGMAP), 'ns1', 'c1')


async def test_listing_with_selectors(sample):
    labelled = sample.configmap('c2')
    labelled['metadata']['labels'] = {'a': 'b'}
    store = MemoryStore(sample.configmap('c1'), labelled, sample.configmap('c3', namespace='ns2'))

    names = lambda items: [item['metadata']['name'] for item in items]
    assert names(await store.list(CONFIGMAP)) == ['c1', 'c2', 'c3']
    assert names(await store.list(CONFIGMAP, namespace='ns2')) == ['c3']
    assert names(await store.list(CONFIGMAP, label_selector=LabelSelector.parse('a=b'))) == ['c2']
    assert names(await store.list(CONFIGMAP, field_selector=FieldSelector.parse('metadata.name=c1'))) == ['c1']
    assert await store.list(DEPLOYMENT) == []


async def test_creation(sample):
    store = MemoryStore()
    created = await store.create(sample.configmap('c1', a='1'))
    assert created['data'] == {'a': '1'}
    assert [(call.verb, call.key) for call in store.calls] == [('create', ObjectKey('ns1', 'c1'))]


async def test_creation_of_existing_objects(sample):
    store = MemoryStore(sample.configmap('c1'))
    with pytest.raises(APIAlreadyExistsError):
        await store.create(sample.configmap('c1'))


async def test_creation_requires_namespaces(sample):
    store = MemoryStore()
    with pytest.raises(APIError) as err:
        await store.create(sample.configmap('c1', namespace=''))
    assert err.value.status == 400


async def test_cluster_scoped_objects_have_no_namespaces():
    store = MemoryStore()
    await store.create({'apiVersion': 'v1', 'kind': 'Namespace', 'metadata': {'name': 'n1', 'namespace': 'x'}})
    assert ObjectKey('', 'n1') in store.objects[NAMESPACE]
    assert (await store.get(NAMESPACE, 'whatever', 'n1'))['metadata']['name'] == 'n1'
    assert not await store.is_namespaced(NAMESPACE)
    assert await store.is_namespaced(CONFIGMAP)


async def test_updates_check_versions(sample):
    store = MemoryStore(sample.configmap('c1'))
    body = await store.get(CONFIGMAP, 'ns1', 'c1')
    body['data'] = {'a': '2'}
    updated = await store.update(body)
    assert int(updated['metadata']['resourceVersion']) > int(body['metadata']['resourceVersion'])
    with pytest.raises(APIConflictError):
        await store.update(body)


async def test_updates_keep_the_status(sample):
    store = MemoryStore(sample.configmap('c1'))
    body = await store.get(CONFIGMAP, 'ns1', 'c1')
    body['status'] = {'a': 'b'}
    await store.update_status(body)

    body = await store.get(CONFIGMAP, 'ns1', 'c1')
    body['status'] = {'ignored': True}
    updated = await store.update(body)
    assert updated['status'] == {'a': 'b'}
    assert store.writes('update_status')[0].payload == {'status': {'a': 'b'}}


async def test_merge_and_strategic_patches():
    store = MemoryStore({'apiVersion': 'apps/v1', 'kind': 'Deployment',
                         'metadata': {'name': 'd', 'namespace': 'ns1'},
                         'spec': {'template': {'spec': {'containers': [{'name': 'a'}, {'name': 'b'}]}}}})
    patch = {'spec': {'template': {'spec': {'containers': [{'name': 'a', 'image': 'x'}]}}}}

    patched = await store.patch(DEPLOYMENT, 'ns1', 'd', patch, PatchType.STRATEGIC)
    assert patched['spec']['template']['spec']['containers'] == [{'name': 'a', 'image': 'x'}, {'name': 'b'}]

    patched = await store.patch(DEPLOYMENT, 'ns1', 'd', patch, PatchType.MERGE)
    assert patched['spec']['template']['spec']['containers'] == [{'name': 'a', 'image': 'x'}]

    with pytest.raises(APIError) as err:
        await store.patch(DEPLOYMENT, 'ns1', 'd', patch, PatchType.JSON)
    assert err.value.status == 415


async def test_deletion_without_finalizers(sample):
    store = MemoryStore(sample.configmap('c1'))
    await store.delete(CONFIGMAP, 'ns1', 'c1')
    assert store.objects[CONFIGMAP] == {}
    assert [call.verb for call in store.calls] == ['delete']


async def test_deletion_is_blocked_by_finalizers(sample):
    cm = sample.configmap('c1')
    cm['metadata']['finalizers'] = ['x']
    store = MemoryStore(cm)

    await store.delete(CONFIGMAP, 'ns1', 'c1')
    await store.delete(CONFIGMAP, 'ns1', 'c1')
    body = await store.get(CONFIGMAP, 'ns1', 'c1')
    assert body['metadata']['deletionTimestamp']
    assert len(store.calls) == 1

    body['metadata']['finalizers'] = []
    await store.update(body)
    assert store.objects[CONFIGMAP] == {}


async def test_bulk_deletion(sample):
    labelled = sample.configmap('c2')
    labelled['metadata']['labels'] = {'a': 'b'}
    store = MemoryStore(sample.configmap('c1'), labelled)
    await store.delete_all_of(CONFIGMAP, label_selector=LabelSelector.parse('a=b'))
    assert set(store.objects[CONFIGMAP]) == {ObjectKey('ns1', 'c1')}


async def test_writes_are_filtered_by_verbs(sample):
    store = MemoryStore()
    await store.create(sample.configmap('c1'))
    await store.patch(CONFIGMAP, 'ns1', 'c1', {'data': {'a': 'b'}})
    assert [call.verb for call in store.writes()] == ['create', 'patch']
    assert [call.verb for call in store.writes('patch')] == ['patch']


async def test_watching(sample):
    store = MemoryStore(sample.configmap('c1'))
    stream = store.watch(CONFIGMAP)
    first = await stream.__anext__()
    assert first['type'] is None
    assert first['object']['metadata']['name'] == 'c1'
    assert await stream.__anext__() is Bookmark.LISTED

    await store.create(sample.configmap('c2'))
    await store.delete(CONFIGMAP, 'ns1', 'c1')
    added = await asyncio.wait_for(stream.__anext__(), timeout=1)
    deleted = await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert (added['type'], added['object']['metadata']['name']) == ('ADDED', 'c2')
    assert (deleted['type'], deleted['object']['metadata']['name']) == ('DELETED', 'c1')
    await stream.aclose()
    assert store._watchers[CONFIGMAP] == []
