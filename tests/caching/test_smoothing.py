import freezegun
import pytest

from steward._cogs.clients.errors import APINotFoundError
from steward._cogs.structs.references import GVK, Uncached
from steward._core.reactor.caching import SmoothingStore
from steward._kits.memory import MemoryStore

CONFIGMAP = GVK('', 'v1', 'ConfigMap')


@pytest.fixture()
def cached(sample):
    return MemoryStore(sample.configmap('c1', a='old'))


@pytest.fixture()
def live(sample):
    return MemoryStore(sample.configmap('c1', a='old'))


@pytest.fixture()
def smoothing(cached, live, settings):
    return SmoothingStore(cached, live, settings=settings)


async def test_reads_go_to_the_cache(smoothing, cached):
    cached.objects[CONFIGMAP][next(iter(cached.objects[CONFIGMAP]))]['data'] = {'a': 'cached'}
    body = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    assert body['data'] == {'a': 'cached'}


async def test_uncached_reads_go_live(smoothing, live):
    live.objects[CONFIGMAP][next(iter(live.objects[CONFIGMAP]))]['data'] = {'a': 'live'}
    body = await smoothing.get(Uncached(CONFIGMAP), 'ns1', 'c1')
    assert body['data'] == {'a': 'live'}


async def test_writes_go_live_and_are_recalled(smoothing, cached, live):
    body = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    body['data'] = {'a': 'new'}
    await smoothing.update(body)

    assert [call.verb for call in live.calls] == ['update']
    assert cached.calls == []
    assert len(smoothing) == 1

    recalled = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    assert recalled['data'] == {'a': 'new'}


async def test_fresher_cache_wins_over_the_overlay(smoothing, cached):
    body = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    body['data'] = {'a': 'new'}
    await smoothing.update(body)

    # The cache catches up with an even newer version.
    fresh = cached.objects[CONFIGMAP][next(iter(cached.objects[CONFIGMAP]))]
    fresh['data'] = {'a': 'newest'}
    fresh['metadata']['resourceVersion'] = '1000'

    recalled = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    assert recalled['data'] == {'a': 'newest'}


async def test_listings_are_not_smoothed(smoothing, sample):
    await smoothing.create(sample.configmap('c2'))
    cached_items = await smoothing.list(CONFIGMAP)
    live_items = await smoothing.list(Uncached(CONFIGMAP))
    assert [item['metadata']['name'] for item in cached_items] == ['c1']
    assert [item['metadata']['name'] for item in live_items] == ['c1', 'c2']


async def test_absent_in_cache_is_absent(smoothing, sample):
    await smoothing.create(sample.configmap('c2'))
    with pytest.raises(APINotFoundError):
        await smoothing.get(CONFIGMAP, 'ns1', 'c2')


async def test_deletions_forget_the_overlay(smoothing, live):
    body = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    await smoothing.update(body)
    assert len(smoothing) == 1
    await smoothing.delete(CONFIGMAP, 'ns1', 'c1')
    assert len(smoothing) == 0
    assert live.objects[CONFIGMAP] == {}


async def test_patches_and_status_updates_are_remembered(smoothing):
    patched = await smoothing.patch(CONFIGMAP, 'ns1', 'c1', {'data': {'b': '2'}})
    assert len(smoothing) == 1
    patched['status'] = {'ready': True}
    await smoothing.update_status(patched)
    recalled = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    assert recalled['status'] == {'ready': True}
    assert recalled['data'] == {'a': 'old', 'b': '2'}


async def test_namespacing_is_taken_from_the_live_store(smoothing):
    assert await smoothing.is_namespaced(CONFIGMAP)
    assert not await smoothing.is_namespaced(GVK('', 'v1', 'Namespace'))


def test_purging_of_expired_entries(smoothing, sample, settings):
    settings.caching.overlay_ttl = 10
    with freezegun.freeze_time('2020-01-01T00:00:00') as frozen:
        smoothing._store(sample.configmap('c1'))
        frozen.tick(5)
        smoothing._store(sample.configmap('c2'))
        smoothing.purge()
        assert len(smoothing) == 2
        frozen.tick(6)
        smoothing.purge()
        assert len(smoothing) == 1
        frozen.tick(5)
        smoothing.purge()
        assert len(smoothing) == 0


async def test_recalled_objects_are_copies(smoothing):
    patched = await smoothing.patch(CONFIGMAP, 'ns1', 'c1', {'data': {'b': '2'}})
    patched['data']['b'] = 'changed-after-the-write'

    recalled = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    assert recalled['data'] == {'a': 'old', 'b': '2'}
    recalled['data']['b'] = 'changed-after-the-read'

    recalled = await smoothing.get(CONFIGMAP, 'ns1', 'c1')
    assert recalled['data'] == {'a': 'old', 'b': '2'}
