import freezegun
import iso8601
import pytest

from steward._cogs.clients.errors import APIConflictError, APINotFoundError, build_status
from steward._core.engines.peering import LEASE, Lease, acquire, release
from steward._kits.memory import MemoryStore

NAME = 'lease1'


@pytest.fixture()
def store():
    return MemoryStore()


async def _spec(store):
    body = await store.get(LEASE, 'kube-system', NAME)
    return body['spec']


async def test_absent_leases_are_created(store, settings):
    with freezegun.freeze_time('2020-01-01T00:00:00'):
        assert await acquire(store=store, identity='id1', name=NAME, settings=settings)
    assert await _spec(store) == {
        'holderIdentity': 'id1',
        'leaseDurationSeconds': 60,
        'acquireTime': '2020-01-01T00:00:00.000000Z',
        'renewTime': '2020-01-01T00:00:00.000000Z',
        'leaseTransitions': 0,
    }


async def test_leases_are_renewed_by_holders(store, settings):
    with freezegun.freeze_time('2020-01-01T00:00:00') as frozen:
        await acquire(store=store, identity='id1', name=NAME, settings=settings)
        frozen.tick(15)
        assert await acquire(store=store, identity='id1', name=NAME, settings=settings)

    spec = await _spec(store)
    assert spec['holderIdentity'] == 'id1'
    assert spec['acquireTime'] == '2020-01-01T00:00:00.000000Z'
    assert spec['renewTime'] == '2020-01-01T00:00:15.000000Z'
    assert spec['leaseTransitions'] == 0


async def test_live_leases_are_not_taken_over(store, settings):
    with freezegun.freeze_time('2020-01-01T00:00:00') as frozen:
        await acquire(store=store, identity='id1', name=NAME, settings=settings)
        frozen.tick(59)
        assert not await acquire(store=store, identity='id2', name=NAME, settings=settings)
    assert (await _spec(store))['holderIdentity'] == 'id1'


async def test_expired_leases_are_taken_over(store, settings):
    with freezegun.freeze_time('2020-01-01T00:00:00') as frozen:
        await acquire(store=store, identity='id1', name=NAME, settings=settings)
        frozen.tick(60)
        assert await acquire(store=store, identity='id2', name=NAME, settings=settings)

    spec = await _spec(store)
    assert spec['holderIdentity'] == 'id2'
    assert spec['acquireTime'] == '2020-01-01T00:01:00.000000Z'
    assert spec['leaseTransitions'] == 1


async def test_released_leases_are_taken_over_immediately(store, settings):
    await acquire(store=store, identity='id1', name=NAME, settings=settings)
    await release(store=store, identity='id1', name=NAME, settings=settings)
    assert (await _spec(store))['holderIdentity'] is None
    assert await acquire(store=store, identity='id2', name=NAME, settings=settings)
    assert (await _spec(store))['holderIdentity'] == 'id2'


async def test_leases_of_others_are_not_released(store, settings):
    await acquire(store=store, identity='id1', name=NAME, settings=settings)
    await release(store=store, identity='id2', name=NAME, settings=settings)
    await release(store=store, identity='id2', name='absent', settings=settings)
    assert (await _spec(store))['holderIdentity'] == 'id1'
    assert [call.verb for call in store.calls] == ['create']


async def test_concurrent_creations_are_not_acquired(store, settings, mocker):
    await acquire(store=store, identity='id1', name=NAME, settings=settings)
    notfound = APINotFoundError(build_status(404, 'NotFound', 'not found'), status=404)
    mocker.patch.object(store, 'get', side_effect=notfound)
    assert not await acquire(store=store, identity='id2', name=NAME, settings=settings)


async def test_concurrent_updates_are_not_acquired(store, settings, mocker):
    await acquire(store=store, identity='id1', name=NAME, settings=settings)
    conflict = APIConflictError(build_status(409, 'Conflict', 'modified'), status=409)
    mocker.patch.object(store, 'update', side_effect=conflict)
    assert not await acquire(store=store, identity='id1', name=NAME, settings=settings)


async def test_the_lease_namespace_is_configurable(store, settings):
    settings.peering.namespace = 'ns1'
    await acquire(store=store, identity='id1', name=NAME, settings=settings)
    assert (await store.get(LEASE, 'ns1', NAME))['spec']['holderIdentity'] == 'id1'


def test_lease_parsing():
    lease = Lease(holderIdentity='id1', leaseDurationSeconds=10,
                  renewTime='2020-01-01T00:00:00.000000Z', unknownField='ignored')
    renewed = iso8601.parse_date('2020-01-01T00:00:00Z')
    assert lease.holder == 'id1'
    assert lease.transitions == 0
    assert lease.acquired is None
    assert not lease.is_expired(iso8601.parse_date('2020-01-01T00:00:09Z'))
    assert lease.is_expired(iso8601.parse_date('2020-01-01T00:00:10Z'))
    assert lease.renewed == renewed
    assert Lease().is_expired(renewed)
