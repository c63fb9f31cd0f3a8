import asyncio
import os

import pytest

from steward._core.engines.peering import LEASE, LeadershipLost, detect_own_id, keepalive, \
                                          run_leading
from steward._kits.memory import MemoryStore

NAME = 'lease1'


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def fast_settings(settings):
    settings.peering.lifetime = 0.04  # renewals every 0.01s, the deadline in 0.02s
    return settings


async def _holder(store):
    body = await store.get(LEASE, 'kube-system', NAME)
    return body['spec']['holderIdentity']


async def _occupy(store, identity):
    """ Make the lease held by another live replica. """
    await store.create({
        'apiVersion': 'coordination.k8s.io/v1', 'kind': 'Lease',
        'metadata': {'name': NAME, 'namespace': 'kube-system'},
        'spec': {'holderIdentity': identity, 'leaseDurationSeconds': 60,
                 'renewTime': '2999-01-01T00:00:00.000000Z'},
    })


async def _occupy_over(store):
    """ Make the lease taken over by another replica. """
    await store.patch(LEASE, 'kube-system', NAME, {'spec': {
        'holderIdentity': 'id2', 'leaseDurationSeconds': 60,
        'renewTime': '2999-01-01T00:00:00.000000Z'}})


async def _release_by_others(store):
    await store.patch(LEASE, 'kube-system', NAME, {'spec': {'holderIdentity': None}})


async def test_leading_is_signalled_and_the_lease_is_released_on_exit(store, fast_settings):
    leading = asyncio.Event()
    task = asyncio.create_task(keepalive(store=store, identity='id1', name=NAME,
                                         settings=fast_settings, leading=leading))
    await asyncio.wait_for(leading.wait(), timeout=1)
    assert await _holder(store) == 'id1'

    await asyncio.sleep(0.1)
    assert len(store.writes('update')) >= 2  # renewals

    task.cancel()
    await asyncio.wait([task])
    assert await _holder(store) is None


async def test_leadership_is_lost_when_not_renewed(store, fast_settings):
    leading = asyncio.Event()
    task = asyncio.create_task(keepalive(store=store, identity='id1', name=NAME,
                                         settings=fast_settings, leading=leading))
    await asyncio.wait_for(leading.wait(), timeout=1)
    await _occupy_over(store)

    with pytest.raises(LeadershipLost):
        await asyncio.wait_for(task, timeout=1)
    assert not leading.is_set()
    assert await _holder(store) == 'id2'  # not released by the loser


async def test_functions_run_only_while_leading(store, fast_settings):
    started = asyncio.Event()

    async def fn():
        started.set()
        await asyncio.Event().wait()

    await _occupy(store, 'id2')
    task = asyncio.create_task(run_leading(fn, store=store, name=NAME,
                                           settings=fast_settings, identity='id1'))
    await asyncio.sleep(0.05)
    assert not started.is_set()

    await _release_by_others(store)
    await asyncio.wait_for(started.wait(), timeout=1)
    assert await _holder(store) == 'id1'

    task.cancel()
    await asyncio.wait([task])
    assert await _holder(store) is None


async def test_functions_are_stopped_when_the_leadership_is_lost(store, fast_settings):
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def fn():
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    task = asyncio.create_task(run_leading(fn, store=store, name=NAME,
                                           settings=fast_settings, identity='id1'))
    await asyncio.wait_for(started.wait(), timeout=1)
    await _occupy_over(store)

    with pytest.raises(LeadershipLost):
        await asyncio.wait_for(task, timeout=1)
    assert cancelled.is_set()


async def test_function_errors_are_raised_and_the_lease_is_released(store, fast_settings):
    async def fn():
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        await asyncio.wait_for(run_leading(fn, store=store, name=NAME,
                                           settings=fast_settings, identity='id1'), timeout=1)
    assert await _holder(store) is None


def test_own_id_from_a_pod(mocker):
    mocker.patch.dict(os.environ, POD_ID='some-pod-1')
    assert detect_own_id() == 'some-pod-1'


def test_own_id_outside_of_a_cluster(mocker):
    mocker.patch.dict(os.environ, clear=True)
    mocker.patch('getpass.getuser', return_value='some-user')
    mocker.patch('socket.gethostname', return_value='some-host')
    own_id = detect_own_id()
    assert own_id.startswith('some-user@some-host/')
    assert own_id.count('/') == 2
