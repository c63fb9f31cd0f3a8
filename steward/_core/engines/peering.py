"""
Peering: only one of the replicas of an operator processes the objects at a time.

The replicas compete for a ``coordination.k8s.io/v1`` Lease. The holder
of the lease renews it regularly and runs the router; the other replicas
retry to acquire it, and take it over when it is not renewed for its duration
(e.g. when the holder is killed without releasing the lease).

If the holder cannot renew the lease for too long, it stops the router
and fails: another replica might have taken over by then. It is expected
that the operator is restarted by its deployment, and joins the competition
anew. On a regular exit, the lease is released for the others to take it
without waiting for its expiration.

The lease is only a coordination hint, not a lock: there are no per-object
locks between the replicas, and a replica that is frozen (not killed)
for longer than the lease duration can still process a few objects
after another one has taken over.

Peering is disabled by default (``settings.peering.standalone = True``).
The Lease objects are not created in advance: the first replica creates one.
"""
import asyncio
import datetime
import getpass
import logging
import os
import random
import socket
import time
from collections.abc import Awaitable, Callable
from typing import Any, NewType, NoReturn

import iso8601

from steward._cogs.aiokits import aiotasks
from steward._cogs.clients import errors, stores
from steward._cogs.configs import configuration
from steward._cogs.structs import references

logger = logging.getLogger(__name__)

Identity = NewType('Identity', str)

LEASE = references.GVK('coordination.k8s.io', 'v1', 'Lease')


class LeadershipLost(Exception):
    """ The lease could not be renewed in time: another replica might hold it now. """


class Lease:
    """
    The parsed spec of a Lease object, with the calculated expiration.

    Only the fields used by the election are parsed; the others are ignored.
    """

    def __init__(
            self,
            *,
            holderIdentity: str | None = None,
            leaseDurationSeconds: int | None = None,
            acquireTime: str | None = None,
            renewTime: str | None = None,
            leaseTransitions: int | None = None,
            **_: Any,  # for the forward-compatibility with the new fields
    ):
        super().__init__()
        self.holder = holderIdentity or ''
        self.duration = datetime.timedelta(seconds=int(leaseDurationSeconds or 0))
        self.acquired = iso8601.parse_date(acquireTime) if acquireTime else None
        self.renewed = iso8601.parse_date(renewTime) if renewTime else None
        self.transitions = int(leaseTransitions or 0)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.holder!r}: renewed={self.renewed}>"

    def is_expired(self, now: datetime.datetime) -> bool:
        return not self.holder or self.renewed is None or self.renewed + self.duration <= now


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _format(moment: datetime.datetime) -> str:
    return moment.strftime('%Y-%m-%dT%H:%M:%S.%fZ')


def get_lease_name(settings: configuration.OperatorSettings, default: str) -> str:
    return settings.peering.name or default


async def acquire(
        *,
        store: stores.ObjectStore,
        identity: Identity,
        name: str,
        settings: configuration.OperatorSettings,
) -> bool:
    """
    Acquire or renew the lease; return ``True`` if it is held by us now.

    The lease is not acquired if held by another live replica, or if another
    replica changes it at the same time: the conflicting writes are rejected
    by the API server thanks to the resource versions.
    """
    namespace = settings.peering.namespace
    now = _now()
    duration = max(1, round(settings.peering.lifetime))
    try:
        body = await store.get(references.Uncached(LEASE), namespace, name)
    except errors.APINotFoundError:
        body = None

    if body is None:
        try:
            await store.create({
                'apiVersion': LEASE.api_version,
                'kind': LEASE.kind,
                'metadata': {'name': name, 'namespace': namespace},
                'spec': {
                    'holderIdentity': identity,
                    'leaseDurationSeconds': duration,
                    'acquireTime': _format(now),
                    'renewTime': _format(now),
                    'leaseTransitions': 0,
                },
            })
        except errors.APIAlreadyExistsError:
            return False
        return True

    lease = Lease(**(body.get('spec') or {}))
    if lease.holder != identity and not lease.is_expired(now):
        return False

    taken = lease.holder != identity
    body['spec'] = dict(body.get('spec') or {}, **{
        'holderIdentity': identity,
        'leaseDurationSeconds': duration,
        'acquireTime': _format(now) if taken or lease.acquired is None else _format(lease.acquired),
        'renewTime': _format(now),
        'leaseTransitions': lease.transitions + 1 if taken else lease.transitions,
    })
    try:
        await store.update(body)
    except errors.APIConflictError:
        return False
    return True


async def release(
        *,
        store: stores.ObjectStore,
        identity: Identity,
        name: str,
        settings: configuration.OperatorSettings,
) -> None:
    """
    Give up the lease if it is held by us, so that others do not wait for its expiration.
    """
    namespace = settings.peering.namespace
    try:
        body = await store.get(references.Uncached(LEASE), namespace, name)
    except errors.APINotFoundError:
        return

    lease = Lease(**(body.get('spec') or {}))
    if lease.holder != identity:
        return

    now = _now()
    body['spec'] = dict(body.get('spec') or {}, **{
        'holderIdentity': None,
        'leaseDurationSeconds': 1,
        'acquireTime': _format(now),
        'renewTime': _format(now),
    })
    await store.update(body)
    logger.info(f"Released the lease {name!r} in {namespace!r}.")


async def _attempt(
        *,
        store: stores.ObjectStore,
        identity: Identity,
        name: str,
        settings: configuration.OperatorSettings,
) -> bool:
    # The API failures are the same as the failures to acquire: retried until the deadline.
    try:
        return await acquire(store=store, identity=identity, name=name, settings=settings)
    except errors.APIError as e:
        logger.warning(f"Failed to acquire or renew the lease {name!r}: {e}")
        return False


async def keepalive(
        *,
        store: stores.ObjectStore,
        identity: Identity,
        name: str,
        settings: configuration.OperatorSettings,
        leading: asyncio.Event,
) -> NoReturn:
    """
    An ever-running coroutine to acquire the lease, and then to keep it renewed.

    The ``leading`` event is set once the lease is acquired. If the lease
    is not renewed for half of its lifetime, :class:`LeadershipLost` is raised.
    On exit, the lease is released if it was acquired.
    """
    namespace = settings.peering.namespace
    retry_period = settings.peering.lifetime / 4
    renew_deadline = settings.peering.lifetime / 2
    try:
        while not await _attempt(store=store, identity=identity, name=name, settings=settings):
            await asyncio.sleep(retry_period)

        leading.set()
        renewed = time.monotonic()
        logger.info(f"Acquired the lease {name!r} in {namespace!r} as {identity!r}.")

        while True:
            await asyncio.sleep(retry_period)
            if await _attempt(store=store, identity=identity, name=name, settings=settings):
                renewed = time.monotonic()
                if not settings.peering.stealth:
                    logger.debug(f"Renewed the lease {name!r} in {namespace!r}.")
            elif time.monotonic() - renewed >= renew_deadline:
                leading.clear()
                raise LeadershipLost(f"Lost the lease {name!r} in {namespace!r}.")
    finally:
        if leading.is_set():
            try:
                await asyncio.shield(release(store=store, identity=identity, name=name, settings=settings))
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception(f"Couldn't release the lease {name!r}. Ignoring.")


async def run_leading(
        fn: Callable[[], Awaitable[None]],
        *,
        store: stores.ObjectStore,
        name: str,
        settings: configuration.OperatorSettings,
        identity: Identity | None = None,
) -> None:
    """
    Run the function only when (and while) the lease is held by this replica.

    The function is started after the lease is acquired, and is cancelled
    when the lease is lost (which is then re-raised as :class:`LeadershipLost`).
    """
    identity = identity if identity is not None else detect_own_id()
    leading = asyncio.Event()
    elector = aiotasks.create_guarded_task(
        name=f"lease keeper for {name!r}",
        coro=keepalive(store=store, identity=identity, name=name, settings=settings, leading=leading),
        cancellable=True,
        logger=logger,
    )
    waiter = asyncio.create_task(leading.wait(), name=f"lease waiter for {name!r}")
    tasks = [elector, waiter]
    try:
        logger.info(f"Waiting for the lease {name!r} in {settings.peering.namespace!r} as {identity!r}.")
        done, _ = await aiotasks.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        if elector in done:
            await aiotasks.reraise([elector])
            return

        worker = asyncio.create_task(fn(), name=f"leader for {name!r}")
        tasks.append(worker)
        done, _ = await aiotasks.wait([elector, worker], return_when=asyncio.FIRST_COMPLETED)
        await aiotasks.reraise(done)
    finally:
        await aiotasks.stop(tasks[::-1], title="peering", logger=logger)


def detect_own_id() -> Identity:
    """
    Detect or generate the id for ourselves, i.e. the running replica.

    It is constructed easy to detect in which pod it is running (if in the
    cluster), or who runs the operator (if not in the cluster, i.e. in the
    dev-mode), and how long ago was it started.

    The pod id can be specified by::

        env:
        - name: POD_ID
          valueFrom:
            fieldRef:
              fieldPath: metadata.name
    """
    pod = os.environ.get('POD_ID', None)
    if pod is not None:
        return Identity(pod)

    user = getpass.getuser()
    host = socket.gethostname()
    now = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d%H%M%S")
    rnd = ''.join(random.choices('abcdefhijklmnopqrstuvwxyz0123456789', k=3))
    return Identity(f'{user}@{host}/{now}/{rnd}')
