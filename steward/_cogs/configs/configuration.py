"""
All configuration flags, options, settings to fine-tune a controller.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).

The settings object is created once per router and passed explicitly
down to every component that needs it (as ``settings=``).
"""
import dataclasses
from collections.abc import Iterable


@dataclasses.dataclass
class ApplySettings:

    prefix: str = 'apply.acorn.io/'
    """
    A prefix for the labels & annotations of the managed objects.

    The ownership hash label, the owner annotations, the applied snapshot,
    and the opt-out flags are all stored under this prefix.
    Changing it orphans all the objects managed before: they will not be
    listed as owned, and will not be pruned.
    """


@dataclasses.dataclass
class QueueingSettings:

    workers: int = 5
    """
    How many objects of the same kind can be processed concurrently.
    """

    base_delay: float = 0.005
    """
    The first delay (in seconds) of re-processing a failed object.
    Doubles on every consecutive failure of the same object.
    """

    max_delay: float = 1000.0
    """
    The upper limit (in seconds) of the re-processing delay for failed objects.
    """


@dataclasses.dataclass
class CachingSettings:

    overlay_ttl: float = 10.0
    """
    How long (in seconds) the recently written objects mask the watch cache.
    """

    purge_interval: float = 10.0
    """
    How often (in seconds) the expired overlay entries are removed.
    """


@dataclasses.dataclass
class TriggersSettings:

    prune_stale: bool = False
    """
    Forget the dependencies a handler did not touch in its latest run.

    By default, the dependencies are accumulated for the whole lifetime
    of the process: once an object was read, its changes will re-trigger
    the reading object forever. With this flag, only the dependencies
    registered during the latest processing of the object are kept.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: float | None = None
    """
    The maximum duration of one streaming request. Patched in some tests.
    If ``None``, then obeys the server-side timeouts (they seem to be ~5-10 mins).
    """

    client_timeout: float | None = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between watch requests (to prevent API flooding).
    """


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the whole API request (from connecting till the end of reading).
    """

    connect_timeout: float | None = None
    """
    A timeout for establishing the connection to the API server.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5, 8, 13)
    """
    Backoffs for retrying on the API server errors and network failures.

    The number of backoffs defines the number of attempts beyond the first one.
    When the backoffs are over, the error is escalated to the caller.
    """


@dataclasses.dataclass
class PeeringSettings:

    standalone: bool = True
    """
    Run without the leader election: every replica processes all the objects.

    If ``False``, the replicas of the operator compete for a ``Lease``,
    and only the holder of the lease runs the router; the others wait.
    """

    name: str = ''
    """
    The name of the ``Lease`` object to compete for.
    If empty, the router's name is used.
    """

    namespace: str = 'kube-system'
    """
    The namespace of the ``Lease`` object.
    """

    lifetime: float = 60.0
    """
    For how long (in seconds) the lease is valid after its last renewal.

    The holder renews the lease every quarter of the lifetime, and stops
    the operator if the lease could not be renewed for half of the lifetime.
    The other replicas take over when the lease is not renewed for its lifetime.
    """

    stealth: bool = False
    """
    Should this operator log its lease renewals?

    The acquisitions and the losses of the lease are logged unconditionally.
    """


@dataclasses.dataclass
class OperatorSettings:
    apply: ApplySettings = dataclasses.field(default_factory=ApplySettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    caching: CachingSettings = dataclasses.field(default_factory=CachingSettings)
    triggers: TriggersSettings = dataclasses.field(default_factory=TriggersSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    peering: PeeringSettings = dataclasses.field(default_factory=PeeringSettings)
