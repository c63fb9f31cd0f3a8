"""
The main steward module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the framework's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from steward._cogs.clients.errors import (
    APIError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
    APIAlreadyExistsError,
    APIGoneError,
    APIServerError,
)
from steward._cogs.clients.stores import (
    ObjectStore,
    KubernetesStore,
)
from steward._cogs.configs.configuration import (
    OperatorSettings,
)
from steward._cogs.helpers.typedefs import (
    Logger,
)
from steward._cogs.helpers.versions import (
    version as __version__,
)
from steward._cogs.structs.bodies import (
    Body,
    RawBody,
    RawEvent,
    Labels,
    Annotations,
    OwnerReference,
    build_owner_reference,
)
from steward._cogs.structs.credentials import (
    LoginError,
    AccessError,
    ConnectionInfo,
)
from steward._cogs.structs.patches import (
    PatchType,
)
from steward._cogs.structs.references import (
    GVK,
    ObjectKey,
    Uncached,
)
from steward._cogs.structs.selectors import (
    LabelSelector,
    FieldSelector,
)
from steward._core.actions.loggers import (
    configure,
    LogFormat,
    ObjectLogger,
)
from steward._core.apply.desiredset import (
    Apply,
    ApplyError,
    AggregateError,
    OwnershipConflictError,
)
from steward._core.apply.objectset import (
    ObjectSet,
)
from steward._core.reactor.caching import (
    SmoothingStore,
)
from steward._core.reactor.dispatching import (
    HandlerSet,
    WatchError,
)
from steward._core.reactor.handlers import (
    Handler,
    HandlerError,
    Middleware,
)
from steward._core.reactor.requests import (
    Request,
    Response,
    ScopedClient,
)
from steward._core.reactor.routing import (
    Backend,
    Router,
    RouteBuilder,
    get_default_router,
    set_default_router,
)
from steward._core.reactor.running import (
    run,
    operator,
)
from steward._core.reactor.triggers import (
    Matcher,
)

__all__ = [
    'APIError',
    'APIUnauthorizedError',
    'APIForbiddenError',
    'APINotFoundError',
    'APIConflictError',
    'APIAlreadyExistsError',
    'APIGoneError',
    'APIServerError',
    'ObjectStore',
    'KubernetesStore',
    'OperatorSettings',
    'Logger',
    '__version__',
    'Body',
    'RawBody',
    'RawEvent',
    'Labels',
    'Annotations',
    'OwnerReference',
    'build_owner_reference',
    'LoginError',
    'AccessError',
    'ConnectionInfo',
    'PatchType',
    'GVK',
    'ObjectKey',
    'Uncached',
    'LabelSelector',
    'FieldSelector',
    'configure',
    'LogFormat',
    'ObjectLogger',
    'Apply',
    'ApplyError',
    'AggregateError',
    'OwnershipConflictError',
    'ObjectSet',
    'SmoothingStore',
    'HandlerSet',
    'WatchError',
    'Handler',
    'HandlerError',
    'Middleware',
    'Request',
    'Response',
    'ScopedClient',
    'Backend',
    'Router',
    'RouteBuilder',
    'get_default_router',
    'set_default_router',
    'run',
    'operator',
    'Matcher',
]
