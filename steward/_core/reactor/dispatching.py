"""
Dispatching of the object changes to the handlers.

The handler set is the whole processing of the objects of all the watched
resource types: it gets the keys of the changed objects from the backend's
queues, loads the objects, calls the handlers, fans out the changes to the
dependent objects, and persists the handlers' results.

The keys coming from the dependencies (not from the object's own changes)
are prefixed with :data:`TRIGGER_PREFIX`: they are processed the same way,
but do not fan out further, so that the dependencies do not loop.
"""
import copy
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from steward._cogs.aiokits import aiolocks
from steward._cogs.clients import errors, stores
from steward._cogs.configs import configuration
from steward._cogs.structs import bodies, references
from steward._core.actions import invocation, loggers
from steward._core.apply import desiredset
from steward._core.reactor import handlers, requests, triggers

logger = logging.getLogger(__name__)

TRIGGER_PREFIX = '_t '

# The hook for the handlers' errors: returns to resolve the key, raises to retry it.
ErrorHook = Callable[[requests.Request, requests.Response, Exception], Awaitable[None] | None]


class Backend(Protocol):
    """ What the dispatching needs from the backend: the store, the watches, the triggers. """
    store: stores.ObjectStore

    async def watch(
            self,
            gvk: references.GVK,
            name: str,
            processor: Callable[[references.GVK, str], Awaitable[None]],
    ) -> None: ...

    def trigger(self, gvk: references.GVK, key: references.ObjectKey, delay: float) -> None: ...


class WatchError(Exception):
    """ One or several resource types could not be watched. """

    def __init__(self, errors: Iterable[Exception]) -> None:
        self.errors = list(errors)
        super().__init__('; '.join(str(error) for error in self.errors))


class HandlerSet:

    def __init__(
            self,
            name: str,
            backend: Backend,
            *,
            settings: configuration.OperatorSettings | None = None,
            on_error: ErrorHook | None = None,
    ) -> None:
        super().__init__()
        self.name = name
        self.backend = backend
        self.settings = settings if settings is not None else configuration.OperatorSettings()
        self.on_error = on_error
        self.handlers: dict[references.GVK, list[handlers.Handler]] = {}
        self.triggers = triggers.Triggers()
        self.locks = aiolocks.KeyedLocks()
        self.watching: dict[references.GVK, None] = {}  # ordered set
        self.apply = desiredset.Apply(backend.store, settings=self.settings)

    def add_handler(self, gvk: references.GVK, handler: handlers.Handler) -> None:
        self.handlers.setdefault(gvk, []).append(handler)

    async def watch_gvk(self, *gvks: references.GVK) -> None:
        """ Start watching the resource types if not yet. """
        errs: list[Exception] = []
        for gvk in gvks:
            if gvk in self.watching:
                continue
            try:
                await self.backend.watch(gvk, self.name, self.on_change)
            except Exception as e:
                errs.append(e)
            else:
                self.watching[gvk] = None
        if errs:
            raise WatchError(errs)

    async def on_change(self, gvk: references.GVK, key: str) -> None:
        from_trigger = key.startswith(TRIGGER_PREFIX)
        key = key.removeprefix(TRIGGER_PREFIX)
        objkey = references.ObjectKey.parse(key)
        async with self.locks.lock(f"{gvk.kind} {key}"):
            try:
                body = await self.backend.store.get(gvk, objkey.namespace, objkey.name)
            except errors.APINotFoundError:
                body = None
            await self.handle(gvk, objkey, body, from_trigger=from_trigger)

    async def handle(
            self,
            gvk: references.GVK,
            key: references.ObjectKey,
            body: bodies.Body | None,
            *,
            from_trigger: bool = False,
    ) -> requests.Response:
        route = self.handlers.get(gvk, [])
        generation = self.triggers.begin(gvk, key)
        registry = requests.TriggerRegistry(self.triggers, gvk, key, generation=generation)
        request = requests.Request(
            gvk=gvk,
            key=key,
            object=copy.deepcopy(body),
            client=requests.ScopedClient(self.backend.store, registry),
            settings=self.settings,
            logger=loggers.ObjectLogger(gvk=gvk, key=key, body=body),
            saver=self.save,
            from_trigger=from_trigger,
        )
        response = requests.Response(registry=registry)

        succeeded = True
        if route:
            what = "Handling trigger" if from_trigger else "Handling"
            logger.debug(f"{what} [{key}] [{gvk}]")
            try:
                for handler in route:
                    await invocation.invoke(handler, request, response)
            except Exception as e:
                succeeded = False
                await self._handle_error(request, response, e)

        if not from_trigger:
            for target in self.triggers.invoke(gvk, key, body):
                self.backend.trigger(target.gvk, target.key, 0)

        if route:
            try:
                await self.save(body, request, response)
            except Exception as e:
                succeeded = False
                await self._handle_error(request, response, e)
            if response.delay > 0:
                self.backend.trigger(gvk, key, response.delay)
            if succeeded and self.settings.triggers.prune_stale:
                self.triggers.collect(gvk, key, generation)

        await self.watch_gvk(*registry.gvks)
        return response

    async def _handle_error(
            self,
            request: requests.Request,
            response: requests.Response,
            exc: Exception,
    ) -> None:
        """ Pass the error to the error hook, or re-raise it if there is no hook. """
        if self.on_error is None:
            raise exc
        await invocation.invoke(self.on_error, request, response, exc)

    async def save(
            self,
            unmodified: bodies.Body | None,
            request: requests.Request,
            response: requests.Response,
    ) -> bodies.Body | None:
        """ Persist the status of the object and apply its children. """
        obj = request.object
        if obj is not None and unmodified is not None and _status(obj) != _status(unmodified):
            obj = await self.backend.store.update_status(obj)
            request.object = obj

        if obj is None:
            return None

        apply = self.apply.with_owner_sub_context(self.name).with_prune_gvks(*self.watching)
        apply = apply.with_logger(request.logger)
        if response.no_prune:
            apply = apply.with_no_prune()
        await apply.apply(obj, *response.collected)
        return obj


def _status(body: bodies.Body) -> Any:
    return body.get('status')
