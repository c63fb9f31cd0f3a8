"""
The routes of the handlers, and the backend that runs them.

The operators declare which handlers process which resource types::

    router = steward.Router('myapp')

    @router.handle(GVK('example.com', 'v1', 'App')).namespace('prod').handler
    async def deploy(request: steward.Request, response: steward.Response) -> None:
        response.objects(make_deployment(request.object))

    await router.start()

The backend glues the informers (the watch caches), the work queues
of every watched type, and the smoothing overlay of the recent writes.
"""
import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from steward._cogs.aiokits import aiotasks
from steward._cogs.clients import stores
from steward._cogs.configs import configuration
from steward._cogs.structs import references, selectors
from steward._core.engines import peering
from steward._core.reactor import caching, dispatching, finalizing, handlers, informers, queueing

logger = logging.getLogger(__name__)

Processor = Callable[[references.GVK, str], Awaitable[None]]


class Backend:

    def __init__(
            self,
            live: stores.ObjectStore,
            *,
            settings: configuration.OperatorSettings | None = None,
            namespace: str = '',
    ) -> None:
        super().__init__()
        self.settings = settings if settings is not None else configuration.OperatorSettings()
        self.namespace = namespace
        self.informers = informers.InformerStore(live, namespace=namespace)
        self.store = caching.SmoothingStore(self.informers, live, settings=self.settings)
        self.controllers: dict[references.GVK, queueing.Controller] = {}
        self.processors: dict[references.GVK, dict[str, Processor]] = {}
        self.started = False

    async def watch(self, gvk: references.GVK, name: str, processor: Processor) -> None:
        """ Process the changes of the type's objects; start now if already running. """
        self.processors.setdefault(gvk, {})[name] = processor
        if gvk not in self.controllers:
            self.controllers[gvk] = queueing.Controller(
                gvk, lambda key: self._process(gvk, key), settings=self.settings)
            if self.started:
                self._start_one(gvk)

    def trigger(self, gvk: references.GVK, key: references.ObjectKey | str, delay: float) -> None:
        controller = self.controllers.get(gvk)
        if controller is None:
            logger.debug(f"Ignoring the trigger of an unwatched {gvk} {key}.")
        elif delay > 0:
            controller.enqueue_after(str(key), delay)
        else:
            controller.enqueue(dispatching.TRIGGER_PREFIX + str(key))

    async def _process(self, gvk: references.GVK, key: str) -> None:
        for processor in list(self.processors.get(gvk, {}).values()):
            await processor(gvk, key)

    def _start_one(self, gvk: references.GVK) -> None:
        controller = self.controllers[gvk]
        controller.start()
        informer = self.informers.informer(gvk)
        informer.add_handler(lambda key: controller.enqueue(str(key)))

    async def start(self) -> None:
        if not self.started:
            self.started = True
            for gvk in list(self.controllers):
                self._start_one(gvk)

    async def stop(self) -> None:
        for controller in self.controllers.values():
            await controller.stop()
        await self.informers.stop()
        self.started = False

    async def run(self) -> None:
        """ Run until any of the informers fails, or forever. """
        await self.start()
        purger = aiotasks.create_guarded_task(
            name="overlay purger",
            coro=self.store.run_purging(),
            cancellable=True,
            logger=logger,
        )
        try:
            await self.informers.wait_for_failure()
        finally:
            await aiotasks.stop([purger], title="overlay purger", logger=logger)
            await self.stop()


class Router:
    """
    The registry of the routes, and the entry point to run them.

    Errors of the handlers go to :attr:`on_error` if set: returning from it
    resolves the object, raising from it retries the object later.
    Without the hook, all errors are retried.
    """

    def __init__(
            self,
            name: str = 'steward',
            *,
            settings: configuration.OperatorSettings | None = None,
            store: stores.ObjectStore | None = None,
            namespace: str = '',
    ) -> None:
        super().__init__()
        self.name = name
        self.settings = settings if settings is not None else configuration.OperatorSettings()
        self.store = store
        self.namespace = namespace
        self.on_error: dispatching.ErrorHook | None = None
        self.routes: list[tuple[references.GVK, handlers.Handler]] = []
        self.backend: Backend | None = None
        self.handler_set: dispatching.HandlerSet | None = None

    def handle(self, gvk: references.GVK) -> "RouteBuilder":
        return RouteBuilder(router=self, gvk=gvk)

    def add(self, gvk: references.GVK, handler: handlers.Handler) -> None:
        self.routes.append((gvk, handler))

    async def start(self) -> None:
        """
        Watch all the routed types and process their objects until failed or cancelled.

        Unless standalone, wait for the leadership first, and stop when it is lost.
        """
        live = self.store if self.store is not None else stores.KubernetesStore(settings=self.settings)
        if self.settings.peering.standalone:
            await self._run(live)
        else:
            name = peering.get_lease_name(self.settings, self.name)
            await peering.run_leading(lambda: self._run(live), store=live, name=name, settings=self.settings)

    async def _run(self, live: stores.ObjectStore) -> None:
        self.backend = Backend(live, settings=self.settings, namespace=self.namespace)
        self.handler_set = dispatching.HandlerSet(self.name, self.backend,
                                                  settings=self.settings, on_error=self.on_error)
        for gvk, handler in self.routes:
            self.handler_set.add_handler(gvk, handler)
        await self.handler_set.watch_gvk(*dict.fromkeys(gvk for gvk, _ in self.routes))
        logger.info(f"Router {self.name!r} is started with {len(self.routes)} routes.")
        try:
            await self.backend.run()
        except asyncio.CancelledError:
            logger.info(f"Router {self.name!r} is stopped.")
            raise


@dataclasses.dataclass(frozen=True)
class RouteBuilder:
    """
    A route being declared: every method returns a modified copy.

    The filters are checked outside-in: the removed objects (unless included),
    the field selector, the label selector, the name & namespace,
    then the middleware in the order given, and finally the handler.
    """
    router: Router
    gvk: references.GVK
    namespace_: str = ''
    name_: str = ''
    selector_: selectors.LabelSelector | None = None
    field_selector_: selectors.FieldSelector | None = None
    include_removed_: bool = False
    middleware_: tuple[handlers.Middleware, ...] = ()
    finalize_id: str = ''

    def namespace(self, namespace: str) -> "RouteBuilder":
        return dataclasses.replace(self, namespace_=namespace)

    def name(self, name: str) -> "RouteBuilder":
        return dataclasses.replace(self, name_=name)

    def selector(self, selector: selectors.LabelSelector | str | None) -> "RouteBuilder":
        if isinstance(selector, str):
            selector = selectors.LabelSelector.parse(selector)
        return dataclasses.replace(self, selector_=selector)

    def field_selector(self, selector: selectors.FieldSelector | str | None) -> "RouteBuilder":
        if isinstance(selector, str):
            selector = selectors.FieldSelector.parse(selector)
        return dataclasses.replace(self, field_selector_=selector)

    def include_removed(self) -> "RouteBuilder":
        return dataclasses.replace(self, include_removed_=True)

    def middleware(self, *middleware: handlers.Middleware) -> "RouteBuilder":
        return dataclasses.replace(self, middleware_=self.middleware_ + middleware)

    def handler(self, fn: handlers.Handler) -> handlers.Handler:
        self.router.add(self.gvk, self.wrap(fn))
        return fn

    def finalize(self, token: str, fn: handlers.Handler | None = None) -> Any:
        builder = dataclasses.replace(self, finalize_id=token)
        if fn is None:
            return builder.handler
        return builder.handler(fn)

    def wrap(self, fn: handlers.Handler) -> handlers.Handler:
        route = getattr(fn, '__qualname__', None) or repr(fn)
        handler: handlers.Handler = fn
        if self.finalize_id:
            handler = finalizing.FinalizerHandler(self.finalize_id, handler)
        for middleware in reversed(self.middleware_):
            handler = middleware(handler)
        if self.name_ or self.namespace_:
            handler = handlers.NameNamespaceFilter(handler, name=self.name_, namespace=self.namespace_)
        if self.selector_ is not None:
            handler = handlers.SelectorFilter(handler, self.selector_)
        if self.field_selector_ is not None:
            handler = handlers.FieldSelectorFilter(handler, self.field_selector_)
        if not self.include_removed_ and not self.finalize_id:
            handler = handlers.IgnoreRemove(handler)
        return handlers.ErrorPrefix(handler, f"[{route}] ")


_default_router: Router | None = None


def get_default_router() -> Router:
    """
    Get the default router to be used by the CLI and the module-level routes
    unless the explicit router is provided to them.
    """
    global _default_router
    if _default_router is None:
        _default_router = Router()
    return _default_router


def set_default_router(router: Router) -> None:
    """
    Set the default router to be used by the CLI and the module-level routes
    unless the explicit router is provided to them.
    """
    global _default_router
    _default_router = router
