"""
Running the router: logging in, and processing the objects until stopped.
"""
import asyncio
import logging

from steward._cogs.clients import auth
from steward._cogs.configs import configuration
from steward._core.intents import piggybacking
from steward._core.reactor import routing

logger = logging.getLogger(__name__)


def run(
        *,
        router: routing.Router | None = None,
        settings: configuration.OperatorSettings | None = None,
        namespace: str | None = None,
) -> None:
    """
    Run the router synchronously, in its own event loop.

    If ``uvloop`` is installed, it is used for the loop.
    """
    coro = operator(router=router, settings=settings, namespace=namespace)
    try:
        try:
            import uvloop
        except ImportError:
            asyncio.run(coro)
        else:
            uvloop.run(coro)
    except (asyncio.CancelledError, KeyboardInterrupt):
        pass


async def operator(
        *,
        router: routing.Router | None = None,
        settings: configuration.OperatorSettings | None = None,
        namespace: str | None = None,
) -> None:
    """
    Run the router asynchronously, in the current event loop.

    The API context is set for the whole router: all its tasks inherit it.
    """
    router = router if router is not None else routing.get_default_router()
    if settings is not None:
        router.settings = settings
    if namespace is not None:
        router.namespace = namespace

    info = piggybacking.login(logger=logger)
    context = auth.APIContext(info)
    token = auth.context_var.set(context)
    try:
        await router.start()
    finally:
        auth.context_var.reset(token)
        await context.close()
