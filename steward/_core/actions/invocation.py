"""
Invoking the handlers: both sync & async functions are supported.

The synchronous handlers are executed in the default executor (threads),
so that they do not block the event loop with the other objects' processing.
Since they run in other threads, they cannot use the async scoped client
directly, but they can still compute and emit the desired objects.
"""
import asyncio
import contextvars
import functools
import inspect
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

_R = TypeVar('_R')
SyncOrAsync = _R | Coroutine[None, None, _R]

# A generic sync-or-async callable with no args/kwargs checks.
Invokable = Callable[..., SyncOrAsync[object | None]]


async def invoke(
        fn: Invokable,
        *args: Any,
) -> Any:
    """
    Invoke a single function, but safely for the main asyncio process.

    Cancellation of a synchronous function is postponed until its thread exits:
    it is better to be stuck in the task than to have orphan threads
    which deplete the executor's pool capacity.
    """
    if is_async_fn(fn):
        return await fn(*args)

    # Copy the asyncio context from current thread to the handler's thread.
    context = contextvars.copy_context()
    real_fn = functools.partial(context.run, fn, *args)

    loop = asyncio.get_running_loop()
    future = loop.run_in_executor(None, real_fn)
    cancellation: asyncio.CancelledError | None = None
    while not future.done():
        try:
            await asyncio.shield(future)  # slightly expensive: creates tasks
        except asyncio.CancelledError as e:
            cancellation = e
    if cancellation is not None:
        raise cancellation
    return future.result()


def is_async_fn(
        fn: Invokable | None,
) -> bool:
    if fn is None:
        return False
    elif isinstance(fn, functools.partial):
        return is_async_fn(fn.func)
    elif hasattr(fn, '__wrapped__'):  # @functools.wraps()
        return is_async_fn(fn.__wrapped__)
    elif not inspect.iscoroutinefunction(fn) and callable(fn) and not isinstance(fn, type):
        # Callable objects, such as the handlers' wrappers, are async if their __call__ is.
        call = getattr(type(fn), '__call__', None)
        return inspect.iscoroutinefunction(call) if call is not None else False
    else:
        return inspect.iscoroutinefunction(fn)
