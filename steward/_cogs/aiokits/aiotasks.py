"""
Helpers for orchestrating asyncio tasks.

These utilities only support tasks, not more generic futures, coroutines,
or other awaitables: the router not only waits for its tasks (informers,
workers, purgers), but also cancels them on exit.
"""
import asyncio
from collections.abc import Collection, Coroutine
from typing import TYPE_CHECKING, Any

from steward._cogs.helpers import typedefs

# A workaround for a difference in tasks at runtime and type-checking time.
# Otherwise, at runtime: TypeError: 'type' object is not subscriptable.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> None:
    """
    A guard for a presumably eternal (never-finishing) task.

    An "eternal" task is a task that never exits unless explicitly cancelled.
    If it does, this is a misbehaviour that is logged. Errors are always logged.
    Cancellations are also logged except if the task is said to be cancellable.
    """
    capname = name.capitalize()
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{capname} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{capname} has failed: {e}")
        raise
    else:
        if logger is not None and not finishable:
            logger.warning(f"{capname} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> Task:
    """
    Create a guarded eternal task. See :func:`guard` for explanation.

    This is only a shortcut for named task creation (name is used in 2 places).
    The guarded coroutine is closed when the task is done, so that a task
    cancelled before its first step leaves no never-awaited coroutine behind.
    """
    task = asyncio.create_task(
        name=name,
        coro=guard(
            name=name,
            coro=coro,
            finishable=finishable,
            cancellable=cancellable,
            logger=logger))
    task.add_done_callback(lambda _: coro.close())
    return task


async def wait(
        tasks: Collection[Task],
        *,
        timeout: float | None = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> tuple[set[Task], set[Task]]:
    """
    A safer version of :func:`asyncio.wait` -- does not fail on an empty list.
    """
    if not tasks:
        return set(), set()
    done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=return_when)
    return done, pending


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        logger: typedefs.Logger | None = None,
) -> tuple[set[Task], set[Task]]:
    """
    Cancel the tasks and wait for them to finish.

    The stopping itself does not have timeouts. It always ends either with
    the tasks stopped/exited, or with the stop-routine itself being cancelled.
    """
    captitle = title.capitalize()
    if not tasks:
        if logger is not None:
            logger.debug(f"{captitle} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    done, pending = await wait(tasks)
    if logger is not None:
        are = 'are' if not pending else 'are not'
        logger.debug(f"{captitle} tasks {are} stopped; tasks left: {pending!r}")
    return done, pending


async def reraise(
        tasks: Collection[Task],
) -> None:
    """
    Re-raise errors from tasks, if any. Do nothing if all tasks have succeeded.
    """
    for task in tasks:
        try:
            task.result()  # can raise the regular (non-cancellation) exceptions.
        except asyncio.CancelledError:
            pass  # re-raise anything except regular cancellations/exits
