"""
Work queues: de-duplicated, delayed, and rate-limited processing of the keys.

Every resource type has its own queue of the object keys to process,
and a pool of workers that take the keys from the queue. The same key
is never processed by two workers at the same time: if it is added
while being processed, it is re-queued only after the processing is done.
Multiple additions of the same key while it waits in the queue are merged.

The failed keys are re-added with exponentially growing delays per key,
and the delays are reset when the key is processed successfully.
"""
import asyncio
import collections
import logging
from collections.abc import Awaitable, Callable

from steward._cogs.aiokits import aiotasks
from steward._cogs.configs import configuration
from steward._cogs.structs import references

logger = logging.getLogger(__name__)

# The processing function of the keys: raises on failures to be retried.
Processor = Callable[[str], Awaitable[None]]


class ItemExponentialFailureRateLimiter:
    """ The delays of ``base * 2**failures`` per key, up to the maximum. """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        super().__init__()
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[str, int] = {}

    def when(self, item: str) -> float:
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        try:
            delay = self.base_delay * 2 ** failures
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def forget(self, item: str) -> None:
        self._failures.pop(item, None)

    def num_requeues(self, item: str) -> int:
        return self._failures.get(item, 0)


class WorkQueue:

    def __init__(
            self,
            *,
            rate_limiter: ItemExponentialFailureRateLimiter | None = None,
    ) -> None:
        super().__init__()
        self.rate_limiter = rate_limiter if rate_limiter is not None else ItemExponentialFailureRateLimiter()
        self._queue: collections.deque[str] = collections.deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._delayed: set[asyncio.TimerHandle] = set()
        self._wakeup = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, item: str) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item not in self._processing:
            self._queue.append(item)
            self._wakeup.set()

    def add_after(self, item: str, delay: float) -> None:
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def fire() -> None:
            self._delayed.discard(handle)
            self.add(item)

        handle = loop.call_later(delay, fire)
        self._delayed.add(handle)

    def add_rate_limited(self, item: str) -> None:
        self.add_after(item, self.rate_limiter.when(item))

    def forget(self, item: str) -> None:
        self.rate_limiter.forget(item)

    async def get(self) -> str | None:
        """ Take the next key for processing, or ``None`` if the queue is shut down. """
        while not self._queue and not self._shutting_down:
            self._wakeup.clear()
            await self._wakeup.wait()
        if self._shutting_down:
            return None
        item = self._queue.popleft()
        self._processing.add(item)
        self._dirty.discard(item)
        return item

    def done(self, item: str) -> None:
        self._processing.discard(item)
        if item in self._dirty:
            self._queue.append(item)
            self._wakeup.set()

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._delayed:
            handle.cancel()
        self._delayed.clear()
        self._wakeup.set()


class Controller:
    """
    A pool of workers processing the keys of one resource type.

    The errors of the processing are logged and the key is retried
    with the rate-limited delays. The processor itself decides
    which errors are worth retrying: the ones it swallows are not retried.
    """

    def __init__(
            self,
            gvk: references.GVK,
            processor: Processor,
            *,
            settings: configuration.OperatorSettings,
    ) -> None:
        super().__init__()
        self.gvk = gvk
        self.processor = processor
        self.settings = settings
        self.queue = WorkQueue(rate_limiter=ItemExponentialFailureRateLimiter(
            base_delay=settings.queueing.base_delay,
            max_delay=settings.queueing.max_delay,
        ))
        self._tasks: list[aiotasks.Task] = []

    def enqueue(self, key: str) -> None:
        self.queue.add(key)

    def enqueue_after(self, key: str, delay: float) -> None:
        self.queue.add_after(key, delay)

    def start(self) -> None:
        if self._tasks:
            return
        for idx in range(self.settings.queueing.workers):
            self._tasks.append(aiotasks.create_guarded_task(
                name=f"worker #{idx} for {self.gvk}",
                coro=self._work(),
                finishable=True,
                cancellable=True,
                logger=logger,
            ))

    async def stop(self) -> None:
        self.queue.shutdown()
        await aiotasks.stop(self._tasks, title=f"workers for {self.gvk}", logger=logger)
        self._tasks.clear()

    async def _work(self) -> None:
        while (key := await self.queue.get()) is not None:
            try:
                await self.processor(key)
            except Exception as e:
                logger.error(f"Failed to process {self.gvk} {key!r}; will retry: {e}")
                self.queue.add_rate_limited(key)
            else:
                self.queue.forget(key)
            finally:
                self.queue.done(key)
