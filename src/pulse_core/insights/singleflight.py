"""Collapse concurrent identical requests into one in-flight task."""
import asyncio
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


class SingleFlight:
    """Shares one asyncio task between callers that use the same key.

    The entry is dropped as soon as the task finishes, so results are never
    reused across requests; longer-lived reuse is the response cache's job.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Await the in-flight task for ``key``, starting one if needed.

        Args:
            key: Deduplication key (e.g. ``account:platform``)
            factory: Zero-arg coroutine function producing the result

        Returns:
            Result of the shared task
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            logger.debug("Joining in-flight request: key=%s", key)

        # A cancelled waiter must not cancel the shared task
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
