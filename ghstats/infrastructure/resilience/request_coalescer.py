"""Per-key registry of in-flight fetches.

The first caller for a key starts the fetch as a task; later callers for the
same key await that task instead of issuing another request. Callers wait
through ``asyncio.shield`` so that a caller giving up does not cancel a fetch
whose result other callers, and the cache, still want.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable

logger = logging.getLogger(__name__)


class RequestCoalescer:
    """At most one concurrent fetch per key."""

    def __init__(self) -> None:
        self._pending: Dict[Hashable, "asyncio.Task[Any]"] = {}

    def __len__(self) -> int:
        return len(self._pending)

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Runs ``factory()`` for the key, or joins the fetch already running for it."""
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._settle(k, t))
        else:
            logger.debug(f"Joining in-flight fetch for key: {key}")
        return await asyncio.shield(task)

    def _settle(self, key: Hashable, task: "asyncio.Task[Any]") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # Retrieve the exception so an orphaned failure is not reported as never retrieved.
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"In-flight fetch for key {key} settled with error: {task.exception()!r}")
