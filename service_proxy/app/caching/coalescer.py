"""
Single-flight request coalescing.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Generic, Literal, Tuple, TypeVar

from transit_shared.logging import get_logger


T = TypeVar("T")
CoalesceState = Literal["fetch", "wait"]


class RequestCoalescer(Generic[T]):
    """
    Collapses concurrent work sharing a key into one execution.

    The first caller for a key starts ``factory()`` as a task and registers
    it; later callers for the same key await that task instead of starting
    their own. The task unregisters itself as its last step, before any
    awaiting caller is resumed, so a caller arriving after settlement never
    sees a finished task.

    - ``fetch``: this caller started the work
    - ``wait``: this caller joined work already in flight
    """

    def __init__(self) -> None:
        self._in_flight: Dict[str, "asyncio.Task[T]"] = {}
        self.logger = get_logger("proxy.coalescer")

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> Tuple[T, CoalesceState]:
        # No await between the lookup and the registration below: on the
        # event loop this makes check-and-register indivisible per key.
        task = self._in_flight.get(key)
        if task is not None:
            self.logger.debug("Joining in-flight request", key=key)
            return await asyncio.shield(task), "wait"

        task = asyncio.ensure_future(self._execute(key, factory))
        self._in_flight[key] = task
        # A cancelled caller never cancels the shared task
        return await asyncio.shield(task), "fetch"

    async def _execute(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        try:
            return await factory()
        finally:
            self._in_flight.pop(key, None)

    def is_pending(self, key: str) -> bool:
        return key in self._in_flight

    def __len__(self) -> int:
        return len(self._in_flight)
