"""
Venue Safety - Single-Flight.

Coalesces concurrent calls for the same key into one in-flight
computation. The first caller (the leader) runs the coroutine;
callers arriving while it runs await the leader's outcome,
result or exception alike.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar


logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class SingleFlight(Generic[K, T]):
    """Per-key in-flight deduplication for a single event loop."""

    def __init__(self):
        self._calls: Dict[K, "asyncio.Future[T]"] = {}
        self.coalesced = 0

    def in_flight(self, key: K) -> bool:
        return key in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    async def do(self, key: K, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` once per key among concurrent callers.

        Args:
            key: Coalescing key
            fn: Zero-argument coroutine factory

        Returns:
            The leader's result (followers share it)
        """
        existing = self._calls.get(key)
        if existing is not None:
            self.coalesced += 1
            logger.debug(f"Joined in-flight computation for {key}")
            # A cancelled follower must not cancel the shared future.
            return await asyncio.shield(existing)

        future: "asyncio.Future[T]" = asyncio.get_running_loop().create_future()
        self._calls[key] = future
        try:
            result = await fn()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure is not reported by the loop.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            if self._calls.get(key) is future:
                del self._calls[key]

    def forget(self, key: K) -> None:
        """Detach an in-flight call; the next caller starts a new one."""
        self._calls.pop(key, None)

    def forget_where(self, predicate: Callable[[K], bool]) -> int:
        keys = [key for key in self._calls if predicate(key)]
        for key in keys:
            del self._calls[key]
        return len(keys)
