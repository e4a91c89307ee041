"""
Cancelable timers keyed by (timer kind, entity id).

Version: 1.0.0
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Tuple

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerKind(str, Enum):
    """Timer classes owned by the routing engine."""
    CUSTOMER_QUEUE = "customer_queue"          # queued customer stopped writing
    CUSTOMER_IDLE_WARNING = "customer_idle_warning"
    CUSTOMER_IDLE_TIMEOUT = "customer_idle_timeout"
    AGENT_RECONNECT = "agent_reconnect"        # assigned agent's socket dropped


TimerKey = Tuple[TimerKind, str]


class TimerRegistry:
    """
    One asyncio task per (kind, entity id).

    Scheduling a key that already has a timer cancels the old one first,
    so rapid re-arming never produces duplicate firings. A timer stays
    registered until its callback returns; cancelling it from another task
    while the callback waits (e.g. for the engine lock) aborts the callback.
    Cancelling it from inside its own callback only unregisters it.

    Timers are best effort: nothing survives a process restart.
    """

    def __init__(self):
        self._timers: Dict[TimerKey, asyncio.Task] = {}

    def schedule(
        self,
        kind: TimerKind,
        entity_id: str,
        delay: float,
        callback: TimerCallback
    ) -> None:
        """
        (Re-)arm a timer.

        Must be called from within a running event loop.
        """
        self.cancel(kind, entity_id)

        key = (kind, entity_id)
        task = asyncio.get_running_loop().create_task(
            self._run(key, delay, callback),
            name=f"timer:{kind.value}:{entity_id}"
        )
        self._timers[key] = task
        logger.debug(f"Armed {kind.value} timer for {entity_id} ({delay:.1f}s)")

    def cancel(self, kind: TimerKind, entity_id: str) -> bool:
        """Cancel a timer. Returns whether one was registered."""
        task = self._timers.pop((kind, entity_id), None)
        if task is None:
            return False

        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        logger.debug(f"Cancelled {kind.value} timer for {entity_id}")
        return True

    def cancel_all(self, entity_id: str) -> int:
        """Cancel every timer belonging to an entity."""
        keys = [key for key in self._timers if key[1] == entity_id]
        for kind, _ in keys:
            self.cancel(kind, entity_id)
        return len(keys)

    def is_scheduled(self, kind: TimerKind, entity_id: str) -> bool:
        return (kind, entity_id) in self._timers

    def scheduled(self) -> List[TimerKey]:
        return list(self._timers)

    async def shutdown(self) -> None:
        """Cancel everything and wait for the tasks to finish."""
        tasks = list(self._timers.values())
        self._timers.clear()

        for task in tasks:
            if task is not asyncio.current_task():
                task.cancel()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} pending timers")

    async def _run(self, key: TimerKey, delay: float, callback: TimerCallback) -> None:
        kind, entity_id = key
        await asyncio.sleep(delay)

        logger.debug(f"{kind.value} timer fired for {entity_id}")
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in {kind.value} timer for {entity_id}: {e}", exc_info=True)
        finally:
            if self._timers.get(key) is asyncio.current_task():
                del self._timers[key]

    def __len__(self) -> int:
        return len(self._timers)


__all__ = ["TimerKind", "TimerRegistry", "TimerCallback"]
