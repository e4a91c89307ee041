"""
Waiting queue for customers who asked for a human agent.
"""
import logging
from collections import OrderedDict
from typing import List

logger = logging.getLogger(__name__)


class QueueManager:
    """Strict FIFO of distinct session ids."""

    def __init__(self):
        self._queue: "OrderedDict[str, None]" = OrderedDict()

    def enqueue(self, session_id: str) -> int:
        """
        Append the session if it is not already waiting.

        Returns:
            1-based queue position
        """
        if session_id not in self._queue:
            self._queue[session_id] = None
            logger.info(f"Session {session_id} queued (size={len(self._queue)})")
        return self.position_of(session_id)

    def dequeue(self, session_id: str) -> bool:
        """Remove the session if present. Returns whether it was queued."""
        if session_id in self._queue:
            del self._queue[session_id]
            logger.info(f"Session {session_id} left queue (size={len(self._queue)})")
            return True
        return False

    def position_of(self, session_id: str) -> int:
        """1-based position, 0 when not queued."""
        for index, queued_id in enumerate(self._queue):
            if queued_id == session_id:
                return index + 1
        return 0

    def size(self) -> int:
        return len(self._queue)

    def snapshot(self) -> List[str]:
        return list(self._queue)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._queue

    def __len__(self) -> int:
        return len(self._queue)


__all__ = ["QueueManager"]
