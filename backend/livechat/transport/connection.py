"""
Connection abstraction used by the routing engine.

A connection is owned by exactly one session or agent record. Sends never
raise: a dead or failing connection is logged and skipped, recovery is the
job of the reconnection machinery.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging
import uuid

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class Connection(ABC):
    """
    Bidirectional message channel to a single customer or agent.

    ``role`` and ``bound_id`` are set by the routing engine when the
    connection is linked to a session (``"customer"``) or an agent
    (``"agent"``).
    """

    def __init__(self, connection_id: Optional[str] = None):
        self.connection_id = connection_id or str(uuid.uuid4())
        self.role: Optional[str] = None
        self.bound_id: Optional[str] = None

    def bind(self, role: str, bound_id: str) -> None:
        self.role = role
        self.bound_id = bound_id

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the connection can still be written to."""
        pass

    @abstractmethod
    async def send(self, payload: Dict[str, Any]) -> bool:
        """
        Send a JSON payload.

        Returns:
            True if written, False if skipped or failed
        """
        pass

    @abstractmethod
    async def close(self, code: int = 1000, reason: str = "") -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.connection_id} {self.role}:{self.bound_id}>"


class WebSocketConnection(Connection):
    """Connection backed by a FastAPI/Starlette WebSocket."""

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None):
        super().__init__(connection_id)
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        if self._closed:
            return False
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        self._closed = True

    async def send(self, payload: Dict[str, Any]) -> bool:
        if not self.is_open:
            logger.debug(
                f"Skipping send of '{payload.get('type')}' to closed connection {self.connection_id}"
            )
            return False

        try:
            await self.websocket.send_json(payload)
            return True
        except Exception as e:
            logger.warning(
                f"Error sending '{payload.get('type')}' to connection {self.connection_id}: {e}"
            )
            self._closed = True
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.is_open:
            self._closed = True
            return

        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing connection {self.connection_id}: {e}")
        finally:
            self._closed = True


__all__ = ["Connection", "WebSocketConnection"]
