"""
WebSocket endpoint shared by customers and agents.
"""
from fastapi import WebSocket
from pydantic import ValidationError
from typing import Dict
import json
import logging

from ..models.protocol import AgentJoin, AuthError, ErrorNotice, parse_inbound
from ..transport.connection import WebSocketConnection
from ..utils.telemetry import track_websocket_closed, track_websocket_opened

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks open WebSocket connections."""

    def __init__(self):
        self.active_connections: Dict[str, WebSocketConnection] = {}

    async def connect(self, websocket: WebSocket) -> WebSocketConnection:
        """
        Accept and register a new connection.

        Args:
            websocket: WebSocket connection

        Returns:
            The wrapped connection
        """
        await websocket.accept()
        connection = WebSocketConnection(websocket)
        self.active_connections[connection.connection_id] = connection
        track_websocket_opened()

        logger.info(f"WebSocket connected: {connection.connection_id}")
        return connection

    def disconnect(self, connection: WebSocketConnection) -> None:
        connection.mark_closed()
        if self.active_connections.pop(connection.connection_id, None) is not None:
            track_websocket_closed()
            logger.info(f"WebSocket disconnected: {connection.connection_id}")

    async def close_all(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        for connection in list(self.active_connections.values()):
            await connection.close(code=code, reason=reason)

    def __len__(self) -> int:
        return len(self.active_connections)


def describe_validation_error(error: ValidationError) -> str:
    """One-line summary of a frame validation failure."""
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        problems.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "Invalid message: " + "; ".join(problems)


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for customers and agents.

    Frames are JSON objects tagged with ``type``. Agents identify themselves
    with an ``agent_join`` frame carrying their login token; everything else
    is routed by the engine.
    """
    state = websocket.app.state
    engine = state.engine
    auth = state.auth_service
    manager: ConnectionManager = state.connection_manager

    connection = await manager.connect(websocket)

    try:
        while True:
            try:
                data = await websocket.receive_text()
            except Exception as e:
                logger.debug(f"WebSocket receive error: {e}")
                break

            try:
                message = parse_inbound(json.loads(data))
            except json.JSONDecodeError:
                await connection.send(ErrorNotice(message="Invalid JSON").to_payload())
                continue
            except ValidationError as e:
                await connection.send(ErrorNotice(message=describe_validation_error(e)).to_payload())
                continue

            if isinstance(message, AgentJoin):
                if connection.role == "customer":
                    await connection.send(
                        ErrorNotice(message="Customer connections cannot join as agents").to_payload()
                    )
                    continue

                profile = auth.verify_token(message.token)
                if profile is None or (message.agent_id and message.agent_id != profile.agent_id):
                    logger.warning(f"Agent join rejected on {connection.connection_id}")
                    await connection.send(AuthError(message="Invalid or expired token").to_payload())
                    await connection.close(code=4001, reason="Authentication failed")
                    break

                await engine.agent_connect(connection, profile)
                continue

            await engine.handle(message, connection)

    except Exception as e:
        logger.error(f"WebSocket error: {e}", exc_info=True)
    finally:
        manager.disconnect(connection)
        await engine.connection_closed(connection)
