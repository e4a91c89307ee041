"""
Connection transport.
"""
from .connection import Connection, WebSocketConnection

__all__ = ["Connection", "WebSocketConnection"]
