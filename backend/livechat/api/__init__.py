"""
API module for the live handoff router.
"""

from .websocket import websocket_endpoint, ConnectionManager
from .routes import agents, analytics, health

__all__ = [
    "websocket_endpoint",
    "ConnectionManager",
    "agents",
    "analytics",
    "health",
]
