"""
In-memory records for human agents.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

from .protocol import utcnow

if TYPE_CHECKING:
    from ..transport.connection import Connection


class AgentStatus(str, Enum):
    """Agent availability."""
    ONLINE = "online"
    BUSY = "busy"
    OFFLINE = "offline"  # known, socket dropped, reconnect grace running


@dataclass(frozen=True)
class AgentProfile:
    """Identity resolved from an agent's login token."""
    agent_id: str
    name: str
    username: str
    email: Optional[str] = None
    role: str = "agent"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.agent_id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "role": self.role,
        }


@dataclass
class Agent:
    """A known agent and its current connection."""
    profile: AgentProfile
    status: AgentStatus = AgentStatus.ONLINE
    connection: Optional["Connection"] = None
    session_id: Optional[str] = None
    connected_at: datetime = field(default_factory=utcnow)

    @property
    def agent_id(self) -> str:
        return self.profile.agent_id

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def is_connected(self) -> bool:
        return self.connection is not None and self.connection.is_open

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.profile.name,
            "username": self.profile.username,
            "status": self.status.value,
            "sessionId": self.session_id,
            "connected": self.is_connected,
        }


__all__ = ["AgentStatus", "AgentProfile", "Agent"]
