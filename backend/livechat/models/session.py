"""
In-memory routing state for customer sessions.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .protocol import CustomerInfo, utcnow

if TYPE_CHECKING:
    from ..transport.connection import Connection


class MessageRole(str, Enum):
    """Transcript entry author."""
    CUSTOMER = "customer"
    ASSISTANT = "assistant"
    AGENT = "agent"
    SYSTEM = "system"


class RoutingState(str, Enum):
    """
    Routing state of a session.

    AI_HANDLING → QUEUED → HUMAN_HANDLING → AI_HANDLING | ENDED
    """
    AI_HANDLING = "ai_handling"
    QUEUED = "queued"
    HUMAN_HANDLING = "human_handling"
    ENDED = "ended"


@dataclass
class TranscriptEntry:
    """One message in a session transcript."""
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    message_type: str = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "messageType": self.message_type,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Session:
    """
    One customer conversation.

    ``has_human`` is only ever toggled together with ``agent_id`` by the
    session registry so the session/agent link stays bidirectional.
    """
    session_id: str
    transcript: List[TranscriptEntry] = field(default_factory=list)
    has_human: bool = False
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    customer_info: Optional[CustomerInfo] = None
    state: RoutingState = RoutingState.AI_HANDLING
    customer_connection: Optional["Connection"] = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)

    @property
    def customer_connected(self) -> bool:
        return self.customer_connection is not None and self.customer_connection.is_open

    def history(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Serialized transcript, optionally only the last ``limit`` entries."""
        entries = self.transcript if limit is None else self.transcript[-limit:]
        return [entry.to_dict() for entry in entries]

    def touch(self) -> None:
        self.last_activity = utcnow()


__all__ = ["MessageRole", "RoutingState", "TranscriptEntry", "Session"]
