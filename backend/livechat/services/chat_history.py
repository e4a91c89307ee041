"""
Chat history sink.

Every ended human or AI-only chat is summarized here. Satisfaction survey
answers are attached to the latest record for the session. Records are
held in a bounded in-memory buffer; a persistent store is outside the
scope of this service.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, Iterable, List, Optional

from ..models.agent import Agent
from ..models.protocol import utcnow
from ..models.session import Session, TranscriptEntry

logger = logging.getLogger(__name__)


@dataclass
class Satisfaction:
    rating: int
    feedback: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    interaction_type: str = "human_agent"
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rating": self.rating,
            "feedback": self.feedback,
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "interactionType": self.interaction_type,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ChatHistoryRecord:
    session_id: str
    messages: List[TranscriptEntry]
    start_time: datetime
    end_time: datetime
    agent_id: Optional[str]
    agent_name: Optional[str]
    end_reason: str
    satisfaction: Optional[Satisfaction] = None

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60

    def summary(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "messageCount": len(self.messages),
            "satisfaction": self.satisfaction.rating if self.satisfaction else None,
            "endReason": self.end_reason,
        }


class ChatHistoryStore:
    """Bounded buffer of chat summaries."""

    def __init__(self, capacity: int = 5000):
        self._records: Deque[ChatHistoryRecord] = deque(maxlen=capacity)

    def save(self, session: Session, end_reason: str = "completed") -> ChatHistoryRecord:
        """Snapshot a session's transcript and agent link."""
        record = ChatHistoryRecord(
            session_id=session.session_id,
            messages=list(session.transcript),
            start_time=session.created_at,
            end_time=utcnow(),
            agent_id=session.agent_id,
            agent_name=session.agent_name or ("AI Assistant" if not session.agent_id else "Unknown"),
            end_reason=end_reason,
        )
        self._records.append(record)
        logger.info(f"Chat history saved for session {session.session_id} ({end_reason})")
        return record

    def latest_for(self, session_id: str) -> Optional[ChatHistoryRecord]:
        for record in reversed(self._records):
            if record.session_id == session_id:
                return record
        return None

    def attach_satisfaction(
        self,
        session_id: str,
        rating: int,
        feedback: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None
    ) -> bool:
        """
        Attach a survey answer to the session's latest record.

        Returns:
            False when no record exists for the session
        """
        record = self.latest_for(session_id)
        if record is None:
            logger.warning(f"No chat history for session {session_id}, satisfaction dropped")
            return False

        record.satisfaction = Satisfaction(
            rating=rating,
            feedback=feedback,
            customer_name=customer_name,
            customer_email=customer_email,
            interaction_type="human_agent" if record.agent_id else "ai_only",
        )
        logger.info(f"Satisfaction {rating}/5 recorded for session {session_id}")
        return True

    def recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        return [record.summary() for record in list(self._records)[-limit:]]

    def analytics(self, agents: Iterable[Agent], queue_size: int) -> Dict[str, Any]:
        """Dashboard figures over the last 24 hours."""
        agents = list(agents)
        since = utcnow() - timedelta(hours=24)
        recent = [record for record in self._records if record.end_time >= since]

        ratings = [record.satisfaction.rating for record in recent if record.satisfaction]
        average_satisfaction = sum(ratings) / len(ratings) if ratings else 0.0
        average_duration = (
            sum(record.duration_minutes for record in recent) / len(recent) if recent else 0.0
        )

        return {
            "totalChats": len(self._records),
            "last24hChats": len(recent),
            "averageSatisfaction": round(average_satisfaction, 2),
            "averageChatDuration": round(average_duration, 2),
            "currentQueue": queue_size,
            "activeAgents": len(agents),
            "agentStatuses": {agent.agent_id: agent.to_dict() for agent in agents},
            "pendingReconnections": sum(
                1 for agent in agents if agent.session_id and not agent.is_connected
            ),
        }

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["Satisfaction", "ChatHistoryRecord", "ChatHistoryStore"]
