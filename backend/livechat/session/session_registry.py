"""
Session registry.
Owns every active customer session and its transcript.

Version: 1.0.0
"""
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from ..models.session import MessageRole, RoutingState, Session, TranscriptEntry

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    In-memory registry of customer sessions.

    Features:
    - Idempotent get-or-create keyed by the client-supplied session token
    - Server-assigned transcript timestamps
    - Agent linkage toggled together with ``has_human``

    Limitations:
    - Sessions lost on restart
    - Not shared across multiple instances

    The registry performs no locking of its own; it is only mutated from
    the routing engine, which serializes every transition.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        logger.info("SessionRegistry initialized")

    def get_or_create(self, session_id: str) -> Tuple[Session, bool]:
        """
        Return the existing session or create a fresh one.

        Args:
            session_id: Client-supplied session token

        Returns:
            (session, created)
        """
        session = self._sessions.get(session_id)
        if session is not None:
            return session, False

        session = Session(session_id=session_id)
        self._sessions[session_id] = session
        logger.info(f"Created session {session_id}")
        return session, True

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        message_type: str = "text"
    ) -> Optional[TranscriptEntry]:
        """
        Append a transcript entry.

        No-op when the session does not exist; the caller must create it
        first.
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Cannot append message to unknown session {session_id}")
            return None

        entry = TranscriptEntry(role=role, content=content, message_type=message_type)
        session.transcript.append(entry)
        session.touch()
        return entry

    def mark_human_joined(self, session_id: str, agent_id: str, agent_name: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Cannot link agent {agent_id} to unknown session {session_id}")
            return False

        session.has_human = True
        session.agent_id = agent_id
        session.agent_name = agent_name
        session.state = RoutingState.HUMAN_HANDLING
        return True

    def mark_human_left(self, session_id: str) -> Optional[str]:
        """
        Clear the agent link.

        Returns:
            The agent id that was linked, if any
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None

        agent_id = session.agent_id
        session.has_human = False
        session.agent_id = None
        session.agent_name = None
        if session.state != RoutingState.ENDED:
            session.state = RoutingState.AI_HANDLING
        return agent_id

    def remove(self, session_id: str) -> Optional[Session]:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.state = RoutingState.ENDED
            logger.info(f"Evicted session {session_id}")
        return session

    def transcript_tail(self, session_id: str, limit: int) -> List[TranscriptEntry]:
        session = self._sessions.get(session_id)
        if session is None:
            return []
        return list(session.transcript[-limit:])

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def count_with_human(self) -> int:
        return sum(1 for session in self._sessions.values() if session.has_human)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))


__all__ = ["SessionRegistry"]
