"""
Agent registry.
Owns the known human agents, their status and their live connection.

Version: 1.0.0
"""
import logging
from typing import Dict, List, Optional, Tuple

from ..models.agent import Agent, AgentProfile, AgentStatus
from ..models.protocol import utcnow
from ..transport.connection import Connection

logger = logging.getLogger(__name__)


class AgentRegistry:
    """
    In-memory registry of agents.

    An agent whose socket dropped while assigned to a session stays known
    (status ``offline``) so it can reconnect within the grace window. An
    agent whose socket dropped with nothing assigned is forgotten.
    """

    def __init__(self):
        self._agents: Dict[str, Agent] = {}
        logger.info("AgentRegistry initialized")

    def connect(
        self,
        profile: AgentProfile,
        connection: Connection
    ) -> Tuple[Agent, Optional[str]]:
        """
        Register an agent or re-link its connection.

        The previous connection reference is replaced, never kept alongside
        the new one.

        Returns:
            (agent, previous_session_id). A previous session id marks a
            reconnection candidate; the caller validates it against the
            session registry.
        """
        agent = self._agents.get(profile.agent_id)

        if agent is None:
            agent = Agent(profile=profile, connection=connection)
            self._agents[profile.agent_id] = agent
            logger.info(f"Agent {profile.name} ({profile.agent_id}) registered")
            return agent, None

        if agent.connection is not None and agent.connection is not connection:
            logger.info(f"Replacing connection for agent {profile.agent_id}")

        agent.profile = profile
        agent.connection = connection
        agent.connected_at = utcnow()
        if agent.session_id is None:
            agent.status = AgentStatus.ONLINE

        return agent, agent.session_id

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def set_status(self, agent_id: str, status: AgentStatus) -> bool:
        agent = self._agents.get(agent_id)
        if agent is None:
            logger.warning(f"Cannot set status of unknown agent {agent_id}")
            return False
        agent.status = status
        return True

    def assign(self, agent_id: str, session_id: str) -> bool:
        agent = self._agents.get(agent_id)
        if agent is None:
            logger.warning(f"Cannot assign session {session_id} to unknown agent {agent_id}")
            return False
        agent.session_id = session_id
        agent.status = AgentStatus.BUSY
        return True

    def release(self, agent_id: str) -> Optional[str]:
        """
        Clear the agent's assignment.

        Returns:
            The session id that was assigned, if any
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            return None

        session_id = agent.session_id
        agent.session_id = None
        agent.status = AgentStatus.ONLINE if agent.connection is not None else AgentStatus.OFFLINE
        return session_id

    def disconnect(self, agent_id: str) -> bool:
        """
        Drop the agent's connection.

        Returns:
            True if the agent was mid-session (record kept for reconnect),
            False otherwise (record removed)
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            return False

        agent.connection = None

        if agent.session_id is None:
            del self._agents[agent_id]
            logger.info(f"Agent {agent_id} disconnected with no assignment, record removed")
            return False

        agent.status = AgentStatus.OFFLINE
        logger.info(f"Agent {agent_id} disconnected while assigned to {agent.session_id}")
        return True

    def remove(self, agent_id: str) -> Optional[Agent]:
        return self._agents.pop(agent_id, None)

    def list_available(self) -> List[Agent]:
        """Agents whose connection is live."""
        return [agent for agent in self._agents.values() if agent.is_connected]

    def agents(self) -> List[Agent]:
        return list(self._agents.values())

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)


__all__ = ["AgentRegistry"]
