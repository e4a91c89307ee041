"""
Routing data models.
"""
from .agent import Agent, AgentProfile, AgentStatus
from .session import MessageRole, RoutingState, Session, TranscriptEntry
from .protocol import CustomerInfo

__all__ = [
    "Agent",
    "AgentProfile",
    "AgentStatus",
    "MessageRole",
    "RoutingState",
    "Session",
    "TranscriptEntry",
    "CustomerInfo",
]
