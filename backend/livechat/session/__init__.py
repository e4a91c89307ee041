"""
Routing state stores.
Sessions, agents, the waiting queue and their timers, all held in memory.

Version: 1.0.0
"""
from .session_registry import SessionRegistry
from .agent_registry import AgentRegistry
from .queue_manager import QueueManager
from .timers import TimerKind, TimerRegistry

__all__ = [
    'SessionRegistry',
    'AgentRegistry',
    'QueueManager',
    'TimerKind',
    'TimerRegistry',
]
