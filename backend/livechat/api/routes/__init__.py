"""
API routes module initialization.
"""
from . import agents, analytics, health, intents

__all__ = ["agents", "analytics", "health", "intents"]
