"""
Conversation routing between the AI assistant and human agents.
"""
from .engine import Delivery, RoutingEngine

__all__ = ['RoutingEngine', 'Delivery']
