"""
External collaborators of the routing engine.
"""
from .ai_responder import (
    AIOutcome,
    AIResult,
    AIResponder,
    HTTPAIResponder,
    MockAIResponder,
    create_ai_responder,
)
from .auth_service import AuthService, require_agent
from .chat_history import ChatHistoryRecord, ChatHistoryStore
from .intent_logger import (
    InMemoryIntentLogger,
    IntentLogger,
    IntentRecord,
    WebhookIntentLogger,
    create_intent_logger,
)

__all__ = [
    'AIOutcome',
    'AIResult',
    'AIResponder',
    'HTTPAIResponder',
    'MockAIResponder',
    'create_ai_responder',
    'AuthService',
    'require_agent',
    'ChatHistoryRecord',
    'ChatHistoryStore',
    'IntentLogger',
    'IntentRecord',
    'InMemoryIntentLogger',
    'WebhookIntentLogger',
    'create_intent_logger',
]
