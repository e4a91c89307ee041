"""
AI responder collaborators.

The routing engine only sees ``AIResponder.generate``; the retrieval and
generation themselves live in an external service reached over HTTP. An
offline responder with a tiny built-in knowledge base is provided for
development and tests.

Version: 1.0.0
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import Settings
from ..utils.retry import (
    CircuitBreakerConfig,
    CircuitBreakerError,
    RetryConfig,
    create_circuit_breaker,
    create_retry_decorator,
)

logger = logging.getLogger(__name__)


APOLOGY_MESSAGE = (
    "Oops! I'm having a bit of trouble right now. "
    "Would you like to connect with human support?"
)
NO_KNOWLEDGE_MESSAGE = (
    "I'm sorry, I couldn't find specific information about that. "
    "Would you like to connect with human support?"
)
HANDOFF_MESSAGE = (
    "I'd be happy to connect you with one of our specialists "
    "who can give you personalized assistance."
)
GREETING_MESSAGE = "Hi there! How can I help you today?"


class AIOutcome(str, Enum):
    """What the routing engine should do with a generated reply."""
    ANSWER = "answer"
    HANDOFF_OFFER = "handoff_offer"
    NO_KNOWLEDGE = "no_knowledge"
    ERROR = "error"


@dataclass
class AIResult:
    """Result of one generation call."""
    outcome: AIOutcome
    text: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    intent: str = "general"
    category: str = "general"
    confidence: float = 0.0
    reason: Optional[str] = None

    @property
    def offers_handoff(self) -> bool:
        return self.outcome in (AIOutcome.HANDOFF_OFFER, AIOutcome.NO_KNOWLEDGE)

    @classmethod
    def error(cls, reason: Optional[str] = None) -> "AIResult":
        return cls(outcome=AIOutcome.ERROR, text=APOLOGY_MESSAGE, intent="unknown", reason=reason)


def classify_intent(message: str) -> str:
    """Coarse intent label used for intent logging."""
    text = message.lower()
    if "price" in text or "cost" in text or "pricing" in text:
        return "pricing"
    if "trial" in text:
        return "trial"
    if "cancel" in text:
        return "cancellation"
    if "support" in text:
        return "support"
    return "general"


class AIResponder(ABC):
    """Generates the assistant's reply to a customer message."""

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        pass

    @abstractmethod
    async def generate(self, message: str, history: List[Dict[str, Any]]) -> AIResult:
        """
        Produce a reply.

        Implementations must not raise: failures are reported as an
        ``ERROR`` result.

        Args:
            message: Customer message
            history: Serialized transcript, oldest first
        """
        pass


# ===========================
# Offline responder
# ===========================

GREETINGS = ("hi", "hello", "hey", "good morning", "good afternoon", "good evening")

HANDOFF_KEYWORDS = (
    "human",
    "agent",
    "representative",
    "real person",
    "talk to someone",
    "speak to someone",
    "buy",
    "purchase",
    "pricing",
    "how much",
    "demo",
    "consultation",
)

QUESTION_WORDS = (
    "what", "how", "when", "where", "why", "can", "do", "does", "is", "are",
)

DEFAULT_KNOWLEDGE: List[Dict[str, Any]] = [
    {
        "keywords": ("feature", "features", "include", "crm"),
        "category": "product",
        "content": (
            "Key features include customer relationship management, project "
            "tracking, automated workflows, real-time reporting and mobile apps."
        ),
    },
    {
        "keywords": ("trial", "free"),
        "category": "trial",
        "content": "We offer a 14-day free trial with full access to every feature. No credit card required.",
    },
    {
        "keywords": ("cancel", "cancellation", "refund"),
        "category": "billing",
        "content": "You can cancel at any time from the billing settings page. Refunds are prorated.",
    },
    {
        "keywords": ("support", "hours", "contact"),
        "category": "support",
        "content": "Our support team is available 24/7 by chat and email.",
    },
    {
        "keywords": ("integration", "integrations", "api"),
        "category": "technical",
        "content": "We integrate with 100+ popular tools and provide a REST API for custom integrations.",
    },
]


class MockAIResponder(AIResponder):
    """
    Deterministic responder for development and tests.

    Greetings get a greeting back, handoff phrases get a handoff offer,
    questions answered by the built-in knowledge get an answer, other
    questions get a no-knowledge handoff offer and statements get a
    friendly acknowledgement.
    """

    def __init__(self, knowledge: Optional[List[Dict[str, Any]]] = None):
        self.knowledge = knowledge if knowledge is not None else DEFAULT_KNOWLEDGE

    async def generate(self, message: str, history: List[Dict[str, Any]]) -> AIResult:
        text = message.lower().strip()
        words = set(re.findall(r"[a-z']+", text))
        intent = classify_intent(message)

        if self._is_greeting(text):
            return AIResult(outcome=AIOutcome.ANSWER, text=GREETING_MESSAGE, intent="greeting")

        matched = [phrase for phrase in HANDOFF_KEYWORDS if self._contains(text, words, phrase)]
        if matched:
            return AIResult(
                outcome=AIOutcome.HANDOFF_OFFER,
                text=HANDOFF_MESSAGE,
                intent=intent,
                confidence=0.9,
                reason=f"Customer mentioned '{matched[0]}'"
            )

        hits = [doc for doc in self.knowledge if words.intersection(doc["keywords"])]
        is_question = "?" in text or text.startswith(QUESTION_WORDS)

        if is_question and not hits:
            return AIResult(
                outcome=AIOutcome.NO_KNOWLEDGE,
                text=NO_KNOWLEDGE_MESSAGE,
                intent=intent,
                reason="No relevant knowledge found for customer question"
            )

        if hits:
            sources = [
                {"content": doc["content"][:100], "similarity": 0.8}
                for doc in hits
            ]
            return AIResult(
                outcome=AIOutcome.ANSWER,
                text=hits[0]["content"],
                sources=sources,
                intent=intent,
                category=hits[0]["category"],
                confidence=0.8
            )

        return AIResult(
            outcome=AIOutcome.ANSWER,
            text="Thanks for letting me know! Is there anything I can help you with?",
            intent=intent
        )

    @staticmethod
    def _is_greeting(text: str) -> bool:
        if len(text) >= 30:
            return False
        stripped = text.rstrip("!.? ")
        return any(
            stripped == greeting or stripped.startswith(greeting + " ")
            for greeting in GREETINGS
        )

    @staticmethod
    def _contains(text: str, words: set, phrase: str) -> bool:
        if " " in phrase:
            return phrase in text
        return phrase in words


# ===========================
# HTTP responder
# ===========================

class AIServiceError(Exception):
    """Generation service answered with an unusable response."""
    pass


_OUTCOME_ALIASES = {
    "ai_response": AIOutcome.ANSWER,
    "answer": AIOutcome.ANSWER,
    "handoff_suggestion": AIOutcome.HANDOFF_OFFER,
    "handoff_offer": AIOutcome.HANDOFF_OFFER,
    "no_knowledge": AIOutcome.NO_KNOWLEDGE,
    "error": AIOutcome.ERROR,
}


class HTTPAIResponder(AIResponder):
    """
    Calls an external generation service.

    Request body: ``{"message": str, "history": [...]}``. The response is a
    JSON object with ``outcome`` (or ``type``), ``message`` (or ``text``),
    and optional ``sources``, ``intent``, ``category``, ``confidence`` and
    ``reason``.
    """

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

        self.circuit_breaker = create_circuit_breaker(CircuitBreakerConfig(
            fail_max=failure_threshold,
            timeout=recovery_timeout,
            name="ai_service"
        ))
        self._post_with_retry = create_retry_decorator(RetryConfig(
            max_attempts=max_attempts,
            wait_multiplier=0.5,
            wait_min=0.5,
            wait_max=5.0,
            retry_exceptions=(aiohttp.ClientError, asyncio.TimeoutError, AIServiceError)
        ))(self._post)

    async def initialize(self) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(limit=50),
            headers=headers
        )
        logger.info(f"✓ HTTP AI responder initialized ({self.url})")

    async def cleanup(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
        logger.info("✓ HTTP AI responder cleanup complete")

    async def generate(self, message: str, history: List[Dict[str, Any]]) -> AIResult:
        if self.session is None:
            logger.error("HTTP AI responder used before initialize()")
            return AIResult.error("not initialized")

        payload = {"message": message, "history": history}
        try:
            data = await self.circuit_breaker.call_async(self._post_with_retry, payload)
            return self._parse(data, message)

        except CircuitBreakerError as e:
            logger.warning(f"AI service unavailable: {e}")
            return AIResult.error("circuit open")

        except Exception as e:
            logger.error(f"AI generation error: {e}", exc_info=True)
            return AIResult.error(str(e))

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with self.session.post(self.url, json=payload) as response:
            if response.status >= 400:
                text = await response.text()
                raise AIServiceError(f"AI service returned {response.status}: {text[:200]}")

            data = await response.json()
            if not isinstance(data, dict):
                raise AIServiceError("AI service returned a non-object body")
            return data

    def _parse(self, data: Dict[str, Any], message: str) -> AIResult:
        raw_outcome = str(data.get("outcome") or data.get("type") or "answer").lower()
        outcome = _OUTCOME_ALIASES.get(raw_outcome)
        if outcome is None:
            logger.warning(f"Unknown AI outcome '{raw_outcome}', treating as error")
            return AIResult.error(f"unknown outcome {raw_outcome}")

        text = data.get("message") or data.get("text")
        if outcome == AIOutcome.ERROR or not text:
            return AIResult.error(data.get("reason"))

        return AIResult(
            outcome=outcome,
            text=text,
            sources=list(data.get("sources") or []),
            intent=data.get("intent") or classify_intent(message),
            category=data.get("category") or "general",
            confidence=float(data.get("confidence") or 0.0),
            reason=data.get("reason")
        )


def create_ai_responder(settings: Settings) -> AIResponder:
    """Build the responder selected by configuration."""
    if settings.use_mock_ai:
        logger.info("Using offline AI responder")
        return MockAIResponder()

    api_key = settings.ai_service_api_key.get_secret_value() if settings.ai_service_api_key else None
    return HTTPAIResponder(
        url=settings.ai_service_url,
        api_key=api_key,
        timeout=settings.ai_service_timeout_seconds,
        max_attempts=settings.ai_service_max_attempts,
        failure_threshold=settings.ai_service_failure_threshold,
        recovery_timeout=settings.ai_service_recovery_seconds
    )


__all__ = [
    "AIOutcome",
    "AIResult",
    "AIResponder",
    "MockAIResponder",
    "HTTPAIResponder",
    "AIServiceError",
    "create_ai_responder",
    "classify_intent",
    "APOLOGY_MESSAGE",
    "NO_KNOWLEDGE_MESSAGE",
]
