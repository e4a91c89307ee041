"""
Customer intent sinks.

Intent records are written fire-and-forget by the routing engine; a failing
sink is logged and never blocks the conversation.

Version: 1.0.0
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

import aiohttp

from ..models.protocol import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IntentRecord:
    session_id: str
    message: str
    intent: str
    category: str
    confidence: float = 0.0
    matched_docs: List[Dict[str, Any]] = field(default_factory=list)
    response_type: str = "ai_response"
    customer_info: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class IntentLogger(ABC):
    """Destination for intent records."""

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        pass

    @abstractmethod
    async def record(self, record: IntentRecord) -> None:
        pass

    def records(self, session_id: Optional[str] = None) -> List[IntentRecord]:
        """Records still held locally, oldest first."""
        return []


class InMemoryIntentLogger(IntentLogger):
    """Keeps the most recent records in a bounded buffer."""

    def __init__(self, capacity: int = 5000):
        self._records: Deque[IntentRecord] = deque(maxlen=capacity)

    async def record(self, record: IntentRecord) -> None:
        self._records.append(record)
        logger.debug(
            f"Intent logged for {record.session_id}: {record.intent}/{record.response_type}"
        )

    def records(self, session_id: Optional[str] = None) -> List[IntentRecord]:
        if session_id is None:
            return list(self._records)
        return [record for record in self._records if record.session_id == session_id]

    def __len__(self) -> int:
        return len(self._records)


class WebhookIntentLogger(InMemoryIntentLogger):
    """Buffers records locally and forwards each one to a webhook."""

    def __init__(self, url: str, capacity: int = 5000, timeout: float = 10.0):
        super().__init__(capacity)
        self.url = url
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> None:
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            connector=aiohttp.TCPConnector(limit=20)
        )
        logger.info(f"✓ Intent webhook initialized ({self.url})")

    async def cleanup(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def record(self, record: IntentRecord) -> None:
        await super().record(record)

        if self.session is None:
            logger.warning("Intent webhook not initialized, record kept locally only")
            return

        try:
            async with self.session.post(self.url, json=record.to_dict()) as response:
                if response.status >= 400:
                    logger.warning(
                        f"Intent webhook returned {response.status} for session {record.session_id}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Intent webhook error: {e}")


def create_intent_logger(url: Optional[str], capacity: int) -> IntentLogger:
    if url:
        return WebhookIntentLogger(url, capacity=capacity)
    return InMemoryIntentLogger(capacity=capacity)


__all__ = [
    "IntentRecord",
    "IntentLogger",
    "InMemoryIntentLogger",
    "WebhookIntentLogger",
    "create_intent_logger",
]
