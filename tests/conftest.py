"""
Pytest configuration and shared fixtures for testing.
Provides test settings, a recording fake connection, a scripted AI
responder and a routing engine wired to in-memory collaborators.
"""
import os

# Set testing environment before importing the application
os.environ["ENVIRONMENT"] = "testing"
os.environ["ENABLE_TELEMETRY"] = "false"
os.environ["DEV_MOCK_AI"] = "true"

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from livechat.config import Settings
from livechat.models.agent import AgentProfile
from livechat.models.protocol import AcceptRequest, CustomerMessage, RequestHuman
from livechat.routing import RoutingEngine
from livechat.services.ai_responder import AIOutcome, AIResponder, AIResult
from livechat.services.chat_history import ChatHistoryStore
from livechat.services.intent_logger import InMemoryIntentLogger
from livechat.transport.connection import Connection


# ===========================
# Fakes
# ===========================

class FakeConnection(Connection):
    """Connection that records every payload sent to it."""

    def __init__(self, name: Optional[str] = None):
        super().__init__(connection_id=name)
        self.sent: List[Dict[str, Any]] = []
        self.open = True
        self.closed_with = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, payload: Dict[str, Any]) -> bool:
        if not self.open:
            return False
        self.sent.append(payload)
        return True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.open = False
        self.closed_with = (code, reason)

    def types(self) -> List[str]:
        return [payload["type"] for payload in self.sent]

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [payload for payload in self.sent if payload["type"] == message_type]

    def last(self) -> Dict[str, Any]:
        return self.sent[-1]

    def clear(self) -> None:
        self.sent.clear()


class StubResponder(AIResponder):
    """
    Scripted responder.

    Returns queued results in order, then ``default``. Queued exceptions are
    raised. When ``gate`` is set, generation waits on it first.
    """

    def __init__(self, results: Optional[List[Any]] = None):
        self.results: List[Any] = list(results or [])
        self.default = AIResult(outcome=AIOutcome.ANSWER, text="Here is what I found.", intent="general")
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def generate(self, message: str, history: List[Dict[str, Any]]) -> AIResult:
        self.calls.append((message, list(history)))
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            result = self.results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return self.default


# ===========================
# Settings Fixtures
# ===========================

def make_settings(**overrides: Any) -> Settings:
    values = dict(
        environment="testing",
        enable_telemetry=False,
        dev_mock_ai=True,
        customer_queue_timeout_seconds=60.0,
        customer_idle_warning_seconds=60.0,
        customer_idle_grace_seconds=30.0,
        agent_reconnect_window_seconds=60.0,
        session_sweep_interval_seconds=60.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with long timers so nothing fires unless a test asks for it."""
    return make_settings()


# ===========================
# Engine Fixtures
# ===========================

@pytest.fixture
def responder() -> StubResponder:
    return StubResponder()


@pytest.fixture
def intent_logger() -> InMemoryIntentLogger:
    return InMemoryIntentLogger(capacity=100)


@pytest.fixture
async def engine_factory(responder, intent_logger):
    """
    Build engines with custom timer settings.
    Usage: engine = engine_factory(customer_queue_timeout_seconds=0.1)
    """
    created: List[RoutingEngine] = []

    def _factory(**overrides: Any) -> RoutingEngine:
        engine = RoutingEngine(
            settings=make_settings(**overrides),
            responder=responder,
            intent_logger=intent_logger,
            chat_history=ChatHistoryStore(capacity=100),
        )
        created.append(engine)
        return engine

    yield _factory

    for engine in created:
        await engine.shutdown()


@pytest.fixture
async def engine(engine_factory) -> RoutingEngine:
    return engine_factory()


# ===========================
# Actor helpers
# ===========================

def make_profile(agent_id: str = "agent1", name: Optional[str] = None) -> AgentProfile:
    return AgentProfile(
        agent_id=agent_id,
        name=name or f"Agent {agent_id}",
        username=f"user_{agent_id}",
        email=f"{agent_id}@company.com",
    )


@pytest.fixture
def connect_agent():
    """Connect an agent on a fresh fake connection."""
    async def _connect(engine: RoutingEngine, agent_id: str = "agent1") -> FakeConnection:
        connection = FakeConnection(f"agent-{agent_id}")
        await engine.agent_connect(connection, make_profile(agent_id))
        return connection

    return _connect


@pytest.fixture
def assign_customer(connect_agent):
    """
    Put a customer into a live human chat.

    Returns (customer_connection, agent_connection).
    """
    async def _assign(
        engine: RoutingEngine,
        session_id: str = "S1",
        agent_id: str = "agent1"
    ):
        agent_conn = await connect_agent(engine, agent_id)
        customer = FakeConnection(f"customer-{session_id}")
        await engine.handle(
            CustomerMessage(session_id=session_id, message="I need help with my account"),
            customer
        )
        await engine.handle(RequestHuman(session_id=session_id), customer)
        await engine.handle(AcceptRequest(session_id=session_id), agent_conn)
        return customer, agent_conn

    return _assign


def assert_links_consistent(engine: RoutingEngine) -> None:
    """A session has a human iff it and its agent point at each other."""
    for session in engine.sessions.sessions():
        agent = engine.agents.get(session.agent_id) if session.agent_id else None
        linked = agent is not None and agent.session_id == session.session_id
        assert session.has_human == linked, session.session_id
        assert session.has_human == (session.agent_id is not None), session.session_id

    for agent in engine.agents.agents():
        if agent.session_id is not None:
            session = engine.sessions.get(agent.session_id)
            assert session is not None, agent.agent_id
            assert session.agent_id == agent.agent_id

    for session_id in engine.queue.snapshot():
        assert not engine.sessions.get(session_id).has_human


@pytest.fixture
def check_links() -> Callable[[RoutingEngine], None]:
    return assert_links_consistent
