"""
Tests for the routing engine: AI handling, handoff, queueing and human chat.
"""
import asyncio

import pytest

from livechat.models.agent import AgentStatus
from livechat.models.protocol import (
    AcceptRequest,
    AgentChatMessage,
    AgentTyping,
    CustomerMessage,
    CustomerTyping,
    EndChat,
    EndSession,
    FileUploaded,
    HandoffResponse,
    Ping,
    RequestHuman,
    SatisfactionResponse,
)
from livechat.models.session import MessageRole, RoutingState
from livechat.routing.engine import DECLINE_MESSAGE
from livechat.services.ai_responder import APOLOGY_MESSAGE, AIOutcome, AIResult

from conftest import FakeConnection


async def say(engine, connection, text, session_id="S1"):
    await engine.handle(CustomerMessage(session_id=session_id, message=text), connection)


async def wait_for(predicate, attempts=50, interval=0.01):
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


# ===========================
# AI Handling Tests
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_answers_are_recorded(engine, responder, check_links):
    """Test each answered message adds a customer and an assistant entry."""
    customer = FakeConnection()

    for text in ("first question", "second question", "third question"):
        await say(engine, customer, text)

    session = engine.sessions.get("S1")
    assert len(session.transcript) == 6
    assert [entry.role for entry in session.transcript[:2]] == [MessageRole.CUSTOMER, MessageRole.ASSISTANT]
    assert customer.types() == ["ai_response"] * 3
    assert customer.last()["message"] == "Here is what I found."
    assert len(responder.calls) == 3
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_receives_history_including_new_message(engine, responder):
    """Test the responder sees the transcript ending with the new message."""
    customer = FakeConnection()

    await say(engine, customer, "hello")
    await say(engine, customer, "where is my order")

    message, history = responder.calls[-1]
    assert message == "where is my order"
    assert [entry["content"] for entry in history] == [
        "hello", "Here is what I found.", "where is my order"
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_handoff_offer_is_not_recorded(engine, responder):
    """Test a handoff offer is sent but not stored in the transcript."""
    responder.results.append(AIResult(
        outcome=AIOutcome.HANDOFF_OFFER,
        text="Let me connect you with a specialist.",
        reason="pricing question"
    ))
    customer = FakeConnection()

    await say(engine, customer, "how much does it cost")

    session = engine.sessions.get("S1")
    assert customer.types() == ["handoff_offer"]
    assert customer.last()["reason"] == "pricing question"
    assert len(session.transcript) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_declined_handoff_stays_with_ai(engine, responder):
    """Test declining the offer returns the customer to the assistant."""
    responder.results.append(AIResult(outcome=AIOutcome.NO_KNOWLEDGE, text="I don't know that."))
    customer = FakeConnection()

    await say(engine, customer, "what is the airspeed of a swallow?")
    await engine.handle(HandoffResponse(session_id="S1", accepted=False), customer)

    session = engine.sessions.get("S1")
    assert customer.types() == ["handoff_offer", "ai_response"]
    assert customer.last()["message"] == DECLINE_MESSAGE
    assert session.state == RoutingState.AI_HANDLING
    assert "S1" not in engine.queue


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accepted_handoff_asks_for_customer_info(engine):
    """Test accepting the offer prompts for contact details."""
    customer = FakeConnection()

    await engine.handle(HandoffResponse(session_id="S1", accepted=True), customer)

    assert customer.types() == ["show_customer_info_dialog"]
    assert "S1" in engine.sessions


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_error_result_sends_apology(engine, responder):
    """Test an error result is recorded and sent as an apology."""
    responder.results.append(AIResult.error("service down"))
    customer = FakeConnection()

    await say(engine, customer, "help")

    session = engine.sessions.get("S1")
    assert customer.types() == ["error"]
    assert customer.last()["message"] == APOLOGY_MESSAGE
    assert session.transcript[-1].content == APOLOGY_MESSAGE
    assert len(session.transcript) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_responder_exception_is_contained(engine, responder):
    """Test a raising responder is treated as an error result."""
    responder.results.append(RuntimeError("connection refused"))
    customer = FakeConnection()

    await say(engine, customer, "help")
    await say(engine, customer, "still there?")

    assert customer.types() == ["error", "ai_response"]
    assert engine.sessions.get("S1").transcript[1].content == APOLOGY_MESSAGE


@pytest.mark.unit
@pytest.mark.asyncio
async def test_answers_are_logged_as_intents(engine, responder, intent_logger):
    """Test answered messages produce intent records."""
    responder.results.append(AIResult(
        outcome=AIOutcome.ANSWER,
        text="We offer a free trial.",
        intent="trial",
        category="trial",
        confidence=0.8,
        sources=[{"content": "trial", "similarity": 0.8}]
    ))
    customer = FakeConnection()

    await say(engine, customer, "do you have a trial?")
    await engine.drain_background()

    records = intent_logger.records("S1")
    assert len(records) == 1
    assert records[0].intent == "trial"
    assert records[0].response_type == "ai_response"
    assert records[0].matched_docs == [{"content": "trial", "similarity": 0.8}]


# ===========================
# Queue Tests
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_human_without_agents(engine, intent_logger, check_links):
    """Test the customer is told nobody is available and is not queued."""
    customer = FakeConnection()

    await say(engine, customer, "I need a person")
    await engine.handle(RequestHuman(session_id="S1"), customer)
    await engine.drain_background()

    assert customer.types() == ["ai_response", "no_agents_available"]
    assert engine.queue.size() == 0
    assert engine.sessions.get("S1").state == RoutingState.AI_HANDLING
    assert [record.intent for record in intent_logger.records("S1")][-1] == "human_request"
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_human_notifies_agents(engine, connect_agent, check_links):
    """Test a queued customer is announced to every live agent."""
    agent_one = await connect_agent(engine, "agent1")
    agent_two = await connect_agent(engine, "agent2")
    customer = FakeConnection()

    await say(engine, customer, "My invoice is wrong")
    await engine.handle(
        RequestHuman(session_id="S1", customer_info={"name": "Ada", "email": "ada@example.com"}),
        customer
    )

    for agent in (agent_one, agent_two):
        request = agent.of_type("pending_request")[-1]
        assert request["sessionId"] == "S1"
        assert request["position"] == 1
        assert request["totalInQueue"] == 1
        assert request["lastMessage"] == "My invoice is wrong"
        assert request["customerInfo"]["name"] == "Ada"

    waiting = customer.last()
    assert waiting["type"] == "waiting_for_human"
    assert waiting["position"] == 1
    assert engine.sessions.get("S1").state == RoutingState.QUEUED
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_human_is_idempotent(engine, connect_agent):
    """Test asking twice keeps one queue entry."""
    await connect_agent(engine)
    customer = FakeConnection()

    await engine.handle(RequestHuman(session_id="S1"), customer)
    await engine.handle(RequestHuman(session_id="S1"), customer)

    assert engine.queue.snapshot() == ["S1"]
    assert [payload["position"] for payload in customer.of_type("waiting_for_human")] == [1, 1]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_queue_positions_are_fifo(engine, connect_agent, check_links):
    """Test customers are queued and served in arrival order."""
    agent = await connect_agent(engine)
    first, second = FakeConnection(), FakeConnection()

    await engine.handle(RequestHuman(session_id="A"), first)
    await engine.handle(RequestHuman(session_id="B"), second)

    assert first.last()["position"] == 1
    assert second.last()["position"] == 2
    assert [payload["position"] for payload in agent.of_type("pending_request")] == [1, 2]

    await engine.handle(AcceptRequest(session_id="A"), agent)

    assert engine.queue.snapshot() == ["B"]
    assert engine.queue.position_of("B") == 1
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_joining_sees_waiting_customers(engine, connect_agent):
    """Test a newly connected agent receives the current queue."""
    first_agent = await connect_agent(engine, "agent1")
    customer = FakeConnection()
    await say(engine, customer, "Anyone there?")
    await engine.handle(RequestHuman(session_id="S1"), customer)

    second_agent = await connect_agent(engine, "agent2")

    status = second_agent.of_type("agent_status")[0]
    assert status["status"] == "online"
    assert status["waitingCustomers"] == 1
    assert status["totalAgents"] == 2
    assert status["user"]["id"] == "agent2"
    assert second_agent.of_type("pending_request")[0]["sessionId"] == "S1"

    joined = first_agent.of_type("agent_joined")[-1]
    assert joined["agentId"] == "agent2"
    assert joined["totalAgents"] == 2


# ===========================
# Accept Tests
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_links_session_and_agent(engine, assign_customer, check_links):
    """Test accepting a queued customer starts the human chat."""
    customer, agent_conn = await assign_customer(engine)

    session = engine.sessions.get("S1")
    agent = engine.agents.get("agent1")
    assert session.has_human is True
    assert session.agent_id == "agent1"
    assert session.state == RoutingState.HUMAN_HANDLING
    assert agent.session_id == "S1"
    assert agent.status == AgentStatus.BUSY
    assert engine.queue.size() == 0

    joined = customer.of_type("human_joined")[0]
    assert joined["agentName"] == "Agent agent1"

    assigned = agent_conn.of_type("customer_assigned")[0]
    assert assigned["sessionId"] == "S1"
    assert assigned["history"][0]["content"] == "I need help with my account"
    assert assigned["cannedResponses"] == engine.settings.canned_responses
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_notifies_other_agents(engine, connect_agent):
    """Test other agents learn the request was taken."""
    winner = await connect_agent(engine, "agent1")
    other = await connect_agent(engine, "agent2")
    customer = FakeConnection()
    await engine.handle(RequestHuman(session_id="S1"), customer)

    await engine.handle(AcceptRequest(session_id="S1"), winner)

    taken = other.of_type("request_taken")[0]
    assert taken["sessionId"] == "S1"
    assert taken["takenBy"] == "Agent agent1"
    assert taken["remainingQueue"] == 0
    assert winner.of_type("request_taken") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_accepts_have_one_winner(engine, connect_agent, check_links):
    """Test two agents racing for one customer: exactly one wins."""
    agent_one = await connect_agent(engine, "agent1")
    agent_two = await connect_agent(engine, "agent2")
    customer = FakeConnection()
    await engine.handle(RequestHuman(session_id="S1"), customer)

    await asyncio.gather(
        engine.handle(AcceptRequest(session_id="S1"), agent_one),
        engine.handle(AcceptRequest(session_id="S1"), agent_two),
    )

    assigned = agent_one.of_type("customer_assigned") + agent_two.of_type("customer_assigned")
    taken = agent_one.of_type("request_already_taken") + agent_two.of_type("request_already_taken")
    assert len(assigned) == 1
    assert len(taken) == 1
    assert len(customer.of_type("human_joined")) == 1

    session = engine.sessions.get("S1")
    assert engine.agents.get(session.agent_id).session_id == "S1"
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_unknown_session(engine, connect_agent):
    """Test accepting a session that no longer exists."""
    agent = await connect_agent(engine)

    await engine.handle(AcceptRequest(session_id="gone"), agent)

    assert agent.last()["type"] == "request_unavailable"
    assert agent.last()["sessionId"] == "gone"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_accept_session_not_in_queue(engine, connect_agent):
    """Test a session that never asked for a human cannot be taken."""
    agent = await connect_agent(engine)
    await say(engine, FakeConnection(), "just browsing")

    await engine.handle(AcceptRequest(session_id="S1"), agent)

    assert agent.last()["type"] == "request_unavailable"
    assert engine.sessions.get("S1").has_human is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_busy_agent_cannot_accept_second_customer(engine, assign_customer, check_links):
    """Test an agent handles one customer at a time."""
    _, agent_conn = await assign_customer(engine, session_id="S1")
    await engine.handle(RequestHuman(session_id="S2"), FakeConnection())

    await engine.handle(AcceptRequest(session_id="S2"), agent_conn)

    assert agent_conn.last()["type"] == "request_unavailable"
    assert engine.queue.snapshot() == ["S2"]
    assert engine.agents.get("agent1").session_id == "S1"
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_human_during_human_chat_is_ignored(engine, assign_customer):
    """Test a second human request does not requeue the session."""
    customer, _ = await assign_customer(engine)
    customer.clear()

    await engine.handle(RequestHuman(session_id="S1"), customer)

    assert customer.sent == []
    assert engine.queue.size() == 0


# ===========================
# Human Chat Tests
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_customer_message_goes_to_agent_not_ai(engine, responder, assign_customer):
    """Test a session with a human never reaches the AI."""
    customer, agent_conn = await assign_customer(engine)
    calls_before = len(responder.calls)

    await say(engine, customer, "are you a real person?")

    forwarded = agent_conn.last()
    assert forwarded["type"] == "customer_message"
    assert forwarded["message"] == "are you a real person?"
    assert len(responder.calls) == calls_before
    assert customer.last()["type"] == "human_joined"
    assert engine.sessions.get("S1").transcript[-1].content == "are you a real person?"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_message_reaches_customer(engine, assign_customer):
    """Test agent replies are recorded and delivered."""
    customer, agent_conn = await assign_customer(engine)

    await engine.handle(
        AgentChatMessage(session_id="S1", message="Happy to help!"),
        agent_conn
    )

    reply = customer.last()
    assert reply["type"] == "agent_message"
    assert reply["message"] == "Happy to help!"
    entry = engine.sessions.get("S1").transcript[-1]
    assert entry.role == MessageRole.AGENT
    assert entry.content == "Happy to help!"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_message_to_unassigned_session(engine, assign_customer, connect_agent):
    """Test an agent cannot write into another agent's chat."""
    customer, _ = await assign_customer(engine, agent_id="agent1")
    intruder = await connect_agent(engine, "agent2")
    customer.clear()

    await engine.handle(AgentChatMessage(session_id="S1", message="hi"), intruder)

    assert intruder.last()["type"] == "error"
    assert customer.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ai_reply_dropped_when_human_joins_mid_generation(engine, responder, connect_agent, check_links):
    """Test an AI reply finishing after a human joined is discarded."""
    agent = await connect_agent(engine)
    customer = FakeConnection()
    await say(engine, customer, "first")
    await engine.handle(RequestHuman(session_id="S1"), customer)

    responder.gate = asyncio.Event()
    pending = asyncio.create_task(say(engine, customer, "second"))
    assert await wait_for(lambda: len(responder.calls) == 2)

    await engine.handle(AcceptRequest(session_id="S1"), agent)
    responder.gate.set()
    await pending

    session = engine.sessions.get("S1")
    assert session.has_human is True
    assert session.transcript[-1].content == "second"
    assert len(customer.of_type("ai_response")) == 1
    assert customer.last()["type"] == "human_joined"
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_messages_for_one_session_are_serialized(engine, responder):
    """Test a second message waits for the first AI reply."""
    customer = FakeConnection()
    responder.gate = asyncio.Event()

    first = asyncio.create_task(say(engine, customer, "one"))
    second = asyncio.create_task(say(engine, customer, "two"))
    assert await wait_for(lambda: len(responder.calls) == 1)
    await asyncio.sleep(0.05)
    assert len(responder.calls) == 1

    responder.gate.set()
    await asyncio.gather(first, second)

    contents = [entry.content for entry in engine.sessions.get("S1").transcript]
    assert contents == ["one", "Here is what I found.", "two", "Here is what I found."]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_end_chat_returns_customer_to_ai(engine, responder, assign_customer, check_links):
    """Test ending the chat frees the agent and surveys the customer."""
    customer, agent_conn = await assign_customer(engine)

    await engine.handle(EndChat(session_id="S1"), agent_conn)

    assert customer.types()[-2:] == ["satisfaction_survey", "agent_left"]
    survey = customer.of_type("satisfaction_survey")[0]
    assert survey["interactionType"] == "human_agent"
    assert customer.last()["message"].startswith("Agent agent1 has ended the chat")

    session = engine.sessions.get("S1")
    agent = engine.agents.get("agent1")
    assert session.has_human is False
    assert agent.session_id is None
    assert agent.status == AgentStatus.ONLINE
    assert engine.chat_history.latest_for("S1").end_reason == "agent_ended"
    check_links(engine)

    calls_before = len(responder.calls)
    await say(engine, customer, "back to the bot")
    assert len(responder.calls) == calls_before + 1
    assert customer.last()["type"] == "ai_response"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_chat_notifies_other_agents(engine, assign_customer, connect_agent):
    """Test other agents see the chat ended."""
    _, agent_conn = await assign_customer(engine, agent_id="agent1")
    other = await connect_agent(engine, "agent2")

    await engine.handle(EndChat(session_id="S1"), agent_conn)

    ended = other.of_type("chat_ended")[0]
    assert ended["endedBy"] == "Agent agent1"
    assert ended["endReason"] == "agent_ended"
    assert agent_conn.of_type("chat_ended") == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_satisfaction_is_attached_to_history(engine, assign_customer):
    """Test a survey answer lands on the saved chat."""
    customer, agent_conn = await assign_customer(engine)
    await engine.handle(EndChat(session_id="S1"), agent_conn)

    await engine.handle(
        SatisfactionResponse(session_id="S1", rating=5, feedback="Great"),
        customer
    )

    satisfaction = engine.chat_history.latest_for("S1").satisfaction
    assert satisfaction.rating == 5
    assert satisfaction.feedback == "Great"
    assert satisfaction.interaction_type == "human_agent"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_customer_end_session_during_human_chat(engine, assign_customer, check_links):
    """Test the customer ending the session frees the agent."""
    customer, agent_conn = await assign_customer(engine)

    await engine.handle(EndSession(session_id="S1"), customer)

    assert customer.types()[-2:] == ["satisfaction_survey", "session_ended"]
    assert agent_conn.last()["type"] == "session_ended_by_customer"
    assert "S1" not in engine.sessions
    assert engine.agents.get("agent1").session_id is None
    assert engine.chat_history.latest_for("S1").end_reason == "customer_ended"
    assert engine.timers.scheduled() == []
    check_links(engine)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_session_ai_only_survey(engine):
    """Test longer AI-only chats get an AI survey on exit."""
    customer = FakeConnection()
    await say(engine, customer, "one")
    await say(engine, customer, "two")

    await engine.handle(EndSession(session_id="S1", reason="done"), customer)

    survey = customer.of_type("satisfaction_survey")[0]
    assert survey["interactionType"] == "ai_only"
    assert customer.last()["type"] == "session_ended"
    record = engine.chat_history.latest_for("S1")
    assert record.agent_name == "AI Assistant"
    assert len(record.messages) == 4
    assert "S1" not in engine.sessions


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_session_short_chat_has_no_survey(engine):
    """Test a short AI chat ends without a survey."""
    customer = FakeConnection()
    await say(engine, customer, "hi")

    await engine.handle(EndSession(session_id="S1"), customer)

    assert customer.types() == ["ai_response", "session_ended"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_unknown_session(engine):
    """Test ending an unknown session just confirms."""
    customer = FakeConnection()

    await engine.handle(EndSession(session_id="nope"), customer)

    assert customer.types() == ["session_ended"]
    assert len(engine.sessions) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_end_session_removes_from_queue(engine, connect_agent):
    """Test a queued customer leaving notifies agents."""
    agent = await connect_agent(engine)
    customer = FakeConnection()
    await engine.handle(RequestHuman(session_id="S1"), customer)

    await engine.handle(EndSession(session_id="S1"), customer)

    assert engine.queue.size() == 0
    left = agent.of_type("customer_left_queue")[0]
    assert left["sessionId"] == "S1"
    assert left["remainingQueue"] == 0


# ===========================
# Side Channel Tests
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_typing_indicators_are_relayed(engine, assign_customer):
    """Test typing status flows both ways during a human chat."""
    customer, agent_conn = await assign_customer(engine)

    await engine.handle(CustomerTyping(session_id="S1", is_typing=True), customer)
    await engine.handle(AgentTyping(session_id="S1", is_typing=False), agent_conn)

    assert agent_conn.last() == {
        "type": "typing", "sessionId": "S1", "sender": "customer", "isTyping": True
    }
    assert customer.last() == {
        "type": "typing", "sessionId": "S1", "sender": "agent", "isTyping": False
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_typing_without_agent_is_dropped(engine):
    """Test customer typing with no human goes nowhere."""
    customer = FakeConnection()
    await say(engine, customer, "hello")
    customer.clear()

    await engine.handle(CustomerTyping(session_id="S1"), customer)

    assert customer.sent == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_file_upload_is_announced_to_agent(engine, assign_customer):
    """Test uploaded file metadata reaches the assigned agent."""
    customer, agent_conn = await assign_customer(engine)

    await engine.handle(
        FileUploaded(session_id="S1", file_info={"name": "invoice.pdf", "size": 1024}),
        customer
    )

    notice = agent_conn.last()
    assert notice["type"] == "customer_file_uploaded"
    assert notice["fileInfo"] == {"name": "invoice.pdf", "size": 1024}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ping_gets_pong(engine):
    """Test keepalive pings are answered."""
    connection = FakeConnection()

    await engine.handle(Ping(), connection)

    assert connection.types() == ["pong"]


# ===========================
# Authorization Tests
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_event_requires_authenticated_agent(engine, connect_agent):
    """Test agent events on an unauthenticated connection are refused."""
    await connect_agent(engine)
    await engine.handle(RequestHuman(session_id="S1"), FakeConnection())
    anonymous = FakeConnection()

    await engine.handle(AcceptRequest(session_id="S1"), anonymous)

    assert anonymous.last()["type"] == "error"
    assert anonymous.last()["message"] == "Agent not authenticated"
    assert engine.queue.snapshot() == ["S1"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_agent_cannot_send_customer_events(engine, connect_agent):
    """Test an agent connection is not treated as a customer."""
    agent = await connect_agent(engine)

    await engine.handle(CustomerMessage(session_id="S1", message="hi"), agent)

    assert agent.last()["type"] == "error"
    assert "S1" not in engine.sessions


@pytest.mark.unit
@pytest.mark.asyncio
async def test_handler_errors_do_not_propagate(engine, monkeypatch):
    """Test an exception inside a transition is logged, not raised."""
    def explode(message, connection):
        raise RuntimeError("boom")

    monkeypatch.setitem(engine._handlers, Ping, explode)

    await engine.handle(Ping(), FakeConnection())

    assert engine.stats()["sessions"] == 0
