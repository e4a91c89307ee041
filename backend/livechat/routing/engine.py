"""
Routing engine.

Owns the session registry, agent registry, waiting queue and timers, and
drives every AI ↔ human transition. The engine is a single actor: every
transition runs under one ``asyncio.Lock``, mutates the stores
synchronously and queues its notifications in an outbox, which is
delivered in order before the lock is released.

The AI call is the only suspension point. Customer messages for one
session are serialized by a per-session lock while the global lock is
released during generation; the reply is applied only if the session still
exists and no human joined in the meantime.

Version: 1.0.0
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel

from ..config import Settings
from ..models.agent import Agent, AgentProfile
from ..models.protocol import (
    AcceptRequest,
    AgentChatMessage,
    AgentDisconnectedTemp,
    AgentJoined,
    AgentLeft,
    AgentReconnected,
    AgentReply,
    AgentStatusNotice,
    AgentTyping,
    AIResponse,
    ChatEnded,
    ConnectionRestored,
    CUSTOMER_MESSAGE_TYPES,
    CustomerAssigned,
    CustomerDisconnected,
    CustomerFileUploaded,
    CustomerLeftQueue,
    CustomerMessage,
    CustomerMessageForward,
    CustomerReconnected,
    CustomerTimeout,
    CustomerTyping,
    EndChat,
    EndSession,
    ErrorNotice,
    FileUploaded,
    HandoffOffer,
    HandoffResponse,
    HumanJoined,
    IdleContinue,
    IdleWarning,
    NoAgentsAvailable,
    OutboundMessage,
    PendingRequest,
    Ping,
    Pong,
    RequestAlreadyTaken,
    RequestHuman,
    RequestTaken,
    RequestUnavailable,
    RestoreSession,
    SatisfactionResponse,
    SatisfactionSurvey,
    SessionEnded,
    SessionEndedByCustomer,
    SessionRestored,
    SessionTimeout,
    ShowCustomerInfoDialog,
    TypingIndicator,
    WaitingForHuman,
    utcnow,
)
from ..models.session import MessageRole, RoutingState, Session
from ..services.ai_responder import AIOutcome, AIResponder, AIResult
from ..services.chat_history import ChatHistoryStore
from ..services.intent_logger import IntentLogger, IntentRecord
from ..session import AgentRegistry, QueueManager, SessionRegistry, TimerKind, TimerRegistry
from ..transport.connection import Connection
from ..utils.telemetry import (
    track_ai_response,
    track_chat_ended,
    track_handoff,
    track_transition_error,
    update_routing_gauges,
)

logger = logging.getLogger(__name__)


DECLINE_MESSAGE = "No problem! I'm here to help. What else can I assist you with?"
PREVIEW_LENGTH = 100

# End reasons
AGENT_ENDED = "agent_ended"
CUSTOMER_ENDED = "customer_ended"
AGENT_TIMEOUT = "agent_timeout"
CUSTOMER_IDLE = "customer_idle"
CUSTOMER_DISCONNECTED = "customer_disconnected"


@dataclass
class Delivery:
    """One outbound frame waiting in the outbox."""
    connection: Optional[Connection]
    message: OutboundMessage


class RoutingEngine:
    """
    Conversation routing state machine.

    States: AI_HANDLING → QUEUED → HUMAN_HANDLING → AI_HANDLING | ENDED.

    Public entry points are coroutines: ``handle`` for parsed inbound
    frames, ``agent_connect`` for authenticated agent joins and
    ``connection_closed`` for socket closes. Timers call back into the
    engine through the same lock.
    """

    def __init__(
        self,
        settings: Settings,
        responder: AIResponder,
        intent_logger: IntentLogger,
        chat_history: ChatHistoryStore,
        sessions: Optional[SessionRegistry] = None,
        agents: Optional[AgentRegistry] = None,
        queue: Optional[QueueManager] = None,
        timers: Optional[TimerRegistry] = None
    ):
        self.settings = settings
        self.responder = responder
        self.intent_logger = intent_logger
        self.chat_history = chat_history

        self.sessions = sessions or SessionRegistry()
        self.agents = agents or AgentRegistry()
        self.queue = queue or QueueManager()
        self.timers = timers or TimerRegistry()

        self._lock = asyncio.Lock()
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._outbox: List[Delivery] = []
        self._background: Set[asyncio.Task] = set()

        self._handlers: Dict[type, Callable[[Any, Connection], None]] = {
            RestoreSession: self._on_restore_session,
            HandoffResponse: self._on_handoff_response,
            RequestHuman: self._on_request_human,
            EndSession: self._on_end_session,
            IdleContinue: self._on_idle_continue,
            SatisfactionResponse: self._on_satisfaction_response,
            FileUploaded: self._on_file_uploaded,
            CustomerTyping: self._on_customer_typing,
            AcceptRequest: self._on_accept_request,
            AgentChatMessage: self._on_agent_message,
            EndChat: self._on_end_chat,
            AgentTyping: self._on_agent_typing,
            Ping: self._on_ping,
        }

        logger.info("RoutingEngine initialized")

    # ===========================
    # Public API
    # ===========================

    async def handle(self, message: BaseModel, connection: Connection) -> None:
        """
        Process one parsed inbound frame.

        Unexpected errors are logged and counted; they never propagate to
        the connection loop.
        """
        event = getattr(message, "type", type(message).__name__)
        try:
            if isinstance(message, CUSTOMER_MESSAGE_TYPES) and connection.role == "agent":
                await self._reject(connection, "Agents cannot send customer events")
                return

            if isinstance(message, CustomerMessage):
                await self._handle_customer_message(message, connection)
                return

            handler = self._handlers.get(type(message))
            if handler is None:
                logger.warning(f"No handler for inbound event '{event}'")
                await self._reject(connection, f"Unsupported message type: {event}")
                return

            await self._run(handler, message, connection)

        except Exception as e:
            logger.error(f"Error handling '{event}': {e}", exc_info=True)
            track_transition_error(event)

    async def agent_connect(self, connection: Connection, profile: AgentProfile) -> Optional[Agent]:
        """
        Register an authenticated agent on a connection.

        A connection already signed in as a different agent is refused and
        keeps its current agent.
        """
        return await self._run(self._on_agent_connect, connection, profile)

    async def connection_closed(self, connection: Connection) -> None:
        """
        Report a closed socket.

        Ignored when the record bound to the connection has since moved to
        a newer connection.
        """
        try:
            await self._run(self._on_connection_closed, connection)
        except Exception as e:
            logger.error(f"Error handling close of {connection!r}: {e}", exc_info=True)
            track_transition_error("connection_closed")

    async def sweep_idle_sessions(self) -> int:
        """
        Evict sessions whose customer is gone and idle past the idle timeout.

        Sessions lose their timers when the customer socket closes, so this
        sweep is what eventually releases them.
        """
        return await self._run(self._on_sweep)

    async def shutdown(self) -> None:
        await self.timers.shutdown()
        await self.drain_background()
        logger.info("RoutingEngine shutdown complete")

    async def drain_background(self) -> None:
        """Wait for in-flight intent logging tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def stats(self) -> Dict[str, Any]:
        return {
            "sessions": len(self.sessions),
            "humanSessions": self.sessions.count_with_human(),
            "queue": self.queue.size(),
            "agents": len(self.agents),
            "liveAgents": len(self.agents.list_available()),
            "timers": len(self.timers),
        }

    # ===========================
    # Actor plumbing
    # ===========================

    async def _run(self, transition: Callable[..., Any], *args) -> Any:
        async with self._lock:
            try:
                return transition(*args)
            finally:
                await self._flush()
                update_routing_gauges(
                    sessions=len(self.sessions),
                    agents=len(self.agents.list_available()),
                    queued=self.queue.size()
                )

    async def _flush(self) -> None:
        while self._outbox:
            deliveries, self._outbox = self._outbox, []
            for delivery in deliveries:
                if delivery.connection is None:
                    logger.debug(f"Dropping '{delivery.message.type}': no connection")
                    continue
                await delivery.connection.send(delivery.message.to_payload())

    def _send(self, connection: Optional[Connection], message: OutboundMessage) -> None:
        self._outbox.append(Delivery(connection, message))

    def _send_to_agents(self, message: OutboundMessage, exclude: Optional[str] = None) -> None:
        for agent in self.agents.list_available():
            if agent.agent_id != exclude:
                self._send(agent.connection, message)

    async def _reject(
        self,
        connection: Connection,
        text: str,
        session_id: Optional[str] = None
    ) -> None:
        await connection.send(ErrorNotice(message=text, session_id=session_id).to_payload())

    def _agent_for(self, connection: Connection) -> Optional[Agent]:
        """The agent record currently owning this connection."""
        if connection.role != "agent" or connection.bound_id is None:
            return None
        agent = self.agents.get(connection.bound_id)
        if agent is None or agent.connection is not connection:
            return None
        return agent

    def _require_agent(self, connection: Connection, session_id: Optional[str] = None) -> Optional[Agent]:
        agent = self._agent_for(connection)
        if agent is None:
            logger.warning(f"Agent event on unauthenticated connection {connection.connection_id}")
            self._send(connection, ErrorNotice(message="Agent not authenticated", session_id=session_id))
        return agent

    def _log_intent(self, record: IntentRecord) -> None:
        task = asyncio.get_running_loop().create_task(self._record_intent(record))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _record_intent(self, record: IntentRecord) -> None:
        try:
            await self.intent_logger.record(record)
        except Exception as e:
            logger.error(f"Failed to log intent for {record.session_id}: {e}", exc_info=True)

    # ===========================
    # Timers
    # ===========================

    def _reset_idle_timers(self, session_id: str) -> None:
        warning = self.settings.customer_idle_warning_seconds
        self.timers.schedule(
            TimerKind.CUSTOMER_IDLE_WARNING,
            session_id,
            warning,
            lambda: self._run(self._on_idle_warning, session_id)
        )
        self.timers.schedule(
            TimerKind.CUSTOMER_IDLE_TIMEOUT,
            session_id,
            self.settings.customer_idle_timeout_seconds,
            lambda: self._run(self._on_idle_timeout, session_id)
        )

    def _reset_queue_timer(self, session_id: str) -> None:
        self.timers.schedule(
            TimerKind.CUSTOMER_QUEUE,
            session_id,
            self.settings.customer_queue_timeout_seconds,
            lambda: self._run(self._on_queue_timeout, session_id)
        )

    def _start_agent_reconnect_timer(self, agent_id: str, session_id: str) -> None:
        self.timers.schedule(
            TimerKind.AGENT_RECONNECT,
            agent_id,
            self.settings.agent_reconnect_window_seconds,
            lambda: self._run(self._on_agent_reconnect_timeout, agent_id, session_id)
        )

    # ===========================
    # Customer events
    # ===========================

    def _customer_session(self, session_id: str, connection: Connection) -> Session:
        """Get or create the session and make ``connection`` its customer link."""
        session, created = self.sessions.get_or_create(session_id)

        if connection.role == "customer" and connection.bound_id not in (None, session_id):
            previous = self.sessions.get(connection.bound_id)
            if previous is not None and previous.customer_connection is connection:
                previous.customer_connection = None

        if session.customer_connection is not connection:
            if session.customer_connection is not None:
                logger.info(f"Replacing customer connection for session {session_id}")
            session.customer_connection = connection
        connection.bind("customer", session_id)

        if created:
            self._reset_idle_timers(session_id)
        return session

    async def _handle_customer_message(self, message: CustomerMessage, connection: Connection) -> None:
        session_id = message.session_id
        session_lock = self._session_locks.setdefault(session_id, asyncio.Lock())

        async with session_lock:
            history = await self._run(self._on_customer_message, message, connection)
            if history is None:
                return

            started = time.monotonic()
            try:
                result = await self.responder.generate(message.message, history)
            except Exception as e:
                logger.error(f"AI responder failed for {session_id}: {e}", exc_info=True)
                result = AIResult.error(str(e))
            track_ai_response(result.outcome.value, time.monotonic() - started)

            await self._run(self._apply_ai_result, session_id, message.message, result)

    def _on_customer_message(
        self,
        message: CustomerMessage,
        connection: Connection
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Record the message and route it.

        Returns:
            Transcript to generate an AI reply from, or None when the
            message went to a human agent
        """
        session = self._customer_session(message.session_id, connection)
        self.sessions.append_message(session.session_id, MessageRole.CUSTOMER, message.message)
        self._reset_queue_timer(session.session_id)
        self._reset_idle_timers(session.session_id)

        if not session.has_human:
            return session.history()

        agent = self.agents.get(session.agent_id)
        if agent is not None and agent.is_connected:
            self._send(
                agent.connection,
                CustomerMessageForward(session_id=session.session_id, message=message.message)
            )
            return None

        logger.warning(
            f"Agent {session.agent_id} unreachable for session {session.session_id}"
        )
        self._send(connection, AgentDisconnectedTemp())
        if not self.timers.is_scheduled(TimerKind.AGENT_RECONNECT, session.agent_id):
            self._start_agent_reconnect_timer(session.agent_id, session.session_id)
        return None

    def _apply_ai_result(self, session_id: str, text: str, result: AIResult) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            logger.info(f"Session {session_id} ended during AI generation, reply dropped")
            return
        if session.has_human:
            logger.info(f"Human joined {session_id} during AI generation, reply dropped")
            return

        connection = session.customer_connection

        if result.outcome == AIOutcome.ANSWER:
            self.sessions.append_message(session_id, MessageRole.ASSISTANT, result.text)
            self._send(connection, AIResponse(
                session_id=session_id,
                message=result.text,
                sources=result.sources
            ))
            self._log_intent(IntentRecord(
                session_id=session_id,
                message=text,
                intent=result.intent,
                category=result.category,
                confidence=result.confidence,
                matched_docs=result.sources,
                response_type="ai_response",
            ))

        elif result.offers_handoff:
            self._send(connection, HandoffOffer(
                session_id=session_id,
                message=result.text,
                reason=result.reason
            ))
            self._log_intent(IntentRecord(
                session_id=session_id,
                message=text,
                intent=result.intent or "unknown",
                category=result.category,
                confidence=result.confidence,
                response_type=(
                    "no_knowledge" if result.outcome == AIOutcome.NO_KNOWLEDGE else "handoff_suggestion"
                ),
            ))
            track_handoff("offered")

        else:
            self.sessions.append_message(session_id, MessageRole.ASSISTANT, result.text)
            self._send(connection, ErrorNotice(message=result.text, session_id=session_id))

    def _on_restore_session(self, message: RestoreSession, connection: Connection) -> None:
        existed = message.session_id in self.sessions
        session = self._customer_session(message.session_id, connection)
        self._reset_idle_timers(session.session_id)

        if not existed:
            self._reset_queue_timer(session.session_id)
            self._send(connection, SessionRestored(
                session_id=session.session_id,
                is_connected_to_human=False,
                is_new=True,
                message="New session created."
            ))
            return

        if session.has_human:
            text = f"Reconnected. You're still chatting with {session.agent_name}."
        else:
            text = "Session restored."

        self._send(connection, SessionRestored(
            session_id=session.session_id,
            is_connected_to_human=session.has_human,
            agent_name=session.agent_name,
            message=text
        ))

        if session.has_human:
            agent = self.agents.get(session.agent_id)
            if agent is not None and agent.is_connected:
                self._send(agent.connection, CustomerReconnected(session_id=session.session_id))

        logger.info(f"Session {session.session_id} restored (human={session.has_human})")

    def _on_handoff_response(self, message: HandoffResponse, connection: Connection) -> None:
        session = self._customer_session(message.session_id, connection)

        if message.accepted:
            self._send(connection, ShowCustomerInfoDialog(session_id=session.session_id))
            track_handoff("offer_accepted")
            return

        self._send(connection, AIResponse(session_id=session.session_id, message=DECLINE_MESSAGE))
        track_handoff("declined")

    def _on_request_human(self, message: RequestHuman, connection: Connection) -> None:
        session = self._customer_session(message.session_id, connection)
        session_id = session.session_id

        if session.has_human:
            logger.warning(f"Human requested for {session_id}, which already has an agent")
            return

        if message.customer_info is not None:
            session.customer_info = message.customer_info

        self._log_intent(IntentRecord(
            session_id=session_id,
            message=self._customer_preview(session),
            intent="human_request",
            category="handoff",
            confidence=1.0,
            response_type="human_request",
            customer_info=(
                session.customer_info.model_dump(exclude_none=True) if session.customer_info else None
            ),
        ))

        available = self.agents.list_available()
        if not available:
            logger.info(f"No agents available for session {session_id}")
            self._send(connection, NoAgentsAvailable())
            track_handoff("no_agents")
            return

        position = self.queue.enqueue(session_id)
        session.state = RoutingState.QUEUED
        self._reset_queue_timer(session_id)

        request = PendingRequest(
            session_id=session_id,
            position=position,
            total_in_queue=self.queue.size(),
            last_message=self._customer_preview(session),
            customer_info=session.customer_info
        )
        for agent in available:
            self._send(agent.connection, request)

        self._send(connection, WaitingForHuman(
            position=position,
            message=f"You're #{position} in line. A human agent will be with you shortly."
        ))
        track_handoff("queued")

    def _on_end_session(self, message: EndSession, connection: Connection) -> None:
        session = self.sessions.get(message.session_id)
        if session is None:
            logger.info(f"End requested for unknown session {message.session_id}")
            self._send(connection, SessionEnded())
            return

        self._customer_session(session.session_id, connection)
        if session.has_human:
            self._end_human_chat(session, CUSTOMER_ENDED)
        else:
            if session.transcript:
                self.chat_history.save(session, CUSTOMER_ENDED)
                track_chat_ended(CUSTOMER_ENDED)
            if len(session.transcript) > self.settings.ai_survey_min_messages:
                self._send(session.customer_connection, SatisfactionSurvey(
                    session_id=session.session_id,
                    interaction_type="ai_only",
                    message="How would you rate your experience with our AI assistant?"
                ))

        self._send(connection, SessionEnded())
        self._evict(session)
        logger.info(f"Session {message.session_id} ended by customer ({message.reason or 'no reason'})")

    def _on_idle_continue(self, message: IdleContinue, connection: Connection) -> None:
        session = self._customer_session(message.session_id, connection)
        session.touch()
        self._reset_idle_timers(session.session_id)

    def _on_satisfaction_response(self, message: SatisfactionResponse, connection: Connection) -> None:
        self.chat_history.attach_satisfaction(
            message.session_id,
            rating=message.rating,
            feedback=message.feedback,
            customer_name=message.customer_name,
            customer_email=message.customer_email
        )

    def _on_file_uploaded(self, message: FileUploaded, connection: Connection) -> None:
        session = self.sessions.get(message.session_id)
        if session is None or not session.has_human:
            logger.info(f"File upload for {message.session_id} with no agent to notify")
            return

        agent = self.agents.get(session.agent_id)
        if agent is not None and agent.is_connected:
            self._send(agent.connection, CustomerFileUploaded(
                session_id=session.session_id,
                file_info=message.file_info
            ))

    def _on_customer_typing(self, message: CustomerTyping, connection: Connection) -> None:
        session = self.sessions.get(message.session_id)
        if session is None or not session.has_human:
            return

        agent = self.agents.get(session.agent_id)
        if agent is not None and agent.is_connected:
            self._send(agent.connection, TypingIndicator(
                session_id=session.session_id,
                sender="customer",
                is_typing=message.is_typing
            ))

    def _on_ping(self, message: Ping, connection: Connection) -> None:
        self._send(connection, Pong())

    # ===========================
    # Agent events
    # ===========================

    def _on_agent_connect(self, connection: Connection, profile: AgentProfile) -> Optional[Agent]:
        if connection.role == "agent" and connection.bound_id != profile.agent_id:
            logger.warning(
                f"Connection {connection.connection_id} is signed in as {connection.bound_id}, "
                f"refusing join as {profile.agent_id}"
            )
            self._send(connection, ErrorNotice(
                message="This connection is already signed in as another agent"
            ))
            return self.agents.get(connection.bound_id)

        existing = self.agents.get(profile.agent_id)
        rejoined = existing is not None and existing.connection is connection

        connection.bind("agent", profile.agent_id)
        agent, previous_session_id = self.agents.connect(profile, connection)

        if previous_session_id is not None:
            session = self.sessions.get(previous_session_id)
            if session is not None and session.has_human and session.agent_id == agent.agent_id:
                self._restore_agent(agent, session, notify_customer=not rejoined)
                return agent

            logger.info(
                f"Agent {agent.agent_id} reconnected after its assignment "
                f"to {previous_session_id} expired"
            )
            self.agents.release(agent.agent_id)
            self.timers.cancel(TimerKind.AGENT_RECONNECT, agent.agent_id)

        live = self.agents.list_available()
        self._send(connection, AgentStatusNotice(
            status="online",
            message=f"Welcome, {agent.name}! You are now online.",
            waiting_customers=self.queue.size(),
            total_agents=len(live),
            user=profile.to_dict()
        ))

        total = self.queue.size()
        for position, session_id in enumerate(self.queue.snapshot(), start=1):
            session = self.sessions.get(session_id)
            if session is None:
                continue
            self._send(connection, PendingRequest(
                session_id=session_id,
                position=position,
                total_in_queue=total,
                last_message=self._customer_preview(session),
                customer_info=session.customer_info
            ))

        self._send_to_agents(
            AgentJoined(agent_id=agent.agent_id, agent_name=agent.name, total_agents=len(live)),
            exclude=agent.agent_id
        )
        logger.info(f"Agent {agent.name} ({agent.agent_id}) online, {total} customers waiting")
        return agent

    def _restore_agent(self, agent: Agent, session: Session, notify_customer: bool = True) -> None:
        self.agents.assign(agent.agent_id, session.session_id)
        self.timers.cancel(TimerKind.AGENT_RECONNECT, agent.agent_id)
        tail = self.sessions.transcript_tail(session.session_id, self.settings.transcript_tail_size)

        self._send(agent.connection, AgentStatusNotice(
            status="reconnected",
            message=f"Welcome back, {agent.name}! Your chat has been restored.",
            waiting_customers=self.queue.size(),
            total_agents=len(self.agents.list_available()),
            user=agent.profile.to_dict()
        ))
        self._send(agent.connection, ConnectionRestored(
            session_id=session.session_id,
            history=[entry.to_dict() for entry in tail]
        ))
        if notify_customer:
            self._send(session.customer_connection, AgentReconnected(
                message=f"{agent.name} has reconnected."
            ))
        logger.info(f"Agent {agent.agent_id} reconnected to session {session.session_id}")

    def _on_accept_request(self, message: AcceptRequest, connection: Connection) -> None:
        agent = self._require_agent(connection, message.session_id)
        if agent is None:
            return
        session_id = message.session_id
        session = self.sessions.get(session_id)

        if session is None:
            logger.warning(f"Agent {agent.agent_id} accepted unknown session {session_id}")
            self._send(connection, RequestUnavailable(
                session_id=session_id,
                message="This customer is no longer available"
            ))
            return

        if session.has_human:
            logger.info(f"Agent {agent.agent_id} lost the race for session {session_id}")
            self._send(connection, RequestAlreadyTaken(session_id=session_id))
            track_handoff("already_taken")
            return

        if session_id not in self.queue:
            self._send(connection, RequestUnavailable(
                session_id=session_id,
                message="This customer is no longer waiting for an agent"
            ))
            return

        if agent.session_id is not None:
            self._send(connection, RequestUnavailable(
                session_id=session_id,
                message="Finish your current chat before accepting another customer"
            ))
            return

        self.sessions.mark_human_joined(session_id, agent.agent_id, agent.name)
        self.agents.assign(agent.agent_id, session_id)
        self.queue.dequeue(session_id)
        self.timers.cancel(TimerKind.CUSTOMER_QUEUE, session_id)

        self._send(session.customer_connection, HumanJoined(
            agent_name=agent.name,
            message=f"{agent.name} has joined the chat and will assist you."
        ))
        self._send_to_agents(
            RequestTaken(session_id=session_id, taken_by=agent.name, remaining_queue=self.queue.size()),
            exclude=agent.agent_id
        )
        self._send(connection, CustomerAssigned(
            session_id=session_id,
            history=session.history(),
            canned_responses=list(self.settings.canned_responses),
            customer_info=session.customer_info
        ))
        track_handoff("accepted")
        logger.info(f"Agent {agent.name} accepted session {session_id}")

    def _on_agent_message(self, message: AgentChatMessage, connection: Connection) -> None:
        agent = self._require_agent(connection, message.session_id)
        if agent is None:
            return
        session = self.sessions.get(message.session_id)

        if session is None or session.agent_id != agent.agent_id:
            logger.warning(f"Agent {agent.agent_id} wrote to unassigned session {message.session_id}")
            self._send(connection, ErrorNotice(
                message="You are not assigned to this customer",
                session_id=message.session_id
            ))
            return

        if not session.customer_connected:
            self._send(connection, CustomerDisconnected(session_id=session.session_id))
            return

        self.sessions.append_message(
            session.session_id, MessageRole.AGENT, message.message, message.message_type
        )
        self._send(session.customer_connection, AgentReply(
            message=message.message,
            message_type=message.message_type
        ))

    def _on_end_chat(self, message: EndChat, connection: Connection) -> None:
        agent = self._require_agent(connection, message.session_id)
        if agent is None:
            return
        session = self.sessions.get(message.session_id)

        if session is None or session.agent_id != agent.agent_id:
            logger.warning(f"Agent {agent.agent_id} tried to end unassigned session {message.session_id}")
            self._send(connection, ErrorNotice(
                message="You are not assigned to this customer",
                session_id=message.session_id
            ))
            return

        self._end_human_chat(session, AGENT_ENDED)

    def _on_agent_typing(self, message: AgentTyping, connection: Connection) -> None:
        agent = self._require_agent(connection, message.session_id)
        if agent is None:
            return
        session = self.sessions.get(message.session_id)
        if session is None or session.agent_id != agent.agent_id:
            return

        self._send(session.customer_connection, TypingIndicator(
            session_id=session.session_id,
            sender="agent",
            is_typing=message.is_typing
        ))

    # ===========================
    # Socket lifecycle
    # ===========================

    def _on_connection_closed(self, connection: Connection) -> None:
        if connection.role == "customer":
            self._on_customer_closed(connection)
        elif connection.role == "agent":
            self._on_agent_closed(connection)
        else:
            logger.debug(f"Unbound connection {connection.connection_id} closed")

    def _on_customer_closed(self, connection: Connection) -> None:
        session = self.sessions.get(connection.bound_id)
        if session is None or session.customer_connection is not connection:
            logger.debug(f"Ignoring close of stale customer connection {connection.connection_id}")
            return

        session_id = session.session_id
        session.customer_connection = None
        self.timers.cancel_all(session_id)
        self._leave_queue(session)

        if session.has_human:
            self.chat_history.save(session, CUSTOMER_DISCONNECTED)
            agent = self.agents.get(session.agent_id)
            if agent is not None and agent.is_connected:
                self._send(agent.connection, CustomerDisconnected(session_id=session_id))

        logger.info(f"Customer disconnected from session {session_id}")

    def _on_agent_closed(self, connection: Connection) -> None:
        agent = self.agents.get(connection.bound_id)
        if agent is None or agent.connection is not connection:
            logger.debug(f"Ignoring close of stale agent connection {connection.connection_id}")
            return

        agent_id = agent.agent_id
        session_id = agent.session_id
        if not self.agents.disconnect(agent_id):
            return

        session = self.sessions.get(session_id)
        if session is None or session.agent_id != agent_id:
            self.agents.release(agent_id)
            self.agents.remove(agent_id)
            return

        self._start_agent_reconnect_timer(agent_id, session_id)
        self._send(session.customer_connection, AgentDisconnectedTemp())
        logger.info(
            f"Agent {agent_id} dropped mid-chat, holding session {session_id} "
            f"for {self.settings.agent_reconnect_window_seconds:.0f}s"
        )

    # ===========================
    # Timer expiry
    # ===========================

    def _on_queue_timeout(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None or session.has_human or session_id not in self.queue:
            return

        self.queue.dequeue(session_id)
        session.state = RoutingState.AI_HANDLING
        self._send_to_agents(CustomerTimeout(session_id=session_id, remaining_queue=self.queue.size()))
        track_handoff("queue_timeout")
        logger.info(f"Session {session_id} removed from queue after inactivity")

    def _on_idle_warning(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            return
        self._send(session.customer_connection, IdleWarning(
            seconds_remaining=self.settings.customer_idle_grace_seconds
        ))

    def _on_idle_timeout(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            return
        self._send(session.customer_connection, SessionTimeout())
        self._expire_session(session)
        logger.info(f"Session {session_id} ended after inactivity")

    def _on_agent_reconnect_timeout(self, agent_id: str, session_id: str) -> None:
        agent = self.agents.get(agent_id)
        session = self.sessions.get(session_id)

        if agent is not None and agent.is_connected and agent.session_id == session_id:
            return

        if session is not None and session.has_human and session.agent_id == agent_id:
            logger.info(f"Agent {agent_id} did not reconnect, ending session {session_id}")
            self._end_human_chat(session, AGENT_TIMEOUT)

        agent = self.agents.get(agent_id)
        if agent is not None and agent.connection is None and agent.session_id in (None, session_id):
            self.agents.remove(agent_id)

    def _on_sweep(self) -> int:
        cutoff = utcnow().timestamp() - self.settings.customer_idle_timeout_seconds
        stale = [
            session for session in self.sessions
            if session.customer_connection is None and session.last_activity.timestamp() < cutoff
        ]
        for session in stale:
            self._expire_session(session)
        if stale:
            logger.info(f"Swept {len(stale)} idle sessions")
        return len(stale)

    # ===========================
    # Shared transitions
    # ===========================

    def _end_human_chat(self, session: Session, reason: str) -> None:
        """Close the human chat of a session and free its agent."""
        session_id = session.session_id
        agent_id = session.agent_id
        agent = self.agents.get(agent_id) if agent_id else None
        agent_name = session.agent_name or "The agent"

        self.chat_history.save(session, reason)

        customer = session.customer_connection
        if reason in (AGENT_ENDED, CUSTOMER_ENDED):
            self._send(customer, SatisfactionSurvey(
                session_id=session_id,
                interaction_type="human_agent",
                message=f"How would you rate your chat with {agent_name}?"
            ))
        if reason == AGENT_ENDED:
            self._send(customer, AgentLeft(
                message=f"{agent_name} has ended the chat. Feel free to ask me anything else!"
            ))
        elif reason == AGENT_TIMEOUT:
            self._send(customer, AgentLeft(
                message=(
                    "Your agent has been disconnected for too long. "
                    "You're back with our AI assistant and can request a human again."
                )
            ))

        agent_live = agent is not None and agent.is_connected
        if agent_live and reason == CUSTOMER_ENDED:
            self._send(agent.connection, SessionEndedByCustomer(session_id=session_id))

        self.sessions.mark_human_left(session_id)
        if agent_id:
            self.agents.release(agent_id)
            self.timers.cancel(TimerKind.AGENT_RECONNECT, agent_id)
            if agent is not None and agent.connection is None:
                self.agents.remove(agent_id)

        ended_by = {
            AGENT_ENDED: agent_name,
            CUSTOMER_ENDED: "Customer",
        }.get(reason, "System")
        ended = ChatEnded(
            session_id=session_id,
            ended_by=ended_by,
            end_reason=reason,
            total_queue=self.queue.size()
        )
        if agent_live and reason == CUSTOMER_IDLE:
            self._send(agent.connection, ended)
        self._send_to_agents(ended, exclude=agent_id)

        track_chat_ended(reason)
        logger.info(f"Chat ended for session {session_id} ({reason}), agent {agent_id}")

    def _expire_session(self, session: Session) -> None:
        """Force-end a session after inactivity and evict it."""
        if session.has_human:
            self._end_human_chat(session, CUSTOMER_IDLE)
        elif session.transcript:
            self.chat_history.save(session, CUSTOMER_IDLE)
            track_chat_ended(CUSTOMER_IDLE)
        self._evict(session)

    def _leave_queue(self, session: Session) -> None:
        if self.queue.dequeue(session.session_id):
            session.state = RoutingState.AI_HANDLING
            self._send_to_agents(CustomerLeftQueue(
                session_id=session.session_id,
                remaining_queue=self.queue.size()
            ))

    def _evict(self, session: Session) -> None:
        self._leave_queue(session)
        self.timers.cancel_all(session.session_id)
        self.sessions.remove(session.session_id)
        self._session_locks.pop(session.session_id, None)

    @staticmethod
    def _customer_preview(session: Session) -> str:
        for entry in reversed(session.transcript):
            if entry.role == MessageRole.CUSTOMER:
                return entry.content[:PREVIEW_LENGTH]
        return "Customer requested human support"


__all__ = ["RoutingEngine", "Delivery"]
