"""
WebSocket wire protocol.

Every frame is a JSON object tagged with a ``type`` discriminator. Inbound
frames (customer→server, agent→server) are parsed into one of the models in
``InboundMessage``; outbound frames (server→customer, server→agent) are
built from the ``OutboundMessage`` subclasses below. Field names are
camelCase on the wire and snake_case in Python.

Version: 1.0.0
"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for every frame: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class CustomerInfo(WireModel):
    """Contact details collected before a handoff."""
    name: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=320)
    country: Optional[str] = Field(None, max_length=100)


SessionId = Annotated[str, Field(min_length=1, max_length=255)]


# ===========================
# Customer → server
# ===========================

class CustomerMessage(WireModel):
    type: Literal["customer_message"] = "customer_message"
    session_id: SessionId
    message: str = Field(..., min_length=1, max_length=4000)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Reject whitespace-only messages."""
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v.strip()


class RestoreSession(WireModel):
    type: Literal["restore_session"] = "restore_session"
    session_id: SessionId


class HandoffResponse(WireModel):
    type: Literal["handoff_response"] = "handoff_response"
    session_id: SessionId
    accepted: bool


class RequestHuman(WireModel):
    type: Literal["request_human"] = "request_human"
    session_id: SessionId
    customer_info: Optional[CustomerInfo] = None


class EndSession(WireModel):
    type: Literal["end_session"] = "end_session"
    session_id: SessionId
    reason: Optional[str] = None


class IdleContinue(WireModel):
    type: Literal["idle_continue"] = "idle_continue"
    session_id: SessionId


class SatisfactionResponse(WireModel):
    type: Literal["satisfaction_response"] = "satisfaction_response"
    session_id: SessionId
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=4000)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


class FileUploaded(WireModel):
    type: Literal["file_uploaded"] = "file_uploaded"
    session_id: SessionId
    file_info: Dict[str, Any] = Field(default_factory=dict)


class CustomerTyping(WireModel):
    type: Literal["customer_typing"] = "customer_typing"
    session_id: SessionId
    is_typing: bool = True


# ===========================
# Agent → server
# ===========================

class AgentJoin(WireModel):
    type: Literal["agent_join"] = "agent_join"
    token: str = Field(..., min_length=1)
    agent_id: Optional[str] = None


class AcceptRequest(WireModel):
    type: Literal["accept_request"] = "accept_request"
    session_id: SessionId


class AgentChatMessage(WireModel):
    type: Literal["agent_message"] = "agent_message"
    session_id: SessionId
    message: str = Field(..., min_length=1, max_length=4000)
    message_type: str = "text"


class EndChat(WireModel):
    type: Literal["end_chat"] = "end_chat"
    session_id: SessionId


class AgentTyping(WireModel):
    type: Literal["agent_typing"] = "agent_typing"
    session_id: SessionId
    is_typing: bool = True


# ===========================
# Either side
# ===========================

class Ping(WireModel):
    type: Literal["ping"] = "ping"


CUSTOMER_MESSAGE_TYPES = (
    CustomerMessage,
    RestoreSession,
    HandoffResponse,
    RequestHuman,
    EndSession,
    IdleContinue,
    SatisfactionResponse,
    FileUploaded,
    CustomerTyping,
)

AGENT_MESSAGE_TYPES = (
    AcceptRequest,
    AgentChatMessage,
    EndChat,
    AgentTyping,
)

InboundMessage = Annotated[
    Union[
        CustomerMessage,
        RestoreSession,
        HandoffResponse,
        RequestHuman,
        EndSession,
        IdleContinue,
        SatisfactionResponse,
        FileUploaded,
        CustomerTyping,
        AgentJoin,
        AcceptRequest,
        AgentChatMessage,
        EndChat,
        AgentTyping,
        Ping,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundMessage)


def parse_inbound(data: Any) -> BaseModel:
    """
    Validate a decoded JSON frame into its inbound model.

    Raises:
        pydantic.ValidationError: unknown ``type`` or invalid fields
    """
    return _inbound_adapter.validate_python(data)


# ===========================
# Server → client
# ===========================

class OutboundMessage(WireModel):
    """Base for every frame the server sends."""

    type: str

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")


# --- to customers ---

class SessionRestored(OutboundMessage):
    type: Literal["session_restored"] = "session_restored"
    session_id: str
    is_connected_to_human: bool
    agent_name: Optional[str] = None
    is_new: bool = False
    message: str


class AIResponse(OutboundMessage):
    type: Literal["ai_response"] = "ai_response"
    session_id: str
    message: str
    sources: List[Dict[str, Any]] = Field(default_factory=list)


class HandoffOffer(OutboundMessage):
    type: Literal["handoff_offer"] = "handoff_offer"
    session_id: str
    message: str
    reason: Optional[str] = None


class ShowCustomerInfoDialog(OutboundMessage):
    type: Literal["show_customer_info_dialog"] = "show_customer_info_dialog"
    session_id: str


class NoAgentsAvailable(OutboundMessage):
    type: Literal["no_agents_available"] = "no_agents_available"
    message: str = (
        "Sorry, no human agents are currently available. "
        "Please try again later or continue chatting with me!"
    )


class WaitingForHuman(OutboundMessage):
    type: Literal["waiting_for_human"] = "waiting_for_human"
    position: int
    message: str


class HumanJoined(OutboundMessage):
    type: Literal["human_joined"] = "human_joined"
    agent_name: str
    message: str


class AgentReply(OutboundMessage):
    type: Literal["agent_message"] = "agent_message"
    message: str
    message_type: str = "text"
    timestamp: datetime = Field(default_factory=utcnow)


class AgentDisconnectedTemp(OutboundMessage):
    type: Literal["agent_disconnected_temp"] = "agent_disconnected_temp"
    message: str = "Your agent seems to have lost connection. Please wait while they reconnect..."


class AgentReconnected(OutboundMessage):
    type: Literal["agent_reconnected"] = "agent_reconnected"
    message: str


class AgentLeft(OutboundMessage):
    type: Literal["agent_left"] = "agent_left"
    message: str


class SurveyOption(WireModel):
    value: int
    label: str


SURVEY_OPTIONS = [
    SurveyOption(value=5, label="Excellent"),
    SurveyOption(value=4, label="Good"),
    SurveyOption(value=3, label="Okay"),
    SurveyOption(value=2, label="Poor"),
    SurveyOption(value=1, label="Very Poor"),
]


class SatisfactionSurvey(OutboundMessage):
    type: Literal["satisfaction_survey"] = "satisfaction_survey"
    session_id: str
    interaction_type: Literal["human_agent", "ai_only"] = "human_agent"
    message: str
    options: List[SurveyOption] = Field(default_factory=lambda: list(SURVEY_OPTIONS))


class SessionEnded(OutboundMessage):
    type: Literal["session_ended"] = "session_ended"
    message: str = "Session ended. Thank you for chatting with us!"


class IdleWarning(OutboundMessage):
    type: Literal["idle_warning"] = "idle_warning"
    seconds_remaining: float
    message: str = "Are you still there? Your session will end soon due to inactivity."


class SessionTimeout(OutboundMessage):
    type: Literal["session_timeout"] = "session_timeout"
    message: str = "Your session has ended due to inactivity. Feel free to start a new conversation!"


class TypingIndicator(OutboundMessage):
    type: Literal["typing"] = "typing"
    session_id: str
    sender: Literal["customer", "agent"]
    is_typing: bool


class ErrorNotice(OutboundMessage):
    type: Literal["error"] = "error"
    message: str
    session_id: Optional[str] = None


class Pong(OutboundMessage):
    type: Literal["pong"] = "pong"
    timestamp: datetime = Field(default_factory=utcnow)


# --- to agents ---

class AgentStatusNotice(OutboundMessage):
    type: Literal["agent_status"] = "agent_status"
    status: Literal["online", "reconnected"]
    message: str
    waiting_customers: int
    total_agents: int
    user: Dict[str, Any]


class AuthError(OutboundMessage):
    type: Literal["auth_error"] = "auth_error"
    message: str


class PendingRequest(OutboundMessage):
    type: Literal["pending_request"] = "pending_request"
    session_id: str
    position: int
    total_in_queue: int
    last_message: str
    customer_info: Optional[CustomerInfo] = None


class RequestAlreadyTaken(OutboundMessage):
    type: Literal["request_already_taken"] = "request_already_taken"
    session_id: str
    message: str = "This customer has already been assigned to another agent"


class RequestUnavailable(OutboundMessage):
    type: Literal["request_unavailable"] = "request_unavailable"
    session_id: str
    message: str


class RequestTaken(OutboundMessage):
    type: Literal["request_taken"] = "request_taken"
    session_id: str
    taken_by: str
    remaining_queue: int


class CustomerAssigned(OutboundMessage):
    type: Literal["customer_assigned"] = "customer_assigned"
    session_id: str
    history: List[Dict[str, Any]]
    queue_position: int = 0
    canned_responses: List[str] = Field(default_factory=list)
    customer_info: Optional[CustomerInfo] = None


class CustomerMessageForward(OutboundMessage):
    type: Literal["customer_message"] = "customer_message"
    session_id: str
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class ConnectionRestored(OutboundMessage):
    type: Literal["connection_restored"] = "connection_restored"
    session_id: str
    history: List[Dict[str, Any]]
    message: str = "Connection restored. You can continue the conversation."


class CustomerReconnected(OutboundMessage):
    type: Literal["customer_reconnected"] = "customer_reconnected"
    session_id: str
    message: str = "Customer has reconnected to the chat."


class CustomerDisconnected(OutboundMessage):
    type: Literal["customer_disconnected"] = "customer_disconnected"
    session_id: str
    message: str = "Customer connection lost. The session is kept for their return."


class SessionEndedByCustomer(OutboundMessage):
    type: Literal["session_ended_by_customer"] = "session_ended_by_customer"
    session_id: str
    message: str = "Customer has ended the session."


class ChatEnded(OutboundMessage):
    type: Literal["chat_ended"] = "chat_ended"
    session_id: str
    ended_by: str
    end_reason: str
    total_queue: int


class CustomerTimeout(OutboundMessage):
    type: Literal["customer_timeout"] = "customer_timeout"
    session_id: str
    remaining_queue: int


class CustomerLeftQueue(OutboundMessage):
    type: Literal["customer_left_queue"] = "customer_left_queue"
    session_id: str
    remaining_queue: int


class AgentJoined(OutboundMessage):
    type: Literal["agent_joined"] = "agent_joined"
    agent_id: str
    agent_name: str
    total_agents: int


class CustomerFileUploaded(OutboundMessage):
    type: Literal["customer_file_uploaded"] = "customer_file_uploaded"
    session_id: str
    file_info: Dict[str, Any]


__all__ = [
    "utcnow",
    "WireModel",
    "CustomerInfo",
    # inbound
    "CustomerMessage",
    "RestoreSession",
    "HandoffResponse",
    "RequestHuman",
    "EndSession",
    "IdleContinue",
    "SatisfactionResponse",
    "FileUploaded",
    "CustomerTyping",
    "AgentJoin",
    "AcceptRequest",
    "AgentChatMessage",
    "EndChat",
    "AgentTyping",
    "Ping",
    "InboundMessage",
    "CUSTOMER_MESSAGE_TYPES",
    "AGENT_MESSAGE_TYPES",
    "parse_inbound",
    # outbound
    "OutboundMessage",
    "SessionRestored",
    "AIResponse",
    "HandoffOffer",
    "ShowCustomerInfoDialog",
    "NoAgentsAvailable",
    "WaitingForHuman",
    "HumanJoined",
    "AgentReply",
    "AgentDisconnectedTemp",
    "AgentReconnected",
    "AgentLeft",
    "SurveyOption",
    "SatisfactionSurvey",
    "SessionEnded",
    "IdleWarning",
    "SessionTimeout",
    "TypingIndicator",
    "ErrorNotice",
    "Pong",
    "AgentStatusNotice",
    "AuthError",
    "PendingRequest",
    "RequestAlreadyTaken",
    "RequestUnavailable",
    "RequestTaken",
    "CustomerAssigned",
    "CustomerMessageForward",
    "ConnectionRestored",
    "CustomerReconnected",
    "CustomerDisconnected",
    "SessionEndedByCustomer",
    "ChatEnded",
    "CustomerTimeout",
    "CustomerLeftQueue",
    "AgentJoined",
    "CustomerFileUploaded",
]
