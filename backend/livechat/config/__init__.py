"""
Application configuration.
Settings are loaded from environment variables and an optional .env file.

Version: 1.0.0
"""
from typing import Any, Dict, List, Optional
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import logging

logger = logging.getLogger(__name__)


DEFAULT_CANNED_RESPONSES = [
    "Thank you for contacting us! How can I assist you today?",
    "I understand your concern. Let me look into this for you right away.",
    "Is there anything else I can help you with?",
    "Let me transfer you to a specialist who can better assist you.",
    "Thank you for your patience. I have the information you need.",
    "I apologize for any inconvenience. Let me resolve this for you.",
    "Your issue has been resolved. Is there anything else you need help with?",
]

DEFAULT_AGENT_ACCOUNTS = [
    {
        "id": "agent1",
        "username": "john_doe",
        "email": "john@company.com",
        "name": "John Doe",
        "password": "password123",
        "role": "agent",
    },
    {
        "id": "agent2",
        "username": "jane_smith",
        "email": "jane@company.com",
        "name": "Jane Smith",
        "password": "password456",
        "role": "senior_agent",
    },
]


class Settings(BaseSettings):
    """
    Application settings.

    Every field can be overridden with an environment variable of the same
    name (case-insensitive), e.g. ``AGENT_RECONNECT_WINDOW_SECONDS=120``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===========================
    # Application
    # ===========================

    app_name: str = Field(default="Live Handoff Router", description="Service name")
    app_version: str = Field(default="1.0.0", description="Service version")
    environment: str = Field(default="development", description="Deployment environment")
    debug: bool = Field(default=False, description="Enable debug logging")
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_prefix: str = Field(default="/api")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:8000"]
    )

    rate_limit_enabled: bool = Field(default=True, description="Limit HTTP requests per client")
    rate_limit_requests: int = Field(default=100, ge=1, description="Requests allowed per period")
    rate_limit_period: int = Field(default=60, ge=1, description="Rate limit window in seconds")

    # ===========================
    # Routing timers
    # ===========================

    customer_queue_timeout_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Inactivity after which a queued, unassigned customer leaves the queue"
    )

    customer_idle_warning_seconds: float = Field(
        default=600.0,
        gt=0,
        description="Inactivity after which the customer is warned the session will end"
    )

    customer_idle_grace_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Time between the idle warning and the forced end of the session"
    )

    agent_reconnect_window_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Grace window for an assigned agent to reconnect"
    )

    session_sweep_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="How often sessions whose customer left are checked for idle eviction"
    )

    # ===========================
    # Routing behaviour
    # ===========================

    transcript_tail_size: int = Field(
        default=10,
        ge=1,
        le=500,
        description="Transcript entries pushed to an agent on reconnect"
    )

    ai_survey_min_messages: int = Field(
        default=2,
        ge=0,
        description="AI-only chats with more transcript entries than this get a survey"
    )

    canned_responses: List[str] = Field(default_factory=lambda: list(DEFAULT_CANNED_RESPONSES))

    # ===========================
    # AI responder
    # ===========================

    ai_service_url: Optional[str] = Field(
        default=None,
        description="Generation service endpoint; the offline responder is used when unset"
    )
    ai_service_api_key: Optional[SecretStr] = None
    ai_service_timeout_seconds: float = Field(default=30.0, gt=0)
    ai_service_max_attempts: int = Field(default=3, ge=1, le=10)
    ai_service_failure_threshold: int = Field(default=5, ge=1)
    ai_service_recovery_seconds: float = Field(default=60.0, gt=0)
    dev_mock_ai: bool = Field(default=False, description="Force the offline responder")

    # ===========================
    # Collaborator sinks
    # ===========================

    intent_webhook_url: Optional[str] = Field(default=None)
    intent_log_capacity: int = Field(default=5000, ge=1)
    chat_history_capacity: int = Field(default=5000, ge=1)

    # ===========================
    # Agent authentication
    # ===========================

    secret_key: SecretStr = Field(default=SecretStr("change-me-in-production"))
    jwt_algorithm: str = Field(default="HS256")
    jwt_expiration_hours: int = Field(default=24, ge=1)
    agent_accounts: List[Dict[str, Any]] = Field(
        default_factory=lambda: [dict(account) for account in DEFAULT_AGENT_ACCOUNTS]
    )

    # ===========================
    # Telemetry
    # ===========================

    enable_telemetry: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("agent_accounts")
    @classmethod
    def validate_agent_accounts(cls, v: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Every seeded account needs an id, a username and a password."""
        for account in v:
            missing = [key for key in ("id", "username", "password") if not account.get(key)]
            if missing:
                raise ValueError(f"Agent account missing fields: {', '.join(missing)}")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def customer_idle_timeout_seconds(self) -> float:
        """Total inactivity before a session is force-ended."""
        return self.customer_idle_warning_seconds + self.customer_idle_grace_seconds

    @property
    def use_mock_ai(self) -> bool:
        return self.dev_mock_ai or not self.ai_service_url


settings = Settings()


def get_settings() -> Settings:
    """
    Get settings instance.

    Returns:
        Settings instance
    """
    return settings


__all__ = [
    "Settings",
    "settings",
    "get_settings",
    "DEFAULT_CANNED_RESPONSES",
]
