"""
Pydantic schemas for HTTP request/response validation.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, Optional
from datetime import datetime


# Request Schemas

class LoginRequest(BaseModel):
    """Agent login credentials."""
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=200)

    @field_validator('username')
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Ensure username is not just whitespace."""
        if not v.strip():
            raise ValueError('Username cannot be empty')
        return v.strip()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "john_doe",
                "password": "password123"
            }
        }
    )


# Response Schemas

class AgentInfo(BaseModel):
    """Public agent profile."""
    id: str
    username: str
    name: str
    email: Optional[str] = None
    role: str = "agent"


class LoginResponse(BaseModel):
    """Successful login."""
    token: str
    user: AgentInfo


class ValidateResponse(BaseModel):
    """Token validation result."""
    valid: bool
    user: AgentInfo


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, Any] = {}

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "version": "1.0.0",
                "services": {
                    "routing": "healthy",
                    "ai_responder": "healthy"
                }
            }
        }
    )


__all__ = [
    "LoginRequest",
    "AgentInfo",
    "LoginResponse",
    "ValidateResponse",
    "HealthResponse",
]
