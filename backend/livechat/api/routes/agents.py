"""
Agent authentication API routes.
"""
from fastapi import APIRouter, Depends, HTTPException, status
import logging

from ...models.agent import AgentProfile
from ...models.schemas import AgentInfo, LoginRequest, LoginResponse, ValidateResponse
from ...services.auth_service import AuthService, get_auth_service, require_agent

logger = logging.getLogger(__name__)

router = APIRouter()


def _agent_info(profile: AgentProfile) -> AgentInfo:
    return AgentInfo(
        id=profile.agent_id,
        username=profile.username,
        name=profile.name,
        email=profile.email,
        role=profile.role,
    )


@router.post("/login", response_model=LoginResponse)
async def login(request: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    """
    Exchange agent credentials for a token.

    Raises:
        HTTPException: 401 on bad credentials
    """
    profile = auth.authenticate(request.username, request.password)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    logger.info(f"Agent {profile.username} logged in")
    return LoginResponse(token=auth.create_token(profile), user=_agent_info(profile))


@router.get("/validate", response_model=ValidateResponse)
async def validate(profile: AgentProfile = Depends(require_agent)):
    """Check a bearer token and return the agent it belongs to."""
    return ValidateResponse(valid=True, user=_agent_info(profile))
