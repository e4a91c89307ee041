"""
Agent authentication.
Accounts are seeded from configuration; tokens are signed JWTs.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt
import logging
from passlib.context import CryptContext

from ..config import Settings
from ..models.agent import AgentProfile

logger = logging.getLogger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthService:
    """Resolves agent identities from credentials and tokens."""

    def __init__(self, settings: Settings):
        self.secret_key = settings.secret_key.get_secret_value()
        self.algorithm = settings.jwt_algorithm
        self.expiration_hours = settings.jwt_expiration_hours
        self._accounts: Dict[str, Dict[str, Any]] = {}

        for account in settings.agent_accounts:
            self.add_account(account)

        logger.info(f"AuthService initialized with {len(self._accounts)} agent accounts")

    def add_account(self, account: Dict[str, Any]) -> None:
        """Register an account; the plain password is hashed and discarded."""
        stored = {key: value for key, value in account.items() if key != "password"}
        stored["password_hash"] = self.hash_password(account["password"])
        self._accounts[account["username"]] = stored

    def authenticate(self, username: str, password: str) -> Optional[AgentProfile]:
        account = self._accounts.get(username)
        if account is None or not self.verify_password(password, account["password_hash"]):
            logger.warning(f"Failed login for username '{username}'")
            return None
        return self._profile(account)

    def create_token(self, profile: AgentProfile) -> str:
        """
        Create a JWT for an agent.

        Args:
            profile: Authenticated agent

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sub": profile.agent_id,
            "username": profile.username,
            "name": profile.name,
            "role": profile.role,
            "iat": now,
            "exp": now + timedelta(hours=self.expiration_hours),
            "type": "access",
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Created token for agent: {profile.agent_id}")
        return token

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a JWT token.

        Raises:
            HTTPException: If token is invalid
        """
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])

        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired"
            )

        except jwt.InvalidTokenError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {str(e)}"
            )

    def verify_token(self, token: str) -> Optional[AgentProfile]:
        """Resolve a token to the agent it was issued for, or None."""
        try:
            payload = self.decode_token(token)
        except HTTPException as e:
            logger.warning(f"Rejected agent token: {e.detail}")
            return None

        username = payload.get("username")
        account = self._accounts.get(username) if username else None
        if account is None or account.get("id") != payload.get("sub"):
            logger.warning(f"Token for unknown agent {payload.get('sub')}")
            return None

        return self._profile(account)

    def profiles(self) -> List[AgentProfile]:
        return [self._profile(account) for account in self._accounts.values()]

    def hash_password(self, password: str) -> str:
        return pwd_context.hash(password)

    def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def _profile(account: Dict[str, Any]) -> AgentProfile:
        return AgentProfile(
            agent_id=account["id"],
            name=account.get("name") or account["username"],
            username=account["username"],
            email=account.get("email"),
            role=account.get("role", "agent"),
        )


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def require_agent(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    auth: AuthService = Depends(get_auth_service)
) -> AgentProfile:
    """
    Require an agent token for an endpoint.

    Raises:
        HTTPException: If not authenticated
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    profile = auth.verify_token(credentials.credentials)
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return profile


__all__ = ["AuthService", "get_auth_service", "require_agent", "security"]
