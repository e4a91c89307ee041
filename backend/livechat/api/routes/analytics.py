"""
Dashboard analytics API routes.
"""
from fastapi import APIRouter, Depends, Query, Request
from typing import Any, Dict, List

from ...models.agent import AgentProfile
from ...services.auth_service import require_agent

router = APIRouter()


@router.get("/analytics")
async def analytics(request: Request, profile: AgentProfile = Depends(require_agent)) -> Dict[str, Any]:
    """Chat volume, satisfaction and agent status over the last 24 hours."""
    engine = request.app.state.engine
    return engine.chat_history.analytics(engine.agents.agents(), engine.queue.size())


@router.get("/chat-history")
async def chat_history(
    request: Request,
    limit: int = Query(50, ge=1, le=1000),
    profile: AgentProfile = Depends(require_agent)
) -> List[Dict[str, Any]]:
    """Summaries of the most recently ended chats."""
    return request.app.state.engine.chat_history.recent(limit)
