"""
Intent log API routes.
"""
from fastapi import APIRouter, Depends, Query, Request
from typing import Any, Dict, List, Optional

from ...models.agent import AgentProfile
from ...services.auth_service import require_agent

router = APIRouter()


@router.get("")
async def list_intents(
    request: Request,
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    category: Optional[str] = Query(None),
    response_type: Optional[str] = Query(None, alias="responseType"),
    profile: AgentProfile = Depends(require_agent)
) -> List[Dict[str, Any]]:
    """
    Logged customer intents, newest first.

    Filters combine; ``offset`` and ``limit`` page through the matches.
    """
    records = request.app.state.intent_logger.records(session_id)
    if category:
        records = [record for record in records if record.category == category]
    if response_type:
        records = [record for record in records if record.response_type == response_type]

    newest_first = list(reversed(records))
    return [record.to_dict() for record in newest_first[offset:offset + limit]]
