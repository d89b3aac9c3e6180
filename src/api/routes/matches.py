"""
Match Routes.

- POST /api/matches: ranked candidates for the authenticated user
- GET  /api/matches/{target_id}/explanation: why a target was suggested

The ranking user is always the JWT subject. Domain errors are mapped to
HTTP statuses by the handlers registered in ``api.app``.
"""

from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from core.auth import AuthenticatedUser, require_auth
from core.logging import bind_context
from matching.models import Explanation, MatchFilters, RankingResponse
from matching.service import MatchingService

router = APIRouter(prefix="/api/matches", tags=["Matches"])


@lru_cache
def get_matching_service() -> MatchingService:
    """Process-wide service wired to Supabase (overridden in tests)."""
    return MatchingService.from_settings()


# =============================================================================
# Request Models
# =============================================================================

class MatchRequest(BaseModel):
    """Ranking request body. Range checks happen in the service."""
    context: str = Field(default="pulse", description="'pulse' (feed) or 'zone' (event)")
    event_id: Optional[str] = Field(default=None, description="Required for zone")
    limit: Optional[int] = Field(default=None, description="Page size, clamped to 50")
    offset: int = Field(default=0)
    filters: Optional[MatchFilters] = None


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=RankingResponse, summary="Rank candidates for the current user")
def get_matches(
    request: MatchRequest,
    user: AuthenticatedUser = Depends(require_auth),
    service: MatchingService = Depends(get_matching_service),
) -> RankingResponse:
    bind_context(user_id=user.id)
    return service.get_ranked_candidates(
        user_id=user.id,
        context=request.context,
        limit=request.limit,
        offset=request.offset,
        event_id=request.event_id,
        filters=request.filters,
    )


@router.get(
    "/{target_id}/explanation",
    response_model=Explanation,
    summary="Explain why a user was suggested",
)
def get_explanation(
    target_id: str,
    user: AuthenticatedUser = Depends(require_auth),
    service: MatchingService = Depends(get_matching_service),
) -> Explanation:
    bind_context(user_id=user.id)
    return service.get_match_explanation(user.id, target_id)
