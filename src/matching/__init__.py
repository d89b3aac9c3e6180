"""
Matching core: data model, signal store, weight experiments, privacy
filtering, ranking and explanations.

Entry point for callers is ``matching.service.MatchingService``.
"""

from matching.errors import (
    CandidatePoolUnavailableError,
    ExperimentConfigError,
    InvalidRequestError,
    MatchingError,
    SignalStoreError,
)
from matching.models import MatchContext, RankedResult, RankingResponse

__all__ = [
    "CandidatePoolUnavailableError",
    "ExperimentConfigError",
    "InvalidRequestError",
    "MatchingError",
    "SignalStoreError",
    "MatchContext",
    "RankedResult",
    "RankingResponse",
]
