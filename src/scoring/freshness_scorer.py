"""
Freshness signal.

First matching tier wins:
    created < 7 days ago   -> 1.0
    created < 30 days ago  -> 0.8
    updated < 7 days ago   -> 0.6
    currently online       -> 0.5
    otherwise              -> 0.3

Missing timestamps skip their tier. The online tier is skipped when the
candidate switched off activity matching.
"""

from datetime import datetime, timedelta
from typing import Optional

from config.constants import FRESHNESS_SCORING, SIGNAL_FRESHNESS
from core.utils import as_utc
from matching.models import CandidateProfile, PrivacySettings
from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest


def _within(ts: Optional[datetime], now: datetime, days: int) -> bool:
    return ts is not None and now - as_utc(ts) < timedelta(days=days)


class FreshnessScorer(BaseSignalScorer):
    name = SIGNAL_FRESHNESS
    fallback = FRESHNESS_SCORING.DEFAULT_SCORE

    def prepare(self, store, request: ScoringRequest):
        return request

    def score(self, user: CandidateProfile, candidate: CandidateProfile, data: ScoringRequest) -> float:
        cfg = FRESHNESS_SCORING
        now = as_utc(data.now)

        if _within(candidate.created_at, now, cfg.NEW_PROFILE_DAYS):
            return cfg.NEW_PROFILE_SCORE
        if _within(candidate.created_at, now, cfg.RECENT_PROFILE_DAYS):
            return cfg.RECENT_PROFILE_SCORE
        if _within(candidate.updated_at, now, cfg.RECENTLY_UPDATED_DAYS):
            return cfg.RECENTLY_UPDATED_SCORE

        consent: PrivacySettings = data.consent_for(candidate.user_id)
        if candidate.is_online and consent.allow_activity_matching:
            return cfg.ONLINE_SCORE
        return cfg.DEFAULT_SCORE
