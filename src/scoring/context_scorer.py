"""
Event context signal.

Only meaningful with an event id; without one every candidate gets 0.5.
With an event:
    candidate checked in to the event        +0.3
    shared session bookmarks / 10            up to +0.5
    candidate checked in within the last hour +0.2
capped at 1.0.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional, Set

from config.constants import CONTEXT_SCORING, SIGNAL_CONTEXT
from core.utils import as_utc, clamp
from matching.models import CandidateProfile
from matching.store import SignalStore
from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest


@dataclass
class EventContextData:
    event_id: Optional[str] = None
    now: Optional[datetime] = None
    recent_window: timedelta = timedelta(hours=1)
    checkins: Dict[str, Optional[datetime]] = field(default_factory=dict)
    bookmarks: Dict[str, Set[str]] = field(default_factory=dict)


class EventContextScorer(BaseSignalScorer):
    name = SIGNAL_CONTEXT
    fallback = CONTEXT_SCORING.NO_EVENT_FALLBACK

    def prepare(self, store: SignalStore, request: ScoringRequest) -> EventContextData:
        if not request.event_id:
            return EventContextData()
        user_ids = [request.user_id] + request.candidate_ids
        return EventContextData(
            event_id=request.event_id,
            now=as_utc(request.now),
            recent_window=timedelta(minutes=request.windows.recent_checkin_minutes),
            checkins=store.get_event_checkins(request.event_id, request.candidate_ids),
            bookmarks=store.get_session_bookmarks(request.event_id, user_ids),
        )

    def score(self, user: CandidateProfile, candidate: CandidateProfile, data: EventContextData) -> float:
        cfg = CONTEXT_SCORING
        if not data.event_id:
            return cfg.NO_EVENT_FALLBACK

        total = 0.0
        checked_in_at = data.checkins.get(candidate.user_id)
        if candidate.user_id in data.checkins:
            total += cfg.SAME_EVENT_BONUS

        shared = data.bookmarks.get(user.user_id, set()) & data.bookmarks.get(candidate.user_id, set())
        total += min(cfg.MAX_SESSION_OVERLAP, len(shared) / cfg.SESSION_OVERLAP_DIVISOR)

        if checked_in_at is not None and data.now - as_utc(checked_in_at) <= data.recent_window:
            total += cfg.RECENT_CHECKIN_BONUS

        return clamp(total)
