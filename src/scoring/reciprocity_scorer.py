"""
Reciprocity signal: has the candidate already shown interest in the user?

    candidate follows the user                         +0.4
    candidate saved the user (within lookback)         +0.3
    candidate viewed the user's profile (last 7 days)  +0.2
    candidate has a pending meeting request to user    +0.1

capped at 1.0. When the candidate switched off activity matching only the
follow flag is used.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Set

from config.constants import RECIPROCITY_SCORING, SIGNAL_RECIPROCITY
from core.utils import as_utc, clamp
from matching.models import CandidateProfile, InteractionEventType, ReciprocityFlags
from matching.store import SignalStore
from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest


@dataclass
class ReciprocityData:
    followers: Set[str] = field(default_factory=set)
    saved_user: Set[str] = field(default_factory=set)
    viewed_user: Set[str] = field(default_factory=set)
    pending_meetings: Set[str] = field(default_factory=set)
    activity_allowed: Dict[str, bool] = field(default_factory=dict)


class ReciprocityScorer(BaseSignalScorer):
    name = SIGNAL_RECIPROCITY
    fallback = 0.0

    def prepare(self, store: SignalStore, request: ScoringRequest) -> ReciprocityData:
        candidate_ids = request.candidate_ids
        now = as_utc(request.now)
        since = now - timedelta(days=request.windows.interaction_lookback_days)
        view_cutoff = now - timedelta(days=request.windows.recent_view_days)

        inbound = store.get_interactions(
            candidate_ids,
            [request.user_id],
            since,
            event_types=[InteractionEventType.SAVE, InteractionEventType.PROFILE_VIEW],
        )
        saved, viewed = set(), set()
        for event in inbound:
            if event.event_type == InteractionEventType.SAVE:
                saved.add(event.actor_id)
            elif as_utc(event.created_at) >= view_cutoff:
                viewed.add(event.actor_id)

        return ReciprocityData(
            followers=store.get_followers(request.user_id),
            saved_user=saved,
            viewed_user=viewed,
            pending_meetings=store.get_pending_meeting_requests(candidate_ids, request.user_id),
            activity_allowed={
                cid: request.consent_for(cid).allow_activity_matching for cid in candidate_ids
            },
        )

    def flags(self, candidate_id: str, data: ReciprocityData) -> ReciprocityFlags:
        """Which reciprocity facts hold for ``candidate_id``."""
        activity = data.activity_allowed.get(candidate_id, True)
        return ReciprocityFlags(
            candidate_follows_user=candidate_id in data.followers,
            candidate_saved_user=activity and candidate_id in data.saved_user,
            candidate_viewed_user=activity and candidate_id in data.viewed_user,
            pending_meeting_request=activity and candidate_id in data.pending_meetings,
        )

    def score(self, user: CandidateProfile, candidate: CandidateProfile, data: ReciprocityData) -> float:
        cfg = RECIPROCITY_SCORING
        flags = self.flags(candidate.user_id, data)
        total = 0.0
        if flags.candidate_follows_user:
            total += cfg.FOLLOWS_USER
        if flags.candidate_saved_user:
            total += cfg.SAVED_USER
        if flags.candidate_viewed_user:
            total += cfg.VIEWED_USER
        if flags.pending_meeting_request:
            total += cfg.PENDING_MEETING
        return clamp(total)
