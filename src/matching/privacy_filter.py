"""
Privacy Filter.

Removes ineligible candidates from a pool. A candidate stays only if all
of these hold:

- it is not the requesting user
- neither side has blocked the other
- the requester hasn't skipped it within the last 24 hours
- its privacy settings allow AI matching and recommendations
  (no settings row = allowed)
- the requester is not on its hide-list
- if it requires mutual follow, both already follow each other
- with an event id, it is checked in to that event
- if its profile is private, the requester already follows it

Applied before scoring and re-checked on the ranked output against a
second read covering only the returned ids. The data the rules need is
loaded into a ``PrivacySnapshot``; a failure to read it is fatal for the
call, since ranking without it could leak candidates who opted out.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, TypeVar

from core.logging import get_logger
from matching.errors import CandidatePoolUnavailableError, SignalStoreError
from matching.models import CandidateProfile, InteractionEventType, PrivacySettings
from matching.store import SignalStore

logger = get_logger(__name__)

# Exclusion reasons
REASON_SELF = "self"
REASON_BLOCKED = "blocked"
REASON_RECENTLY_SKIPPED = "recently_skipped"
REASON_OPTED_OUT = "opted_out"
REASON_HIDDEN = "hidden_from_requester"
REASON_MUTUAL_FOLLOW_REQUIRED = "mutual_follow_required"
REASON_NOT_AT_EVENT = "not_checked_in"
REASON_PRIVATE_PROFILE = "private_profile"

T = TypeVar("T")


@dataclass
class PrivacySnapshot:
    """Everything the exclusion rules need for one (requester, pool)."""
    user_id: str
    event_id: Optional[str] = None
    blocked: Set[str] = field(default_factory=set)
    recently_skipped: Set[str] = field(default_factory=set)
    privacy: Dict[str, PrivacySettings] = field(default_factory=dict)
    following: Set[str] = field(default_factory=set)
    followers: Set[str] = field(default_factory=set)
    checked_in: Optional[Set[str]] = None

    def settings_for(self, candidate_id: str) -> PrivacySettings:
        return self.privacy.get(candidate_id) or PrivacySettings(user_id=candidate_id)


class PrivacyFilter:
    """
    Evaluates the exclusion rules against a ``PrivacySnapshot``.

    Args:
        store: signal store to read blocks, skips, settings and follows from
        skip_exclusion_hours: how long a skip hides a candidate
    """

    def __init__(self, store: SignalStore, skip_exclusion_hours: int = 24):
        self.store = store
        self.skip_exclusion_hours = skip_exclusion_hours

    def load_snapshot(
        self,
        user_id: str,
        candidate_ids: Sequence[str],
        now: datetime,
        event_id: Optional[str] = None,
    ) -> PrivacySnapshot:
        """
        Raises:
            CandidatePoolUnavailableError: any privacy read failed
        """
        candidate_ids = list(candidate_ids)
        try:
            skips = self.store.get_interactions(
                [user_id],
                candidate_ids,
                now - timedelta(hours=self.skip_exclusion_hours),
                event_types=[InteractionEventType.SKIP],
            ) if candidate_ids else []
            snapshot = PrivacySnapshot(
                user_id=user_id,
                event_id=event_id,
                blocked=self.store.get_blocked_user_ids(user_id),
                recently_skipped={e.target_id for e in skips},
                privacy=self.store.get_privacy_settings(candidate_ids) if candidate_ids else {},
                following=self.store.get_following(user_id),
                followers=self.store.get_followers(user_id),
            )
            if event_id:
                snapshot.checked_in = set(self.store.get_event_checkins(event_id, candidate_ids))
        except SignalStoreError as e:
            logger.error("Privacy data unavailable", user_id=user_id, error=str(e))
            raise CandidatePoolUnavailableError(f"privacy data unavailable: {e}") from e
        return snapshot

    def exclusion_reason(self, candidate: CandidateProfile, snapshot: PrivacySnapshot) -> Optional[str]:
        """First rule ``candidate`` fails, or None if eligible."""
        cid = candidate.user_id
        if cid == snapshot.user_id:
            return REASON_SELF
        if cid in snapshot.blocked:
            return REASON_BLOCKED
        if cid in snapshot.recently_skipped:
            return REASON_RECENTLY_SKIPPED

        settings = snapshot.settings_for(cid)
        if not settings.is_rankable:
            return REASON_OPTED_OUT
        if snapshot.user_id in settings.hidden_from:
            return REASON_HIDDEN
        if settings.require_mutual_follow and not (
            cid in snapshot.following and cid in snapshot.followers
        ):
            return REASON_MUTUAL_FOLLOW_REQUIRED

        if snapshot.event_id and (snapshot.checked_in is None or cid not in snapshot.checked_in):
            return REASON_NOT_AT_EVENT
        if candidate.is_private and cid not in snapshot.following:
            return REASON_PRIVATE_PROFILE
        return None

    def filter_candidates(
        self,
        candidates: Iterable[CandidateProfile],
        snapshot: PrivacySnapshot,
    ) -> List[CandidateProfile]:
        """Eligible candidates, in input order."""
        eligible = []
        excluded: Dict[str, int] = {}
        for candidate in candidates:
            reason = self.exclusion_reason(candidate, snapshot)
            if reason is None:
                eligible.append(candidate)
            else:
                excluded[reason] = excluded.get(reason, 0) + 1
        if excluded:
            logger.debug("Candidates excluded", user_id=snapshot.user_id, **excluded)
        return eligible

    def validate_results(
        self,
        results: List[T],
        profiles: Dict[str, CandidateProfile],
        snapshot: PrivacySnapshot,
        key=lambda r: r.candidate_id,
    ) -> List[T]:
        """
        Re-check ranked output against ``snapshot``.

        Pass a snapshot freshly loaded for the result ids: a drop then means
        a block or opt-out landed while the call was running (or the
        first pass missed something). Drops are logged at error level.
        """
        kept = []
        for result in results:
            cid = key(result)
            profile = profiles.get(cid)
            reason = (
                "unknown_candidate" if profile is None
                else self.exclusion_reason(profile, snapshot)
            )
            if reason is None:
                kept.append(result)
            else:
                logger.error(
                    "Ineligible candidate reached ranked output, dropped",
                    user_id=snapshot.user_id,
                    candidate_id=cid,
                    reason=reason,
                )
        return kept

