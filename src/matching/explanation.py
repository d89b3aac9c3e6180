"""
Explanation Generator.

Explains why a target was suggested to a user. Up to one reason and one
conversation starter per matched dimension, in priority order:

1. shared skills
2. shared interests
3. same organization
4. target follows the user

No matching dimension, an ineligible target, or a data failure all give
the generic explanation. Nothing here raises into the ranking path.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from core.logging import get_logger
from core.utils import shared_values, utcnow
from matching.errors import MatchingError
from matching.models import CandidateProfile, Explanation
from matching.privacy_filter import PrivacyFilter, PrivacySnapshot
from matching.store import SignalStore

logger = get_logger(__name__)

MAX_LISTED = 3

GENERIC_REASON = "Similar professional background"
GENERIC_STARTER = (
    "Hi! I came across your profile and thought we might have some "
    "interesting things to discuss."
)


def generic_explanation(target_name: Optional[str] = None) -> Explanation:
    who = target_name or "this person"
    return Explanation(
        summary=f"You and {who} could be a good connection.",
        reasons=[GENERIC_REASON],
        conversation_starters=[GENERIC_STARTER],
        is_fallback=True,
    )


def _same_organization(user: CandidateProfile, target: CandidateProfile) -> bool:
    if not user.organization or not target.organization:
        return False
    return user.organization.strip().lower() == target.organization.strip().lower()


def build_reasons(
    user: CandidateProfile,
    target: CandidateProfile,
    snapshot: PrivacySnapshot,
) -> Tuple[List[str], List[str]]:
    """(reasons, conversation starters) in priority order."""
    settings = snapshot.settings_for(target.user_id)
    reasons: List[str] = []
    starters: List[str] = []
    target_name = target.full_name or "They"

    skills = shared_values(user.skills, target.skills) if settings.allow_skills_matching else []
    if skills:
        reasons.append(f"You both have expertise in {', '.join(skills[:MAX_LISTED])}")
        starters.append(f"I noticed we both work with {skills[0]}. What projects are you working on?")

    interests = (
        shared_values(user.interests, target.interests) if settings.allow_interests_matching else []
    )
    if interests:
        reasons.append(f"Shared interests in {', '.join(interests[:MAX_LISTED])}")
        starters.append(f"I see you're also interested in {interests[0]}! What got you into it?")

    if _same_organization(user, target):
        reasons.append("You work at the same organization")
        starters.append("Hey! I see we're from the same org. Which team are you on?")

    if target.user_id in snapshot.followers:
        reasons.append(f"{target_name} follows you")
        starters.append("Thanks for following me! I'd love to connect.")

    return reasons, starters


class ExplanationGenerator:
    """Per-pair explanations backed by the signal store."""

    def __init__(self, store: SignalStore, privacy_filter: Optional[PrivacyFilter] = None):
        self.store = store
        self.privacy_filter = privacy_filter or PrivacyFilter(store)

    def explain(self, user_id: str, target_id: str, now: Optional[datetime] = None) -> Explanation:
        now = now or utcnow()
        try:
            profiles = self.store.get_profiles([user_id, target_id])
            user, target = profiles.get(user_id), profiles.get(target_id)
            if user is None or target is None:
                return generic_explanation()

            snapshot = self.privacy_filter.load_snapshot(user_id, [target_id], now)
            # A skip hides a candidate from the feed, not from an explanation
            snapshot.recently_skipped = set()
            if self.privacy_filter.exclusion_reason(target, snapshot) is not None:
                return generic_explanation()

            reasons, starters = build_reasons(user, target, snapshot)
        except MatchingError as e:
            logger.warning("Explanation data unavailable", target_id=target_id, error=str(e))
            return generic_explanation()

        if not reasons:
            return generic_explanation(target.full_name)

        name = target.full_name or "this person"
        return Explanation(
            summary=f"You and {name} are a great match. {reasons[0]}.",
            reasons=reasons,
            conversation_starters=starters,
        )
