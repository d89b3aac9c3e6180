"""
Profile overlap signal.

Points (out of 100):
- 8 per shared skill, capped at 40
- 6 per shared interest, capped at 30
- flat 30 when goals line up: the two users share a looking-for goal, or
  one side offers a skill the other is looking for

Matching is case-insensitive. Fields the candidate excluded from matching
count as empty.
"""

from config.constants import OVERLAP_SCORING, SIGNAL_OVERLAP
from core.utils import clamp, normalize_string_set
from matching.models import CandidateProfile, PrivacySettings
from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest


def goals_align(user: CandidateProfile, candidate: CandidateProfile,
                candidate_skills=None) -> bool:
    user_goals = normalize_string_set(user.looking_for)
    candidate_goals = normalize_string_set(candidate.looking_for)
    if candidate_skills is None:
        candidate_skills = normalize_string_set(candidate.skills)
    return bool(
        user_goals & candidate_goals
        or user_goals & candidate_skills
        or candidate_goals & normalize_string_set(user.skills)
    )


class OverlapScorer(BaseSignalScorer):
    name = SIGNAL_OVERLAP
    fallback = 0.0

    def prepare(self, store, request: ScoringRequest):
        return {c.user_id: request.consent_for(c.user_id) for c in request.candidates}

    def score(self, user: CandidateProfile, candidate: CandidateProfile, data) -> float:
        cfg = OVERLAP_SCORING
        consent = data.get(candidate.user_id) or PrivacySettings(user_id=candidate.user_id)

        candidate_skills = (
            normalize_string_set(candidate.skills) if consent.allow_skills_matching else set()
        )
        candidate_interests = (
            normalize_string_set(candidate.interests) if consent.allow_interests_matching else set()
        )

        shared_skills = normalize_string_set(user.skills) & candidate_skills
        shared_interests = normalize_string_set(user.interests) & candidate_interests

        points = min(cfg.MAX_SKILL_POINTS, len(shared_skills) * cfg.POINTS_PER_SKILL)
        points += min(cfg.MAX_INTEREST_POINTS, len(shared_interests) * cfg.POINTS_PER_INTEREST)
        if goals_align(user, candidate, candidate_skills):
            points += cfg.COMPLEMENTARY_GOAL_POINTS

        return clamp(points / cfg.NORMALIZER)
