"""
Per-call scoring context.

Built once per ranking call by the matching service and handed to every
signal scorer's ``prepare`` step. Immutable for the duration of the call.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from matching.models import CandidateProfile, MatchContext, PrivacySettings


@dataclass(frozen=True)
class ScoringWindows:
    """Lookback windows used by the behavioral scorers."""
    interaction_lookback_days: int = 90
    recent_view_days: int = 7
    recent_checkin_minutes: int = 60


@dataclass
class ScoringRequest:
    """
    Everything scorers need to know about one ranking call.

    ``candidate_privacy`` only holds candidates that have a settings row;
    use ``consent_for`` to get defaults for the rest.
    """
    user: CandidateProfile
    context: MatchContext
    now: datetime
    candidates: List[CandidateProfile] = field(default_factory=list)
    event_id: Optional[str] = None
    candidate_privacy: Dict[str, PrivacySettings] = field(default_factory=dict)
    windows: ScoringWindows = field(default_factory=ScoringWindows)

    @property
    def user_id(self) -> str:
        return self.user.user_id

    @property
    def candidate_ids(self) -> List[str]:
        return [c.user_id for c in self.candidates]

    def consent_for(self, user_id: str) -> PrivacySettings:
        settings = self.candidate_privacy.get(user_id)
        if settings is None:
            return PrivacySettings(user_id=user_id)
        return settings
