"""
Pydantic models for the matching core.

Models cover:
- Profile snapshots, interaction events and embeddings read from the store
- Signal weight configuration and A/B experiments
- Privacy settings
- Ranking output (RankedResult, RankingResponse) and match explanations
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from config.constants import CONTROL_VARIANT, SIGNAL_NAMES
from core.utils import as_utc, normalize_string_set


# =============================================================================
# Enums
# =============================================================================

class MatchContext(str, Enum):
    """Product surface requesting candidates."""
    PULSE = "pulse"    # General discovery feed
    ZONE = "zone"      # In-person event networking


class InteractionEventType(str, Enum):
    """Interaction event types recorded by the application layer."""
    PROFILE_VIEW = "profile_view"
    PROFILE_EXPAND = "profile_expand"
    DWELL_TIME = "dwell_time"
    SCROLL_PAST = "scroll_past"
    SKIP = "skip"
    SAVE = "save"
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"
    MESSAGE_SENT = "message_sent"
    MESSAGE_REPLIED = "message_replied"
    MEETING_REQUESTED = "meeting_requested"
    MEETING_ACCEPTED = "meeting_accepted"
    MEETING_DECLINED = "meeting_declined"
    CONTACT_EXCHANGED = "contact_exchanged"
    PROFILE_SHARED = "profile_shared"
    SESSION_BOOKMARK = "session_bookmark"
    CARD_TAP = "card_tap"


class EmbeddingKind(str, Enum):
    BIO = "bio"
    SKILLS = "skills"
    INTERESTS = "interests"
    COMBINED = "combined"


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


def _none_to_empty(v):
    return [] if v is None else v


# =============================================================================
# Profiles & Signals
# =============================================================================

class CandidateProfile(BaseModel):
    """
    Immutable profile snapshot for one ranking call.

    The requesting user is represented with the same model.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    full_name: Optional[str] = None
    headline: Optional[str] = None
    bio: Optional[str] = None
    organization: Optional[str] = None
    skills: Set[str] = Field(default_factory=set)
    interests: Set[str] = Field(default_factory=set)
    looking_for: Set[str] = Field(default_factory=set)
    is_online: bool = False
    is_verified: bool = False
    is_premium: bool = False
    is_private: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("skills", "interests", "looking_for", mode="before")
    @classmethod
    def _coerce_sets(cls, v):
        return _none_to_empty(v)

    @field_validator("is_online", "is_verified", "is_premium", "is_private", mode="before")
    @classmethod
    def _coerce_flags(cls, v):
        return False if v is None else v


class InteractionEvent(BaseModel):
    """One append-only interaction log row (actor acted on target)."""
    model_config = ConfigDict(frozen=True)

    actor_id: str
    target_id: str
    event_type: InteractionEventType
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class SignalWeight(BaseModel):
    """Per event-type base weights (pulse vs zone) and decay half-life."""
    signal_name: str
    pulse_weight: float
    zone_weight: float
    decay_half_life_days: float = Field(gt=0)
    is_active: bool = True
    updated_at: Optional[datetime] = None

    def weight_for(self, context: MatchContext) -> float:
        return self.zone_weight if context == MatchContext.ZONE else self.pulse_weight


class EmbeddingVector(BaseModel):
    """Fixed-dimension vector for one (user, kind)."""
    user_id: str
    kind: EmbeddingKind
    vector: List[float]
    content_hash: Optional[str] = None
    updated_at: Optional[datetime] = None

    def to_array(self) -> np.ndarray:
        return np.asarray(self.vector, dtype=np.float64)


# =============================================================================
# Experiments
# =============================================================================

class ExperimentVariant(BaseModel):
    """
    One branch of a weight experiment.

    ``weights`` may override only some signals; the rest come from the
    context defaults.
    """
    name: str
    traffic_percent: float = Field(ge=0, le=100)
    weights: Dict[str, float] = Field(default_factory=dict)


class Experiment(BaseModel):
    id: str
    name: str
    status: ExperimentStatus = ExperimentStatus.DRAFT
    variants: List[ExperimentVariant] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.status == ExperimentStatus.RUNNING

    def get_variant(self, name: str) -> Optional[ExperimentVariant]:
        for variant in self.variants:
            if variant.name == name:
                return variant
        return None


class ExperimentAssignment(BaseModel):
    """Write-once (user, experiment) -> variant fact."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    experiment_id: str
    variant: str
    assigned_at: Optional[datetime] = None


class WeightResolution(BaseModel):
    """Weights chosen for one ranking call."""
    variant: str = CONTROL_VARIANT
    weights: Dict[str, float]
    experiment_id: Optional[str] = None
    experiment_name: Optional[str] = None
    source: str = "default"   # default | assignment | new_assignment | fallback


# =============================================================================
# Privacy
# =============================================================================

class PrivacySettings(BaseModel):
    """
    Per-user privacy settings. A user without a row is treated as all
    defaults (rankable, all fields usable for scoring).
    """
    user_id: str
    ai_matching_enabled: bool = True
    show_in_recommendations: bool = True
    allow_bio_matching: bool = True
    allow_skills_matching: bool = True
    allow_interests_matching: bool = True
    allow_activity_matching: bool = True
    require_mutual_follow: bool = False
    hidden_from: Set[str] = Field(default_factory=set)

    @field_validator("hidden_from", mode="before")
    @classmethod
    def _coerce_hidden(cls, v):
        return _none_to_empty(v)

    @property
    def is_rankable(self) -> bool:
        return self.ai_matching_enabled and self.show_in_recommendations


# =============================================================================
# Ranking I/O
# =============================================================================

class MatchFilters(BaseModel):
    """Optional caller-side pool filters."""
    skills: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    online_only: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.skills or self.interests or self.online_only)

    def matches(self, profile: CandidateProfile) -> bool:
        """Case-insensitive overlap on each non-empty list, plus the online flag."""
        skills = normalize_string_set(self.skills)
        if skills and not skills & normalize_string_set(profile.skills):
            return False
        interests = normalize_string_set(self.interests)
        if interests and not interests & normalize_string_set(profile.interests):
            return False
        return profile.is_online or not self.online_only


class SignalScores(BaseModel):
    """Per-signal component scores, each normalized to [0, 1]."""
    embedding: float = Field(ge=0.0, le=1.0)
    interaction: float = Field(ge=0.0, le=1.0)
    overlap: float = Field(ge=0.0, le=1.0)
    freshness: float = Field(ge=0.0, le=1.0)
    context: float = Field(ge=0.0, le=1.0)
    reciprocity: float = Field(ge=0.0, le=1.0)

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in SIGNAL_NAMES}


class ReciprocityFlags(BaseModel):
    candidate_follows_user: bool = False
    candidate_saved_user: bool = False
    candidate_viewed_user: bool = False
    pending_meeting_request: bool = False


class RankedResult(BaseModel):
    candidate_id: str
    final_score: float = Field(ge=0.0, le=1.0)
    components: SignalScores
    category: str
    common_skills: List[str] = Field(default_factory=list)
    common_interests: List[str] = Field(default_factory=list)
    shared_goals: List[str] = Field(default_factory=list)
    reciprocity: ReciprocityFlags = Field(default_factory=ReciprocityFlags)
    organization: Optional[str] = None
    is_online: bool = False
    is_premium: bool = False
    is_verified: bool = False


class SignalDiagnostic(BaseModel):
    """Non-fatal report that a signal was computed from its fallback."""
    signal: str
    error: str
    candidates_affected: int


class RankingResponse(BaseModel):
    results: List[RankedResult] = Field(default_factory=list)
    context: MatchContext
    variant: str = CONTROL_VARIANT
    experiment_id: Optional[str] = None
    weights: Dict[str, float] = Field(default_factory=dict)
    total_eligible: int = 0
    avg_score: float = 0.0
    processing_ms: int = 0
    diagnostics: List[SignalDiagnostic] = Field(default_factory=list)

    @computed_field
    @property
    def degraded(self) -> bool:
        return bool(self.diagnostics)


class Explanation(BaseModel):
    summary: str
    reasons: List[str] = Field(default_factory=list)
    conversation_starters: List[str] = Field(default_factory=list)
    is_fallback: bool = False
