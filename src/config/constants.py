"""
Application constants and algorithm configuration.

These are values that don't change based on environment but may need
to be tuned or referenced across the codebase. Anything an operator is
expected to tune per deployment (default weight vectors, lookback
windows, limits) lives in ``config.settings`` instead.
"""

from dataclasses import dataclass
from typing import Dict, Tuple


# =============================================================================
# Signals
# =============================================================================

SIGNAL_EMBEDDING = "embedding"
SIGNAL_INTERACTION = "interaction"
SIGNAL_OVERLAP = "overlap"
SIGNAL_FRESHNESS = "freshness"
SIGNAL_CONTEXT = "context"
SIGNAL_RECIPROCITY = "reciprocity"

# Declaration order is the order weight vectors are reported in.
SIGNAL_NAMES: Tuple[str, ...] = (
    SIGNAL_EMBEDDING,
    SIGNAL_INTERACTION,
    SIGNAL_OVERLAP,
    SIGNAL_FRESHNESS,
    SIGNAL_CONTEXT,
    SIGNAL_RECIPROCITY,
)

WEIGHT_SUM_TOLERANCE = 1e-6


# =============================================================================
# Interaction Signal Defaults
# =============================================================================

@dataclass(frozen=True)
class InteractionSignalDefault:
    """Built-in base weight and half-life for one interaction event type."""
    base_weight: float
    half_life_days: float


# Used when ml_signal_weights has no active row for an event type.
# Same base weight in both contexts; the table can split them.
DEFAULT_INTERACTION_SIGNALS: Dict[str, InteractionSignalDefault] = {
    "contact_exchanged": InteractionSignalDefault(100.0, 180.0),
    "meeting_accepted": InteractionSignalDefault(80.0, 120.0),
    "message_replied": InteractionSignalDefault(60.0, 60.0),
    "message_sent": InteractionSignalDefault(40.0, 30.0),
    "follow": InteractionSignalDefault(30.0, 90.0),
    "save": InteractionSignalDefault(25.0, 60.0),
    "profile_expand": InteractionSignalDefault(10.0, 14.0),
    "scroll_past": InteractionSignalDefault(-5.0, 7.0),
    "skip": InteractionSignalDefault(-15.0, 30.0),
    "unfollow": InteractionSignalDefault(-25.0, 90.0),
}

# Raw decayed interaction points that map to a score of 1.0
INTERACTION_NORMALIZER = 100.0


# =============================================================================
# Scorer Configuration
# =============================================================================

@dataclass(frozen=True)
class EmbeddingScoringConfig:
    """Sub-component weights for embedding similarity (sum to 1.0)."""
    BIO_WEIGHT: float = 0.40
    SKILLS_WEIGHT: float = 0.35
    INTERESTS_WEIGHT: float = 0.25
    MISSING_FALLBACK: float = 0.5


@dataclass(frozen=True)
class OverlapScoringConfig:
    """Point allocation for profile overlap (total 100)."""
    POINTS_PER_SKILL: float = 8.0
    MAX_SKILL_POINTS: float = 40.0
    POINTS_PER_INTEREST: float = 6.0
    MAX_INTEREST_POINTS: float = 30.0
    COMPLEMENTARY_GOAL_POINTS: float = 30.0
    NORMALIZER: float = 100.0


@dataclass(frozen=True)
class FreshnessScoringConfig:
    """Ordered freshness tiers; the first matching tier wins."""
    NEW_PROFILE_DAYS: int = 7
    NEW_PROFILE_SCORE: float = 1.0
    RECENT_PROFILE_DAYS: int = 30
    RECENT_PROFILE_SCORE: float = 0.8
    RECENTLY_UPDATED_DAYS: int = 7
    RECENTLY_UPDATED_SCORE: float = 0.6
    ONLINE_SCORE: float = 0.5
    DEFAULT_SCORE: float = 0.3


@dataclass(frozen=True)
class ContextScoringConfig:
    """Event/session context components."""
    SAME_EVENT_BONUS: float = 0.3
    SESSION_OVERLAP_DIVISOR: float = 10.0
    MAX_SESSION_OVERLAP: float = 0.5
    RECENT_CHECKIN_BONUS: float = 0.2
    NO_EVENT_FALLBACK: float = 0.5


@dataclass(frozen=True)
class ReciprocityScoringConfig:
    """Additive reciprocity flags."""
    FOLLOWS_USER: float = 0.4
    SAVED_USER: float = 0.3
    VIEWED_USER: float = 0.2
    PENDING_MEETING: float = 0.1


EMBEDDING_SCORING = EmbeddingScoringConfig()
OVERLAP_SCORING = OverlapScoringConfig()
FRESHNESS_SCORING = FreshnessScoringConfig()
CONTEXT_SCORING = ContextScoringConfig()
RECIPROCITY_SCORING = ReciprocityScoringConfig()


# =============================================================================
# Match Categories
# =============================================================================

CATEGORY_PROFESSIONAL = "professional"
CATEGORY_MUTUAL_INTEREST = "mutual_interest"
CATEGORY_SIMILAR_BACKGROUND = "similar_background"
CATEGORY_EVENT_CONNECTION = "event_connection"
CATEGORY_DISCOVERY = "discovery"

# (signal, strict lower bound, category) checked in this order
CATEGORY_RULES: Tuple[Tuple[str, float, str], ...] = (
    (SIGNAL_OVERLAP, 0.6, CATEGORY_PROFESSIONAL),
    (SIGNAL_RECIPROCITY, 0.5, CATEGORY_MUTUAL_INTEREST),
    (SIGNAL_EMBEDDING, 0.7, CATEGORY_SIMILAR_BACKGROUND),
    (SIGNAL_CONTEXT, 0.5, CATEGORY_EVENT_CONNECTION),
)


# =============================================================================
# Experiments
# =============================================================================

CONTROL_VARIANT = "control"
TRAFFIC_TOTAL = 100.0
TRAFFIC_TOLERANCE = 0.01


# =============================================================================
# Storage
# =============================================================================

@dataclass(frozen=True)
class TableNames:
    """Supabase tables read (and, for assignments/impressions, written)."""
    PROFILES: str = "impact_profiles"
    EMBEDDINGS: str = "profile_embeddings"
    INTERACTIONS: str = "user_interaction_events"
    SIGNAL_WEIGHTS: str = "ml_signal_weights"
    BLOCKS: str = "blocked_users"
    PRIVACY: str = "user_privacy_settings"
    FOLLOWS: str = "user_follows"
    CHECKINS: str = "event_checkins"
    BOOKMARKS: str = "session_bookmarks"
    MEETINGS: str = "meeting_requests"
    EXPERIMENTS: str = "ab_experiments"
    ASSIGNMENTS: str = "ab_experiment_assignments"
    IMPRESSIONS: str = "ai_match_impressions"


TABLES = TableNames()

# Max ids per `.in_()` filter to keep PostgREST URLs short
IN_FILTER_CHUNK_SIZE = 200
