"""
Interaction history signal.

Sum of the requesting user's interactions toward a candidate over the
lookback window (default 90 days), each worth its event type's base
weight for the current context times its temporal decay. The decayed sum
is divided by 100 and clamped into [0, 1]; net-negative history scores 0.

Base weights and half-lives come from the ``ml_signal_weights`` table,
falling back to ``DEFAULT_INTERACTION_SIGNALS`` for event types the table
doesn't cover. Event types with neither are ignored.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from config.constants import DEFAULT_INTERACTION_SIGNALS, INTERACTION_NORMALIZER, SIGNAL_INTERACTION
from core.logging import get_logger
from core.utils import clamp
from matching.interaction_cache import InteractionSummary, InteractionSummaryCache
from matching.models import CandidateProfile, InteractionEvent, MatchContext, SignalWeight
from matching.store import SignalStore
from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest
from scoring.decay import decay

logger = get_logger(__name__)


def resolve_signal_weights(
    rows: Iterable[SignalWeight],
    context: MatchContext,
) -> Dict[str, Tuple[float, float]]:
    """event type -> (base weight for ``context``, half-life days)."""
    resolved = {
        name: (default.base_weight, default.half_life_days)
        for name, default in DEFAULT_INTERACTION_SIGNALS.items()
    }
    for row in rows:
        if row.is_active:
            resolved[row.signal_name] = (row.weight_for(context), row.decay_half_life_days)
    return resolved


def compute_interaction_scores(
    events: Iterable[InteractionEvent],
    weights: Dict[str, Tuple[float, float]],
    now: datetime,
) -> Dict[str, float]:
    """Normalized interaction score per target id."""
    raw: Dict[str, float] = {}
    for event in events:
        entry = weights.get(event.event_type.value)
        if entry is None:
            continue
        base_weight, half_life = entry
        raw[event.target_id] = raw.get(event.target_id, 0.0) + base_weight * decay(
            event.created_at, half_life, now
        )
    return {target: clamp(total / INTERACTION_NORMALIZER) for target, total in raw.items()}


def load_interaction_scores(
    store: SignalStore,
    user_id: str,
    target_ids: List[str],
    context: MatchContext,
    now: datetime,
    lookback_days: int,
) -> Dict[str, float]:
    """Read weights and events from ``store`` and score every target."""
    weights = resolve_signal_weights(store.get_signal_weights(), context)
    since = now - timedelta(days=lookback_days)
    events = store.get_interactions([user_id], target_ids, since)
    return compute_interaction_scores(events, weights, now)


class InteractionScorer(BaseSignalScorer):
    name = SIGNAL_INTERACTION
    fallback = 0.0

    def __init__(self, cache: Optional[InteractionSummaryCache] = None):
        self.cache = cache

    def prepare(self, store: SignalStore, request: ScoringRequest) -> Dict[str, float]:
        target_ids = request.candidate_ids
        if self.cache is not None:
            cached = self.cache.lookup(request.user_id, request.context, target_ids, request.now)
            if cached is not None:
                logger.debug("Interaction summary cache hit", user_id=request.user_id)
                return cached.scores

        scores = load_interaction_scores(
            store,
            request.user_id,
            target_ids,
            request.context,
            request.now,
            request.windows.interaction_lookback_days,
        )
        if self.cache is not None:
            self.cache.store(InteractionSummary(
                user_id=request.user_id,
                context=request.context,
                computed_at=request.now,
                scores=scores,
                targets=frozenset(target_ids),
            ))
        return scores

    def score(self, user: CandidateProfile, candidate: CandidateProfile, data: Dict[str, float]) -> float:
        return data.get(candidate.user_id, 0.0)
