"""
Signal Scoring Module.

Six independently computable match signals plus the orchestrator that
fans them out over a candidate pool.

Quick start::

    from scoring import ScoringRequest, SignalScorer

    request = ScoringRequest(user=profile, context=MatchContext.PULSE,
                             now=utcnow(), candidates=pool)
    batch = SignalScorer().score_candidates(store, request)
"""

from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest, ScoringWindows
from scoring.decay import decay, decay_for_elapsed
from scoring.scorer import ScoringBatch, SignalScorer, default_scorers

__all__ = [
    "BaseSignalScorer",
    "ScoringRequest",
    "ScoringWindows",
    "decay",
    "decay_for_elapsed",
    "ScoringBatch",
    "SignalScorer",
    "default_scorers",
]
