"""
SignalScorer -- the scoring orchestrator.

Runs the six signal scorers over a candidate pool. The ``prepare`` steps
(one batch store read per signal) run concurrently on a thread pool; the
pure ``score`` steps then run per candidate.

Partial failure never fails the call:
- ``prepare`` raises  -> every candidate gets that signal's fallback and a
  ``SignalDiagnostic`` is reported
- ``score`` raises or returns a non-finite value -> that candidate gets
  the fallback for that signal only

Usage::

    scorer = SignalScorer(interaction_cache=cache)
    batch = scorer.score_candidates(store, request)
    batch.scores["user-123"].embedding
"""

import contextvars
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from config.constants import SIGNAL_NAMES
from core.logging import get_logger
from core.utils import clamp
from matching.interaction_cache import InteractionSummaryCache
from matching.models import ReciprocityFlags, SignalDiagnostic, SignalScores
from matching.store import SignalStore
from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest
from scoring.context_scorer import EventContextScorer
from scoring.embedding_scorer import EmbeddingScorer
from scoring.freshness_scorer import FreshnessScorer
from scoring.interaction_scorer import InteractionScorer
from scoring.overlap_scorer import OverlapScorer
from scoring.reciprocity_scorer import ReciprocityScorer

logger = get_logger(__name__)


@dataclass
class ScoringBatch:
    """Per-candidate component scores for one ranking call."""
    scores: Dict[str, SignalScores] = field(default_factory=dict)
    reciprocity: Dict[str, ReciprocityFlags] = field(default_factory=dict)
    diagnostics: List[SignalDiagnostic] = field(default_factory=list)


def default_scorers(
    interaction_cache: Optional[InteractionSummaryCache] = None,
    embedding_dimension: Optional[int] = None,
) -> List[BaseSignalScorer]:
    return [
        EmbeddingScorer(dimension=embedding_dimension),
        InteractionScorer(cache=interaction_cache),
        OverlapScorer(),
        FreshnessScorer(),
        EventContextScorer(),
        ReciprocityScorer(),
    ]


class SignalScorer:
    """
    Orchestrates all six signals.

    Stateless across calls, safe to share between requests.
    """

    def __init__(
        self,
        scorers: Optional[List[BaseSignalScorer]] = None,
        max_workers: int = 6,
        interaction_cache: Optional[InteractionSummaryCache] = None,
        embedding_dimension: Optional[int] = None,
    ):
        if scorers is None:
            scorers = default_scorers(interaction_cache, embedding_dimension)
        self.scorers = scorers
        names = sorted(s.name for s in self.scorers)
        if names != sorted(SIGNAL_NAMES):
            raise ValueError(f"Scorers must cover exactly {SIGNAL_NAMES}, got {names}")
        self.max_workers = max(1, max_workers)

    def _prepare_all(
        self,
        store: SignalStore,
        request: ScoringRequest,
    ) -> Tuple[Dict[str, Any], Dict[str, Exception]]:
        prepared: Dict[str, Any] = {}
        errors: Dict[str, Exception] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(self.scorers))) as executor:
            # Each task gets its own copy so bound log context reaches the workers
            futures = {
                scorer.name: executor.submit(
                    contextvars.copy_context().run, scorer.prepare, store, request
                )
                for scorer in self.scorers
            }
            for name, future in futures.items():
                try:
                    prepared[name] = future.result()
                except Exception as e:
                    logger.warning(
                        "Signal degraded to fallback",
                        signal=name,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    errors[name] = e
        return prepared, errors

    def score_candidates(self, store: SignalStore, request: ScoringRequest) -> ScoringBatch:
        batch = ScoringBatch()
        if not request.candidates:
            return batch

        prepared, errors = self._prepare_all(store, request)
        per_signal: Dict[str, Dict[str, float]] = {}

        for scorer in self.scorers:
            if scorer.name in errors:
                error = errors[scorer.name]
                per_signal[scorer.name] = {c.user_id: scorer.fallback for c in request.candidates}
                batch.diagnostics.append(SignalDiagnostic(
                    signal=scorer.name,
                    error=f"{type(error).__name__}: {error}",
                    candidates_affected=len(request.candidates),
                ))
                continue

            data = prepared[scorer.name]
            values, failed, last_error = {}, 0, None
            for candidate in request.candidates:
                try:
                    value = scorer.score(request.user, candidate, data)
                    if value is None or not math.isfinite(value):
                        raise ValueError(f"non-finite score {value!r}")
                    values[candidate.user_id] = clamp(float(value))
                except Exception as e:
                    failed += 1
                    last_error = e
                    values[candidate.user_id] = scorer.fallback
            per_signal[scorer.name] = values

            if failed:
                logger.warning(
                    "Signal fell back for some candidates",
                    signal=scorer.name,
                    candidates_affected=failed,
                    error=str(last_error),
                )
                batch.diagnostics.append(SignalDiagnostic(
                    signal=scorer.name,
                    error=f"{type(last_error).__name__}: {last_error}",
                    candidates_affected=failed,
                ))

            if isinstance(scorer, ReciprocityScorer):
                for candidate in request.candidates:
                    batch.reciprocity[candidate.user_id] = scorer.flags(candidate.user_id, data)

        for candidate in request.candidates:
            batch.scores[candidate.user_id] = SignalScores(
                **{name: per_signal[name][candidate.user_id] for name in SIGNAL_NAMES}
            )

        order = {name: i for i, name in enumerate(SIGNAL_NAMES)}
        batch.diagnostics.sort(key=lambda d: order.get(d.signal, len(order)))
        return batch
