"""
Fusion & Ranking Engine.

    final_score = sum(weight[s] * score[s] for s in the six signals)

Candidates are ordered by final score descending, ties broken by
candidate id ascending, so paging with offset/limit is reproducible.
Pools larger than ``large_pool_threshold`` use a bounded heap selection
with the same sort key, which yields exactly the head of the full sort.

Category is the first matching rule:
    overlap > 0.6      -> professional
    reciprocity > 0.5  -> mutual_interest
    embedding > 0.7    -> similar_background
    context > 0.5      -> event_connection
    otherwise          -> discovery
"""

import heapq
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from config.constants import CATEGORY_DISCOVERY, CATEGORY_RULES, SIGNAL_NAMES, WEIGHT_SUM_TOLERANCE
from core.logging import get_logger
from core.utils import clamp
from matching.errors import InvalidRequestError
from matching.models import RankedResult, SignalScores

logger = get_logger(__name__)


def classify(components: SignalScores) -> str:
    values = components.as_dict()
    for signal, bound, category in CATEGORY_RULES:
        if values[signal] > bound:
            return category
    return CATEGORY_DISCOVERY


def fuse(components: SignalScores, weights: Dict[str, float]) -> float:
    values = components.as_dict()
    return clamp(sum(weights[name] * values[name] for name in SIGNAL_NAMES))


def _sort_key(entry: Tuple[str, float, SignalScores]) -> Tuple[float, str]:
    return (-entry[1], entry[0])


@dataclass
class RankedPage:
    """One page of the ranking plus pool-level figures."""
    results: List[RankedResult] = field(default_factory=list)
    total_eligible: int = 0
    avg_score: float = 0.0


class RankingEngine:
    """Stateless; one instance can serve every request."""

    def __init__(self, large_pool_threshold: int = 5000):
        self.large_pool_threshold = large_pool_threshold

    @staticmethod
    def _check_weights(weights: Dict[str, float]) -> None:
        if set(weights) != set(SIGNAL_NAMES):
            raise InvalidRequestError(f"weights must cover exactly {SIGNAL_NAMES}")
        if any(w < 0 for w in weights.values()):
            raise InvalidRequestError("weights must be non-negative")
        if abs(sum(weights.values()) - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise InvalidRequestError("weights must sum to 1.0")

    def rank(
        self,
        scores: Dict[str, SignalScores],
        weights: Dict[str, float],
        limit: int,
        offset: int = 0,
    ) -> RankedPage:
        """
        Fuse, order and page the scored pool.

        Raises:
            InvalidRequestError: negative limit/offset or a bad weight vector
        """
        if limit < 0 or offset < 0:
            raise InvalidRequestError("limit and offset must be non-negative")
        self._check_weights(weights)

        entries = [(cid, fuse(components, weights), components) for cid, components in scores.items()]
        wanted = offset + limit

        if len(entries) > self.large_pool_threshold and wanted < len(entries):
            head = heapq.nsmallest(wanted, entries, key=_sort_key)
            logger.debug("Bounded selection used", pool_size=len(entries), selected=wanted)
        else:
            head = sorted(entries, key=_sort_key)

        page = head[offset:wanted]
        results = [
            RankedResult(
                candidate_id=cid,
                final_score=score,
                components=components,
                category=classify(components),
            )
            for cid, score, components in page
        ]
        avg = sum(r.final_score for r in results) / len(results) if results else 0.0
        return RankedPage(results=results, total_eligible=len(entries), avg_score=avg)
