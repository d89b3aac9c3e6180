"""
Match Impression Analytics.

Logs one row per non-empty ranking call to ``ai_match_impressions`` for
offline quality evaluation: variant, weights, returned candidates with
their final and component scores, timing.

Writes happen on a small background pool. A failed write is logged and
dropped; it never reaches or delays the ranking response.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from supabase import Client

from config.constants import TABLES
from core.logging import get_logger
from core.utils import utcnow
from matching.models import RankingResponse

logger = get_logger(__name__)


def impression_row(
    user_id: str,
    response: RankingResponse,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Row for ``ai_match_impressions``."""
    return {
        "user_id": user_id,
        "context": response.context.value,
        "event_id": event_id,
        "experiment_id": response.experiment_id,
        "variant": response.variant,
        "weights": response.weights,
        "match_ids": [r.candidate_id for r in response.results],
        "scores": [round(r.final_score, 6) for r in response.results],
        "components": [r.components.as_dict() for r in response.results],
        "categories": [r.category for r in response.results],
        "avg_score": round(response.avg_score, 6),
        "total_eligible": response.total_eligible,
        "processing_ms": response.processing_ms,
        "degraded_signals": [d.signal for d in response.diagnostics],
        "created_at": utcnow().isoformat(),
    }


class MatchAnalytics:
    """
    Fire-and-forget impression logger.

    Args:
        supabase: client to write with (default: shared service client)
        background: write on a worker thread; False writes inline, still
            swallowing failures
    """

    def __init__(self, supabase: Optional[Client] = None, background: bool = True):
        if supabase is None:
            from config.database import get_supabase_client
            supabase = get_supabase_client()
        self._supabase = supabase
        self._executor = (
            ThreadPoolExecutor(max_workers=2, thread_name_prefix="match-analytics")
            if background else None
        )

    def _write(self, row: Dict[str, Any]) -> None:
        try:
            self._supabase.table(TABLES.IMPRESSIONS).insert(row).execute()
        except Exception as e:
            # Don't let analytics failures break ranking
            logger.warning("Failed to log match impressions", user_id=row.get("user_id"), error=str(e))

    def log_impressions(
        self,
        user_id: str,
        response: RankingResponse,
        event_id: Optional[str] = None,
    ) -> Optional[Future]:
        """Queue an impression row. Empty rankings are not logged."""
        if not response.results:
            return None
        try:
            row = impression_row(user_id, response, event_id)
            if self._executor is None:
                self._write(row)
                return None
            return self._executor.submit(self._write, row)
        except Exception as e:
            logger.warning("Failed to queue match impressions", user_id=user_id, error=str(e))
            return None

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)


# =============================================================================
# Singleton
# =============================================================================

_analytics: Optional[MatchAnalytics] = None
_analytics_lock = threading.Lock()


def get_match_analytics() -> MatchAnalytics:
    """Get or create the MatchAnalytics singleton (thread-safe)."""
    global _analytics
    if _analytics is None:
        with _analytics_lock:
            if _analytics is None:
                _analytics = MatchAnalytics()
    return _analytics
