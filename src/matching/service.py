"""
Matching Service.

Top-level entry points:

- ``get_ranked_candidates``: validate -> filtered candidate pool
  -> privacy filter -> weight resolution -> six signals -> fusion and
  ranking -> output re-check -> impression analytics
- ``get_match_explanation``: per-pair explanation, never raises for data
  problems

Input validation errors are raised before any data access. Failure to
read the candidate pool (or the privacy data needed to filter it) raises
``CandidatePoolUnavailableError``; single-signal failures only degrade
that signal and are reported in ``RankingResponse.diagnostics``.
"""

import random
import re
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

from config.settings import Settings, get_settings
from core.logging import bound_context, get_logger
from core.utils import shared_values, utcnow
from matching.analytics import MatchAnalytics, get_match_analytics
from matching.errors import CandidatePoolUnavailableError, InvalidRequestError, SignalStoreError
from matching.experiments import ExperimentStore, WeightResolver
from matching.explanation import ExplanationGenerator
from matching.interaction_cache import InteractionSummaryCache
from matching.models import (
    CandidateProfile,
    Explanation,
    MatchContext,
    MatchFilters,
    RankedResult,
    RankingResponse,
    ReciprocityFlags,
)
from matching.privacy_filter import PrivacyFilter, PrivacySnapshot
from matching.ranking_engine import RankingEngine
from matching.store import SignalStore
from scoring.context import ScoringRequest, ScoringWindows
from scoring.overlap_scorer import goals_align
from scoring.scorer import SignalScorer

logger = get_logger(__name__)

MAX_ID_LENGTH = 128
_ID_PATTERN = re.compile(r"^[^\s]+$")


# =============================================================================
# Validation
# =============================================================================

def validate_id(value: Optional[str], field_name: str) -> str:
    """
    Raises:
        InvalidRequestError: empty, non-string, whitespace or overlong ids
    """
    if not isinstance(value, str) or not value or len(value) > MAX_ID_LENGTH:
        raise InvalidRequestError(f"{field_name} is malformed")
    if not _ID_PATTERN.match(value):
        raise InvalidRequestError(f"{field_name} is malformed")
    return value


def parse_context(value: Union[str, MatchContext]) -> MatchContext:
    if isinstance(value, MatchContext):
        return value
    try:
        return MatchContext(str(value).lower())
    except ValueError:
        valid = ", ".join(c.value for c in MatchContext)
        raise InvalidRequestError(f"context must be one of: {valid}") from None


def apply_filters(candidates: List[CandidateProfile], filters: Optional[MatchFilters]) -> List[CandidateProfile]:
    """Caller-side pool filters: skills/interests overlap and online only."""
    if filters is None:
        return candidates
    return [c for c in candidates if filters.matches(c)]


# =============================================================================
# Service
# =============================================================================

class MatchingService:
    """
    Ranks candidates for a user and explains individual matches.

    Args:
        store: signal data reads
        experiment_store: experiment definitions and assignments
        settings: defaults to the process settings
        analytics: impression logger; None disables impression logging
        interaction_cache: optional interaction summary cache
        rng: random source for experiment assignment
        clock: returns "now" for a call
    """

    def __init__(
        self,
        store: SignalStore,
        experiment_store: ExperimentStore,
        settings: Optional[Settings] = None,
        analytics: Optional[MatchAnalytics] = None,
        interaction_cache: Optional[InteractionSummaryCache] = None,
        scorer: Optional[SignalScorer] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.clock = clock
        self.analytics = analytics
        self.weight_resolver = WeightResolver(self.settings, experiment_store, rng=rng)
        self.privacy_filter = PrivacyFilter(store, self.settings.skip_exclusion_hours)
        self.scorer = scorer or SignalScorer(
            max_workers=self.settings.scorer_max_workers,
            interaction_cache=interaction_cache,
            embedding_dimension=self.settings.embedding_dimension,
        )
        self.ranking_engine = RankingEngine(self.settings.large_pool_threshold)
        self.explanations = ExplanationGenerator(store, self.privacy_filter)
        self.windows = ScoringWindows(
            interaction_lookback_days=self.settings.interaction_lookback_days,
            recent_view_days=self.settings.recent_view_days,
            recent_checkin_minutes=self.settings.recent_checkin_minutes,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "MatchingService":
        """Production wiring: Supabase stores, optional Redis cache, analytics."""
        from matching.experiments import SupabaseExperimentStore
        from matching.store import SupabaseSignalStore

        settings = settings or get_settings()
        return cls(
            store=SupabaseSignalStore(),
            experiment_store=SupabaseExperimentStore(),
            settings=settings,
            analytics=get_match_analytics() if settings.analytics_enabled else None,
            interaction_cache=InteractionSummaryCache.from_settings(settings),
        )

    # ── Ranking ────────────────────────────────────────────────────

    def _resolve_limit(self, limit: Optional[int], offset: int) -> int:
        if limit is None:
            limit = self.settings.default_limit
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
            raise InvalidRequestError("limit must be a non-negative integer")
        if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
            raise InvalidRequestError("offset must be a non-negative integer")
        return min(limit, self.settings.max_limit)

    def _load_pool(
        self,
        user_id: str,
        event_id: Optional[str],
        filters: Optional[MatchFilters] = None,
    ) -> Tuple[CandidateProfile, List[CandidateProfile]]:
        try:
            user = self.store.get_profile(user_id)
            pool = self.store.list_candidate_pool(
                user_id, self.settings.candidate_pool_limit, event_id=event_id, filters=filters
            )
        except SignalStoreError as e:
            logger.error("Candidate pool unavailable", error=str(e))
            raise CandidatePoolUnavailableError(f"candidate pool unavailable: {e}") from e

        if user is None:
            logger.debug("Requesting user has no profile, scoring with an empty one")
            user = CandidateProfile(user_id=user_id)

        unique: Dict[str, CandidateProfile] = {}
        for candidate in pool:
            unique.setdefault(candidate.user_id, candidate)
        return user, list(unique.values())

    def _decorate(
        self,
        result: RankedResult,
        user: CandidateProfile,
        candidate: CandidateProfile,
        snapshot: PrivacySnapshot,
        reciprocity: Optional[ReciprocityFlags],
    ) -> RankedResult:
        consent = snapshot.settings_for(candidate.user_id)
        shared_goals = shared_values(user.looking_for, candidate.looking_for)
        if not shared_goals and goals_align(user, candidate):
            shared_goals = sorted(
                set(shared_values(user.looking_for, candidate.skills))
                | set(shared_values(candidate.looking_for, user.skills)),
                key=str.lower,
            )
        return result.model_copy(update={
            "common_skills": (
                shared_values(user.skills, candidate.skills) if consent.allow_skills_matching else []
            ),
            "common_interests": (
                shared_values(user.interests, candidate.interests)
                if consent.allow_interests_matching else []
            ),
            "shared_goals": shared_goals,
            "reciprocity": reciprocity or ReciprocityFlags(),
            "organization": candidate.organization,
            "is_online": candidate.is_online and consent.allow_activity_matching,
            "is_premium": candidate.is_premium,
            "is_verified": candidate.is_verified,
        })

    def get_ranked_candidates(
        self,
        user_id: str,
        context: Union[str, MatchContext] = MatchContext.PULSE,
        limit: Optional[int] = None,
        offset: int = 0,
        event_id: Optional[str] = None,
        filters: Optional[MatchFilters] = None,
    ) -> RankingResponse:
        """
        Ranked, paged candidates for ``user_id``.

        Raises:
            InvalidRequestError: bad context, ids, limit or offset; zone
                context without an event id
            CandidatePoolUnavailableError: pool or privacy data unreadable
        """
        start = time.perf_counter()
        user_id = validate_id(user_id, "user_id")
        ctx = parse_context(context)
        if event_id is not None:
            event_id = validate_id(event_id, "event_id")
        if ctx == MatchContext.ZONE and not event_id:
            raise InvalidRequestError("zone context requires an event_id")
        limit = self._resolve_limit(limit, offset)
        now = self.clock()

        with bound_context(user_id=user_id, context=ctx.value):
            user, pool = self._load_pool(user_id, event_id, filters)
            pool = apply_filters(pool, filters)

            snapshot = self.privacy_filter.load_snapshot(
                user_id, [c.user_id for c in pool], now, event_id=event_id
            )
            eligible = self.privacy_filter.filter_candidates(pool, snapshot)

            resolution = self.weight_resolver.resolve(user_id, ctx)

            with bound_context(variant=resolution.variant):
                batch = self.scorer.score_candidates(self.store, ScoringRequest(
                    user=user,
                    context=ctx,
                    now=now,
                    candidates=eligible,
                    event_id=event_id,
                    candidate_privacy=snapshot.privacy,
                    windows=self.windows,
                ))
                page = self.ranking_engine.rank(batch.scores, resolution.weights, limit, offset)

                by_id = {c.user_id: c for c in eligible}
                results = [
                    self._decorate(r, user, by_id[r.candidate_id], snapshot,
                                   batch.reciprocity.get(r.candidate_id))
                    for r in page.results
                ]
                if results:
                    # Fresh privacy read for the returned page
                    page_snapshot = self.privacy_filter.load_snapshot(
                        user_id, [r.candidate_id for r in results], now, event_id=event_id
                    )
                    results = self.privacy_filter.validate_results(results, by_id, page_snapshot)

                processing_ms = int(round((time.perf_counter() - start) * 1000))
                response = RankingResponse(
                    results=results,
                    context=ctx,
                    variant=resolution.variant,
                    experiment_id=resolution.experiment_id,
                    weights=resolution.weights,
                    total_eligible=page.total_eligible,
                    avg_score=(
                        sum(r.final_score for r in results) / len(results) if results else 0.0
                    ),
                    processing_ms=processing_ms,
                    diagnostics=batch.diagnostics,
                )

                if processing_ms > self.settings.slow_ranking_ms:
                    logger.warning("Slow ranking", duration_ms=processing_ms,
                                   pool_size=len(pool), eligible=len(eligible))
                logger.info(
                    "Ranking completed",
                    pool_size=len(pool),
                    eligible=len(eligible),
                    returned=len(results),
                    degraded_signals=[d.signal for d in batch.diagnostics],
                    duration_ms=processing_ms,
                )

                if self.analytics is not None:
                    self.analytics.log_impressions(user_id, response, event_id)

        return response

    # ── Explanations ───────────────────────────────────────────────

    def get_match_explanation(self, user_id: str, target_id: str) -> Explanation:
        """
        Raises:
            InvalidRequestError: malformed ids
        """
        user_id = validate_id(user_id, "user_id")
        target_id = validate_id(target_id, "target_id")
        with bound_context(user_id=user_id):
            return self.explanations.explain(user_id, target_id, now=self.clock())
