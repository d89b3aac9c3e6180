"""
Weight Resolver / Experiment Assignor.

Chooses the six-signal weight vector for one ranking call:

1. Look up the running experiment named ``{context}_weights_{version}``.
   None running -> the context's default weights, variant ``control``.
2. If the user already has an assignment for that experiment, reuse it.
3. Otherwise draw ``r`` uniformly in [0, 100) and walk the variants in
   declaration order, picking the first whose cumulative traffic exceeds
   ``r``. The choice is persisted insert-if-absent, so concurrent first
   calls for the same user converge on one stored variant.

Configuration problems (allocations not summing to 100, unknown variant,
unusable weights) resolve to the control variant with default weights;
they are logged, never raised to the caller.
"""

import math
import random
from abc import ABC, abstractmethod
from threading import Lock
from typing import Dict, List, Optional, Tuple

from supabase import Client

from config.constants import (
    CONTROL_VARIANT,
    SIGNAL_NAMES,
    TABLES,
    TRAFFIC_TOLERANCE,
    TRAFFIC_TOTAL,
    WEIGHT_SUM_TOLERANCE,
)
from config.settings import Settings
from core.logging import get_logger
from core.utils import parse_timestamp, utcnow
from matching.errors import ExperimentConfigError, SignalStoreError
from matching.models import (
    Experiment,
    ExperimentAssignment,
    ExperimentStatus,
    ExperimentVariant,
    MatchContext,
    WeightResolution,
)

logger = get_logger(__name__)


# =============================================================================
# Experiment Stores
# =============================================================================

class ExperimentStore(ABC):
    """Experiment definitions plus write-once user assignments."""

    @abstractmethod
    def get_running_experiment(self, name: str) -> Optional[Experiment]:
        """The running experiment called ``name``, if any."""

    @abstractmethod
    def get_assignment(self, user_id: str, experiment_id: str) -> Optional[ExperimentAssignment]:
        """Stored assignment for (user, experiment), if any."""

    @abstractmethod
    def insert_assignment_if_absent(self, assignment: ExperimentAssignment) -> ExperimentAssignment:
        """
        Persist ``assignment`` unless one already exists.

        Returns the stored row, which is the earlier one when a concurrent
        writer got there first.
        """


class InMemoryExperimentStore(ExperimentStore):
    """Dictionary-backed experiment store for development and tests."""

    def __init__(self, experiments: Optional[List[Experiment]] = None):
        self._lock = Lock()
        self._experiments: Dict[str, Experiment] = {}
        self._assignments: Dict[Tuple[str, str], ExperimentAssignment] = {}
        for experiment in experiments or []:
            self.add_experiment(experiment)

    def add_experiment(self, experiment: Experiment) -> None:
        with self._lock:
            self._experiments[experiment.id] = experiment

    def get_running_experiment(self, name: str) -> Optional[Experiment]:
        with self._lock:
            running = [e for e in self._experiments.values() if e.name == name and e.is_running]
        # Several running rows under one name: oldest wins, like the table query
        running.sort(key=lambda e: (e.created_at is None, e.created_at or 0, e.id))
        return running[0] if running else None

    def get_assignment(self, user_id: str, experiment_id: str) -> Optional[ExperimentAssignment]:
        with self._lock:
            return self._assignments.get((user_id, experiment_id))

    def insert_assignment_if_absent(self, assignment: ExperimentAssignment) -> ExperimentAssignment:
        key = (assignment.user_id, assignment.experiment_id)
        with self._lock:
            existing = self._assignments.get(key)
            if existing is not None:
                return existing
            self._assignments[key] = assignment
            return assignment

    def assignment_count(self) -> int:
        with self._lock:
            return len(self._assignments)


def _variant_from_row(row: Dict) -> ExperimentVariant:
    return ExperimentVariant(
        name=str(row["name"]),
        traffic_percent=float(row.get("traffic_percent", row.get("allocation", 0)) or 0),
        weights={k: float(v) for k, v in (row.get("weights") or {}).items()},
    )


class SupabaseExperimentStore(ExperimentStore):
    """
    Reads ``ab_experiments`` and writes ``ab_experiment_assignments``.

    The assignment table has a unique (user_id, experiment_id) constraint;
    inserts use ``upsert(..., ignore_duplicates=True)`` and then re-read
    the stored row.
    """

    def __init__(self, supabase: Optional[Client] = None):
        if supabase is None:
            from config.database import get_supabase_client
            supabase = get_supabase_client()
        self._supabase = supabase

    def get_running_experiment(self, name: str) -> Optional[Experiment]:
        try:
            result = (
                self._supabase.table(TABLES.EXPERIMENTS)
                .select("id, name, status, variants, created_at")
                .eq("name", name)
                .eq("status", ExperimentStatus.RUNNING.value)
                .order("created_at")
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise SignalStoreError("get_running_experiment", e) from e
        if not result.data:
            return None
        row = result.data[0]
        return Experiment(
            id=str(row["id"]),
            name=row["name"],
            status=ExperimentStatus(row["status"]),
            variants=[_variant_from_row(v) for v in row.get("variants") or []],
            created_at=parse_timestamp(row.get("created_at")),
        )

    def get_assignment(self, user_id: str, experiment_id: str) -> Optional[ExperimentAssignment]:
        try:
            result = (
                self._supabase.table(TABLES.ASSIGNMENTS)
                .select("user_id, experiment_id, variant, assigned_at")
                .eq("user_id", user_id)
                .eq("experiment_id", experiment_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise SignalStoreError("get_assignment", e) from e
        if not result.data:
            return None
        row = result.data[0]
        return ExperimentAssignment(
            user_id=str(row["user_id"]),
            experiment_id=str(row["experiment_id"]),
            variant=row["variant"],
            assigned_at=parse_timestamp(row.get("assigned_at")),
        )

    def insert_assignment_if_absent(self, assignment: ExperimentAssignment) -> ExperimentAssignment:
        row = {
            "user_id": assignment.user_id,
            "experiment_id": assignment.experiment_id,
            "variant": assignment.variant,
            "assigned_at": (assignment.assigned_at or utcnow()).isoformat(),
        }
        try:
            (
                self._supabase.table(TABLES.ASSIGNMENTS)
                .upsert(row, on_conflict="user_id,experiment_id", ignore_duplicates=True)
                .execute()
            )
        except Exception as e:
            raise SignalStoreError("insert_assignment_if_absent", e) from e
        stored = self.get_assignment(assignment.user_id, assignment.experiment_id)
        return stored or assignment


# =============================================================================
# Variant selection
# =============================================================================

def validate_allocations(experiment: Experiment) -> None:
    """
    Raises:
        ExperimentConfigError: no variants, duplicate names, or traffic
            not summing to 100
    """
    if not experiment.variants:
        raise ExperimentConfigError(f"experiment {experiment.name} has no variants")
    names = [v.name for v in experiment.variants]
    if len(set(names)) != len(names):
        raise ExperimentConfigError(f"experiment {experiment.name} has duplicate variant names")
    total = sum(v.traffic_percent for v in experiment.variants)
    if abs(total - TRAFFIC_TOTAL) > TRAFFIC_TOLERANCE:
        raise ExperimentConfigError(
            f"experiment {experiment.name} allocations sum to {total}, expected {TRAFFIC_TOTAL}"
        )


def pick_variant(variants: List[ExperimentVariant], draw: float) -> Optional[str]:
    """
    Cumulative walk in declaration order.

    ``draw`` is in [0, 100). Returns None when no variant covers it.
    """
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.traffic_percent
        if draw < cumulative:
            return variant.name
    return None


def merge_variant_weights(defaults: Dict[str, float], overrides: Dict[str, float]) -> Dict[str, float]:
    """
    Overlay a variant's (possibly partial) weights on the defaults and
    renormalize to sum 1.

    Raises:
        ExperimentConfigError: unknown signal names, negative or
            non-numeric weights, or an all-zero vector
    """
    unknown = set(overrides) - set(SIGNAL_NAMES)
    if unknown:
        raise ExperimentConfigError(f"unknown signals in variant weights: {sorted(unknown)}")
    merged = dict(defaults)
    for name, value in overrides.items():
        value = float(value)
        if value < 0 or not math.isfinite(value):
            raise ExperimentConfigError(f"invalid weight for {name}: {value}")
        merged[name] = value
    total = sum(merged.values())
    if total <= 0:
        raise ExperimentConfigError("variant weights sum to zero")
    if abs(total - 1.0) <= WEIGHT_SUM_TOLERANCE:
        return {name: merged[name] for name in SIGNAL_NAMES}
    return {name: merged[name] / total for name in SIGNAL_NAMES}


# =============================================================================
# Resolver
# =============================================================================

class WeightResolver:
    """
    Resolves (user, context) to a weight vector and variant name.

    Args:
        settings: source of default weights and the experiment version
        store: experiment definitions and assignments
        rng: random source for new assignments (inject a seeded
            ``random.Random`` for reproducible tests)
    """

    def __init__(
        self,
        settings: Settings,
        store: ExperimentStore,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.store = store
        self.rng = rng or random.Random()

    def _control(self, defaults: Dict[str, float], experiment: Optional[Experiment], source: str) -> WeightResolution:
        return WeightResolution(
            variant=CONTROL_VARIANT,
            weights=dict(defaults),
            experiment_id=experiment.id if experiment else None,
            experiment_name=experiment.name if experiment else None,
            source=source,
        )

    def _weights_for(self, experiment: Experiment, variant_name: str, defaults: Dict[str, float]) -> Dict[str, float]:
        variant = experiment.get_variant(variant_name)
        if variant is None:
            if variant_name == CONTROL_VARIANT:
                return dict(defaults)
            raise ExperimentConfigError(
                f"variant {variant_name} not defined in experiment {experiment.name}"
            )
        return merge_variant_weights(defaults, variant.weights)

    def resolve(self, user_id: str, context: MatchContext) -> WeightResolution:
        defaults = self.settings.default_weights(context.value)
        experiment_name = self.settings.experiment_name(context.value)

        try:
            experiment = self.store.get_running_experiment(experiment_name)
        except SignalStoreError as e:
            logger.warning("Experiment lookup failed, using default weights",
                           experiment=experiment_name, error=str(e))
            return self._control(defaults, None, "fallback")

        if experiment is None:
            return self._control(defaults, None, "default")

        try:
            existing = self.store.get_assignment(user_id, experiment.id)
            if existing is not None:
                variant_name, source = existing.variant, "assignment"
            else:
                # Allocations only gate new draws; stored assignments are kept
                try:
                    validate_allocations(experiment)
                except ExperimentConfigError as e:
                    logger.warning("Experiment misconfigured, using control",
                                   experiment=experiment.name, error=str(e))
                    return self._control(defaults, experiment, "fallback")

                chosen = pick_variant(experiment.variants, self.rng.random() * TRAFFIC_TOTAL)
                if chosen is None:
                    chosen = CONTROL_VARIANT
                stored = self.store.insert_assignment_if_absent(ExperimentAssignment(
                    user_id=user_id,
                    experiment_id=experiment.id,
                    variant=chosen,
                    assigned_at=utcnow(),
                ))
                variant_name, source = stored.variant, "new_assignment"
                if stored.variant == chosen:
                    logger.info("Experiment assignment created",
                                experiment=experiment.name, variant=chosen)
        except SignalStoreError as e:
            logger.warning("Experiment assignment unavailable, using control",
                           experiment=experiment.name, error=str(e))
            return self._control(defaults, experiment, "fallback")

        try:
            weights = self._weights_for(experiment, variant_name, defaults)
        except ExperimentConfigError as e:
            logger.warning("Variant weights unusable, using control",
                           experiment=experiment.name, variant=variant_name, error=str(e))
            return self._control(defaults, experiment, "fallback")

        return WeightResolution(
            variant=variant_name,
            weights=weights,
            experiment_id=experiment.id,
            experiment_name=experiment.name,
            source=source,
        )
