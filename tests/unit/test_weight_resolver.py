"""
Tests for experiment assignment and weight resolution.
"""

import random
import threading
from collections import Counter

import pytest

from config.settings import DEFAULT_PULSE_WEIGHTS, DEFAULT_ZONE_WEIGHTS
from matching.errors import ExperimentConfigError, SignalStoreError
from matching.experiments import (
    InMemoryExperimentStore,
    WeightResolver,
    merge_variant_weights,
    pick_variant,
    validate_allocations,
)
from matching.models import (
    Experiment,
    ExperimentAssignment,
    ExperimentStatus,
    ExperimentVariant,
    MatchContext,
)


def _experiment(variants, name="pulse_weights_v1", status=ExperimentStatus.RUNNING, exp_id="exp-1"):
    return Experiment(
        id=exp_id,
        name=name,
        status=status,
        variants=[ExperimentVariant(**v) for v in variants],
    )


THREE_WAY = [
    {"name": "control", "traffic_percent": 34},
    {"name": "embedding_heavy", "traffic_percent": 33,
     "weights": {"embedding": 0.5, "interaction": 0.2, "overlap": 0.1,
                 "freshness": 0.05, "context": 0.05, "reciprocity": 0.1}},
    {"name": "behavior_heavy", "traffic_percent": 33,
     "weights": {"embedding": 0.2, "interaction": 0.4, "overlap": 0.15,
                 "freshness": 0.1, "context": 0.05, "reciprocity": 0.1}},
]


class TestPickVariant:

    def test_cumulative_walk(self):
        variants = [ExperimentVariant(**v) for v in THREE_WAY]
        assert pick_variant(variants, 0.0) == "control"
        assert pick_variant(variants, 33.999) == "control"
        assert pick_variant(variants, 34.0) == "embedding_heavy"
        assert pick_variant(variants, 99.999) == "behavior_heavy"

    def test_uncovered_draw(self):
        assert pick_variant([ExperimentVariant(name="a", traffic_percent=50)], 75.0) is None

    def test_distribution_matches_allocation(self):
        variants = [ExperimentVariant(**v) for v in THREE_WAY]
        rng = random.Random(42)
        n = 100_000
        counts = Counter(pick_variant(variants, rng.random() * 100) for _ in range(n))

        assert counts["control"] / n == pytest.approx(0.34, abs=0.01)
        assert counts["embedding_heavy"] / n == pytest.approx(0.33, abs=0.01)
        assert counts["behavior_heavy"] / n == pytest.approx(0.33, abs=0.01)


class TestValidation:

    def test_allocations_must_sum_to_100(self):
        with pytest.raises(ExperimentConfigError):
            validate_allocations(_experiment([
                {"name": "control", "traffic_percent": 50},
                {"name": "b", "traffic_percent": 30},
            ]))

    def test_duplicate_variant_names(self):
        with pytest.raises(ExperimentConfigError):
            validate_allocations(_experiment([
                {"name": "control", "traffic_percent": 50},
                {"name": "control", "traffic_percent": 50},
            ]))

    def test_partial_weights_are_renormalized(self):
        merged = merge_variant_weights(DEFAULT_PULSE_WEIGHTS, {"embedding": 0.55})
        assert sum(merged.values()) == pytest.approx(1.0)
        assert merged["embedding"] == pytest.approx(0.55 / 1.2)
        assert merged["interaction"] == pytest.approx(0.25 / 1.2)

    def test_unknown_signal_rejected(self):
        with pytest.raises(ExperimentConfigError):
            merge_variant_weights(DEFAULT_PULSE_WEIGHTS, {"popularity": 0.2})

    def test_negative_weight_rejected(self):
        with pytest.raises(ExperimentConfigError):
            merge_variant_weights(DEFAULT_PULSE_WEIGHTS, {"embedding": -0.1})


class TestWeightResolver:

    def test_no_experiment_uses_defaults(self, settings, experiment_store, rng):
        resolver = WeightResolver(settings, experiment_store, rng=rng)

        pulse = resolver.resolve("user-a", MatchContext.PULSE)
        zone = resolver.resolve("user-a", MatchContext.ZONE)

        assert pulse.variant == "control"
        assert pulse.source == "default"
        assert pulse.weights == DEFAULT_PULSE_WEIGHTS
        assert zone.weights == DEFAULT_ZONE_WEIGHTS
        assert experiment_store.assignment_count() == 0

    def test_non_running_experiment_ignored(self, settings, rng):
        store = InMemoryExperimentStore([_experiment(THREE_WAY, status=ExperimentStatus.PAUSED)])
        resolution = WeightResolver(settings, store, rng=rng).resolve("user-a", MatchContext.PULSE)
        assert resolution.source == "default"

    def test_assignment_is_sticky(self, settings, rng):
        store = InMemoryExperimentStore([_experiment(THREE_WAY)])
        resolver = WeightResolver(settings, store, rng=rng)

        first = resolver.resolve("user-a", MatchContext.PULSE)
        again = [resolver.resolve("user-a", MatchContext.PULSE) for _ in range(20)]

        assert first.source == "new_assignment"
        assert all(r.variant == first.variant for r in again)
        assert all(r.source == "assignment" for r in again)
        assert all(r.weights == first.weights for r in again)
        assert store.assignment_count() == 1

    def test_existing_assignment_reused(self, settings, rng):
        store = InMemoryExperimentStore([_experiment(THREE_WAY)])
        store.insert_assignment_if_absent(ExperimentAssignment(
            user_id="user-a", experiment_id="exp-1", variant="behavior_heavy",
        ))
        resolution = WeightResolver(settings, store, rng=rng).resolve("user-a", MatchContext.PULSE)

        assert resolution.variant == "behavior_heavy"
        assert resolution.weights["interaction"] == pytest.approx(0.4)
        assert resolution.experiment_id == "exp-1"

    def test_seeded_assignment_distribution(self, settings):
        store = InMemoryExperimentStore([_experiment(THREE_WAY)])
        resolver = WeightResolver(settings, store, rng=random.Random(7))
        n = 6000
        counts = Counter(resolver.resolve(f"user-{i}", MatchContext.PULSE).variant for i in range(n))

        assert store.assignment_count() == n
        for name, share in (("control", 0.34), ("embedding_heavy", 0.33), ("behavior_heavy", 0.33)):
            assert counts[name] / n == pytest.approx(share, abs=0.03)

    def test_bad_allocation_resolves_to_control(self, settings, rng):
        store = InMemoryExperimentStore([_experiment([
            {"name": "control", "traffic_percent": 40},
            {"name": "b", "traffic_percent": 40, "weights": {"embedding": 1.0}},
        ])])
        resolution = WeightResolver(settings, store, rng=rng).resolve("user-a", MatchContext.PULSE)

        assert resolution.variant == "control"
        assert resolution.source == "fallback"
        assert resolution.weights == DEFAULT_PULSE_WEIGHTS
        assert store.assignment_count() == 0

    def test_stored_assignment_survives_allocation_edit(self, settings, rng):
        store = InMemoryExperimentStore([_experiment([
            {"name": "control", "traffic_percent": 50},
            {"name": "b", "traffic_percent": 50, "weights": {"embedding": 0.5}},
        ])])
        store.insert_assignment_if_absent(ExperimentAssignment(
            user_id="user-a", experiment_id="exp-1", variant="b",
        ))
        resolver = WeightResolver(settings, store, rng=rng)
        before = resolver.resolve("user-a", MatchContext.PULSE)

        # Operator edits the running experiment; allocations now sum to 90
        store.add_experiment(_experiment([
            {"name": "control", "traffic_percent": 50},
            {"name": "b", "traffic_percent": 40, "weights": {"embedding": 0.5}},
        ]))
        after = resolver.resolve("user-a", MatchContext.PULSE)
        newcomer = resolver.resolve("user-b", MatchContext.PULSE)

        assert before.variant == after.variant == "b"
        assert after.source == "assignment"
        assert after.weights == before.weights
        assert newcomer.variant == "control"
        assert newcomer.source == "fallback"
        assert store.assignment_count() == 1

    def test_unusable_variant_weights_resolve_to_control(self, settings, rng):
        store = InMemoryExperimentStore([_experiment([
            {"name": "broken", "traffic_percent": 100, "weights": {"unknown_signal": 1.0}},
        ])])
        resolution = WeightResolver(settings, store, rng=rng).resolve("user-a", MatchContext.PULSE)

        assert resolution.variant == "control"
        assert resolution.weights == DEFAULT_PULSE_WEIGHTS

    def test_zone_uses_zone_experiment(self, settings, rng):
        store = InMemoryExperimentStore([
            _experiment([{"name": "zone_only", "traffic_percent": 100, "weights": {"context": 0.5}}],
                        name="zone_weights_v1", exp_id="exp-zone"),
        ])
        resolver = WeightResolver(settings, store, rng=rng)

        assert resolver.resolve("user-a", MatchContext.PULSE).source == "default"
        zone = resolver.resolve("user-a", MatchContext.ZONE)
        assert zone.variant == "zone_only"
        assert sum(zone.weights.values()) == pytest.approx(1.0)

    def test_store_outage_resolves_to_control(self, settings, rng):
        class BrokenStore(InMemoryExperimentStore):
            def get_assignment(self, user_id, experiment_id):
                raise SignalStoreError("get_assignment")

        store = BrokenStore([_experiment(THREE_WAY)])
        resolution = WeightResolver(settings, store, rng=rng).resolve("user-a", MatchContext.PULSE)
        assert resolution.variant == "control"
        assert resolution.source == "fallback"

    def test_concurrent_first_calls_converge(self, settings):
        store = InMemoryExperimentStore([_experiment(THREE_WAY)])
        barrier = threading.Barrier(8)
        results = []
        lock = threading.Lock()

        def worker(seed):
            resolver = WeightResolver(settings, store, rng=random.Random(seed))
            barrier.wait()
            resolution = resolver.resolve("user-race", MatchContext.PULSE)
            with lock:
                results.append(resolution.variant)

        threads = [threading.Thread(target=worker, args=(seed,)) for seed in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert len(set(results)) == 1
        assert store.assignment_count() == 1
