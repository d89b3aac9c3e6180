"""
End-to-end tests of MatchingService over the in-memory stores.

Covers the ranking pipeline (pool -> privacy -> weights -> signals ->
ranking -> re-check), request validation, failure handling and
explanations.
"""

import math
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from config.settings import get_settings_for_testing
from matching.analytics import MatchAnalytics
from matching.errors import CandidatePoolUnavailableError, InvalidRequestError, SignalStoreError
from matching.experiments import InMemoryExperimentStore
from matching.models import (
    CandidateProfile,
    EmbeddingKind,
    EmbeddingVector,
    InteractionEvent,
    InteractionEventType,
    MatchContext,
    MatchFilters,
    PrivacySettings,
)
from matching.service import MatchingService, apply_filters, parse_context, validate_id
from matching.store import InMemorySignalStore


def _populate(store, now):
    store.add_profile(CandidateProfile(
        user_id="user-a", full_name="Ana", skills={"Python", "Design"},
        interests={"Climate"}, looking_for={"Mentor"},
    ))
    store.add_profile(CandidateProfile(
        user_id="cand-1", full_name="Ben", skills={"python", "Mentor"}, interests={"climate"},
        created_at=now - timedelta(days=2), is_online=True,
    ))
    store.add_profile(CandidateProfile(
        user_id="cand-2", full_name="Cy", skills={"design"},
        created_at=now - timedelta(days=100), updated_at=now - timedelta(days=1),
    ))
    store.add_profile(CandidateProfile(user_id="cand-3", full_name="Di"))
    store.add_profile(CandidateProfile(user_id="cand-4", full_name="Ed", skills={"python"}))
    store.add_profile(CandidateProfile(user_id="cand-5", full_name="Flo", interests={"climate"}))

    for uid, vec in (("user-a", [1.0, 0.0, 0.0]), ("cand-1", [0.9, 0.1, 0.0]), ("cand-2", [0.0, 1.0, 0.0])):
        for kind in (EmbeddingKind.BIO, EmbeddingKind.SKILLS, EmbeddingKind.INTERESTS):
            store.add_embedding(EmbeddingVector(user_id=uid, kind=kind, vector=vec))

    store.add_follow("cand-2", "user-a")
    return store


@pytest.fixture
def populated(store, now):
    return _populate(store, now)


@pytest.fixture
def make_service(settings, experiment_store, rng, now):
    def factory(store, **kwargs):
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("rng", rng)
        return MatchingService(store, kwargs.pop("experiments", experiment_store), clock=lambda: now, **kwargs)
    return factory


def _ids(response):
    return [r.candidate_id for r in response.results]


class TestRanking:

    def test_ranks_whole_pool(self, populated, make_service):
        response = make_service(populated).get_ranked_candidates("user-a")

        assert sorted(_ids(response)) == ["cand-1", "cand-2", "cand-3", "cand-4", "cand-5"]
        assert response.total_eligible == 5
        assert response.variant == "control"
        assert not response.degraded
        scores = [r.final_score for r in response.results]
        assert scores == sorted(scores, reverse=True)
        assert response.avg_score == pytest.approx(sum(scores) / len(scores))

    def test_final_score_is_weighted_sum(self, populated, make_service):
        response = make_service(populated).get_ranked_candidates("user-a")
        for result in response.results:
            components = result.components.as_dict()
            expected = sum(response.weights[name] * components[name] for name in components)
            assert math.isclose(result.final_score, expected, rel_tol=1e-9)

    def test_missing_embedding_contributes_half_weight(self, populated, make_service):
        response = make_service(populated).get_ranked_candidates("user-a")
        result = next(r for r in response.results if r.candidate_id == "cand-3")

        assert result.components.embedding == pytest.approx(0.5)
        # cand-3 has nothing else in common: freshness default, neutral context
        expected = (
            response.weights["embedding"] * 0.5
            + response.weights["freshness"] * 0.3
            + response.weights["context"] * 0.5
        )
        assert math.isclose(result.final_score, expected, rel_tol=1e-12)

    def test_deterministic(self, populated, make_service):
        service = make_service(populated)
        first = service.get_ranked_candidates("user-a")
        second = service.get_ranked_candidates("user-a")
        assert _ids(first) == _ids(second)
        assert [r.final_score for r in first.results] == [r.final_score for r in second.results]

    def test_results_are_decorated(self, populated, make_service):
        response = make_service(populated).get_ranked_candidates("user-a")
        by_id = {r.candidate_id: r for r in response.results}

        assert by_id["cand-1"].common_skills == ["python"]
        assert by_id["cand-1"].common_interests == ["climate"]
        assert by_id["cand-1"].shared_goals == ["Mentor"]
        assert by_id["cand-1"].is_online
        assert by_id["cand-2"].reciprocity.candidate_follows_user

    def test_blocked_never_returned(self, populated, make_service):
        populated.add_block("cand-1", "user-a")
        populated.add_block("user-a", "cand-2")
        response = make_service(populated).get_ranked_candidates("user-a")
        assert "cand-1" not in _ids(response)
        assert "cand-2" not in _ids(response)

    def test_ai_disabled_excluded_and_not_explained(self, populated, make_service):
        populated.add_privacy_settings(PrivacySettings(user_id="cand-1", ai_matching_enabled=False))
        service = make_service(populated)

        assert "cand-1" not in _ids(service.get_ranked_candidates("user-a"))
        assert service.get_match_explanation("user-a", "cand-1").is_fallback

    def test_limit_and_offset(self, populated, make_service):
        service = make_service(populated)
        full = _ids(service.get_ranked_candidates("user-a", limit=5))
        page = service.get_ranked_candidates("user-a", limit=2, offset=2)

        assert _ids(page) == full[2:4]
        assert page.total_eligible == 5

    def test_limit_clamped(self, store, make_service):
        for i in range(60):
            store.add_profile(CandidateProfile(user_id=f"cand-{i:02d}"))
        response = make_service(store).get_ranked_candidates("user-a", limit=500)
        assert len(response.results) == 50
        assert response.total_eligible == 60

    def test_default_limit(self, store, make_service):
        for i in range(30):
            store.add_profile(CandidateProfile(user_id=f"cand-{i:02d}"))
        assert len(make_service(store).get_ranked_candidates("user-a").results) == 20

    def test_filters(self, populated, make_service):
        response = make_service(populated).get_ranked_candidates(
            "user-a", filters=MatchFilters(skills=["PYTHON"]),
        )
        assert sorted(_ids(response)) == ["cand-1", "cand-4"]

    def test_user_without_profile(self, populated, make_service):
        response = make_service(populated).get_ranked_candidates("ghost")
        assert response.total_eligible == 6
        assert all(0.0 <= r.final_score <= 1.0 for r in response.results)

    def test_zone_ranks_checked_in_only(self, populated, make_service, now):
        populated.add_checkin("evt-1", "cand-4", now - timedelta(minutes=10))
        populated.add_checkin("evt-1", "cand-5", now - timedelta(hours=5))
        response = make_service(populated).get_ranked_candidates(
            "user-a", context="zone", event_id="evt-1",
        )

        assert response.context == MatchContext.ZONE
        assert sorted(_ids(response)) == ["cand-4", "cand-5"]
        by_id = {r.candidate_id: r for r in response.results}
        assert by_id["cand-4"].components.context == pytest.approx(0.5)
        assert by_id["cand-5"].components.context == pytest.approx(0.3)

    def test_checkin_without_timestamp_still_counts(self, populated, make_service):
        populated.add_checkin("evt-1", "cand-3")
        response = make_service(populated).get_ranked_candidates(
            "user-a", context="zone", event_id="evt-1",
        )

        assert _ids(response) == ["cand-3"]
        assert response.results[0].components.context == pytest.approx(0.3)

    def test_filters_apply_before_pool_cap(self, store, make_service):
        store.add_profile(CandidateProfile(user_id="a"))
        for i in range(1, 6):
            store.add_profile(CandidateProfile(user_id=f"b{i}", is_online=(i == 4)))
        service = make_service(
            store, settings=get_settings_for_testing(embedding_dimension=3, candidate_pool_limit=3),
        )

        response = service.get_ranked_candidates("a", filters=MatchFilters(online_only=True))

        assert _ids(response) == ["b4"]

    def test_naive_event_timestamps_are_utc(self, populated, make_service, now):
        populated.add_event(InteractionEvent(
            actor_id="user-a",
            target_id="cand-3",
            event_type=InteractionEventType.FOLLOW,
            created_at=(now - timedelta(days=1)).replace(tzinfo=None),
        ))
        response = make_service(populated).get_ranked_candidates("user-a")
        by_id = {r.candidate_id: r for r in response.results}

        assert by_id["cand-3"].components.interaction > 0.0


class TestFailures:

    def test_degraded_signal_reported(self, now, make_service):
        class NoEmbeddings(InMemorySignalStore):
            def get_embeddings(self, user_ids):
                raise SignalStoreError("get_embeddings", RuntimeError("timeout"))

        store = _populate(NoEmbeddings(), now)
        response = make_service(store).get_ranked_candidates("user-a")

        assert response.degraded
        assert [d.signal for d in response.diagnostics] == ["embedding"]
        assert len(response.results) == 5
        assert all(r.components.embedding == 0.5 for r in response.results)

    def test_pool_outage_raises(self, make_service):
        class NoPool(InMemorySignalStore):
            def list_candidate_pool(self, user_id, limit, event_id=None, filters=None):
                raise SignalStoreError("list_candidate_pool", ConnectionError("refused"))

        with pytest.raises(CandidatePoolUnavailableError):
            make_service(NoPool()).get_ranked_candidates("user-a")

    def test_block_lookup_outage_fails_closed(self, now, make_service):
        class NoBlocks(InMemorySignalStore):
            def get_blocked_user_ids(self, user_id):
                raise SignalStoreError("get_blocked_user_ids")

        with pytest.raises(CandidatePoolUnavailableError):
            make_service(_populate(NoBlocks(), now)).get_ranked_candidates("user-a")

    def test_block_landing_mid_call_is_dropped(self, now, make_service):
        class BlockAfterFirstRead(InMemorySignalStore):
            reads = 0

            def get_blocked_user_ids(self, user_id):
                self.reads += 1
                return set() if self.reads == 1 else {"cand-1"}

        store = _populate(BlockAfterFirstRead(), now)
        response = make_service(store).get_ranked_candidates("user-a")

        assert store.reads == 2
        assert "cand-1" not in _ids(response)
        assert len(response.results) == 4

    def test_analytics_failure_does_not_block(self, populated, make_service):
        client = MagicMock()
        client.table.side_effect = RuntimeError("analytics db down")
        analytics = MatchAnalytics(supabase=client, background=False)

        response = make_service(populated, analytics=analytics).get_ranked_candidates("user-a")

        assert len(response.results) == 5
        client.table.assert_called_once()

    def test_impressions_logged(self, populated, make_service):
        analytics = MagicMock()
        response = make_service(populated, analytics=analytics).get_ranked_candidates(
            "user-a", limit=3,
        )
        analytics.log_impressions.assert_called_once_with("user-a", response, None)


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        dict(user_id=""),
        dict(user_id="has space"),
        dict(user_id="x" * 200),
        dict(user_id=None),
        dict(user_id="user-a", context="feed"),
        dict(user_id="user-a", limit=-1),
        dict(user_id="user-a", offset=-3),
        dict(user_id="user-a", context="zone"),
        dict(user_id="user-a", event_id="bad id"),
    ])
    def test_rejected_before_data_access(self, kwargs, make_service):
        store = MagicMock()
        with pytest.raises(InvalidRequestError):
            make_service(store).get_ranked_candidates(**kwargs)
        store.list_candidate_pool.assert_not_called()

    def test_explanation_validates_ids(self, populated, make_service):
        with pytest.raises(InvalidRequestError):
            make_service(populated).get_match_explanation("user-a", "")

    def test_parse_context_case_insensitive(self):
        assert parse_context("ZONE") == MatchContext.ZONE
        assert parse_context(MatchContext.PULSE) == MatchContext.PULSE

    def test_validate_id(self):
        assert validate_id("abc-123", "user_id") == "abc-123"

    def test_apply_filters_online(self):
        candidates = [CandidateProfile(user_id="a", is_online=True), CandidateProfile(user_id="b")]
        kept = apply_filters(candidates, MatchFilters(online_only=True))
        assert [c.user_id for c in kept] == ["a"]


class TestExperimentsThroughService:

    def test_variant_weights_used(self, populated, make_service):
        from matching.models import Experiment, ExperimentStatus, ExperimentVariant

        experiments = InMemoryExperimentStore([Experiment(
            id="exp-1",
            name="pulse_weights_v1",
            status=ExperimentStatus.RUNNING,
            variants=[ExperimentVariant(
                name="overlap_only",
                traffic_percent=100,
                weights={"embedding": 0, "interaction": 0, "overlap": 1,
                         "freshness": 0, "context": 0, "reciprocity": 0},
            )],
        )])
        response = make_service(populated, experiments=experiments).get_ranked_candidates("user-a")

        assert response.variant == "overlap_only"
        assert response.experiment_id == "exp-1"
        for result in response.results:
            assert result.final_score == pytest.approx(result.components.overlap)
