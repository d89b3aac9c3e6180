"""
Tests for the batch maintenance jobs.
"""

from datetime import timedelta

from matching.interaction_cache import InteractionSummaryCache
from matching.maintenance import (
    content_hash,
    embedding_source_text,
    refresh_interaction_summaries,
    stale_embedding_user_ids,
)
from matching.models import (
    CandidateProfile,
    EmbeddingKind,
    EmbeddingVector,
    InteractionEvent,
    InteractionEventType,
    MatchContext,
)


def _fresh_embeddings(store, profile, now, kinds=(EmbeddingKind.BIO, EmbeddingKind.SKILLS)):
    for kind in kinds:
        store.add_embedding(EmbeddingVector(
            user_id=profile.user_id,
            kind=kind,
            vector=[0.1, 0.2, 0.3],
            content_hash=content_hash(embedding_source_text(profile, kind)),
            updated_at=now - timedelta(days=1),
        ))


class TestStaleEmbeddings:

    def test_source_text(self):
        profile = CandidateProfile(user_id="u", bio="  Builder ", skills={"go", "Python"})
        assert embedding_source_text(profile, EmbeddingKind.BIO) == "Builder"
        assert embedding_source_text(profile, EmbeddingKind.SKILLS) == "Python, go"
        assert embedding_source_text(profile, EmbeddingKind.INTERESTS) == ""
        assert embedding_source_text(profile, EmbeddingKind.COMBINED) == "Builder\nPython, go"

    def test_up_to_date_user_not_stale(self, store, now):
        profile = CandidateProfile(user_id="u1", bio="Builder", skills={"go"})
        store.add_profile(profile)
        _fresh_embeddings(store, profile, now)
        assert stale_embedding_user_ids(store, ["u1"], now=now) == []

    def test_missing_changed_and_expired(self, store, now):
        missing = CandidateProfile(user_id="u-missing", bio="New here")
        changed = CandidateProfile(user_id="u-changed", bio="Old bio")
        expired = CandidateProfile(user_id="u-expired", bio="Same bio")
        for profile in (missing, changed, expired):
            store.add_profile(profile)

        _fresh_embeddings(store, changed, now, kinds=(EmbeddingKind.BIO,))
        store.add_profile(changed.model_copy(update={"bio": "Rewritten bio"}))

        store.add_embedding(EmbeddingVector(
            user_id="u-expired", kind=EmbeddingKind.BIO, vector=[0.1],
            content_hash=content_hash("Same bio"), updated_at=now - timedelta(days=30),
        ))

        stale = stale_embedding_user_ids(store, ["u-missing", "u-changed", "u-expired"], now=now)
        assert stale == ["u-changed", "u-expired", "u-missing"]


class TestRefreshInteractionSummaries:

    def test_writes_one_summary_per_user_and_context(self, store, settings, now):
        for uid in ("user-a", "cand-1", "cand-2"):
            store.add_profile(CandidateProfile(user_id=uid))
        store.add_event(InteractionEvent(
            actor_id="user-a", target_id="cand-1",
            event_type=InteractionEventType.MESSAGE_SENT, created_at=now - timedelta(days=1),
        ))
        cache = InteractionSummaryCache(backend="memory")

        written = refresh_interaction_summaries(store, cache, ["user-a", "cand-1"], settings, now=now)

        assert written == 4
        summary = cache.lookup("user-a", MatchContext.PULSE, ["cand-1", "cand-2"], now)
        assert summary is not None
        assert summary.scores["cand-1"] > 0
        assert "cand-2" not in summary.scores
