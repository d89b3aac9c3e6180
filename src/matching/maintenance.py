"""
Batch maintenance jobs.

Run on a schedule, independent of live ranking:

- ``stale_embedding_user_ids``: users whose embeddings need regenerating,
  either because the source text changed (content hash mismatch) or the
  vector is older than ``embedding_max_age_days``. Regeneration itself is
  done by the upstream embedding service.
- ``refresh_interaction_summaries``: recompute cached per-pair interaction
  aggregates for a batch of users.

Both work from their own reads and tolerate per-user failures.
"""

import hashlib
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from config.settings import Settings
from core.logging import get_logger
from core.utils import as_utc, utcnow
from matching.errors import SignalStoreError
from matching.interaction_cache import InteractionSummary, InteractionSummaryCache
from matching.models import CandidateProfile, EmbeddingKind, EmbeddingVector, MatchContext
from matching.store import SignalStore
from scoring.interaction_scorer import load_interaction_scores

logger = get_logger(__name__)


def embedding_source_text(profile: CandidateProfile, kind: EmbeddingKind) -> str:
    """Text an embedding of ``kind`` is generated from."""
    if kind == EmbeddingKind.BIO:
        return (profile.bio or "").strip()
    if kind == EmbeddingKind.SKILLS:
        return ", ".join(sorted(s.strip() for s in profile.skills if s and s.strip()))
    if kind == EmbeddingKind.INTERESTS:
        return ", ".join(sorted(i.strip() for i in profile.interests if i and i.strip()))
    parts = [
        embedding_source_text(profile, EmbeddingKind.BIO),
        embedding_source_text(profile, EmbeddingKind.SKILLS),
        embedding_source_text(profile, EmbeddingKind.INTERESTS),
    ]
    return "\n".join(p for p in parts if p)


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def stale_embedding_user_ids(
    store: SignalStore,
    user_ids: Sequence[str],
    now: Optional[datetime] = None,
    max_age_days: int = 7,
    kinds: Sequence[EmbeddingKind] = (EmbeddingKind.BIO, EmbeddingKind.SKILLS, EmbeddingKind.INTERESTS),
) -> List[str]:
    """
    Users with at least one missing, changed or expired embedding.

    A kind with no source text needs no embedding.
    """
    now = as_utc(now or utcnow())
    cutoff = now - timedelta(days=max_age_days)
    profiles = store.get_profiles(user_ids)
    stored: Dict[Tuple[str, EmbeddingKind], EmbeddingVector] = {
        (e.user_id, e.kind): e for e in store.get_embeddings(list(profiles))
    }

    stale = []
    for user_id in sorted(profiles):
        profile = profiles[user_id]
        for kind in kinds:
            text = embedding_source_text(profile, kind)
            if not text:
                continue
            embedding = stored.get((user_id, kind))
            if (
                embedding is None
                or embedding.content_hash != content_hash(text)
                or embedding.updated_at is None
                or as_utc(embedding.updated_at) < cutoff
            ):
                stale.append(user_id)
                break

    logger.info("Stale embedding scan finished", scanned=len(profiles), stale=len(stale))
    return stale


def refresh_interaction_summaries(
    store: SignalStore,
    cache: InteractionSummaryCache,
    user_ids: Sequence[str],
    settings: Settings,
    contexts: Sequence[MatchContext] = (MatchContext.PULSE, MatchContext.ZONE),
    now: Optional[datetime] = None,
) -> int:
    """
    Recompute and store interaction summaries over each user's default pool.

    Returns the number of summaries written.
    """
    now = as_utc(now or utcnow())
    written = 0
    for user_id in user_ids:
        try:
            pool = store.list_candidate_pool(user_id, settings.candidate_pool_limit)
            target_ids = [c.user_id for c in pool]
            for context in contexts:
                scores = load_interaction_scores(
                    store, user_id, target_ids, context, now, settings.interaction_lookback_days
                )
                cache.store(InteractionSummary(
                    user_id=user_id,
                    context=context,
                    computed_at=now,
                    scores=scores,
                    targets=frozenset(target_ids),
                ))
                written += 1
        except SignalStoreError as e:
            logger.warning("Interaction summary refresh failed", user_id=user_id, error=str(e))

    logger.info("Interaction summaries refreshed", users=len(user_ids), written=written)
    return written
