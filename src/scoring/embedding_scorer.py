"""
Embedding similarity signal.

Weighted cosine similarity over three embedding kinds:

    bio 0.40, skills 0.35, interests 0.25

Similarity is ``1 - cosine_distance`` clamped into [0, 1] (opposed vectors
score 0). Each sub-component falls back to 0.5 independently when either
side has no vector, the vectors disagree in dimension or have zero norm,
or the candidate has switched off matching on that field.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from config.constants import EMBEDDING_SCORING, SIGNAL_EMBEDDING
from core.utils import clamp
from matching.models import CandidateProfile, EmbeddingKind, PrivacySettings
from matching.store import SignalStore
from scoring.base import BaseSignalScorer
from scoring.context import ScoringRequest

# kind -> (sub-component weight, consent attribute)
_COMPONENTS: Tuple[Tuple[EmbeddingKind, float, str], ...] = (
    (EmbeddingKind.BIO, EMBEDDING_SCORING.BIO_WEIGHT, "allow_bio_matching"),
    (EmbeddingKind.SKILLS, EMBEDDING_SCORING.SKILLS_WEIGHT, "allow_skills_matching"),
    (EmbeddingKind.INTERESTS, EMBEDDING_SCORING.INTERESTS_WEIGHT, "allow_interests_matching"),
)


@dataclass
class EmbeddingData:
    vectors: Dict[Tuple[str, EmbeddingKind], np.ndarray] = field(default_factory=dict)
    consent: Dict[str, PrivacySettings] = field(default_factory=dict)


def cosine_similarity(a: Optional[np.ndarray], b: Optional[np.ndarray]) -> Optional[float]:
    """
    ``1 - cosine_distance`` clamped to [0, 1].

    Returns None when the pair can't be compared.
    """
    if a is None or b is None or a.shape != b.shape:
        return None
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0 or not np.isfinite(norm):
        return None
    return clamp(float(np.dot(a, b)) / norm)


class EmbeddingScorer(BaseSignalScorer):
    name = SIGNAL_EMBEDDING
    fallback = EMBEDDING_SCORING.MISSING_FALLBACK

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension

    def prepare(self, store: SignalStore, request: ScoringRequest) -> EmbeddingData:
        user_ids = [request.user_id] + request.candidate_ids
        vectors = {}
        for embedding in store.get_embeddings(user_ids):
            vector = embedding.to_array()
            if self.dimension and vector.shape != (self.dimension,):
                continue
            vectors[(embedding.user_id, embedding.kind)] = vector
        consent = {c.user_id: request.consent_for(c.user_id) for c in request.candidates}
        return EmbeddingData(vectors=vectors, consent=consent)

    def score(self, user: CandidateProfile, candidate: CandidateProfile, data: EmbeddingData) -> float:
        consent = data.consent.get(candidate.user_id) or PrivacySettings(user_id=candidate.user_id)
        total = 0.0
        for kind, weight, allow_attr in _COMPONENTS:
            similarity = None
            if getattr(consent, allow_attr):
                similarity = cosine_similarity(
                    data.vectors.get((user.user_id, kind)),
                    data.vectors.get((candidate.user_id, kind)),
                )
            total += weight * (self.fallback if similarity is None else similarity)
        return clamp(total)
