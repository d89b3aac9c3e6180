"""
Base class for the six signal scorers.

A scorer is split in two steps so all six can be fanned out together:

- ``prepare(store, request)``: batch read of whatever the signal needs for
  the whole candidate pool. The only step that touches the store.
- ``score(user, candidate, data)``: pure function of its inputs, returning
  a value in [0, 1].

If ``prepare`` fails the orchestrator uses ``fallback`` for every
candidate; if ``score`` fails it uses ``fallback`` for that candidate only.
"""

from abc import ABC, abstractmethod
from typing import Any

from matching.models import CandidateProfile
from matching.store import SignalStore
from scoring.context import ScoringRequest


class BaseSignalScorer(ABC):
    """One independently computable signal."""

    name: str = ""
    fallback: float = 0.0

    def prepare(self, store: SignalStore, request: ScoringRequest) -> Any:
        """Load batch data for ``request``. Default: pure profile scorer, nothing to load."""
        return request

    @abstractmethod
    def score(self, user: CandidateProfile, candidate: CandidateProfile, data: Any) -> float:
        """Score ``candidate`` for ``user`` in [0, 1]."""
