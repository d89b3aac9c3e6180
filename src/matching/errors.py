"""
Error taxonomy for the matching core.

- InvalidRequestError: rejected before any data access
- SignalStoreError: one read failed; scorers degrade, pool reads escalate
- ExperimentConfigError: resolved to the control variant, never surfaced
- CandidatePoolUnavailableError: fatal for the call, retryable by the caller
"""

from typing import Optional


class MatchingError(Exception):
    """Base class for matching errors."""

    retryable: bool = False


class InvalidRequestError(MatchingError, ValueError):
    """Malformed ranking/explanation input (bad context, ids, limit, offset)."""


class SignalStoreError(MatchingError):
    """A read against the signal store failed."""

    def __init__(self, operation: str, cause: Optional[Exception] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Signal store read failed ({operation}){detail}")


class ExperimentConfigError(MatchingError):
    """Experiment definition cannot be used (allocations, weights, variants)."""


class CandidatePoolUnavailableError(MatchingError):
    """
    The candidate pool, or the privacy data required to filter it, could not
    be read. Returned to callers instead of an empty ranking.
    """

    retryable = True
