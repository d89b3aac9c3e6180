"""
Signal Store Adapter.

Read-only access to everything the scorers and the privacy filter need:
profiles, embeddings, interaction events, signal weights, privacy
settings, blocks, the follow graph, event check-ins, session bookmarks
and pending meeting requests.

Two implementations:
1. InMemorySignalStore: for development/testing (default in unit tests)
2. SupabaseSignalStore: production, reads the application tables

Every read failure surfaces as ``SignalStoreError`` so callers can decide
between degrading one signal and failing the call.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from supabase import Client

from config.constants import IN_FILTER_CHUNK_SIZE, TABLES
from core.logging import get_logger
from core.utils import as_utc, chunk_list, parse_timestamp, to_vector
from matching.errors import SignalStoreError
from matching.models import (
    CandidateProfile,
    EmbeddingKind,
    EmbeddingVector,
    InteractionEvent,
    InteractionEventType,
    MatchFilters,
    PrivacySettings,
    SignalWeight,
)

logger = get_logger(__name__)


# =============================================================================
# Interface
# =============================================================================

class SignalStore(ABC):
    """Narrow read-only data-access capability used by the matching core."""

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[CandidateProfile]:
        """Profile snapshot for one user, or None."""

    @abstractmethod
    def get_profiles(self, user_ids: Sequence[str]) -> Dict[str, CandidateProfile]:
        """Profile snapshots keyed by user id (missing ids are omitted)."""

    @abstractmethod
    def list_candidate_pool(
        self,
        user_id: str,
        limit: int,
        event_id: Optional[str] = None,
        filters: Optional[MatchFilters] = None,
    ) -> List[CandidateProfile]:
        """
        Raw candidate pool for ``user_id``, before privacy filtering.

        With ``event_id`` the pool is restricted to users checked in to
        that event. ``filters`` apply before ``limit`` cuts the pool.
        """

    @abstractmethod
    def get_embeddings(self, user_ids: Sequence[str]) -> List[EmbeddingVector]:
        """All stored embeddings (any kind) for the given users."""

    @abstractmethod
    def get_interactions(
        self,
        actor_ids: Sequence[str],
        target_ids: Sequence[str],
        since: datetime,
        event_types: Optional[Iterable[InteractionEventType]] = None,
    ) -> List[InteractionEvent]:
        """Events with actor in ``actor_ids`` and target in ``target_ids`` after ``since``."""

    @abstractmethod
    def get_signal_weights(self) -> List[SignalWeight]:
        """Active per-event-type signal weights."""

    @abstractmethod
    def get_privacy_settings(self, user_ids: Sequence[str]) -> Dict[str, PrivacySettings]:
        """Privacy rows keyed by user id; users without a row are omitted."""

    @abstractmethod
    def get_blocked_user_ids(self, user_id: str) -> Set[str]:
        """Users blocked by ``user_id`` plus users who blocked ``user_id``."""

    @abstractmethod
    def get_following(self, user_id: str) -> Set[str]:
        """Users ``user_id`` follows with an accepted status."""

    @abstractmethod
    def get_followers(self, user_id: str) -> Set[str]:
        """Users following ``user_id`` with an accepted status."""

    @abstractmethod
    def get_event_checkins(
        self,
        event_id: str,
        user_ids: Optional[Sequence[str]] = None,
    ) -> Dict[str, Optional[datetime]]:
        """
        Checked-in users for one event, mapped to their check-in time.

        A user is checked in when present as a key; the time is None when
        the row carries no timestamp.
        """

    @abstractmethod
    def get_session_bookmarks(
        self,
        event_id: str,
        user_ids: Sequence[str],
    ) -> Dict[str, Set[str]]:
        """Bookmarked session ids per user within one event."""

    @abstractmethod
    def get_pending_meeting_requests(
        self,
        requester_ids: Sequence[str],
        target_id: str,
    ) -> Set[str]:
        """Subset of ``requester_ids`` with a pending meeting request to ``target_id``."""


# =============================================================================
# In-Memory Store (Default for tests / local development)
# =============================================================================

class InMemorySignalStore(SignalStore):
    """
    Dictionary-backed store.

    Note: data lives only for the process lifetime. Populate it through
    the ``add_*`` methods.
    """

    def __init__(self):
        self._lock = Lock()
        self._profiles: Dict[str, CandidateProfile] = {}
        self._embeddings: Dict[Tuple[str, EmbeddingKind], EmbeddingVector] = {}
        self._events: List[InteractionEvent] = []
        self._weights: Dict[str, SignalWeight] = {}
        self._privacy: Dict[str, PrivacySettings] = {}
        self._blocks: Set[Tuple[str, str]] = set()
        self._follows: Dict[Tuple[str, str], str] = {}
        self._checkins: Dict[str, Dict[str, Optional[datetime]]] = {}
        self._bookmarks: Dict[Tuple[str, str], Set[str]] = {}
        self._meetings: Dict[Tuple[str, str], str] = {}

    # ── Writers (test/dev setup) ───────────────────────────────────

    def add_profile(self, profile: CandidateProfile) -> None:
        with self._lock:
            self._profiles[profile.user_id] = profile

    def add_embedding(self, embedding: EmbeddingVector) -> None:
        with self._lock:
            self._embeddings[(embedding.user_id, embedding.kind)] = embedding

    def add_event(self, event: InteractionEvent) -> None:
        with self._lock:
            self._events.append(event)

    def add_signal_weight(self, weight: SignalWeight) -> None:
        with self._lock:
            self._weights[weight.signal_name] = weight

    def add_privacy_settings(self, settings: PrivacySettings) -> None:
        with self._lock:
            self._privacy[settings.user_id] = settings

    def add_block(self, blocker_id: str, blocked_id: str) -> None:
        with self._lock:
            self._blocks.add((blocker_id, blocked_id))

    def add_follow(self, follower_id: str, following_id: str, status: str = "accepted") -> None:
        with self._lock:
            self._follows[(follower_id, following_id)] = status

    def add_checkin(self, event_id: str, user_id: str, checked_in_at: Optional[datetime] = None) -> None:
        with self._lock:
            self._checkins.setdefault(event_id, {})[user_id] = parse_timestamp(checked_in_at)

    def add_bookmark(self, event_id: str, user_id: str, session_id: str) -> None:
        with self._lock:
            self._bookmarks.setdefault((event_id, user_id), set()).add(session_id)

    def add_meeting_request(self, requester_id: str, target_id: str, status: str = "pending") -> None:
        with self._lock:
            self._meetings[(requester_id, target_id)] = status

    # ── Readers ────────────────────────────────────────────────────

    def get_profile(self, user_id: str) -> Optional[CandidateProfile]:
        return self._profiles.get(user_id)

    def get_profiles(self, user_ids: Sequence[str]) -> Dict[str, CandidateProfile]:
        return {uid: self._profiles[uid] for uid in user_ids if uid in self._profiles}

    def list_candidate_pool(
        self,
        user_id: str,
        limit: int,
        event_id: Optional[str] = None,
        filters: Optional[MatchFilters] = None,
    ) -> List[CandidateProfile]:
        allowed = set(self._checkins.get(event_id, {})) if event_id else None
        pool = [
            p for uid, p in sorted(self._profiles.items())
            if uid != user_id
            and (allowed is None or uid in allowed)
            and (filters is None or filters.matches(p))
        ]
        return pool[:limit]

    def get_embeddings(self, user_ids: Sequence[str]) -> List[EmbeddingVector]:
        wanted = set(user_ids)
        return [e for (uid, _), e in self._embeddings.items() if uid in wanted]

    def get_interactions(
        self,
        actor_ids: Sequence[str],
        target_ids: Sequence[str],
        since: datetime,
        event_types: Optional[Iterable[InteractionEventType]] = None,
    ) -> List[InteractionEvent]:
        actors, targets = set(actor_ids), set(target_ids)
        types = set(event_types) if event_types is not None else None
        return [
            e for e in self._events
            if e.actor_id in actors
            and e.target_id in targets
            and e.created_at >= as_utc(since)
            and (types is None or e.event_type in types)
        ]

    def get_signal_weights(self) -> List[SignalWeight]:
        return [w for w in self._weights.values() if w.is_active]

    def get_privacy_settings(self, user_ids: Sequence[str]) -> Dict[str, PrivacySettings]:
        return {uid: self._privacy[uid] for uid in user_ids if uid in self._privacy}

    def get_blocked_user_ids(self, user_id: str) -> Set[str]:
        blocked = set()
        for blocker, target in self._blocks:
            if blocker == user_id:
                blocked.add(target)
            elif target == user_id:
                blocked.add(blocker)
        return blocked

    def get_following(self, user_id: str) -> Set[str]:
        return {f for (u, f), s in self._follows.items() if u == user_id and s == "accepted"}

    def get_followers(self, user_id: str) -> Set[str]:
        return {u for (u, f), s in self._follows.items() if f == user_id and s == "accepted"}

    def get_event_checkins(
        self,
        event_id: str,
        user_ids: Optional[Sequence[str]] = None,
    ) -> Dict[str, Optional[datetime]]:
        checkins = self._checkins.get(event_id, {})
        if user_ids is None:
            return dict(checkins)
        return {uid: checkins[uid] for uid in user_ids if uid in checkins}

    def get_session_bookmarks(
        self,
        event_id: str,
        user_ids: Sequence[str],
    ) -> Dict[str, Set[str]]:
        result = {}
        for uid in user_ids:
            sessions = self._bookmarks.get((event_id, uid))
            if sessions:
                result[uid] = set(sessions)
        return result

    def get_pending_meeting_requests(
        self,
        requester_ids: Sequence[str],
        target_id: str,
    ) -> Set[str]:
        return {
            rid for rid in requester_ids
            if self._meetings.get((rid, target_id)) == "pending"
        }


# =============================================================================
# Supabase Store (Production)
# =============================================================================

_PROFILE_COLUMNS = (
    "user_id, full_name, headline, bio, organization, skills, interests, "
    "looking_for, is_online, is_verified, is_premium, is_private, "
    "created_at, updated_at"
)


def profile_from_row(row: Dict[str, Any]) -> CandidateProfile:
    """Build a CandidateProfile from an ``impact_profiles`` row."""
    return CandidateProfile(
        user_id=str(row["user_id"]),
        full_name=row.get("full_name"),
        headline=row.get("headline"),
        bio=row.get("bio"),
        organization=row.get("organization"),
        skills=row.get("skills"),
        interests=row.get("interests"),
        looking_for=row.get("looking_for"),
        is_online=row.get("is_online"),
        is_verified=row.get("is_verified"),
        is_premium=row.get("is_premium"),
        is_private=row.get("is_private"),
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


class SupabaseSignalStore(SignalStore):
    """
    Reads signal data from Supabase (PostgREST).

    All ``.in_()`` filters are chunked to ``IN_FILTER_CHUNK_SIZE`` ids.
    """

    def __init__(self, supabase: Optional[Client] = None):
        if supabase is None:
            from config.database import get_supabase_client
            supabase = get_supabase_client()
        self._supabase = supabase

    # ── Helpers ────────────────────────────────────────────────────

    def _rows(self, operation: str, build: Callable[[], Any]) -> List[Dict[str, Any]]:
        """Execute a query builder, converting any failure to SignalStoreError."""
        try:
            result = build().execute()
        except Exception as e:
            raise SignalStoreError(operation, e) from e
        return result.data or []

    def _rows_chunked(
        self,
        operation: str,
        ids: Sequence[str],
        build: Callable[[List[str]], Any],
    ) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for chunk in chunk_list(list(ids), IN_FILTER_CHUNK_SIZE):
            rows.extend(self._rows(operation, lambda c=chunk: build(c)))
        return rows

    # ── Profiles ───────────────────────────────────────────────────

    def get_profile(self, user_id: str) -> Optional[CandidateProfile]:
        rows = self._rows(
            "get_profile",
            lambda: self._supabase.table(TABLES.PROFILES)
            .select(_PROFILE_COLUMNS)
            .eq("user_id", user_id)
            .limit(1),
        )
        return profile_from_row(rows[0]) if rows else None

    def get_profiles(self, user_ids: Sequence[str]) -> Dict[str, CandidateProfile]:
        rows = self._rows_chunked(
            "get_profiles",
            user_ids,
            lambda chunk: self._supabase.table(TABLES.PROFILES)
            .select(_PROFILE_COLUMNS)
            .in_("user_id", chunk),
        )
        return {str(r["user_id"]): profile_from_row(r) for r in rows}

    def list_candidate_pool(
        self,
        user_id: str,
        limit: int,
        event_id: Optional[str] = None,
        filters: Optional[MatchFilters] = None,
    ) -> List[CandidateProfile]:
        if filters is not None and filters.is_empty:
            filters = None

        if event_id:
            attendee_ids = [
                uid for uid in self.get_event_checkins(event_id) if uid != user_id
            ]
            profiles = self.get_profiles(attendee_ids)
            pool = [profiles[uid] for uid in sorted(profiles)]
            if filters is not None:
                pool = [p for p in pool if filters.matches(p)]
            return pool[:limit]

        def query():
            q = (
                self._supabase.table(TABLES.PROFILES)
                .select(_PROFILE_COLUMNS)
                .neq("user_id", user_id)
            )
            if filters is not None:
                if filters.online_only:
                    q = q.eq("is_online", True)
                if filters.skills:
                    q = q.overlaps("skills", filters.skills)
                if filters.interests:
                    q = q.overlaps("interests", filters.interests)
            return q.order("user_id").limit(limit)

        rows = self._rows("list_candidate_pool", query)
        return [profile_from_row(r) for r in rows]

    # ── Embeddings ─────────────────────────────────────────────────

    def get_embeddings(self, user_ids: Sequence[str]) -> List[EmbeddingVector]:
        rows = self._rows_chunked(
            "get_embeddings",
            user_ids,
            lambda chunk: self._supabase.table(TABLES.EMBEDDINGS)
            .select("user_id, embedding_type, embedding, content_hash, updated_at")
            .in_("user_id", chunk),
        )
        embeddings = []
        for row in rows:
            vector = to_vector(row.get("embedding"))
            if vector is None:
                continue
            try:
                kind = EmbeddingKind(row.get("embedding_type"))
            except ValueError:
                logger.debug("Skipping unknown embedding kind", kind=row.get("embedding_type"))
                continue
            embeddings.append(EmbeddingVector(
                user_id=str(row["user_id"]),
                kind=kind,
                vector=vector.tolist(),
                content_hash=row.get("content_hash"),
                updated_at=parse_timestamp(row.get("updated_at")),
            ))
        return embeddings

    # ── Interactions ───────────────────────────────────────────────

    def get_interactions(
        self,
        actor_ids: Sequence[str],
        target_ids: Sequence[str],
        since: datetime,
        event_types: Optional[Iterable[InteractionEventType]] = None,
    ) -> List[InteractionEvent]:
        if not actor_ids or not target_ids:
            return []
        types = [t.value for t in event_types] if event_types is not None else None

        # Chunk over the larger side; the smaller side fits in one filter
        chunk_actors = len(actor_ids) >= len(target_ids)
        fixed = list(target_ids if chunk_actors else actor_ids)

        def build(chunk: List[str]):
            query = (
                self._supabase.table(TABLES.INTERACTIONS)
                .select("user_id, target_user_id, event_type, created_at, metadata")
                .in_("user_id", chunk if chunk_actors else fixed)
                .in_("target_user_id", fixed if chunk_actors else chunk)
                .gte("created_at", since.isoformat())
            )
            if types is not None:
                query = query.in_("event_type", types)
            return query

        rows = self._rows_chunked(
            "get_interactions",
            actor_ids if chunk_actors else target_ids,
            build,
        )
        events = []
        for row in rows:
            created_at = parse_timestamp(row.get("created_at"))
            try:
                event_type = InteractionEventType(row.get("event_type"))
            except ValueError:
                continue
            if created_at is None:
                continue
            events.append(InteractionEvent(
                actor_id=str(row["user_id"]),
                target_id=str(row["target_user_id"]),
                event_type=event_type,
                created_at=created_at,
                metadata=row.get("metadata") or {},
            ))
        return events

    def get_signal_weights(self) -> List[SignalWeight]:
        rows = self._rows(
            "get_signal_weights",
            lambda: self._supabase.table(TABLES.SIGNAL_WEIGHTS)
            .select("signal_name, pulse_weight, zone_weight, decay_half_life_days, is_active, updated_at")
            .eq("is_active", True),
        )
        weights = []
        for row in rows:
            if not row.get("decay_half_life_days") or row["decay_half_life_days"] <= 0:
                logger.warning("Ignoring signal weight with bad half-life", signal=row.get("signal_name"))
                continue
            weights.append(SignalWeight(
                signal_name=row["signal_name"],
                pulse_weight=float(row.get("pulse_weight") or 0.0),
                zone_weight=float(row.get("zone_weight") or 0.0),
                decay_half_life_days=float(row["decay_half_life_days"]),
                is_active=bool(row.get("is_active", True)),
                updated_at=parse_timestamp(row.get("updated_at")),
            ))
        return weights

    # ── Privacy & graph ────────────────────────────────────────────

    def get_privacy_settings(self, user_ids: Sequence[str]) -> Dict[str, PrivacySettings]:
        rows = self._rows_chunked(
            "get_privacy_settings",
            user_ids,
            lambda chunk: self._supabase.table(TABLES.PRIVACY)
            .select("*")
            .in_("user_id", chunk),
        )
        settings = {}
        for row in rows:
            # Null columns fall back to the model defaults
            fields = {k: v for k, v in row.items() if v is not None and k in PrivacySettings.model_fields}
            settings[str(row["user_id"])] = PrivacySettings(**fields)
        return settings

    def get_blocked_user_ids(self, user_id: str) -> Set[str]:
        outgoing = self._rows(
            "get_blocked_user_ids",
            lambda: self._supabase.table(TABLES.BLOCKS)
            .select("blocked_user_id")
            .eq("user_id", user_id),
        )
        incoming = self._rows(
            "get_blocked_user_ids",
            lambda: self._supabase.table(TABLES.BLOCKS)
            .select("user_id")
            .eq("blocked_user_id", user_id),
        )
        return (
            {str(r["blocked_user_id"]) for r in outgoing}
            | {str(r["user_id"]) for r in incoming}
        )

    def get_following(self, user_id: str) -> Set[str]:
        rows = self._rows(
            "get_following",
            lambda: self._supabase.table(TABLES.FOLLOWS)
            .select("following_id")
            .eq("follower_id", user_id)
            .eq("status", "accepted"),
        )
        return {str(r["following_id"]) for r in rows}

    def get_followers(self, user_id: str) -> Set[str]:
        rows = self._rows(
            "get_followers",
            lambda: self._supabase.table(TABLES.FOLLOWS)
            .select("follower_id")
            .eq("following_id", user_id)
            .eq("status", "accepted"),
        )
        return {str(r["follower_id"]) for r in rows}

    # ── Events ─────────────────────────────────────────────────────

    def get_event_checkins(
        self,
        event_id: str,
        user_ids: Optional[Sequence[str]] = None,
    ) -> Dict[str, Optional[datetime]]:
        def base():
            return (
                self._supabase.table(TABLES.CHECKINS)
                .select("user_id, checked_in_at")
                .eq("event_id", event_id)
            )

        if user_ids is None:
            rows = self._rows("get_event_checkins", base)
        else:
            rows = self._rows_chunked(
                "get_event_checkins",
                user_ids,
                lambda chunk: base().in_("user_id", chunk),
            )
        return {str(row["user_id"]): parse_timestamp(row.get("checked_in_at")) for row in rows}

    def get_session_bookmarks(
        self,
        event_id: str,
        user_ids: Sequence[str],
    ) -> Dict[str, Set[str]]:
        rows = self._rows_chunked(
            "get_session_bookmarks",
            user_ids,
            lambda chunk: self._supabase.table(TABLES.BOOKMARKS)
            .select("user_id, session_id")
            .eq("event_id", event_id)
            .in_("user_id", chunk),
        )
        bookmarks: Dict[str, Set[str]] = {}
        for row in rows:
            bookmarks.setdefault(str(row["user_id"]), set()).add(str(row["session_id"]))
        return bookmarks

    def get_pending_meeting_requests(
        self,
        requester_ids: Sequence[str],
        target_id: str,
    ) -> Set[str]:
        rows = self._rows_chunked(
            "get_pending_meeting_requests",
            requester_ids,
            lambda chunk: self._supabase.table(TABLES.MEETINGS)
            .select("requester_id")
            .eq("target_id", target_id)
            .eq("status", "pending")
            .in_("requester_id", chunk),
        )
        return {str(r["requester_id"]) for r in rows}
