"""
cache/store.py -- In-process session auth cache.

Maps session id -> CacheEntry (an AuthSnapshot plus the bookkeeping needed to
decide when it is stale). The store is authoritative; this cache is always
disposable, and an empty map is a valid state.

Lookup protocol, in order:
  1. absent                                             -> miss
  2. older than TTL, or the session's expiry passed     -> evict, miss
  3. session check interval elapsed: re-read the session expiry from the
     store; gone or expired                             -> evict, miss
  4. policy check interval elapsed: re-read the user's policy_version;
     different from the cached one                      -> evict, miss
  5. otherwise                                          -> hit

Every touch sweeps out entries failing rule 2. When the map holds more than
max_entries, the single entry with the oldest cached_at is evicted.

Concurrency: no locks. Two requests missing on the same session may both
resolve and both put(); the snapshots are identical, so the last write wins
harmlessly. Iteration always runs over a copied item list.

The cache is instance-local. Several processes need session affinity or a
shared backing store.

Usage:
    cache = SessionAuthCache(store, ttl=300, policy_check_interval=30)
    cache.put(token, snapshot, session_expires_at=expiry_ts)
    entry = cache.get(token)        # CacheEntry or None
    cache.invalidate_user(user_id)  # immediate eviction of every session of a user
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuthSnapshot
from auth.store import AuthStore
from auth.tokens import parse_expiry, token_prefix

logger = logging.getLogger("orgguard.cache")

_DEFAULT_TTL = 300.0
_DEFAULT_POLICY_CHECK = 30.0
_DEFAULT_SESSION_CHECK = 60.0
_DEFAULT_MAX_ENTRIES = 20000

HIT = "hit"
MISS = "miss"
EXPIRED = "expired"
SESSION_MISSING = "session_missing"
SESSION_EXPIRED = "session_expired"
POLICY_VERSION_CHANGED = "policy_version_changed"
CHECK_FAILED = "check_failed"


@dataclass
class CacheEntry:
    snapshot: AuthSnapshot
    user_id: int
    policy_version: int
    session_expires_at: float  # POSIX timestamp
    cached_at: float
    last_policy_check_at: float
    last_session_check_at: float
    login_type: str = "password"
    employee_card_no: Optional[str] = None


@dataclass(frozen=True)
class CacheLookup:
    entry: Optional[CacheEntry]
    reason: str

    @property
    def hit(self) -> bool:
        return self.entry is not None


class SessionAuthCache:
    """Session-keyed cache of AuthSnapshots with TTL and two periodic re-checks.

    clock is injectable so tests can step time without sleeping.
    """

    def __init__(
        self,
        store: AuthStore,
        ttl: float = _DEFAULT_TTL,
        policy_check_interval: float = _DEFAULT_POLICY_CHECK,
        session_check_interval: float = _DEFAULT_SESSION_CHECK,
        max_entries: int = _DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.ttl = ttl
        self.policy_check_interval = policy_check_interval
        self.session_check_interval = session_check_interval
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._entries

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[CacheEntry]:
        """Return the cached entry for session_id, or None on any kind of miss."""
        return self.lookup(session_id).entry

    def lookup(self, session_id: str) -> CacheLookup:
        """Run the lookup protocol and report why a miss happened."""
        now = self._clock()
        result = self._lookup(session_id, now)
        self.sweep(now)
        return result

    def _lookup(self, session_id: str, now: float) -> CacheLookup:
        entry = self._entries.get(session_id)
        if entry is None:
            return self._miss(session_id, MISS)

        if self._is_expired(entry, now):
            self._entries.pop(session_id, None)
            return self._miss(session_id, EXPIRED)

        if now - entry.last_session_check_at >= self.session_check_interval:
            entry.last_session_check_at = now
            try:
                expires_at = self._store.get_session_expiry(session_id)
            except SQLAlchemyError as exc:
                logger.warning("Session re-check failed for %s: %s", token_prefix(session_id), exc)
                self._entries.pop(session_id, None)
                return self._miss(session_id, CHECK_FAILED)
            if expires_at is None:
                self._entries.pop(session_id, None)
                return self._miss(session_id, SESSION_MISSING)
            expires_ts = parse_expiry(expires_at)
            if expires_ts <= now:
                self._entries.pop(session_id, None)
                return self._miss(session_id, SESSION_EXPIRED)
            entry.session_expires_at = expires_ts

        if now - entry.last_policy_check_at >= self.policy_check_interval:
            entry.last_policy_check_at = now
            try:
                current = self._store.get_policy_version(entry.user_id)
            except SQLAlchemyError as exc:
                logger.warning("Policy version re-check failed for user_id=%s: %s", entry.user_id, exc)
                self._entries.pop(session_id, None)
                return self._miss(session_id, CHECK_FAILED)
            # A deleted user reads as None and never matches.
            if current != entry.policy_version:
                self._entries.pop(session_id, None)
                return self._miss(session_id, POLICY_VERSION_CHANGED)

        return CacheLookup(entry, HIT)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def put(
        self,
        session_id: str,
        snapshot: AuthSnapshot,
        session_expires_at: float,
        login_type: str = "password",
        employee_card_no: Optional[str] = None,
    ) -> CacheEntry:
        """Insert or overwrite the entry for session_id with fresh timestamps."""
        now = self._clock()
        entry = CacheEntry(
            snapshot=snapshot,
            user_id=snapshot.id,
            policy_version=snapshot.policy_version,
            session_expires_at=session_expires_at,
            cached_at=now,
            last_policy_check_at=now,
            last_session_check_at=now,
            login_type=login_type,
            employee_card_no=employee_card_no,
        )
        self._entries[session_id] = entry
        self.sweep(now)
        if len(self._entries) > self.max_entries:
            self._evict_oldest()
        return entry

    def invalidate(self, session_id: str) -> bool:
        """Evict one session. Returns True if it was cached."""
        return self._entries.pop(session_id, None) is not None

    def invalidate_user(self, user_id: int, session_ids: tuple[str, ...] | list[str] = ()) -> int:
        """Evict every cached session of user_id, plus any listed session ids.

        Callers pass the session ids the store knows for the user; cached
        entries for the user are found by scanning as well, so a session row
        deleted moments earlier cannot leave a stale entry behind.
        """
        evicted = 0
        for session_id in session_ids:
            if self._entries.pop(session_id, None) is not None:
                evicted += 1
        for session_id, entry in list(self._entries.items()):
            if entry.user_id == user_id and self._entries.pop(session_id, None) is not None:
                evicted += 1
        return evicted

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop every entry past its TTL or session expiry. Returns the count removed."""
        now = self._clock() if now is None else now
        removed = 0
        for session_id, entry in list(self._entries.items()):
            if self._is_expired(entry, now) and self._entries.pop(session_id, None) is not None:
                removed += 1
        return removed

    def clear(self) -> None:
        self._entries.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        if self.ttl > 0 and now - entry.cached_at > self.ttl:
            return True
        return entry.session_expires_at <= now

    def _evict_oldest(self) -> None:
        items = list(self._entries.items())
        if not items:
            return
        oldest_id, _ = min(items, key=lambda item: item[1].cached_at)
        self._entries.pop(oldest_id, None)
        logger.debug("Auth cache full (%d entries); evicted %s", len(items), token_prefix(oldest_id))

    def _miss(self, session_id: str, reason: str) -> CacheLookup:
        logger.debug("Auth cache miss for %s: %s", token_prefix(session_id), reason)
        return CacheLookup(None, reason)
