"""
auth/sessions.py -- Session lifecycle and the cached request-path resolution.

SessionService is the one entry point the request layer uses:
  authenticate()        credentials -> AuthSnapshot | None
  login()               credentials -> new session token + snapshot
  resolve_session()     bearer token -> RequestContext | None (cache first)
  logout()              delete one session row and its cache entry
  logout_all()          delete every session row of a user and evict them
  invalidate_session()  evict one cache entry, keep the row
  invalidate_all_sessions_for_user()
                        evict every cached session of a user immediately
  purge_expired()       delete expired session rows

The cache is never a hard dependency. A cache failure is logged and the
request falls through to full resolution; it never fails open.

Logout deletes the row before evicting. A request that read the row just
before the delete can still put its snapshot back afterwards; that entry
serves at most until its next session check (session_check_interval), which
finds the row gone and evicts it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import OperationalError

from auth.models import AuthSnapshot, RequestContext, Session
from auth.resolver import resolve_snapshot
from auth.store import AuthStore
from auth.tokens import authenticate_user, generate_session_token, parse_expiry, session_expiry, token_prefix
from cache.store import SessionAuthCache
from core.errors import StoreUnavailable

logger = logging.getLogger("orgguard.auth")

LOGIN_TYPES = ("password", "employee")


@dataclass(frozen=True)
class LoginResult:
    token: str
    snapshot: AuthSnapshot
    expires_at: str
    login_type: str = "password"


class SessionService:
    def __init__(self, store: AuthStore, cache: SessionAuthCache, session_ttl_days: int = 7) -> None:
        self._store = store
        self.cache = cache
        self.session_ttl_days = session_ttl_days

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def authenticate(self, identifier: str, secret: str) -> AuthSnapshot | None:
        try:
            user = authenticate_user(self._store, identifier, secret)
        except OperationalError as exc:
            raise StoreUnavailable() from exc
        if user is None:
            return None
        return resolve_snapshot(self._store, user.id)

    def login(
        self,
        identifier: str,
        secret: str,
        login_type: str = "password",
        employee_card_no: Optional[str] = None,
    ) -> LoginResult | None:
        """Authenticate, issue a session row, and prime the cache.

        login_type only classifies the session. It never grants anything.
        """
        if login_type not in LOGIN_TYPES:
            raise ValueError(f"Unknown login type: {login_type!r}")
        snapshot = self.authenticate(identifier, secret)
        if snapshot is None:
            return None

        token = generate_session_token()
        expires_at = session_expiry(self.session_ttl_days)
        try:
            self._store.create_session(
                Session(
                    id=token,
                    user_id=snapshot.id,
                    expires_at=expires_at,
                    login_type=login_type,
                    employee_card_no=employee_card_no,
                )
            )
        except OperationalError as exc:
            raise StoreUnavailable() from exc
        self._cache_put(token, snapshot, expires_at, login_type, employee_card_no)
        logger.info("Session issued for user_id=%s (%s): %s", snapshot.id, login_type, token_prefix(token))
        return LoginResult(token=token, snapshot=snapshot, expires_at=expires_at, login_type=login_type)

    # ------------------------------------------------------------------
    # Request path
    # ------------------------------------------------------------------

    def resolve_session(self, token: Optional[str]) -> RequestContext | None:
        """Return the RequestContext for a bearer token, or None if it is not a live session."""
        if not token:
            return None

        try:
            entry = self.cache.get(token)
        except Exception:
            logger.exception("Auth cache lookup failed for %s; resolving from store", token_prefix(token))
            entry = None
        if entry is not None:
            return RequestContext(
                snapshot=entry.snapshot,
                session_id=token,
                login_type=entry.login_type,
                employee_card_no=entry.employee_card_no,
                from_cache=True,
            )

        try:
            session = self._store.get_session(token)
        except OperationalError as exc:
            logger.error("Session lookup failed: %s", exc)
            raise StoreUnavailable() from exc
        if session is None:
            return None
        if parse_expiry(session.expires_at) <= time.time():
            logger.debug("Session %s expired", token_prefix(token))
            return None

        snapshot = resolve_snapshot(self._store, session.user_id)
        if snapshot is None:
            return None
        self._cache_put(token, snapshot, session.expires_at, session.login_type, session.employee_card_no)
        return RequestContext(
            snapshot=snapshot,
            session_id=token,
            login_type=session.login_type,
            employee_card_no=session.employee_card_no,
        )

    # ------------------------------------------------------------------
    # Termination and invalidation
    # ------------------------------------------------------------------

    def logout(self, token: str) -> bool:
        """Delete the session row, then evict its cache entry."""
        deleted = self._store.delete_session(token)
        self.cache.invalidate(token)
        return deleted

    def logout_all(self, user_id: int) -> list[str]:
        """Delete every session row of user_id and evict them. Returns the deleted ids."""
        deleted = self._store.delete_sessions_for_user(user_id)
        self.cache.invalidate_user(user_id, deleted)
        logger.info("Logged out %d session(s) of user_id=%s", len(deleted), user_id)
        return deleted

    def invalidate_session(self, token: str) -> bool:
        return self.cache.invalidate(token)

    def invalidate_all_sessions_for_user(self, user_id: int) -> int:
        """Evict every cached session of user_id now. Session rows stay; the next request re-resolves."""
        session_ids = self._store.list_session_ids(user_id)
        evicted = self.cache.invalidate_user(user_id, session_ids)
        logger.debug("Evicted %d cached session(s) of user_id=%s", evicted, user_id)
        return evicted

    def purge_expired(self) -> int:
        removed = self._store.purge_expired_sessions()
        self.cache.sweep()
        if removed:
            logger.info("Purged %d expired session(s)", removed)
        return removed

    def _cache_put(
        self,
        token: str,
        snapshot: AuthSnapshot,
        expires_at: str,
        login_type: str,
        employee_card_no: Optional[str],
    ) -> None:
        try:
            self.cache.put(
                token,
                snapshot,
                session_expires_at=parse_expiry(expires_at),
                login_type=login_type,
                employee_card_no=employee_card_no,
            )
        except Exception:
            logger.exception("Auth cache write failed for %s", token_prefix(token))
