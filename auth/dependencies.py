"""
auth/dependencies.py -- FastAPI Depends() gates for session auth and policies.

The session token is read from the configured header (default
"Authorization: Bearer <token>"), falling back to "X-Session-Token".

get_auth_context() is the soft variant: it resolves the session once per
request, stores the RequestContext on request.state.auth, and returns None on
failure. require_authenticated() wraps it and raises Unauthenticated.
require_policy(key) builds a gate for one policy key.

Layer rule: no imports from api/ or rbac/. The SessionService and the audit
emitter are read from request.app.state, wired in api/main.py lifespan.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import Depends, Request

from auth.models import RequestContext
from core.config import get_settings
from core.errors import ForbiddenNoPolicy, Unauthenticated
from core.policies import ensure_known_policy

_FALLBACK_HEADER = "X-Session-Token"


def get_session_token(request: Request) -> Optional[str]:
    """Return the bearer session token presented on the request, or None."""
    raw = request.headers.get(get_settings().session_header, "")
    if raw.startswith("Bearer "):
        raw = raw[7:]
    token = raw.strip() or request.headers.get(_FALLBACK_HEADER, "").strip()
    return token or None


def get_auth_context(request: Request) -> RequestContext | None:
    """Resolve the session behind the request. Never raises for a bad token.

    StoreUnavailable still propagates: "could not check" is not "not logged in".
    """
    if hasattr(request.state, "auth"):
        return request.state.auth
    context = request.app.state.sessions.resolve_session(get_session_token(request))
    request.state.auth = context
    return context


def require_authenticated(context: Optional[RequestContext] = Depends(get_auth_context)) -> RequestContext:
    """Fail closed when no snapshot is attached to the request.

    Use as a FastAPI dependency:
        @router.get("/me")
        def route(ctx: RequestContext = Depends(require_authenticated)): ...
    """
    if context is None:
        raise Unauthenticated()
    return context


def require_policy(key: str) -> Callable[..., RequestContext]:
    """Build a dependency that requires policy `key`.

    The key is checked against the catalog here, when the route is declared,
    so an unknown key raises UnknownPolicyError at import time.

    SuperAdmin passes without the policy; the bypass is audited once per
    request, however many gates it passes.
    """
    ensure_known_policy(key)

    def _gate(request: Request, context: RequestContext = Depends(require_authenticated)) -> RequestContext:
        snapshot = context.snapshot
        if snapshot.is_super_admin:
            # Router-level and route-level gates share one request; audit once.
            if not snapshot.has_policy(key) and not getattr(request.state, "bypass_audited", False):
                request.state.bypass_audited = True
                request.app.state.audit.record_bypass(
                    snapshot.id,
                    "require_policy",
                    policy=key,
                    path=request.url.path,
                )
            return context
        if not snapshot.has_policy(key):
            raise ForbiddenNoPolicy(f"Missing required policy: {key}", detail={"required_policy": key})
        return context

    _gate.__name__ = f"require_policy_{key.replace('.', '_')}"
    return _gate
