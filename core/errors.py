"""
core/errors.py -- Authorization error taxonomy.

Every failure the engine reports to a caller is one of these classes. Each
carries the HTTP status the API layer renders, a stable machine-readable code,
and an optional detail payload. Route handlers raise them; api/main.py turns
them into the shared ErrorResponse envelope.

Authorization failures are terminal for the request. StoreUnavailable is the
only retryable class: the store could not be reached, so nothing was decided.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/, or rbac/.
"""

from __future__ import annotations

from typing import Any


class AuthorizationError(Exception):
    status_code: int = 403
    code: str = "forbidden"

    def __init__(self, message: str, detail: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class Unauthenticated(AuthorizationError):
    """Missing, invalid, or expired session."""

    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Authentication required.", detail: Any = None) -> None:
        super().__init__(message, detail)


class ForbiddenNoPolicy(AuthorizationError):
    """Authenticated, but lacks the required policy."""

    code = "missing_policy"


class ForbiddenOrgScope(AuthorizationError):
    """Target lies outside the actor's accessible org units."""

    code = "org_out_of_scope"


class ForbiddenEscalation(AuthorizationError):
    """Actor tried to grant a privileged policy they do not hold themselves."""

    code = "privilege_escalation_prevention"

    def __init__(self, message: str, missing_policies: list[str]) -> None:
        super().__init__(message, detail={"missing_policies": missing_policies})
        self.missing_policies = missing_policies


class NotFound(AuthorizationError):
    status_code = 404
    code = "not_found"


class Conflict(AuthorizationError):
    status_code = 409
    code = "conflict"


class InvalidRequest(AuthorizationError):
    """Semantically invalid input that passed schema validation (e.g. inactive policy ids)."""

    status_code = 422
    code = "invalid_request"


class StoreUnavailable(AuthorizationError):
    """The authoritative store could not be reached. Retry the whole request."""

    status_code = 503
    code = "store_unavailable"

    def __init__(self, message: str = "Authorization store unavailable. Retry later.", detail: Any = None) -> None:
        super().__init__(message, detail)
