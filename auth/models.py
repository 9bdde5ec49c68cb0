"""
auth/models.py -- Domain dataclasses for identities, RBAC records, and snapshots.

Pattern: Data class (pure data container, zero logic beyond read-only helpers).
Stores and services do the work; these classes own the domain shape.

Record classes (User, Role, Policy, OrgUnit, Session, AuditEntry) mirror rows in
the authoritative store. AuthSnapshot is derived: it is a pure function of a
user, the user's roles, those roles' active policies, and the org-unit tree at
one point in time. It is frozen and never edited after construction.

Layer rule: no imports from api/, cache/, or rbac/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class User:
    """An identity that can hold roles.

    policy_version only ever increases. Every mutation that changes what the
    user may do bumps it, which is how cached snapshots learn they are stale.

    is_super_admin is an explicit flag. It is never inferred from role names,
    login method, or e-mail address.
    """

    email: str
    name: str
    id: Optional[int] = None
    hashed_password: Optional[str] = None
    org_unit_id: Optional[int] = None
    employee_id: Optional[str] = None
    policy_version: int = 1
    is_super_admin: bool = False
    is_active: bool = True
    created_at: Optional[str] = None


@dataclass
class Policy:
    key: str  # immutable after creation
    id: Optional[int] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True
    created_at: Optional[str] = None


@dataclass
class Role:
    name: str
    id: Optional[int] = None
    description: Optional[str] = None
    level: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class OrgUnit:
    """Node in the organizational tree. parent_id is None for a root.

    The tree must stay acyclic; that is an operator invariant, not something
    the engine repairs.
    """

    name: str
    code: str
    id: Optional[int] = None
    parent_id: Optional[int] = None
    type: Optional[str] = None  # "company" | "region" | "branch" | ...
    level: int = 0


@dataclass
class Session:
    """A server-issued login. id is the opaque bearer token."""

    id: str
    user_id: int
    expires_at: str  # ISO 8601, UTC
    login_type: str = "password"  # "password" | "employee"
    employee_card_no: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class AuditEntry:
    """Append-only record of one RBAC mutation. Never updated or deleted."""

    actor_user_id: Optional[int]
    action: str  # "create" | "update" | "delete" | "assign" | "remove" | "logout_all" | "bypass"
    entity: str  # "role" | "policy" | "role_policy" | "user_role" | "user" | "session"
    entity_id: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class RoleRef:
    id: int
    name: str


@dataclass(frozen=True)
class AuthSnapshot:
    """Resolved, cacheable projection of a user's roles, policies, and org scope.

    policies holds only active policies, deduplicated and sorted.
    accessible_org_unit_ids is the user's own unit plus all descendants
    (empty when the user has no org unit).
    policy_version is the version read in the same row as the identity, so a
    concurrent mutation can only make the snapshot look staler, never fresher.
    """

    id: int
    name: str
    email: str
    org_unit_id: Optional[int]
    roles: tuple[RoleRef, ...]
    policies: tuple[str, ...]
    accessible_org_unit_ids: tuple[int, ...]
    policy_version: int
    employee_id: Optional[str] = None
    is_super_admin: bool = False

    def has_policy(self, key: str) -> bool:
        return key in self.policies

    def can_access_org_unit(self, org_unit_id: Optional[int]) -> bool:
        return org_unit_id is not None and org_unit_id in self.accessible_org_unit_ids


@dataclass(frozen=True)
class RequestContext:
    """Per-request authentication context, attached to request.state.auth.

    Built once per request after session resolution and never mutated.
    """

    snapshot: AuthSnapshot
    session_id: str
    login_type: str = "password"
    employee_card_no: Optional[str] = None
    from_cache: bool = False
