"""
rbac/guard.py -- Role assignment security guard.

Decides whether actor A may grant (or revoke) role R on target user B.

Order of checks for can_assign_role:
  1. A exists.
  2. A holds the delegation policy (SuperAdmin skips this).
  3. R and B exist.
  4. SuperAdmin: allowed, and audited as a privileged bypass.
  5. Anti-escalation: A holds every active privileged policy of R.
  6. Org scope: B's org unit is in A's accessible set.

Org-scoped (non-privileged) policies are exempt from step 5, so a manager can
grant a subordinate an operational policy the manager does not hold, as long
as step 6 passes. can_remove_role runs the same checks without step 5: taking a
role away cannot escalate anyone.

The privileged classification is explicit configuration. It is never derived
from key names at runtime.

The actor is always resolved fresh from the store, never from the session
cache, so a delegation decision cannot ride on a stale snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.exc import OperationalError

from auth.resolver import resolve_snapshot
from auth.store import AuthStore
from core.config import Settings
from core.errors import (
    AuthorizationError,
    ForbiddenEscalation,
    ForbiddenNoPolicy,
    ForbiddenOrgScope,
    NotFound,
    StoreUnavailable,
)
from rbac.audit import AuditLogger

logger = logging.getLogger("orgguard.rbac")

ACTOR_NOT_FOUND = "actor_not_found"
TARGET_NOT_FOUND = "target_not_found"
ROLE_NOT_FOUND = "role_not_found"
MISSING_DELEGATION_POLICY = "missing_delegation_policy"
PRIVILEGE_ESCALATION = "privilege_escalation_prevention"
ORG_OUT_OF_SCOPE = "org_out_of_scope"


@dataclass(frozen=True)
class PolicyClassification:
    """Explicit split of policy keys into privileged and org-scoped."""

    privileged: frozenset[str]

    @classmethod
    def from_settings(cls, settings: Settings) -> "PolicyClassification":
        return cls(privileged=frozenset(settings.privileged_policies))

    def is_privileged(self, key: str) -> bool:
        return key in self.privileged

    def partition(self, keys: Iterable[str]) -> tuple[list[str], list[str]]:
        """Return (org_scoped, privileged), each sorted."""
        org_scoped, privileged = [], []
        for key in sorted(set(keys)):
            (privileged if self.is_privileged(key) else org_scoped).append(key)
        return org_scoped, privileged


@dataclass(frozen=True)
class RoleAssignmentCheck:
    allowed: bool
    reason: Optional[str] = None
    message: str = ""
    missing_policies: tuple[str, ...] = ()
    bypass: bool = False

    def raise_for_denial(self) -> None:
        """Raise the AuthorizationError matching a denial; no-op when allowed."""
        if self.allowed:
            return
        if self.reason == PRIVILEGE_ESCALATION:
            raise ForbiddenEscalation(self.message, list(self.missing_policies))
        if self.reason == ORG_OUT_OF_SCOPE:
            raise ForbiddenOrgScope(self.message)
        if self.reason == MISSING_DELEGATION_POLICY:
            raise ForbiddenNoPolicy(self.message)
        if self.reason in (ACTOR_NOT_FOUND, TARGET_NOT_FOUND, ROLE_NOT_FOUND):
            raise NotFound(self.message)
        raise AuthorizationError(self.message or "Role assignment denied.")


def _deny(reason: str, message: str, missing: Iterable[str] = ()) -> RoleAssignmentCheck:
    return RoleAssignmentCheck(allowed=False, reason=reason, message=message, missing_policies=tuple(missing))


class RoleAssignmentGuard:
    def __init__(
        self,
        store: AuthStore,
        classification: PolicyClassification,
        audit: AuditLogger,
        delegation_policy: str = "users.assign_role",
    ) -> None:
        self._store = store
        self.classification = classification
        self._audit = audit
        self.delegation_policy = delegation_policy

    def can_assign_role(self, actor_id: int, target_id: int, role_id: int) -> RoleAssignmentCheck:
        return self._check(actor_id, target_id, role_id, "assign_role", check_escalation=True)

    def can_remove_role(self, actor_id: int, target_id: int, role_id: int) -> RoleAssignmentCheck:
        return self._check(actor_id, target_id, role_id, "remove_role", check_escalation=False)

    def _check(
        self,
        actor_id: int,
        target_id: int,
        role_id: int,
        operation: str,
        check_escalation: bool,
    ) -> RoleAssignmentCheck:
        try:
            return self._evaluate(actor_id, target_id, role_id, operation, check_escalation)
        except OperationalError as exc:
            logger.error("Guard could not reach the store (%s): %s", operation, exc)
            raise StoreUnavailable() from exc

    def _evaluate(
        self,
        actor_id: int,
        target_id: int,
        role_id: int,
        operation: str,
        check_escalation: bool,
    ) -> RoleAssignmentCheck:
        actor = resolve_snapshot(self._store, actor_id)
        if actor is None:
            return _deny(ACTOR_NOT_FOUND, "Actor not found.")

        if not actor.is_super_admin and not actor.has_policy(self.delegation_policy):
            return _deny(
                MISSING_DELEGATION_POLICY,
                f"Missing required policy: {self.delegation_policy}",
            )

        role = self._store.get_role(role_id)
        if role is None:
            return _deny(ROLE_NOT_FOUND, "Role not found.")
        target = self._store.get_user(target_id)
        if target is None:
            return _deny(TARGET_NOT_FOUND, "Target user not found.")

        if actor.is_super_admin:
            self._audit.record_bypass(
                actor.id,
                operation,
                target_user_id=target_id,
                role_id=role_id,
                role_name=role.name,
            )
            return RoleAssignmentCheck(allowed=True, bypass=True)

        if check_escalation:
            keys = [p.key for p in self._store.get_role_policies(role_id, active_only=True)]
            _, privileged = self.classification.partition(keys)
            missing = [k for k in privileged if not actor.has_policy(k)]
            if missing:
                logger.warning(
                    "Escalation blocked: actor=%s role=%s target=%s missing=%s",
                    actor.id,
                    role_id,
                    target_id,
                    missing,
                )
                return _deny(
                    PRIVILEGE_ESCALATION,
                    "Cannot grant a role containing privileged policies you do not hold.",
                    missing,
                )

        if not actor.can_access_org_unit(target.org_unit_id):
            return _deny(ORG_OUT_OF_SCOPE, "Target user is outside your organizational scope.")

        return RoleAssignmentCheck(allowed=True)
