"""
rbac/service.py -- RBAC administration: every mutation guarded, versioned, audited.

Pattern: Service layer. Route handlers and the CLI call RbacAdmin; it
validates input against the store, performs the mutation through AuthStore,
bumps policy versions for every affected user, and writes the audit entry.

Ordering rules:
  - Versions are bumped after the mutation commits, except for role deletion,
    where holders are bumped first because the join rows vanish with the role.
  - The audit entry is written last and never blocks the mutation.

Errors are raised as core.errors classes; api/main.py renders them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from sqlalchemy.exc import IntegrityError

from auth.models import AuditEntry, AuthSnapshot, OrgUnit, Policy, Role, User
from auth.resolver import resolve_snapshot
from auth.sessions import SessionService
from auth.store import AuthStore
from core.errors import Conflict, ForbiddenOrgScope, InvalidRequest, NotFound
from core.policies import (
    POLICY_CATALOG,
    ROLE_LEVEL_MAX,
    ROLE_LEVEL_MIN,
    category_for,
    is_valid_policy_key,
    role_name_error,
)
from rbac.audit import AuditLogger
from rbac.guard import RoleAssignmentGuard
from rbac.versioning import PolicyVersioning

logger = logging.getLogger("orgguard.rbac")


@dataclass
class RoleView:
    role: Role
    policies: list[Policy]
    user_count: int = 0
    users: list[User] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Catalog sync
# ---------------------------------------------------------------------------


def sync_policy_catalog(store: AuthStore, catalog: Optional[dict[str, str]] = None) -> dict[str, int]:
    """Create catalog policies missing from the store. Never deletes or renames.

    Returns {"total", "created", "existing"}.
    """
    catalog = POLICY_CATALOG if catalog is None else catalog
    created = existing = 0
    for key, description in catalog.items():
        if store.get_policy_by_key(key) is not None:
            existing += 1
            continue
        try:
            store.create_policy(Policy(key=key, description=description, category=category_for(key)))
            created += 1
        except IntegrityError:
            # Another process synced the same key first.
            existing += 1
    if created:
        logger.info("Policy catalog sync: %d created, %d already present", created, existing)
    return {"total": len(catalog), "created": created, "existing": existing}


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RbacAdmin:
    def __init__(
        self,
        store: AuthStore,
        guard: RoleAssignmentGuard,
        versioning: PolicyVersioning,
        audit: AuditLogger,
        sessions: SessionService,
    ) -> None:
        self._store = store
        self.guard = guard
        self.versioning = versioning
        self.audit = audit
        self.sessions = sessions

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def list_policies(self) -> list[Policy]:
        return self._store.list_policies()

    def create_policy(
        self,
        actor_id: int,
        key: str,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Policy:
        if not is_valid_policy_key(key):
            raise InvalidRequest(f"Invalid policy key format: {key!r}")
        if self._store.get_policy_by_key(key) is not None:
            raise Conflict(f"Policy '{key}' already exists.")
        try:
            policy_id = self._store.create_policy(
                Policy(key=key, description=description, category=category or category_for(key))
            )
        except IntegrityError as exc:
            raise Conflict(f"Policy '{key}' already exists.") from exc
        self.audit.record(actor_id, "create", "policy", policy_id, {"key": key})
        return self._store.get_policy(policy_id)

    def update_policy(
        self,
        actor_id: int,
        policy_id: int,
        description: Optional[str] = None,
        category: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Policy:
        policy = self._store.get_policy(policy_id)
        if policy is None:
            raise NotFound("Policy not found.")

        requested = {"description": description, "category": category, "is_active": is_active}
        changes = {
            name: {"from": getattr(policy, name), "to": value}
            for name, value in requested.items()
            if value is not None and getattr(policy, name) != value
        }
        if not changes:
            return policy

        self._store.update_policy(policy_id, **{name: c["to"] for name, c in changes.items()})
        meta: dict[str, Any] = {"key": policy.key, "changes": changes}
        if "is_active" in changes:
            meta["affected_users"] = self.versioning.bump_policy_holders(policy_id)
        self.audit.record(actor_id, "update", "policy", policy_id, meta)
        return self._store.get_policy(policy_id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def list_roles(self) -> list[RoleView]:
        counts = self._store.role_user_counts()
        return [
            RoleView(role=r, policies=self._store.get_role_policies(r.id), user_count=counts.get(r.id, 0))
            for r in self._store.list_roles()
        ]

    def get_role(self, role_id: int) -> RoleView:
        role = self._require_role(role_id)
        user_ids = self._store.role_user_ids(role_id)
        users = [u for u in (self._store.get_user(uid) for uid in user_ids) if u is not None]
        return RoleView(
            role=role,
            policies=self._store.get_role_policies(role_id),
            user_count=len(user_ids),
            users=users,
        )

    def create_role(
        self,
        actor_id: int,
        name: str,
        description: Optional[str] = None,
        level: int = 0,
        policy_ids: Iterable[int] = (),
    ) -> RoleView:
        name = name.strip() if name else name
        self._validate_role_fields(name, level)
        policy_ids = list(dict.fromkeys(policy_ids))
        policies = self._require_active_policies(policy_ids)
        if self._store.get_role_by_name(name) is not None:
            raise Conflict(f"Role '{name}' already exists.")
        try:
            role_id = self._store.create_role(Role(name=name, description=description, level=level), policy_ids)
        except IntegrityError as exc:
            raise Conflict(f"Role '{name}' already exists.") from exc
        self.audit.record(
            actor_id,
            "create",
            "role",
            role_id,
            {"name": name, "level": level, "policy_keys": sorted(p.key for p in policies)},
        )
        return self.get_role(role_id)

    def update_role(
        self,
        actor_id: int,
        role_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        level: Optional[int] = None,
        policy_ids: Optional[Iterable[int]] = None,
    ) -> RoleView:
        role = self._require_role(role_id)

        fields: dict[str, Any] = {}
        if name is not None and name.strip() != role.name:
            name = name.strip()
            self._validate_role_fields(name, level if level is not None else role.level)
            existing = self._store.get_role_by_name(name)
            if existing is not None and existing.id != role_id:
                raise Conflict(f"Role '{name}' already exists.")
            fields["name"] = name
        if description is not None and description != role.description:
            fields["description"] = description
        if level is not None and level != role.level:
            self._validate_role_fields(fields.get("name", role.name), level)
            fields["level"] = level

        added: list[str] = []
        removed: list[str] = []
        new_ids: Optional[list[int]] = None
        if policy_ids is not None:
            new_ids = list(dict.fromkeys(policy_ids))
            current = {p.id: p.key for p in self._store.get_role_policies(role_id)}
            incoming = {p.id: p.key for p in self._require_active_policies(new_ids)}
            added = sorted(incoming[pid] for pid in set(incoming) - set(current))
            removed = sorted(current[pid] for pid in set(current) - set(incoming))

        if fields:
            try:
                self._store.update_role(role_id, **fields)
            except IntegrityError as exc:
                raise Conflict(f"Role '{fields.get('name')}' already exists.") from exc
            changes = {k: {"from": getattr(role, k), "to": v} for k, v in fields.items()}
            self.audit.record(actor_id, "update", "role", role_id, {"changes": changes})

        if added or removed:
            self._store.replace_role_policies(role_id, new_ids)
            affected = self.versioning.bump_role_holders(role_id)
            self.audit.record(
                actor_id,
                "update",
                "role_policy",
                role_id,
                {"role_name": fields.get("name", role.name), "added": added, "removed": removed, "affected_users": affected},
            )

        return self.get_role(role_id)

    def delete_role(self, actor_id: int, role_id: int) -> None:
        role = self._require_role(role_id)
        # Holders must be bumped while the user_roles rows still exist.
        affected = self.versioning.bump_role_holders(role_id)
        self._store.delete_role(role_id)
        self.audit.record(actor_id, "delete", "role", role_id, {"name": role.name, "affected_users": affected})

    # ------------------------------------------------------------------
    # User <-> Role
    # ------------------------------------------------------------------

    def user_roles(self, user_id: int) -> list[Role]:
        self._require_user(user_id)
        return self._store.get_user_roles(user_id)

    def assign_role(self, actor_id: int, target_id: int, role_id: int) -> Role:
        check = self.guard.can_assign_role(actor_id, target_id, role_id)
        check.raise_for_denial()
        if self._store.has_user_role(target_id, role_id):
            raise Conflict("Role is already assigned to this user.")
        try:
            self._store.add_user_role(target_id, role_id)
        except IntegrityError as exc:
            raise Conflict("Role is already assigned to this user.") from exc
        self.versioning.bump_user(target_id)
        role = self._store.get_role(role_id)
        self.audit.record(
            actor_id,
            "assign",
            "user_role",
            f"{target_id}:{role_id}",
            {"target_user_id": target_id, "role_id": role_id, "role_name": role.name, "bypass": check.bypass},
        )
        return role

    def remove_role(self, actor_id: int, target_id: int, role_id: int) -> None:
        check = self.guard.can_remove_role(actor_id, target_id, role_id)
        check.raise_for_denial()
        if not self._store.remove_user_role(target_id, role_id):
            raise NotFound("Role is not assigned to this user.")
        self.versioning.bump_user(target_id)
        self.audit.record(
            actor_id,
            "remove",
            "user_role",
            f"{target_id}:{role_id}",
            {"target_user_id": target_id, "role_id": role_id, "bypass": check.bypass},
        )

    def replace_user_roles(self, actor_id: int, target_id: int, role_id: int) -> Role:
        """Make role_id the target's only role. Delete, insert and bump land in one transaction."""
        check = self.guard.can_assign_role(actor_id, target_id, role_id)
        check.raise_for_denial()
        previous = [r.id for r in self._store.get_user_roles(target_id)]
        self._store.replace_user_roles(target_id, role_id)
        role = self._store.get_role(role_id)
        self.audit.record(
            actor_id,
            "assign",
            "user_role",
            f"{target_id}:{role_id}",
            {
                "target_user_id": target_id,
                "role_id": role_id,
                "role_name": role.name,
                "replaced_role_ids": previous,
                "bypass": check.bypass,
            },
        )
        return role

    # ------------------------------------------------------------------
    # Users and sessions
    # ------------------------------------------------------------------

    def move_user(self, actor_id: int, target_id: int, org_unit_id: int) -> User:
        """Move a user to another org unit. The actor must see both the old and the new unit."""
        actor = self._require_actor(actor_id)
        target = self._require_user(target_id)
        if self._store.get_org_unit(org_unit_id) is None:
            raise NotFound("Org unit not found.")
        if actor.is_super_admin:
            self.audit.record_bypass(actor_id, "move_user", target_user_id=target_id, org_unit_id=org_unit_id)
        elif not (actor.can_access_org_unit(target.org_unit_id) and actor.can_access_org_unit(org_unit_id)):
            raise ForbiddenOrgScope("Target user or destination unit is outside your organizational scope.")

        if target.org_unit_id != org_unit_id:
            self._store.update_user(target_id, org_unit_id=org_unit_id)
            self.versioning.bump_user(target_id)
            self.audit.record(
                actor_id,
                "update",
                "user",
                target_id,
                {"changes": {"org_unit_id": {"from": target.org_unit_id, "to": org_unit_id}}},
            )
        return self._store.get_user(target_id)

    def logout_all(self, actor_id: int, target_id: int) -> int:
        """Force re-login: delete every session of the target. Returns the count removed."""
        actor = self._require_actor(actor_id)
        target = self._require_user(target_id)
        if actor.is_super_admin:
            self.audit.record_bypass(actor_id, "logout_all", target_user_id=target_id)
        elif actor.id != target.id and not actor.can_access_org_unit(target.org_unit_id):
            raise ForbiddenOrgScope("Target user is outside your organizational scope.")
        deleted = self.sessions.logout_all(target_id)
        self.audit.record(actor_id, "logout_all", "session", target_id, {"sessions": len(deleted)})
        return len(deleted)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def accessible_org_units(self, snapshot: AuthSnapshot) -> list[OrgUnit]:
        if snapshot.is_super_admin:
            return self._store.list_org_units()
        return self._store.list_org_units(snapshot.accessible_org_unit_ids)

    def audit_entries(self, limit: int = 100, entity: Optional[str] = None) -> list[AuditEntry]:
        return self._store.list_audit_entries(limit=limit, entity=entity)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_role(self, role_id: int) -> Role:
        role = self._store.get_role(role_id)
        if role is None:
            raise NotFound("Role not found.")
        return role

    def _require_user(self, user_id: int) -> User:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    def _require_actor(self, actor_id: int) -> AuthSnapshot:
        actor = resolve_snapshot(self._store, actor_id)
        if actor is None:
            raise NotFound("Actor not found.")
        return actor

    def _require_active_policies(self, policy_ids: list[int]) -> list[Policy]:
        policies = {p.id: p for p in self._store.get_policies(policy_ids)}
        invalid = [pid for pid in policy_ids if pid not in policies or not policies[pid].is_active]
        if invalid:
            raise InvalidRequest(
                "Some policies do not exist or are inactive.",
                detail={"invalid_policies": invalid},
            )
        return [policies[pid] for pid in policy_ids]

    @staticmethod
    def _validate_role_fields(name: str, level: int) -> None:
        error = role_name_error(name)
        if error:
            raise InvalidRequest(error)
        if not ROLE_LEVEL_MIN <= level <= ROLE_LEVEL_MAX:
            raise InvalidRequest(f"Role level must be between {ROLE_LEVEL_MIN} and {ROLE_LEVEL_MAX}")
