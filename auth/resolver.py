"""
auth/resolver.py -- Org scope and authorization snapshot resolution.

Both functions are pure reads against the store: no side effects, no
module-level state, safe to call concurrently and repeatedly. Caching happens
one layer up in cache/store.py.

Store connectivity failures surface as StoreUnavailable so callers can tell
"could not decide" apart from "denied".

Layer rule: no imports from api/, cache/, or rbac/.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import OperationalError

from auth.models import AuthSnapshot, RoleRef
from auth.store import AuthStore
from core.errors import StoreUnavailable

logger = logging.getLogger("orgguard.auth")


def org_scope(store: AuthStore, org_unit_id: Optional[int]) -> frozenset[int]:
    """Return org_unit_id plus every transitive descendant.

    A leaf yields a singleton. None (no org unit) yields the empty set. The
    root id is always included, even if its row has since been deleted, so a
    user never loses sight of their own unit through a dangling reference.
    """
    if org_unit_id is None:
        return frozenset()
    try:
        ids = store.org_subtree_ids(org_unit_id)
    except OperationalError as exc:
        logger.error("Org scope query failed for org_unit_id=%s: %s", org_unit_id, exc)
        raise StoreUnavailable() from exc
    ids.add(org_unit_id)
    return frozenset(ids)


def resolve_snapshot(store: AuthStore, user_id: int) -> AuthSnapshot | None:
    """Compose a user's roles, active policies, and org scope into an AuthSnapshot.

    Returns None if the user no longer exists or is inactive.

    The user row (and with it policy_version) is read first. A mutation that
    lands between that read and the policy read can only make this snapshot
    carry an older version than its contents, so the next version check evicts
    it. It can never carry a newer version than its contents.
    """
    try:
        user = store.get_user(user_id)
        if user is None or not user.is_active:
            return None
        roles = store.get_user_roles(user_id)
        policies = store.get_active_policy_keys(user_id)
    except OperationalError as exc:
        logger.error("Snapshot resolution failed for user_id=%s: %s", user_id, exc)
        raise StoreUnavailable() from exc

    scope = org_scope(store, user.org_unit_id)
    return AuthSnapshot(
        id=user.id,
        name=user.name,
        email=user.email,
        org_unit_id=user.org_unit_id,
        roles=tuple(RoleRef(id=r.id, name=r.name) for r in roles),
        policies=tuple(sorted(set(policies))),
        accessible_org_unit_ids=tuple(sorted(scope)),
        policy_version=user.policy_version,
        employee_id=user.employee_id,
        is_super_admin=user.is_super_admin,
    )
