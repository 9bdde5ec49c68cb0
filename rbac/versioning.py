"""
rbac/versioning.py -- Policy version fan-out rules.

Every mutation that changes what a user may do increments that user's
policy_version. Cached snapshots carry the version they were built at; the
session auth cache's periodic policy check notices the difference and evicts.

Fan-out:
  user gains or loses a role      -> that user
  role's policy set changes       -> every holder of the role
  policy enabled or disabled      -> every user holding any role containing it
  role deleted                    -> every holder, before the role row goes
  user moved to another org unit -> that user

Immediate eviction (force re-login) is SessionService.invalidate_all_sessions_for_user.
"""

from __future__ import annotations

import logging

from auth.store import AuthStore

logger = logging.getLogger("orgguard.rbac")


class PolicyVersioning:
    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def bump_users(self, user_ids: list[int]) -> list[int]:
        ids = sorted(set(user_ids))
        if ids:
            self._store.increment_policy_version(ids)
            logger.debug("Bumped policy_version for %d user(s): %s", len(ids), ids)
        return ids

    def bump_user(self, user_id: int) -> list[int]:
        return self.bump_users([user_id])

    def bump_role_holders(self, role_id: int) -> list[int]:
        return self.bump_users(self._store.role_user_ids(role_id))

    def bump_policy_holders(self, policy_id: int) -> list[int]:
        return self.bump_users(self._store.user_ids_for_policy(policy_id))
