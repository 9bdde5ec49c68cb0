"""
rbac/audit.py -- Best-effort audit log emitter.

Every RBAC mutation is recorded as {actor, action, entity, entity_id, meta,
timestamp}. A failed write is logged at ERROR and swallowed: the audit log is
an observability side channel and must never abort or roll back the mutation
it describes.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from auth.models import AuditEntry
from auth.store import AuthStore

logger = logging.getLogger("orgguard.audit")


class AuditLogger:
    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def record(
        self,
        actor_user_id: Optional[int],
        action: str,
        entity: str,
        entity_id: Any = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> Optional[int]:
        """Append one entry. Returns its id, or None if the write failed."""
        entry = AuditEntry(
            actor_user_id=actor_user_id,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            meta=meta or {},
        )
        try:
            return self._store.insert_audit_entry(entry)
        except Exception:
            logger.exception(
                "Audit write failed: actor=%s action=%s entity=%s entity_id=%s",
                actor_user_id,
                action,
                entity,
                entry.entity_id,
            )
            return None

    def record_bypass(self, actor_user_id: int, operation: str, **meta: Any) -> Optional[int]:
        """Record a SuperAdmin short-circuit of an authorization check."""
        logger.info("SuperAdmin bypass: actor=%s operation=%s", actor_user_id, operation)
        return self.record(
            actor_user_id,
            "bypass",
            "authorization",
            entity_id=operation,
            meta={"privileged": True, "operation": operation, **meta},
        )
