"""
auth/store.py -- SQLAlchemy Core persistence layer for the RBAC records.

Pattern: Repository + Data Mapper. AuthStore is the repository for every
authoritative record (users, roles, policies, their join rows, org units,
sessions, audit log). The _row_to_* functions are the mappers. Services and
route handlers never touch SQL directly.

This layer is pure storage: it enforces uniqueness and transactional grouping
but makes no authorization decisions.

Security:
  All queries use bound parameters. No f-strings in SQL.

Transactions:
  Single statements use engine.connect() + commit(). Multi-statement writes
  that must land together (role + its policy links, role deletion, role
  replacement with version bump) use engine.begin() so a failure rolls back
  every statement.

Timestamps are ISO 8601 UTC strings. Because every value is produced by
_now_iso()/datetime.isoformat() on an aware UTC datetime, string comparison
orders them correctly (used by purge_expired_sessions).

Layer rule: no imports from api/, cache/, or rbac/.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine

from auth.models import AuditEntry, OrgUnit, Policy, Role, Session, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_org_units = Table(
    "org_units",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("code", String(50), nullable=False, unique=True),
    Column("type", String(30)),
    Column("parent_id", Integer, index=True),  # NULL for roots
    Column("level", Integer, nullable=False, server_default="0"),
)

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lowercased
    Column("name", String(255), nullable=False),
    Column("hashed_password", Text),
    Column("org_unit_id", Integer),
    Column("employee_id", String(64)),
    Column("policy_version", Integer, nullable=False, server_default="1"),
    Column("is_super_admin", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("level", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_policies = Table(
    "policies",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("key", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("category", String(50)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, nullable=False, index=True),
    Column("role_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    PrimaryKeyConstraint("user_id", "role_id", name="pk_user_roles"),
)

_role_policies = Table(
    "role_policies",
    metadata,
    Column("role_id", Integer, nullable=False, index=True),
    Column("policy_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    PrimaryKeyConstraint("role_id", "policy_id", name="pk_role_policies"),
)

_sessions = Table(
    "sessions",
    metadata,
    Column("id", String(64), primary_key=True),  # opaque bearer token
    Column("user_id", Integer, nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("login_type", String(20), nullable=False, server_default="password"),
    Column("employee_card_no", String(64)),
    Column("created_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actor_user_id", Integer),
    Column("action", String(30), nullable=False),
    Column("entity", String(30), nullable=False),
    Column("entity_id", String(64)),
    Column("meta", Text),  # JSON object serialized as text
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so session reads are not blocked by RBAC writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _bool_fields(fields: dict, *names: str) -> dict:
    for name in names:
        if name in fields:
            fields[name] = 1 if fields[name] else 0
    return fields


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for every RBAC record.

    Usage:
        store = AuthStore()
        uid = store.create_user(User(email="a@example.com", name="A", hashed_password=hash_password("pw")))
        store.add_user_role(uid, role_id)
        store.increment_policy_version([uid])
        store.close()
    """

    _USER_FIELDS: set = {"name", "org_unit_id", "employee_id", "hashed_password", "is_active", "is_super_admin"}
    _ROLE_FIELDS: set = {"name", "description", "level"}
    _POLICY_FIELDS: set = {"description", "category", "is_active"}

    def __init__(self, db_url: Optional[str] = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the store answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Org units
    # ------------------------------------------------------------------

    def create_org_unit(self, unit: OrgUnit) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _org_units.insert().values(
                    name=unit.name,
                    code=unit.code,
                    type=unit.type,
                    parent_id=unit.parent_id,
                    level=unit.level,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_org_unit(self, org_unit_id: int) -> OrgUnit | None:
        with self.engine.connect() as conn:
            row = conn.execute(_org_units.select().where(_org_units.c.id == org_unit_id)).fetchone()
        return _row_to_org_unit(row) if row is not None else None

    def list_org_units(self, ids: Optional[Iterable[int]] = None) -> list[OrgUnit]:
        """Return org units ordered by level then name, optionally restricted to ids."""
        stmt = _org_units.select().order_by(_org_units.c.level, _org_units.c.name)
        if ids is not None:
            stmt = stmt.where(_org_units.c.id.in_(list(ids)))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_org_unit(r) for r in rows]

    def org_subtree_ids(self, root_id: int) -> set[int]:
        """Return the ids of root_id and every transitive descendant.

        One recursive CTE. UNION (not UNION ALL) discards rows already in the
        working set, so the recursion stops once no new ids appear.
        """
        tree = select(_org_units.c.id).where(_org_units.c.id == root_id).cte("org_tree", recursive=True)
        children = select(_org_units.c.id).select_from(_org_units.join(tree, _org_units.c.parent_id == tree.c.id))
        tree = tree.union(children)
        with self.engine.connect() as conn:
            rows = conn.execute(select(tree.c.id)).fetchall()
        return {r[0] for r in rows}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the e-mail already exists.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    name=user.name,
                    hashed_password=user.hashed_password,
                    org_unit_id=user.org_unit_id,
                    employee_id=user.employee_id,
                    policy_version=user.policy_version,
                    is_super_admin=1 if user.is_super_admin else 0,
                    is_active=1 if user.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_user(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup; e-mails are stored lowercased."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_policy_version(self, user_id: int) -> Optional[int]:
        """Return the user's current policy_version, or None if the user is gone."""
        with self.engine.connect() as conn:
            return conn.execute(select(_users.c.policy_version).where(_users.c.id == user_id)).scalar()

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable user fields. Returns False if user_id was not found.

        policy_version is deliberately not accepted here; use
        increment_policy_version() so the counter can only go up.
        """
        unknown = set(fields) - self._USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if not fields:
            return self.get_user(user_id) is not None
        _bool_fields(fields, "is_active", "is_super_admin")
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def increment_policy_version(self, user_ids: Iterable[int]) -> int:
        """Atomically add 1 to policy_version for every listed user. Returns rows updated."""
        ids = sorted(set(user_ids))
        if not ids:
            return 0
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id.in_(ids)).values(policy_version=_users.c.policy_version + 1)
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def create_policy(self, policy: Policy) -> int:
        """Insert a policy. Raises IntegrityError if the key already exists."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _policies.insert().values(
                    key=policy.key,
                    description=policy.description,
                    category=policy.category,
                    is_active=1 if policy.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_policy(self, policy_id: int) -> Policy | None:
        with self.engine.connect() as conn:
            row = conn.execute(_policies.select().where(_policies.c.id == policy_id)).fetchone()
        return _row_to_policy(row) if row is not None else None

    def get_policy_by_key(self, key: str) -> Policy | None:
        with self.engine.connect() as conn:
            row = conn.execute(_policies.select().where(_policies.c.key == key)).fetchone()
        return _row_to_policy(row) if row is not None else None

    def list_policies(self) -> list[Policy]:
        with self.engine.connect() as conn:
            rows = conn.execute(_policies.select().order_by(_policies.c.key)).fetchall()
        return [_row_to_policy(r) for r in rows]

    def get_policies(self, policy_ids: Iterable[int]) -> list[Policy]:
        ids = list(policy_ids)
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_policies.select().where(_policies.c.id.in_(ids)).order_by(_policies.c.key)).fetchall()
        return [_row_to_policy(r) for r in rows]

    def update_policy(self, policy_id: int, **fields) -> bool:
        """Update description/category/is_active. The key is immutable and rejected here."""
        unknown = set(fields) - self._POLICY_FIELDS
        if unknown:
            raise ValueError(f"Unknown or immutable policy fields: {unknown!r}")
        if not fields:
            return self.get_policy(policy_id) is not None
        _bool_fields(fields, "is_active")
        with self.engine.connect() as conn:
            result = conn.execute(_policies.update().where(_policies.c.id == policy_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def user_ids_for_policy(self, policy_id: int) -> list[int]:
        """Return every user holding any role that contains policy_id."""
        stmt = (
            select(_user_roles.c.user_id)
            .select_from(_user_roles.join(_role_policies, _role_policies.c.role_id == _user_roles.c.role_id))
            .where(_role_policies.c.policy_id == policy_id)
            .distinct()
        )
        with self.engine.connect() as conn:
            return [r[0] for r in conn.execute(stmt).fetchall()]

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role, policy_ids: Iterable[int] = ()) -> int:
        """Insert a role together with its policy links in one transaction.

        Raises IntegrityError if the role name already exists.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    level=role.level,
                    created_at=now,
                    updated_at=now,
                )
            )
            role_id = result.inserted_primary_key[0]
            links = [{"role_id": role_id, "policy_id": pid, "created_at": now} for pid in dict.fromkeys(policy_ids)]
            if links:
                conn.execute(_role_policies.insert(), links)
        return role_id

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: int, **fields) -> bool:
        """Update name/description/level and stamp updated_at. False if role not found.

        Raises IntegrityError if the new name collides with another role.
        """
        unknown = set(fields) - self._ROLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.update().where(_roles.c.id == role_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_role(self, role_id: int) -> bool:
        """Hard-delete a role and its join rows in one transaction."""
        with self.engine.begin() as conn:
            conn.execute(delete(_user_roles).where(_user_roles.c.role_id == role_id))
            conn.execute(delete(_role_policies).where(_role_policies.c.role_id == role_id))
            result = conn.execute(delete(_roles).where(_roles.c.id == role_id))
        return result.rowcount > 0

    def role_user_ids(self, role_id: int) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_user_roles.c.user_id).where(_user_roles.c.role_id == role_id)).fetchall()
        return [r[0] for r in rows]

    def role_user_counts(self) -> dict[int, int]:
        """Return {role_id: number of holders} for every role with at least one holder."""
        stmt = select(_user_roles.c.role_id, func.count()).group_by(_user_roles.c.role_id)
        with self.engine.connect() as conn:
            return {r[0]: r[1] for r in conn.execute(stmt).fetchall()}

    def get_role_policies(self, role_id: int, active_only: bool = False) -> list[Policy]:
        stmt = (
            select(_policies)
            .select_from(_policies.join(_role_policies, _role_policies.c.policy_id == _policies.c.id))
            .where(_role_policies.c.role_id == role_id)
            .order_by(_policies.c.key)
        )
        if active_only:
            stmt = stmt.where(_policies.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_policy(r) for r in rows]

    def replace_role_policies(self, role_id: int, policy_ids: Iterable[int]) -> None:
        """Swap a role's whole policy set in one transaction."""
        now = _now_iso()
        links = [{"role_id": role_id, "policy_id": pid, "created_at": now} for pid in dict.fromkeys(policy_ids)]
        with self.engine.begin() as conn:
            conn.execute(delete(_role_policies).where(_role_policies.c.role_id == role_id))
            if links:
                conn.execute(_role_policies.insert(), links)
            conn.execute(_roles.update().where(_roles.c.id == role_id).values(updated_at=now))

    # ------------------------------------------------------------------
    # User <-> Role
    # ------------------------------------------------------------------

    def add_user_role(self, user_id: int, role_id: int) -> None:
        """Link a user to a role. Raises IntegrityError if the link already exists."""
        with self.engine.connect() as conn:
            conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id, created_at=_now_iso()))
            conn.commit()

    def remove_user_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(_user_roles).where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            )
            conn.commit()
        return result.rowcount > 0

    def has_user_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_user_roles.c.user_id).where(
                    (_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id)
                )
            ).fetchone()
        return row is not None

    def get_user_roles(self, user_id: int) -> list[Role]:
        stmt = (
            select(_roles)
            .select_from(_roles.join(_user_roles, _user_roles.c.role_id == _roles.c.id))
            .where(_user_roles.c.user_id == user_id)
            .order_by(_roles.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_role(r) for r in rows]

    def replace_user_roles(self, user_id: int, role_id: int) -> None:
        """Give the user exactly one role and bump their policy_version, atomically."""
        with self.engine.begin() as conn:
            conn.execute(delete(_user_roles).where(_user_roles.c.user_id == user_id))
            conn.execute(_user_roles.insert().values(user_id=user_id, role_id=role_id, created_at=_now_iso()))
            conn.execute(
                _users.update().where(_users.c.id == user_id).values(policy_version=_users.c.policy_version + 1)
            )

    def get_active_policy_keys(self, user_id: int) -> list[str]:
        """Return the deduplicated, sorted keys of every active policy reachable via the user's roles.

        A disabled policy drops out here without any change to role_policies.
        """
        stmt = (
            select(_policies.c.key)
            .select_from(
                _user_roles.join(_role_policies, _role_policies.c.role_id == _user_roles.c.role_id).join(
                    _policies, _policies.c.id == _role_policies.c.policy_id
                )
            )
            .where((_user_roles.c.user_id == user_id) & (_policies.c.is_active == 1))
            .distinct()
            .order_by(_policies.c.key)
        )
        with self.engine.connect() as conn:
            return [r[0] for r in conn.execute(stmt).fetchall()]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> str:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    expires_at=session.expires_at,
                    login_type=session.login_type,
                    employee_card_no=session.employee_card_no,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
        return session.id

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def get_session_expiry(self, session_id: str) -> Optional[str]:
        """Return the session's expires_at, or None if the session row is gone. Cheap re-check query."""
        with self.engine.connect() as conn:
            return conn.execute(select(_sessions.c.expires_at).where(_sessions.c.id == session_id)).scalar()

    def list_session_ids(self, user_id: int) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(_sessions.c.id).where(_sessions.c.user_id == user_id)).fetchall()
        return [r[0] for r in rows]

    def delete_session(self, session_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.id == session_id))
            conn.commit()
        return result.rowcount > 0

    def delete_sessions_for_user(self, user_id: int) -> list[str]:
        """Delete every session of a user and return the deleted ids."""
        with self.engine.begin() as conn:
            ids = [r[0] for r in conn.execute(select(_sessions.c.id).where(_sessions.c.user_id == user_id))]
            if ids:
                conn.execute(delete(_sessions).where(_sessions.c.id.in_(ids)))
        return ids

    def purge_expired_sessions(self) -> int:
        """Delete every session whose expiry has passed. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(delete(_sessions).where(_sessions.c.expires_at < _now_iso()))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Audit log (append-only: insert and read, never update or delete)
    # ------------------------------------------------------------------

    def insert_audit_entry(self, entry: AuditEntry) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    actor_user_id=entry.actor_user_id,
                    action=entry.action,
                    entity=entry.entity,
                    entity_id=entry.entity_id,
                    meta=json.dumps(entry.meta or {}, default=str),
                    created_at=entry.created_at or _now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_audit_entries(self, limit: int = 100, entity: Optional[str] = None) -> list[AuditEntry]:
        """Return audit entries newest first, optionally filtered by entity."""
        stmt = _audit_logs.select().order_by(_audit_logs.c.id.desc()).limit(limit)
        if entity:
            stmt = stmt.where(_audit_logs.c.entity == entity)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_audit_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        org_unit_id=row.org_unit_id,
        employee_id=row.employee_id,
        policy_version=row.policy_version,
        is_super_admin=bool(row.is_super_admin),
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        level=row.level,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_policy(row) -> Policy:
    return Policy(
        id=row.id,
        key=row.key,
        description=row.description,
        category=row.category,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_org_unit(row) -> OrgUnit:
    return OrgUnit(
        id=row.id,
        name=row.name,
        code=row.code,
        type=row.type,
        parent_id=row.parent_id,
        level=row.level,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        expires_at=row.expires_at,
        login_type=row.login_type,
        employee_card_no=row.employee_card_no,
        created_at=row.created_at,
    )


def _row_to_audit_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        actor_user_id=row.actor_user_id,
        action=row.action,
        entity=row.entity,
        entity_id=row.entity_id,
        meta=json.loads(row.meta) if row.meta else {},
        created_at=row.created_at,
    )
