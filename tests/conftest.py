"""
tests/conftest.py -- Shared test fixtures for orgguard.

This module provides:
  - store: a fresh AuthStore on plain in-memory SQLite (unit tests, one thread)
  - clock: a FakeClock injected into the session auth cache so tests can step
    time without sleeping
  - factory: helpers that insert org units, users, policies, roles, sessions
  - engine: every engine component wired around one store and one clock
  - api_client: TestClient with a seeded world and live session tokens

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Every factory user shares one bcrypt hash of PASSWORD, computed once, so the
suite does not pay the bcrypt cost per user.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Iterable, Optional

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_services
from auth.models import OrgUnit, Policy, Role, Session, User
from auth.sessions import SessionService
from auth.store import AuthStore
from auth.tokens import generate_session_token, hash_password, session_expiry
from cache.store import SessionAuthCache
from core.config import Settings
from core.policies import DEFAULT_PRIVILEGED_POLICIES, category_for
from rbac.audit import AuditLogger
from rbac.guard import PolicyClassification, RoleAssignmentGuard
from rbac.service import RbacAdmin, sync_policy_catalog
from rbac.versioning import PolicyVersioning

PASSWORD = "correct-horse-battery"
_PASSWORD_HASH = hash_password(PASSWORD)

POLICY_CHECK_INTERVAL = 30.0
SESSION_CHECK_INTERVAL = 60.0
CACHE_TTL = 300.0


# ---------------------------------------------------------------------------
# Clock and factory
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock for SessionAuthCache. Starts at the real time so real session expiries line up."""

    def __init__(self, start: Optional[float] = None) -> None:
        self.now = time.time() if start is None else start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Factory:
    """Insert rows straight into the store, bypassing the admin service."""

    def __init__(self, store: AuthStore) -> None:
        self.store = store

    def org_unit(self, name: str, parent: Optional[int] = None, type: Optional[str] = None) -> int:
        level = 0 if parent is None else self.store.get_org_unit(parent).level + 1
        code = name.upper().replace(" ", "_")
        return self.store.create_org_unit(OrgUnit(name=name, code=code, parent_id=parent, type=type, level=level))

    def user(
        self,
        email: str,
        org_unit_id: Optional[int] = None,
        super_admin: bool = False,
        active: bool = True,
        employee_id: Optional[str] = None,
    ) -> int:
        return self.store.create_user(
            User(
                email=email,
                name=email.split("@")[0].title(),
                hashed_password=_PASSWORD_HASH,
                org_unit_id=org_unit_id,
                employee_id=employee_id,
                is_super_admin=super_admin,
                is_active=active,
            )
        )

    def policy(self, key: str, active: bool = True) -> int:
        existing = self.store.get_policy_by_key(key)
        if existing is not None:
            return existing.id
        return self.store.create_policy(Policy(key=key, category=category_for(key), is_active=active))

    def role(self, name: str, keys: Iterable[str] = (), level: int = 0) -> int:
        return self.store.create_role(Role(name=name, level=level), [self.policy(k) for k in keys])

    def grant(self, user_id: int, role_id: int) -> None:
        self.store.add_user_role(user_id, role_id)

    def session(self, user_id: int, days: int = 7, login_type: str = "password", card: Optional[str] = None) -> str:
        token = generate_session_token()
        self.store.create_session(
            Session(
                id=token,
                user_id=user_id,
                expires_at=session_expiry(days),
                login_type=login_type,
                employee_card_no=card,
            )
        )
        return token

    def expired_session(self, user_id: int) -> str:
        token = generate_session_token()
        past = (datetime.now(timezone.utc) - timedelta(hours=1)).isoformat()
        self.store.create_session(Session(id=token, user_id=user_id, expires_at=past))
        return token


@dataclass
class Engine:
    store: AuthStore
    clock: FakeClock
    cache: SessionAuthCache
    sessions: SessionService
    audit: AuditLogger
    guard: RoleAssignmentGuard
    versioning: PolicyVersioning
    admin: RbacAdmin


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore(db_url="sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def factory(store: AuthStore) -> Factory:
    return Factory(store)


@pytest.fixture
def classification() -> PolicyClassification:
    return PolicyClassification(privileged=frozenset(DEFAULT_PRIVILEGED_POLICIES))


@pytest.fixture
def engine(store: AuthStore, clock: FakeClock, classification: PolicyClassification) -> Engine:
    cache = SessionAuthCache(
        store,
        ttl=CACHE_TTL,
        policy_check_interval=POLICY_CHECK_INTERVAL,
        session_check_interval=SESSION_CHECK_INTERVAL,
        max_entries=100,
        clock=clock,
    )
    sessions = SessionService(store, cache, session_ttl_days=7)
    audit = AuditLogger(store)
    guard = RoleAssignmentGuard(store, classification, audit, delegation_policy="users.assign_role")
    versioning = PolicyVersioning(store)
    admin = RbacAdmin(store, guard, versioning, audit, sessions)
    return Engine(store, clock, cache, sessions, audit, guard, versioning, admin)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> AuthStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (the test module's name).
    """
    return AuthStore(db_url=f"sqlite:///file:test_orgguard_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: AuthStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the engine around the pre-seeded test store. The purge_task is a
    long-sleeping coroutine so shutdown has a real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, store, Settings())
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _seed_world(factory: Factory) -> SimpleNamespace:
    """Org tree HQ > {North > North Branch, South} with one user per position.

    manager (North)       Org Admin: admin.panel + delegation + scoped admin reads
    staff (North Branch)  Staff: operational, org-scoped policies only
    plain (North Branch)  no roles
    south (South)         no roles
    root (HQ)             SuperAdmin flag, no roles
    """
    store = factory.store
    sync_policy_catalog(store)
    hq = factory.org_unit("HQ", type="company")
    north = factory.org_unit("North", parent=hq, type="region")
    north_branch = factory.org_unit("North Branch", parent=north, type="branch")
    south = factory.org_unit("South", parent=hq, type="region")

    org_admin = factory.role(
        "Org Admin",
        [
            "admin.panel",
            "users.view",
            "users.assign_role",
            "users.move",
            "roles.view",
            "org_units.view",
            "audit.view",
            "sessions.revoke",
        ],
    )
    staff_role = factory.role("Staff", ["attendance.view", "tasks.view"])
    role_manager = factory.role("Role Manager", ["admin.panel", "roles.create"])

    root = factory.user("root@example.com", org_unit_id=hq, super_admin=True)
    manager = factory.user("manager@example.com", org_unit_id=north)
    staff = factory.user("staff@example.com", org_unit_id=north_branch)
    plain = factory.user("plain@example.com", org_unit_id=north_branch)
    south_user = factory.user("south@example.com", org_unit_id=south)
    factory.grant(manager, org_admin)
    factory.grant(staff, staff_role)

    return SimpleNamespace(
        store=store,
        org=SimpleNamespace(hq=hq, north=north, north_branch=north_branch, south=south),
        roles=SimpleNamespace(org_admin=org_admin, staff=staff_role, role_manager=role_manager),
        users=SimpleNamespace(root=root, manager=manager, staff=staff, plain=plain, south=south_user),
    )


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[tuple[TestClient, SimpleNamespace], None, None]:
    """Yield (client, world) for API integration tests.

    world.tokens holds one live session token per seeded user, created
    directly in the store so the login rate limit is left untouched.
    """
    store = _make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    factory = Factory(store)
    world = _seed_world(factory)
    world.tokens = SimpleNamespace(
        root=factory.session(world.users.root),
        manager=factory.session(world.users.manager),
        staff=factory.session(world.users.staff),
        plain=factory.session(world.users.plain),
        south=factory.session(world.users.south),
    )
    world.factory = factory

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, world

    store.close()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_header():
    """Return a helper that builds the Authorization header for a session token."""
    return bearer


@pytest.fixture
def password() -> str:
    """Plaintext password of every factory user."""
    return PASSWORD
