"""
tests/test_api_routes.py -- Integration tests for the auth, org-unit and RBAC admin routes.

These tests exercise the full stack: FastAPI routing -> session gates ->
SessionService / RbacAdmin -> AuthStore -> response model serialization.

The api_client fixture is module-scoped, so tests that mutate state create
their own users and roles through world.factory instead of touching the
seeded ones.

Seeded world (see conftest._seed_world):
  HQ > North > North Branch, HQ > South
  root     SuperAdmin at HQ
  manager  Org Admin at North (delegation + scoped admin reads, no roles.create)
  staff    Staff at North Branch (no admin.panel)
  plain    no roles, North Branch
  south    no roles, South
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import PASSWORD, bearer


def _ids(items: list[dict]) -> list[int]:
    return [item["id"] for item in items]


class TestAuthFailure:
    """Requests without a live session are rejected with 401 before any policy check."""

    def test_me_without_token(self, api_client: tuple[TestClient, object]) -> None:
        client, _world = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_unknown_token(self, api_client) -> None:
        client, _world = api_client
        resp = client.get("/api/v1/auth/me", headers=bearer("no-such-session"))
        assert resp.status_code == 401

    def test_admin_route_without_token(self, api_client) -> None:
        client, _world = api_client
        assert client.get("/api/v1/admin/roles").status_code == 401

    def test_expired_session(self, api_client) -> None:
        client, world = api_client
        token = world.factory.expired_session(world.users.plain)
        assert client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 401


class TestLoginFlow:
    def test_login_me_logout(self, api_client) -> None:
        client, world = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "manager@example.com", "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["id"] == world.users.manager
        assert "users.assign_role" in body["user"]["policies"]

        token = body["session_token"]
        me = client.get("/api/v1/auth/me", headers=bearer(token))
        assert me.status_code == 200
        assert me.json()["email"] == "manager@example.com"

        assert client.post("/api/v1/auth/logout", headers=bearer(token)).status_code == 200
        assert client.get("/api/v1/auth/me", headers=bearer(token)).status_code == 401

    def test_bad_password(self, api_client) -> None:
        client, _world = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "manager@example.com", "password": "wrong"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_unknown_email_same_error(self, api_client) -> None:
        client, _world = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid email or password."

    def test_employee_login_type(self, api_client) -> None:
        client, _world = api_client
        resp = client.post(
            "/api/v1/auth/login",
            json={
                "email": "staff@example.com",
                "password": PASSWORD,
                "login_type": "employee",
                "employee_card_no": "CARD-1",
            },
        )
        assert resp.status_code == 200
        me = client.get("/api/v1/auth/me", headers=bearer(resp.json()["session_token"])).json()
        assert me["login_type"] == "employee"
        assert me["employee_card_no"] == "CARD-1"

    def test_x_session_token_header(self, api_client) -> None:
        client, world = api_client
        resp = client.get("/api/v1/auth/me", headers={"X-Session-Token": world.tokens.staff})
        assert resp.status_code == 200
        assert resp.json()["id"] == world.users.staff

    def test_me_reports_scope(self, api_client) -> None:
        client, world = api_client
        me = client.get("/api/v1/auth/me", headers=bearer(world.tokens.manager)).json()
        assert sorted(me["accessible_org_unit_ids"]) == sorted([world.org.north, world.org.north_branch])
        assert [r["name"] for r in me["roles"]] == ["Org Admin"]


class TestOrgUnits:
    def test_manager_sees_subtree(self, api_client) -> None:
        client, world = api_client
        resp = client.get("/api/v1/org-units", headers=bearer(world.tokens.manager))
        assert resp.status_code == 200
        assert _ids(resp.json()) == [world.org.north, world.org.north_branch]

    def test_superadmin_sees_everything(self, api_client) -> None:
        client, world = api_client
        resp = client.get("/api/v1/org-units", headers=bearer(world.tokens.root))
        assert set(_ids(resp.json())) == {world.org.hq, world.org.north, world.org.north_branch, world.org.south}

    def test_missing_policy(self, api_client) -> None:
        client, world = api_client
        resp = client.get("/api/v1/org-units", headers=bearer(world.tokens.plain))
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "missing_policy"
        assert error["detail"] == {"required_policy": "org_units.view"}


class TestAdminGate:
    def test_admin_panel_required(self, api_client) -> None:
        client, world = api_client
        resp = client.get("/api/v1/admin/roles", headers=bearer(world.tokens.staff))
        assert resp.status_code == 403
        assert resp.json()["error"]["detail"] == {"required_policy": "admin.panel"}

    def test_route_policy_on_top_of_panel(self, api_client) -> None:
        """manager holds admin.panel but not policies.view."""
        client, world = api_client
        resp = client.get("/api/v1/admin/policies", headers=bearer(world.tokens.manager))
        assert resp.status_code == 403
        assert resp.json()["error"]["detail"] == {"required_policy": "policies.view"}

    def test_superadmin_bypass_audited_once_per_request(self, api_client) -> None:
        """root holds neither admin.panel nor policies.view, yet one request leaves one bypass row."""
        client, world = api_client
        before = len(world.store.list_audit_entries(limit=1000, entity="authorization"))

        assert client.get("/api/v1/admin/policies", headers=bearer(world.tokens.root)).status_code == 200

        entries = world.store.list_audit_entries(limit=1000, entity="authorization")
        assert len(entries) == before + 1
        newest = entries[0]
        assert newest.actor_user_id == world.users.root
        assert newest.meta["path"] == "/api/v1/admin/policies"


class TestPolicyRoutes:
    def test_create_then_conflict(self, api_client) -> None:
        client, world = api_client
        headers = bearer(world.tokens.root)
        resp = client.post("/api/v1/admin/policies", json={"key": "reports.export"}, headers=headers)
        assert resp.status_code == 201, resp.text
        assert resp.json()["category"] == "reports"

        again = client.post("/api/v1/admin/policies", json={"key": "reports.export"}, headers=headers)
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "conflict"

    def test_malformed_key(self, api_client) -> None:
        client, world = api_client
        resp = client.post("/api/v1/admin/policies", json={"key": "Not A Key"}, headers=bearer(world.tokens.root))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_key_is_immutable(self, api_client) -> None:
        client, world = api_client
        pid = world.store.get_policy_by_key("tasks.view").id
        resp = client.patch(
            f"/api/v1/admin/policies/{pid}",
            json={"key": "tasks.renamed"},
            headers=bearer(world.tokens.root),
        )
        assert resp.status_code == 422
        assert world.store.get_policy(pid).key == "tasks.view"

    def test_patch_description(self, api_client) -> None:
        client, world = api_client
        pid = world.store.get_policy_by_key("claims.view").id
        resp = client.patch(
            f"/api/v1/admin/policies/{pid}",
            json={"description": "See claims"},
            headers=bearer(world.tokens.root),
        )
        assert resp.status_code == 200
        assert resp.json()["description"] == "See claims"

    def test_patch_unknown_policy(self, api_client) -> None:
        client, world = api_client
        resp = client.patch("/api/v1/admin/policies/99999", json={"is_active": False}, headers=bearer(world.tokens.root))
        assert resp.status_code == 404


class TestRoleRoutes:
    def test_role_lifecycle(self, api_client) -> None:
        client, world = api_client
        headers = bearer(world.tokens.root)
        view_id = world.store.get_policy_by_key("tasks.view").id
        create_id = world.store.get_policy_by_key("tasks.create").id

        created = client.post(
            "/api/v1/admin/roles",
            json={"name": "Shift Lead", "level": 3, "policy_ids": [view_id]},
            headers=headers,
        )
        assert created.status_code == 201, created.text
        role_id = created.json()["id"]
        assert [p["key"] for p in created.json()["policies"]] == ["tasks.view"]

        patched = client.patch(f"/api/v1/admin/roles/{role_id}", json={"policy_ids": [view_id, create_id]}, headers=headers)
        assert patched.status_code == 200
        assert sorted(p["key"] for p in patched.json()["policies"]) == ["tasks.create", "tasks.view"]

        assert client.delete(f"/api/v1/admin/roles/{role_id}", headers=headers).status_code == 204
        assert client.get(f"/api/v1/admin/roles/{role_id}", headers=headers).status_code == 404

    def test_invalid_policy_ids(self, api_client) -> None:
        client, world = api_client
        resp = client.post(
            "/api/v1/admin/roles",
            json={"name": "Ghostly", "policy_ids": [99999]},
            headers=bearer(world.tokens.root),
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "invalid_request"
        assert error["detail"] == {"invalid_policies": [99999]}

    def test_duplicate_name(self, api_client) -> None:
        client, world = api_client
        resp = client.post("/api/v1/admin/roles", json={"name": "Staff"}, headers=bearer(world.tokens.root))
        assert resp.status_code == 409

    def test_bad_name_rejected_by_schema(self, api_client) -> None:
        client, world = api_client
        resp = client.post("/api/v1/admin/roles", json={"name": "<b>Boss</b>"}, headers=bearer(world.tokens.root))
        assert resp.status_code == 422

    def test_manager_cannot_create_roles(self, api_client) -> None:
        client, world = api_client
        resp = client.post("/api/v1/admin/roles", json={"name": "Sneaky"}, headers=bearer(world.tokens.manager))
        assert resp.status_code == 403
        assert resp.json()["error"]["detail"] == {"required_policy": "roles.create"}

    def test_manager_can_list_roles(self, api_client) -> None:
        client, world = api_client
        resp = client.get("/api/v1/admin/roles", headers=bearer(world.tokens.manager))
        assert resp.status_code == 200
        by_name = {r["name"]: r for r in resp.json()}
        assert by_name["Org Admin"]["user_count"] == 1


class TestRoleAssignment:
    def test_assign_conflict_remove(self, api_client) -> None:
        client, world = api_client
        headers = bearer(world.tokens.manager)
        target = world.factory.user("assignee@example.com", org_unit_id=world.org.north_branch)
        url = f"/api/v1/admin/users/{target}/roles/{world.roles.staff}"

        assert client.post(url, headers=headers).status_code == 201
        assert client.post(url, headers=headers).status_code == 409

        listed = client.get(f"/api/v1/admin/users/{target}/roles", headers=headers).json()
        assert listed == [{"id": world.roles.staff, "name": "Staff"}]

        assert client.delete(url, headers=headers).status_code == 204
        assert client.delete(url, headers=headers).status_code == 404

    def test_escalation_denied(self, api_client) -> None:
        """manager lacks roles.create, so cannot hand out Role Manager."""
        client, world = api_client
        resp = client.post(
            f"/api/v1/admin/users/{world.users.plain}/roles/{world.roles.role_manager}",
            headers=bearer(world.tokens.manager),
        )
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "privilege_escalation_prevention"
        assert error["detail"] == {"missing_policies": ["roles.create"]}

    def test_out_of_scope_denied(self, api_client) -> None:
        client, world = api_client
        resp = client.post(
            f"/api/v1/admin/users/{world.users.south}/roles/{world.roles.staff}",
            headers=bearer(world.tokens.manager),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "org_out_of_scope"

    def test_no_delegation_policy(self, api_client) -> None:
        client, world = api_client
        world.factory.grant(world.users.south, world.roles.role_manager)
        token = world.factory.session(world.users.south)
        resp = client.post(
            f"/api/v1/admin/users/{world.users.south}/roles/{world.roles.staff}",
            headers=bearer(token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "missing_policy"

    def test_unknown_role(self, api_client) -> None:
        client, world = api_client
        resp = client.post(f"/api/v1/admin/users/{world.users.plain}/roles/99999", headers=bearer(world.tokens.manager))
        assert resp.status_code == 404

    def test_check_endpoint_is_a_dry_run(self, api_client) -> None:
        client, world = api_client
        url = f"/api/v1/admin/users/{world.users.plain}/roles/{world.roles.role_manager}/check"
        resp = client.get(url, headers=bearer(world.tokens.manager))
        assert resp.status_code == 200
        body = resp.json()
        assert body["allowed"] is False
        assert body["reason"] == "privilege_escalation_prevention"
        assert body["missing_policies"] == ["roles.create"]
        assert world.store.get_user_roles(world.users.plain) == []

    def test_check_endpoint_allowed(self, api_client) -> None:
        client, world = api_client
        url = f"/api/v1/admin/users/{world.users.plain}/roles/{world.roles.staff}/check"
        body = client.get(url, headers=bearer(world.tokens.manager)).json()
        assert body == {"allowed": True, "reason": None, "message": "", "missing_policies": [], "bypass": False}

    def test_replace_roles(self, api_client) -> None:
        client, world = api_client
        target = world.factory.user("replace@example.com", org_unit_id=world.org.north_branch)
        world.factory.grant(target, world.factory.role("Temp Role", ["tasks.view"]))

        resp = client.put(
            f"/api/v1/admin/users/{target}/roles",
            json={"role_id": world.roles.staff},
            headers=bearer(world.tokens.manager),
        )
        assert resp.status_code == 200
        assert resp.json() == [{"id": world.roles.staff, "name": "Staff"}]
        assert [r.id for r in world.store.get_user_roles(target)] == [world.roles.staff]

    def test_superadmin_may_grant_anything(self, api_client) -> None:
        client, world = api_client
        target = world.factory.user("promoted@example.com", org_unit_id=world.org.south)
        resp = client.post(
            f"/api/v1/admin/users/{target}/roles/{world.roles.role_manager}",
            headers=bearer(world.tokens.root),
        )
        assert resp.status_code == 201


class TestUserAdministration:
    def test_logout_all(self, api_client) -> None:
        client, world = api_client
        target = world.factory.user("sessions@example.com", org_unit_id=world.org.north_branch)
        tokens = [world.factory.session(target) for _ in range(2)]
        for t in tokens:
            assert client.get("/api/v1/auth/me", headers=bearer(t)).status_code == 200

        resp = client.delete(f"/api/v1/admin/users/{target}/sessions", headers=bearer(world.tokens.manager))
        assert resp.status_code == 200
        assert resp.json() == {"user_id": target, "sessions_revoked": 2}
        for t in tokens:
            assert client.get("/api/v1/auth/me", headers=bearer(t)).status_code == 401

    def test_logout_all_out_of_scope(self, api_client) -> None:
        client, world = api_client
        resp = client.delete(f"/api/v1/admin/users/{world.users.root}/sessions", headers=bearer(world.tokens.manager))
        assert resp.status_code == 403
        assert client.get("/api/v1/auth/me", headers=bearer(world.tokens.root)).status_code == 200

    def test_move_user(self, api_client) -> None:
        client, world = api_client
        target = world.factory.user("mover@example.com", org_unit_id=world.org.north_branch)
        headers = bearer(world.tokens.manager)

        resp = client.put(f"/api/v1/admin/users/{target}/org-unit", json={"org_unit_id": world.org.north}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["org_unit_id"] == world.org.north

        away = client.put(f"/api/v1/admin/users/{target}/org-unit", json={"org_unit_id": world.org.south}, headers=headers)
        assert away.status_code == 403
        assert away.json()["error"]["code"] == "org_out_of_scope"

    def test_audit_log_newest_first(self, api_client) -> None:
        client, world = api_client
        target = world.factory.user("audited@example.com", org_unit_id=world.org.north_branch)
        client.post(f"/api/v1/admin/users/{target}/roles/{world.roles.staff}", headers=bearer(world.tokens.manager))

        resp = client.get("/api/v1/admin/audit-logs?entity=user_role&limit=5", headers=bearer(world.tokens.manager))
        assert resp.status_code == 200
        newest = resp.json()[0]
        assert newest["action"] == "assign"
        assert newest["entity_id"] == f"{target}:{world.roles.staff}"
        assert newest["actor_user_id"] == world.users.manager

    def test_audit_log_limit_validated(self, api_client) -> None:
        client, world = api_client
        resp = client.get("/api/v1/admin/audit-logs?limit=0", headers=bearer(world.tokens.manager))
        assert resp.status_code == 422


class TestLoginRateLimit:
    """Runs last in this module: it spends the whole per-IP login budget."""

    def test_login_rate_limited(self, api_client) -> None:
        from api.limiter import limiter

        client, _world = api_client
        limiter.reset()
        try:
            codes = [
                client.post("/api/v1/auth/login", json={"email": "manager@example.com", "password": "wrong"}).status_code
                for _ in range(10)
            ]
            assert codes == [401] * 10

            resp = client.post("/api/v1/auth/login", json={"email": "manager@example.com", "password": "wrong"})
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "rate_limited"
            assert "Retry-After" in resp.headers
        finally:
            limiter.reset()
