"""
api/routes/v1/admin.py -- RBAC administration endpoints.

Routes:
  GET    /api/v1/admin/policies                                 -- policies.view
  POST   /api/v1/admin/policies                                 -- policies.create
  PATCH  /api/v1/admin/policies/{policy_id}                     -- policies.create
  GET    /api/v1/admin/roles                                    -- roles.view
  POST   /api/v1/admin/roles                                    -- roles.create
  GET    /api/v1/admin/roles/{role_id}                          -- roles.view
  PATCH  /api/v1/admin/roles/{role_id}                          -- roles.edit
  DELETE /api/v1/admin/roles/{role_id}                          -- roles.delete
  GET    /api/v1/admin/users/{user_id}/roles                    -- users.view
  PUT    /api/v1/admin/users/{user_id}/roles                    -- delegation guard
  POST   /api/v1/admin/users/{user_id}/roles/{role_id}          -- delegation guard
  DELETE /api/v1/admin/users/{user_id}/roles/{role_id}          -- delegation guard
  GET    /api/v1/admin/users/{user_id}/roles/{role_id}/check    -- delegation guard, dry run
  DELETE /api/v1/admin/users/{user_id}/sessions                 -- sessions.revoke
  PUT    /api/v1/admin/users/{user_id}/org-unit                 -- users.move
  GET    /api/v1/admin/audit-logs                               -- audit.view

Every route also requires admin.panel (router-level dependency).

Role assignment routes do not gate on a single policy: RoleAssignmentGuard
checks the delegation policy, anti-escalation, and org scope, and its denial
is raised as the matching Forbidden-* error.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    AssignmentCheckResponse,
    AuditEntryResponse,
    LogoutAllResponse,
    PolicyCreate,
    PolicyPatch,
    PolicyResponse,
    RoleCreate,
    RolePatch,
    RoleRefResponse,
    RoleResponse,
    UserOrgUnitUpdate,
    UserRoleReplace,
    UserSummary,
)
from auth.dependencies import require_authenticated, require_policy
from auth.models import RequestContext
from core.policies import (
    ADMIN_PANEL,
    AUDIT_VIEW,
    POLICIES_CREATE,
    POLICIES_VIEW,
    ROLES_CREATE,
    ROLES_DELETE,
    ROLES_EDIT,
    ROLES_VIEW,
    SESSIONS_REVOKE,
    USERS_MOVE,
    USERS_VIEW,
)
from rbac.service import RbacAdmin

router = APIRouter(prefix="/admin", dependencies=[Depends(require_policy(ADMIN_PANEL))])


def _admin(request: Request) -> RbacAdmin:
    return request.app.state.rbac


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@router.get("/policies", response_model=list[PolicyResponse])
def list_policies(request: Request, context: RequestContext = Depends(require_policy(POLICIES_VIEW))) -> list[PolicyResponse]:
    return [PolicyResponse.from_policy(p) for p in _admin(request).list_policies()]


@router.post("/policies", response_model=PolicyResponse, status_code=201)
def create_policy(
    request: Request,
    body: PolicyCreate,
    context: RequestContext = Depends(require_policy(POLICIES_CREATE)),
) -> PolicyResponse:
    policy = _admin(request).create_policy(context.snapshot.id, body.key, body.description, body.category)
    return PolicyResponse.from_policy(policy)


@router.patch("/policies/{policy_id}", response_model=PolicyResponse)
def update_policy(
    request: Request,
    policy_id: int,
    body: PolicyPatch,
    context: RequestContext = Depends(require_policy(POLICIES_CREATE)),
) -> PolicyResponse:
    """Update a policy's description, category, or active flag.

    Disabling a policy bumps the policy version of every user who holds it
    through any role; their cached sessions notice within the policy check
    interval.
    """
    policy = _admin(request).update_policy(
        context.snapshot.id,
        policy_id,
        description=body.description,
        category=body.category,
        is_active=body.is_active,
    )
    return PolicyResponse.from_policy(policy)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, context: RequestContext = Depends(require_policy(ROLES_VIEW))) -> list[RoleResponse]:
    return [RoleResponse.from_view(v) for v in _admin(request).list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    context: RequestContext = Depends(require_policy(ROLES_CREATE)),
) -> RoleResponse:
    view = _admin(request).create_role(
        context.snapshot.id,
        body.name,
        description=body.description,
        level=body.level,
        policy_ids=body.policy_ids,
    )
    return RoleResponse.from_view(view)


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int, context: RequestContext = Depends(require_policy(ROLES_VIEW))) -> RoleResponse:
    return RoleResponse.from_view(_admin(request).get_role(role_id))


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RolePatch,
    context: RequestContext = Depends(require_policy(ROLES_EDIT)),
) -> RoleResponse:
    view = _admin(request).update_role(
        context.snapshot.id,
        role_id,
        name=body.name,
        description=body.description,
        level=body.level,
        policy_ids=body.policy_ids,
    )
    return RoleResponse.from_view(view)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(
    request: Request,
    role_id: int,
    context: RequestContext = Depends(require_policy(ROLES_DELETE)),
) -> Response:
    _admin(request).delete_role(context.snapshot.id, role_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User <-> Role
# ---------------------------------------------------------------------------


@router.get("/users/{user_id}/roles", response_model=list[RoleRefResponse])
def get_user_roles(
    request: Request,
    user_id: int,
    context: RequestContext = Depends(require_policy(USERS_VIEW)),
) -> list[RoleRefResponse]:
    return [RoleRefResponse(id=r.id, name=r.name) for r in _admin(request).user_roles(user_id)]


@router.put("/users/{user_id}/roles", response_model=list[RoleRefResponse])
def replace_user_roles(
    request: Request,
    user_id: int,
    body: UserRoleReplace,
    context: RequestContext = Depends(require_authenticated),
) -> list[RoleRefResponse]:
    """Make body.role_id the user's only role, atomically."""
    role = _admin(request).replace_user_roles(context.snapshot.id, user_id, body.role_id)
    return [RoleRefResponse(id=role.id, name=role.name)]


@router.post("/users/{user_id}/roles/{role_id}", response_model=RoleRefResponse, status_code=201)
def assign_role(
    request: Request,
    user_id: int,
    role_id: int,
    context: RequestContext = Depends(require_authenticated),
) -> RoleRefResponse:
    role = _admin(request).assign_role(context.snapshot.id, user_id, role_id)
    return RoleRefResponse(id=role.id, name=role.name)


@router.delete("/users/{user_id}/roles/{role_id}", status_code=204)
def remove_role(
    request: Request,
    user_id: int,
    role_id: int,
    context: RequestContext = Depends(require_authenticated),
) -> Response:
    _admin(request).remove_role(context.snapshot.id, user_id, role_id)
    return Response(status_code=204)


@router.get("/users/{user_id}/roles/{role_id}/check", response_model=AssignmentCheckResponse)
def check_assign_role(
    request: Request,
    user_id: int,
    role_id: int,
    context: RequestContext = Depends(require_authenticated),
) -> AssignmentCheckResponse:
    """Dry run of the delegation guard. Always 200; the decision is in the body."""
    check = _admin(request).guard.can_assign_role(context.snapshot.id, user_id, role_id)
    return AssignmentCheckResponse.from_check(check)


# ---------------------------------------------------------------------------
# Users and sessions
# ---------------------------------------------------------------------------


@router.delete("/users/{user_id}/sessions", response_model=LogoutAllResponse)
def logout_all(
    request: Request,
    user_id: int,
    context: RequestContext = Depends(require_policy(SESSIONS_REVOKE)),
) -> LogoutAllResponse:
    """Force re-login: every session of the user stops working on its next request."""
    revoked = _admin(request).logout_all(context.snapshot.id, user_id)
    return LogoutAllResponse(user_id=user_id, sessions_revoked=revoked)


@router.put("/users/{user_id}/org-unit", response_model=UserSummary)
def move_user(
    request: Request,
    user_id: int,
    body: UserOrgUnitUpdate,
    context: RequestContext = Depends(require_policy(USERS_MOVE)),
) -> UserSummary:
    user = _admin(request).move_user(context.snapshot.id, user_id, body.org_unit_id)
    return UserSummary.from_user(user)


@router.get("/audit-logs", response_model=list[AuditEntryResponse])
def list_audit_logs(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    entity: Optional[str] = Query(default=None, max_length=30),
    context: RequestContext = Depends(require_policy(AUDIT_VIEW)),
) -> list[AuditEntryResponse]:
    """Return audit entries newest first."""
    return [AuditEntryResponse.from_entry(e) for e in _admin(request).audit_entries(limit=limit, entity=entity)]
