"""
API request and response models for orgguard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AuditEntry, OrgUnit, Policy, RequestContext, User
from core.policies import POLICY_KEY_PATTERN, ROLE_LEVEL_MAX, ROLE_LEVEL_MIN, ROLE_NAME_MAX_LENGTH, role_name_error
from rbac.guard import RoleAssignmentCheck
from rbac.service import RoleView

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    store: str = "ok"


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginTypeEnum(str, Enum):
    password = "password"
    employee = "employee"


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    login_type: LoginTypeEnum = LoginTypeEnum.password
    employee_card_no: Optional[str] = Field(default=None, max_length=64)


class RoleRefResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str


class MeResponse(BaseModel):
    """The caller's resolved authorization snapshot plus session metadata."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    org_unit_id: Optional[int]
    employee_id: Optional[str] = None
    is_super_admin: bool = False
    roles: list[RoleRefResponse]
    policies: list[str]
    accessible_org_unit_ids: list[int]
    policy_version: int
    login_type: str = "password"
    employee_card_no: Optional[str] = None

    @classmethod
    def from_context(cls, context: RequestContext) -> "MeResponse":
        snap = context.snapshot
        return cls(
            id=snap.id,
            name=snap.name,
            email=snap.email,
            org_unit_id=snap.org_unit_id,
            employee_id=snap.employee_id,
            is_super_admin=snap.is_super_admin,
            roles=[RoleRefResponse(id=r.id, name=r.name) for r in snap.roles],
            policies=list(snap.policies),
            accessible_org_unit_ids=list(snap.accessible_org_unit_ids),
            policy_version=snap.policy_version,
            login_type=context.login_type,
            employee_card_no=context.employee_card_no,
        )


class LoginResponse(BaseModel):
    session_token: str
    token_type: str = "bearer"
    expires_at: str
    user: MeResponse


# ---------------------------------------------------------------------------
# Org units
# ---------------------------------------------------------------------------


class OrgUnitResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    code: str
    type: Optional[str] = None
    parent_id: Optional[int] = None
    level: int = 0

    @classmethod
    def from_org_unit(cls, unit: OrgUnit) -> "OrgUnitResponse":
        return cls(
            id=unit.id,
            name=unit.name,
            code=unit.code,
            type=unit.type,
            parent_id=unit.parent_id,
            level=unit.level,
        )


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


class PolicyCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(pattern=POLICY_KEY_PATTERN, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=50)


class PolicyPatch(BaseModel):
    """Body for PATCH /admin/policies/{id}. The key is immutable, so it is rejected as an extra field."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None


class PolicyResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    key: str
    description: Optional[str] = None
    category: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_policy(cls, policy: Policy) -> "PolicyResponse":
        return cls(
            id=policy.id,
            key=policy.key,
            description=policy.description,
            category=policy.category,
            is_active=policy.is_active,
        )


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=ROLE_NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=500)
    level: int = Field(default=0, ge=ROLE_LEVEL_MIN, le=ROLE_LEVEL_MAX)
    policy_ids: list[int] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        error = role_name_error(value)
        if error:
            raise ValueError(error)
        return value


class RolePatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=ROLE_NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=500)
    level: Optional[int] = Field(default=None, ge=ROLE_LEVEL_MIN, le=ROLE_LEVEL_MAX)
    policy_ids: Optional[list[int]] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            error = role_name_error(value)
            if error:
                raise ValueError(error)
        return value


class UserSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    org_unit_id: Optional[int] = None
    is_super_admin: bool = False

    @classmethod
    def from_user(cls, user: User) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            org_unit_id=user.org_unit_id,
            is_super_admin=user.is_super_admin,
        )


class RoleResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    level: int = 0
    policies: list[PolicyResponse] = Field(default_factory=list)
    user_count: int = 0
    users: list[UserSummary] = Field(default_factory=list)

    @classmethod
    def from_view(cls, view: RoleView) -> "RoleResponse":
        return cls(
            id=view.role.id,
            name=view.role.name,
            description=view.role.description,
            level=view.role.level,
            policies=[PolicyResponse.from_policy(p) for p in view.policies],
            user_count=view.user_count,
            users=[UserSummary.from_user(u) for u in view.users],
        )


# ---------------------------------------------------------------------------
# User administration
# ---------------------------------------------------------------------------


class UserRoleReplace(BaseModel):
    role_id: int


class UserOrgUnitUpdate(BaseModel):
    org_unit_id: int


class AssignmentCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[str] = None
    message: str = ""
    missing_policies: list[str] = Field(default_factory=list)
    bypass: bool = False

    @classmethod
    def from_check(cls, check: RoleAssignmentCheck) -> "AssignmentCheckResponse":
        return cls(
            allowed=check.allowed,
            reason=check.reason,
            message=check.message,
            missing_policies=list(check.missing_policies),
            bypass=check.bypass,
        )


class LogoutAllResponse(BaseModel):
    user_id: int
    sessions_revoked: int


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    actor_user_id: Optional[int]
    action: str
    entity: str
    entity_id: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            actor_user_id=entry.actor_user_id,
            action=entry.action,
            entity=entry.entity,
            entity_id=entry.entity_id,
            meta=entry.meta,
            created_at=entry.created_at,
        )
