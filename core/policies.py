"""
core/policies.py -- Policy key format, built-in policy catalog, and name rules.

A policy key is the atomic permission string "resource.action[.subaction]".
Keys are immutable once created; the store never renames them.

The catalog below is the code-side list of keys the application knows about.
sync_policy_catalog() (rbac/service.py) creates missing catalog entries in the
store at startup and never deletes anything. require_policy() checks route
declarations against it so a typo fails at import time rather than silently
denying (or allowing) every request.

Layer rule: core/ is the kernel. No imports from api/, auth/, cache/, or rbac/.
"""

import re
from typing import Optional

# Lowercase segments, 2-3 parts, underscores and hyphens allowed after the
# first character of each segment.
POLICY_KEY_PATTERN = r"^[a-z][a-z0-9_-]*(\.[a-z][a-z0-9_-]*){1,2}$"
_POLICY_KEY_RE = re.compile(POLICY_KEY_PATTERN)

ROLE_NAME_PATTERN = r"^[a-zA-Z0-9\s\-_.,()]+$"
_ROLE_NAME_RE = re.compile(ROLE_NAME_PATTERN)
ROLE_NAME_MAX_LENGTH = 100
ROLE_LEVEL_MIN = -100
ROLE_LEVEL_MAX = 100

# ---------------------------------------------------------------------------
# Well-known keys referenced from code
# ---------------------------------------------------------------------------

ADMIN_PANEL = "admin.panel"
USERS_VIEW = "users.view"
USERS_ASSIGN_ROLE = "users.assign_role"
USERS_MOVE = "users.move"
ROLES_VIEW = "roles.view"
ROLES_CREATE = "roles.create"
ROLES_EDIT = "roles.edit"
ROLES_DELETE = "roles.delete"
POLICIES_VIEW = "policies.view"
POLICIES_CREATE = "policies.create"
ORG_UNITS_VIEW = "org_units.view"
AUDIT_VIEW = "audit.view"
SESSIONS_REVOKE = "sessions.revoke"

# key -> description. Category is always the first segment of the key.
POLICY_CATALOG: dict[str, str] = {
    "dashboard.view": "View Dashboard",
    USERS_VIEW: "View users",
    USERS_ASSIGN_ROLE: "Grant or revoke roles on other users",
    USERS_MOVE: "Move users between org units",
    ROLES_VIEW: "View roles",
    ROLES_CREATE: "Create roles",
    ROLES_EDIT: "Edit roles and their policies",
    ROLES_DELETE: "Delete roles",
    POLICIES_VIEW: "View policies",
    POLICIES_CREATE: "Create and disable policies",
    ADMIN_PANEL: "Access the admin panel",
    "settings.view": "View global settings",
    "settings.edit": "Edit global settings",
    ORG_UNITS_VIEW: "View org units in scope",
    AUDIT_VIEW: "View the RBAC audit log",
    SESSIONS_REVOKE: "Force logout of all sessions of a user",
    "members.view": "View Members",
    "attendance.view": "View Attendance",
    "attendance.create": "Fill Attendance",
    "sales.view": "View Sales",
    "sales.refresh": "Refresh Sales",
    "sales.staff.view": "View Sales Staff",
    "tasks.view": "View Tasks",
    "tasks.create": "Create Tasks",
    "tasks.history.view": "View Task History",
    "claims.view": "View Claims",
    "announcements.view": "View Announcements",
    "targets.view": "View Targets",
    "manager.view": "View Manager",
    "manager.assign": "Assign Manager",
    "manager.team.view": "View Manager Team",
    "requests.view": "View Requests",
    "trainings.view": "View Trainings",
    "help_tickets.view": "View Help Tickets",
    "help_tickets.create": "Create Help Tickets",
    "help_tickets.update": "Update Help Tickets",
    "help_tickets.assign": "Assign Help Tickets",
    "help_tickets.close": "Close Help Tickets",
}

# Global, non-org-scoped capabilities. Default for Settings.privileged_policies.
DEFAULT_PRIVILEGED_POLICIES: tuple[str, ...] = (
    "dashboard.view",
    ROLES_VIEW,
    ROLES_CREATE,
    ROLES_EDIT,
    ROLES_DELETE,
    POLICIES_VIEW,
    POLICIES_CREATE,
    ADMIN_PANEL,
    "settings.view",
    "settings.edit",
)


class UnknownPolicyError(LookupError):
    """A route or configuration names a policy key that is not in the catalog.

    This is a programming/configuration error, not an authorization outcome.
    """


def is_valid_policy_key(key: str) -> bool:
    return isinstance(key, str) and _POLICY_KEY_RE.match(key) is not None


def category_for(key: str) -> str:
    """Return the category of a policy key (its first segment)."""
    return key.split(".", 1)[0]


def ensure_known_policy(key: str) -> str:
    """Return key unchanged if it is a well-formed catalog key, else raise UnknownPolicyError."""
    if not is_valid_policy_key(key):
        raise UnknownPolicyError(f"Malformed policy key: {key!r}")
    if key not in POLICY_CATALOG:
        raise UnknownPolicyError(f"Policy key is not in the catalog: {key!r}")
    return key


def role_name_error(name: str) -> Optional[str]:
    """Return a human-readable problem with a role name, or None if it is acceptable."""
    if not name or not name.strip():
        return "Role name cannot be empty or whitespace"
    if len(name) > ROLE_NAME_MAX_LENGTH:
        return f"Role name cannot exceed {ROLE_NAME_MAX_LENGTH} characters"
    if not _ROLE_NAME_RE.match(name):
        return "Role name contains invalid characters. Only letters, numbers, spaces, and basic punctuation are allowed."
    return None
