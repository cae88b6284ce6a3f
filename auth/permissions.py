"""
auth/permissions.py -- Role-based permission registry.

Permissions are "<resource>.<action>" strings. Roles map to a fixed set; the
set is embedded in the access token at signin so request handling needs no
extra lookup. An unknown role has no permissions.
"""

from __future__ import annotations

_RESOURCES: dict[str, tuple[str, ...]] = {
    "users": ("view", "create", "edit", "delete"),
    "roles": ("view", "create", "edit", "delete"),
    "projects": ("view", "create", "edit", "delete"),
    "tasks": ("view", "create", "edit", "delete"),
    "sprints": ("view", "create", "edit", "delete"),
    "risks": ("view", "create", "edit", "delete"),
    "issues": ("view", "create", "edit", "delete"),
    "audits": ("view", "create", "edit", "delete", "approve"),
    "reports": ("view", "create", "edit", "delete", "export"),
    "action_plans": ("view", "create", "edit", "delete"),
    "change_requests": ("view", "create", "edit", "delete", "approve"),
    "releases": ("view", "create", "edit", "delete"),
    "budgets": ("view", "create", "edit", "delete", "approve"),
    "expenses": ("view", "create", "edit", "delete", "approve"),
    "timesheets": ("view", "create", "edit", "delete", "approve"),
    "settings": ("view", "edit"),
    "dashboard": ("view", "analytics"),
}

PERMISSIONS: frozenset[str] = frozenset(f"{res}.{act}" for res, acts in _RESOURCES.items() for act in acts)


def _grant(spec: dict[str, str]) -> frozenset[str]:
    """Expand {"tasks": "view create"} into {"tasks.view", "tasks.create"}."""
    granted = {f"{res}.{act}" for res, acts in spec.items() for act in acts.split()}
    unknown = granted - PERMISSIONS
    if unknown:
        raise ValueError(f"Unknown permissions: {sorted(unknown)}")
    return frozenset(granted)


ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "Super Admin": PERMISSIONS,
    "Admin": _grant(
        {
            "users": "view create edit",
            "roles": "view",
            "projects": "view create edit delete",
            "tasks": "view create edit delete",
            "sprints": "view create edit delete",
            "risks": "view create edit delete",
            "issues": "view create edit delete",
            "audits": "view create edit approve",
            "reports": "view create edit export",
            "action_plans": "view create edit",
            "change_requests": "view create edit approve",
            "releases": "view create edit delete",
            "budgets": "view create edit approve",
            "expenses": "view create edit approve",
            "timesheets": "view create edit approve",
            "settings": "view",
            "dashboard": "view analytics",
        }
    ),
    "Project Manager": _grant(
        {
            "users": "view",
            "projects": "view create edit",
            "tasks": "view create edit delete",
            "sprints": "view create edit delete",
            "risks": "view create edit",
            "issues": "view create edit",
            "reports": "view create edit",
            "change_requests": "view create edit",
            "releases": "view create edit",
            "budgets": "view create edit",
            "expenses": "view create edit approve",
            "timesheets": "view edit approve",
            "dashboard": "view analytics",
        }
    ),
    "Manager": _grant(
        {
            "users": "view",
            "projects": "view edit",
            "tasks": "view create edit",
            "sprints": "view edit",
            "risks": "view create edit",
            "issues": "view create edit",
            "audits": "view create edit",
            "reports": "view create edit",
            "action_plans": "view create edit",
            "change_requests": "view create edit",
            "releases": "view edit",
            "budgets": "view edit",
            "expenses": "view create edit",
            "timesheets": "view edit approve",
            "dashboard": "view analytics",
        }
    ),
    "Team Member": _grant(
        {
            "projects": "view",
            "tasks": "view create edit",
            "sprints": "view",
            "risks": "view create",
            "issues": "view create",
            "reports": "view",
            "change_requests": "view create",
            "releases": "view",
            "expenses": "view create",
            "timesheets": "view create edit",
            "dashboard": "view",
        }
    ),
    "Auditor": _grant(
        {
            "projects": "view",
            "tasks": "view",
            "audits": "view create",
            "reports": "view create",
            "action_plans": "view",
            "change_requests": "view",
            "dashboard": "view",
        }
    ),
    "Viewer": _grant(
        {
            "projects": "view",
            "tasks": "view",
            "sprints": "view",
            "audits": "view",
            "reports": "view",
            "change_requests": "view",
            "releases": "view",
            "budgets": "view",
            "expenses": "view",
            "timesheets": "view",
            "dashboard": "view",
        }
    ),
}

ROLES: tuple[str, ...] = tuple(ROLE_PERMISSIONS)


def permissions_for(role: str) -> list[str]:
    """Return the sorted permission list for a role (empty for unknown roles)."""
    return sorted(ROLE_PERMISSIONS.get(role, frozenset()))
