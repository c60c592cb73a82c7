"""
RBAC Permission Registry

Defines the canonical role-to-permission mapping for staff accounts.
Two roles exist: ``admin`` (everything) and ``editor`` (day-to-day
donation and campaign work, no user administration).

Permission string format: {module}.{resource}.{action}
"""
from __future__ import annotations

# ---------------------------------------------------------------------------
# All permission strings used across the system
# ---------------------------------------------------------------------------

ALL_PERMISSIONS: list[str] = sorted([
    # Donations
    "donations.view",
    "donations.create",
    "donations.update",
    "donations.delete",
    # Campaigns
    "campaigns.view",
    "campaigns.create",
    "campaigns.update",
    "campaigns.delete",
    "campaigns.attachments.view",
    # Dashboard
    "reports.dashboard.view",
    # Administration
    "admin.users.view",
    "admin.users.create",
    "admin.users.update",
    "admin.audit_log.view",
    "admin.funding.reconcile",
])


# ---------------------------------------------------------------------------
# Role → Permissions mapping (source of truth)
# ---------------------------------------------------------------------------

ROLE_PERMISSIONS: dict[str, set[str]] = {
    # Full access, including user management and funding repair.
    "admin": set(ALL_PERMISSIONS),

    # Records donations and runs campaigns.  Campaign edits are further
    # restricted to campaigns the editor created (see campaign service).
    "editor": {
        "donations.view", "donations.create", "donations.update", "donations.delete",
        "campaigns.view", "campaigns.create", "campaigns.update", "campaigns.delete",
        "campaigns.attachments.view",
        "reports.dashboard.view",
    },
}


# ---------------------------------------------------------------------------
# Valid role names (for validation)
# ---------------------------------------------------------------------------

VALID_ROLES: list[str] = sorted(ROLE_PERMISSIONS.keys())

# Roles allowed to mutate campaigns created by someone else.
CAMPAIGN_OVERRIDE_ROLES: set[str] = {"admin"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_role_permissions(role: str) -> set[str]:
    """Return the base permission set for a role, or empty set if unknown."""
    return ROLE_PERMISSIONS.get(role, set())
