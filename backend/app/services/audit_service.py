"""Audit event classification.

Every row in ``audit_log`` carries a category so that reporting and
future retention jobs can tell mutations apart from routine events:

* **MUTATION** -- create, update, delete, login, reconcile ...
* **READ_ACCESS** -- views of sensitive data
* **SYSTEM** -- startup, shutdown, failed logins, errors
"""

from __future__ import annotations

import enum


class AuditEventCategory(str, enum.Enum):
    MUTATION = "mutation"
    READ_ACCESS = "read_access"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Action → category classifier
# ---------------------------------------------------------------------------

_MUTATION_KEYWORDS = {
    "create",
    "update",
    "delete",
    "login",
    "reconcile",
    "remove",
    "upload",
}

_SYSTEM_PREFIXES = (
    "system.",
    "health.",
    "error.",
    "auth.failed",
)


def classify_action(action: str) -> AuditEventCategory:
    """Map an action string to a retention category."""
    action_lower = action.lower()

    for prefix in _SYSTEM_PREFIXES:
        if action_lower.startswith(prefix):
            return AuditEventCategory.SYSTEM

    # Mutations: any segment that is a mutation keyword
    parts = action_lower.replace(".", "_").split("_")
    for part in parts:
        if part in _MUTATION_KEYWORDS:
            return AuditEventCategory.MUTATION

    read_keywords = ("view", "read", "list", "export", "report", "download")
    if any(kw in action_lower for kw in read_keywords):
        return AuditEventCategory.READ_ACCESS

    # Unknown actions are kept as mutations
    return AuditEventCategory.MUTATION
