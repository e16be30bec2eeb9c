from __future__ import annotations

from typing import Iterable, Set

from facilitydesk.errors import ForbiddenError


SUPERADMIN = "superadmin"
CLIENT_ADMIN = "client_admin"
BUSINESS_MANAGER = "business_manager"
TECHNICIAN = "technician"
EXTERNAL_MAINTAINER = "external_maintainer"
SUBCONTRACTOR = "subcontractor"

VALID_ROLES: Set[str] = {
    SUPERADMIN,
    CLIENT_ADMIN,
    BUSINESS_MANAGER,
    TECHNICIAN,
    EXTERNAL_MAINTAINER,
    SUBCONTRACTOR,
}

# Tenant staff may act on every quote of their tenant.
STAFF_ROLES: Set[str] = {CLIENT_ADMIN, BUSINESS_MANAGER}

# Only ever see quotes they requested or were invited to answer.
RECIPIENT_ONLY_ROLES: Set[str] = {TECHNICIAN, EXTERNAL_MAINTAINER, SUBCONTRACTOR}


def normalize_role(role: str | None, default: str = "") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role)
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalize_role(role) in allowed


def require_roles(role: str | None, *allowed_roles: str) -> str:
    normalized_role = normalize_role(role)
    if normalized_role and has_any_role(normalized_role, allowed_roles):
        return normalized_role
    raise ForbiddenError(code="permission_denied", details=f"role={role!r}")


def is_superadmin(role: str | None) -> bool:
    return normalize_role(role) == SUPERADMIN


def is_staff(role: str | None) -> bool:
    return normalize_role(role) in STAFF_ROLES


def is_recipient_only(role: str | None) -> bool:
    return normalize_role(role) in RECIPIENT_ONLY_ROLES
