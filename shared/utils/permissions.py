"""
shared/utils/permissions.py
Granular admin permissions: one `<tab>.<action>` key per grant.

Evaluation rules:
- super_admin holds every permission, stored grants are ignored
- admin holds exactly the keys in its grant set; a set that has not been
  loaded (None) denies everything
- staff and customer never hold granular permissions
"""

from typing import AbstractSet, List, Optional, Tuple

from shared.models.models import UserRole
from shared.utils.errors import AuthorizationError, ValidationError

PERMISSION_TABS: Tuple[str, ...] = (
    "dashboard",
    "bookings",
    "staff",
    "packages",
    "addons",
    "custom_features",
    "panchayaths",
    "settings",
)

PERMISSION_ACTIONS: Tuple[str, ...] = ("view", "create", "edit", "delete")

TAB_LABELS = {
    "dashboard": "Dashboard",
    "bookings": "Bookings",
    "staff": "Staff",
    "packages": "Packages",
    "addons": "Add-ons",
    "custom_features": "Custom Features",
    "panchayaths": "Panchayaths",
    "settings": "Settings",
}


def build_permission_key(tab: str, action: str) -> str:
    return f"{tab}.{action}"


def parse_permission_key(key: str) -> Optional[Tuple[str, str]]:
    """Split a key into (tab, action). Returns None for anything unknown."""
    tab, sep, action = key.partition(".")
    if not sep or tab not in PERMISSION_TABS or action not in PERMISSION_ACTIONS:
        return None
    return tab, action


def all_permission_keys() -> List[str]:
    return [
        build_permission_key(tab, action)
        for tab in PERMISSION_TABS
        for action in PERMISSION_ACTIONS
    ]


def has_permission(
    role: Optional[UserRole],
    grants: Optional[AbstractSet[str]],
    tab: str,
    action: str = "view",
) -> bool:
    if role == UserRole.SUPER_ADMIN:
        return True
    if role != UserRole.ADMIN:
        return False
    if grants is None:
        return False
    return build_permission_key(tab, action) in grants


def can_view_tab(role: Optional[UserRole], grants: Optional[AbstractSet[str]], tab: str) -> bool:
    return has_permission(role, grants, tab, "view")


def effective_permission_keys(
    role: Optional[UserRole], grants: Optional[AbstractSet[str]]
) -> List[str]:
    """Keys the caller actually holds, in catalogue order."""
    return [
        key for key in all_permission_keys()
        if has_permission(role, grants, *key.split("."))
    ]


def ensure_permission(
    role: Optional[UserRole],
    grants: Optional[AbstractSet[str]],
    tab: str,
    action: str,
) -> None:
    if not has_permission(role, grants, tab, action):
        raise AuthorizationError(
            f"Missing permission '{build_permission_key(tab, action)}'"
        )


def validate_permission_keys(keys: List[str]) -> List[str]:
    """Reject unknown keys and drop duplicates, preserving order."""
    unknown = [k for k in keys if parse_permission_key(k) is None]
    if unknown:
        raise ValidationError(f"Unknown permission keys: {', '.join(sorted(set(unknown)))}")
    return list(dict.fromkeys(keys))
