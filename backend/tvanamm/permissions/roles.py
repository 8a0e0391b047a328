# Overview: Closed set of portal roles and the role -> permission table.

from __future__ import annotations

from enum import Enum

from .definitions import PERMISSION_DEFINITIONS


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    FRANCHISE = "franchise"
    CUSTOMER = "customer"

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Strict lookup; unknown role strings are an error, never a fallthrough."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown role '{value}'. Must be one of: {', '.join(r.value for r in cls)}"
            ) from None

    @property
    def is_staff(self) -> bool:
        return self in (Role.OWNER, Role.ADMIN)


_ALL = frozenset(perm[0] for perm in PERMISSION_DEFINITIONS)

_BUYER = frozenset({
    "PLACE_ORDER",
    "VIEW_OWN_ORDERS",
    "CONFIRM_DELIVERY",
    "VIEW_LOYALTY",
    "REDEEM_LOYALTY",
    "VIEW_OWN_INVOICES",
})

DEFAULT_ROLE_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.OWNER: _ALL,
    Role.ADMIN: _ALL - {"ADJUST_LOYALTY"},
    Role.FRANCHISE: _BUYER,
    Role.CUSTOMER: _BUYER,
}

_unmapped = set(Role) - set(DEFAULT_ROLE_PERMISSIONS)
if _unmapped:
    raise RuntimeError(f"Roles without a permission table entry: {sorted(r.value for r in _unmapped)}")

_unknown = set().union(*DEFAULT_ROLE_PERMISSIONS.values()) - _ALL
if _unknown:
    raise RuntimeError(f"Permission table references undefined codes: {sorted(_unknown)}")


def permissions_for(role: Role | str) -> frozenset[str]:
    if not isinstance(role, Role):
        role = Role.parse(role)
    return DEFAULT_ROLE_PERMISSIONS[role]


def has_permission(role: Role | str, permission_code: str) -> bool:
    return permission_code in permissions_for(role)
