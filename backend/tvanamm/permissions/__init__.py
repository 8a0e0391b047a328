# Overview: Permission system package.
# Re-exports all public APIs for convenient imports.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    ORDER_PERMISSIONS,
    FULFILLMENT_PERMISSIONS,
    PAYMENT_PERMISSIONS,
    LOYALTY_PERMISSIONS,
    INVOICE_PERMISSIONS,
)
from .roles import Role, DEFAULT_ROLE_PERMISSIONS, permissions_for, has_permission


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
            }
    return None


__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "ORDER_PERMISSIONS",
    "FULFILLMENT_PERMISSIONS",
    "PAYMENT_PERMISSIONS",
    "LOYALTY_PERMISSIONS",
    "INVOICE_PERMISSIONS",
    "Role",
    "DEFAULT_ROLE_PERMISSIONS",
    "permissions_for",
    "has_permission",
    "get_permission_definition",
]
