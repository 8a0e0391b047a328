# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- ORDERS --

ORDER_PERMISSIONS = [
    (
        "PLACE_ORDER",
        "Place Order",
        "Use the cart and check out new orders",
        PermissionCategory.ORDERS,
    ),
    (
        "VIEW_OWN_ORDERS",
        "View Own Orders",
        "View orders placed by the signed-in account",
        PermissionCategory.ORDERS,
    ),
    (
        "VIEW_ALL_ORDERS",
        "View All Orders",
        "View every account's orders and their status history",
        PermissionCategory.ORDERS,
    ),
    (
        "CONFIRM_ORDER",
        "Confirm Order",
        "Move pending orders to confirmed",
        PermissionCategory.ORDERS,
    ),
    (
        "SET_DELIVERY_FEE",
        "Set Delivery Fee",
        "Add or change the delivery fee on unpaid orders",
        PermissionCategory.ORDERS,
    ),
    (
        "CANCEL_ORDER",
        "Cancel Order",
        "Cancel orders that have not shipped",
        PermissionCategory.ORDERS,
    ),
]


# -- FULFILLMENT --

FULFILLMENT_PERMISSIONS = [
    (
        "MANAGE_FULFILLMENT",
        "Manage Fulfillment",
        "Start and complete packing, ship and deliver orders",
        PermissionCategory.FULFILLMENT,
    ),
    (
        "CONFIRM_DELIVERY",
        "Confirm Delivery",
        "Confirm receipt of the signed-in account's shipped orders",
        PermissionCategory.FULFILLMENT,
    ),
]


# -- PAYMENTS --

PAYMENT_PERMISSIONS = [
    (
        "RECORD_PAYMENT",
        "Record Payment",
        "Relay payment gateway confirmation or failure for an order",
        PermissionCategory.PAYMENTS,
    ),
]


# -- LOYALTY --

LOYALTY_PERMISSIONS = [
    (
        "VIEW_LOYALTY",
        "View Loyalty",
        "View own points balance and transactions",
        PermissionCategory.LOYALTY,
    ),
    (
        "REDEEM_LOYALTY",
        "Redeem Loyalty",
        "Redeem points as discount or rewards at checkout",
        PermissionCategory.LOYALTY,
    ),
    (
        "ADJUST_LOYALTY",
        "Adjust Loyalty",
        "Manually credit or debit an account's points and reconcile ledgers",
        PermissionCategory.LOYALTY,
    ),
    (
        "MANAGE_LOYALTY_GIFTS",
        "Manage Loyalty Gifts",
        "Create and edit redeemable gifts and adjust their stock",
        PermissionCategory.LOYALTY,
    ),
]


# -- INVOICES --

INVOICE_PERMISSIONS = [
    (
        "VIEW_OWN_INVOICES",
        "View Own Invoices",
        "Generate and download invoices for own orders",
        PermissionCategory.INVOICES,
    ),
    (
        "VIEW_ALL_INVOICES",
        "View All Invoices",
        "Generate and download invoices for any order",
        PermissionCategory.INVOICES,
    ),
]


PERMISSION_DEFINITIONS = (
    ORDER_PERMISSIONS
    + FULFILLMENT_PERMISSIONS
    + PAYMENT_PERMISSIONS
    + LOYALTY_PERMISSIONS
    + INVOICE_PERMISSIONS
)
