# Overview: Order state machine over the (status, payment_status) pair; pure, no database access.

"""
Order lifecycle

STATE MACHINE (status):
    pending -> confirmed -> payment_completed -> packing -> packed -> shipped -> delivered
    pending | confirmed | payment_completed | packing | packed -> cancelled

The workflow stage (status) and the money stage (payment_status) are one
combined OrderState. Every change goes through next_state(), which checks
the transition table, who may trigger it, and that the resulting pair is a
valid combination (e.g. delivered never pairs with payment_status=pending).

RULES:
1. Cannot skip states (pending -> packed is forbidden)
2. Cannot reverse states (shipped -> pending is forbidden)
3. delivered and cancelled are terminal
4. payment_completed is entered only on the payment signal, never by staff
"""

from __future__ import annotations

from typing import NamedTuple

from ..validation import ConflictError, ValidationError


ORDER_STATUSES = (
    "pending",
    "confirmed",
    "payment_completed",
    "packing",
    "packed",
    "shipped",
    "delivered",
    "cancelled",
)
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")

TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})
CANCELLABLE_STATUSES = frozenset({"pending", "confirmed", "payment_completed", "packing", "packed"})

# Who may cause a transition
TRIGGER_STAFF = "staff"
TRIGGER_PAYMENT = "payment"
TRIGGER_CUSTOMER = "customer"
TRIGGER_TIMEOUT = "timeout"
TRIGGER_CHECKOUT = "checkout"
TRIGGERS = frozenset({TRIGGER_STAFF, TRIGGER_PAYMENT, TRIGGER_CUSTOMER, TRIGGER_TIMEOUT, TRIGGER_CHECKOUT})

TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {
    ("pending", "confirmed"): frozenset({TRIGGER_STAFF}),
    ("confirmed", "payment_completed"): frozenset({TRIGGER_PAYMENT}),
    ("payment_completed", "packing"): frozenset({TRIGGER_STAFF}),
    ("packing", "packed"): frozenset({TRIGGER_STAFF}),
    ("packed", "shipped"): frozenset({TRIGGER_STAFF}),
    ("shipped", "delivered"): frozenset({TRIGGER_STAFF, TRIGGER_CUSTOMER}),
    **{
        (status, "cancelled"): frozenset({TRIGGER_STAFF, TRIGGER_TIMEOUT})
        for status in CANCELLABLE_STATUSES
    },
}

VALID_PAYMENT_STATUSES: dict[str, frozenset[str]] = {
    "pending": frozenset({"pending"}),
    "confirmed": frozenset({"pending", "failed"}),
    "payment_completed": frozenset({"completed"}),
    "packing": frozenset({"completed"}),
    "packed": frozenset({"completed"}),
    "shipped": frozenset({"completed"}),
    "delivered": frozenset({"completed"}),
    "cancelled": frozenset({"pending", "failed", "completed", "refunded"}),
}

# Timestamp/actor columns stamped when a status is entered
STATUS_STAMPS: dict[str, tuple[str, str | None]] = {
    "confirmed": ("confirmed_at", "confirmed_by"),
    "payment_completed": ("payment_completed_at", None),
    "packing": ("packing_started_at", "packing_started_by"),
    "packed": ("packed_at", "packed_by"),
    "shipped": ("shipped_at", "shipped_by"),
    "delivered": ("delivered_at", "delivered_by"),
    "cancelled": ("cancelled_at", "cancelled_by"),
}

INITIAL_STATE_STATUS = "pending"


class OrderState(NamedTuple):
    status: str
    payment_status: str

    def to_dict(self) -> dict:
        return {"status": self.status, "payment_status": self.payment_status}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open_unpaid(self) -> bool:
        return not self.is_terminal and self.payment_status != "completed"


INITIAL_STATE = OrderState(INITIAL_STATE_STATUS, "pending")


class LifecycleError(ConflictError):
    """
    Raised when an invalid order transition is attempted.

    This is a domain error, not a technical error. current_state holds the
    persisted (status, payment_status) so callers can resync.
    """

    def __init__(self, message: str, state: OrderState, details: dict | None = None):
        super().__init__(message, details=details, current_state=state.to_dict())
        self.state = state


def validate_status(status: str) -> None:
    if status not in ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(ORDER_STATUSES)}",
            details={"allowed": list(ORDER_STATUSES)},
        )


def is_valid_state(state: OrderState) -> bool:
    allowed = VALID_PAYMENT_STATUSES.get(state.status)
    return allowed is not None and state.payment_status in allowed


def can_transition(from_status: str, to_status: str, trigger: str | None = None) -> bool:
    triggers = TRANSITIONS.get((from_status, to_status))
    if triggers is None:
        return False
    return trigger is None or trigger in triggers


def allowed_next_statuses(status: str, trigger: str | None = None) -> list[str]:
    return [
        to for (frm, to) in TRANSITIONS
        if frm == status and can_transition(frm, to, trigger)
    ]


def next_state(state: OrderState, to_status: str, trigger: str) -> OrderState:
    """
    Compute the state after moving to to_status.

    The payment axis follows the workflow: entering payment_completed
    completes payment; every other transition keeps payment_status.

    Raises:
        ValidationError: to_status is not a known status.
        LifecycleError: transition not in the table, trigger not allowed
            for it, or the resulting pair is invalid.
    """
    validate_status(to_status)
    if trigger not in TRIGGERS:
        raise ValueError(f"Unknown trigger '{trigger}'")

    if state.status in TERMINAL_STATUSES:
        raise LifecycleError(
            f"Order is {state.status}; no further transitions are permitted",
            state,
        )

    triggers = TRANSITIONS.get((state.status, to_status))
    if triggers is None:
        raise LifecycleError(
            f"Cannot move order from '{state.status}' to '{to_status}'",
            state,
            details={"allowed": allowed_next_statuses(state.status)},
        )
    if trigger not in triggers:
        raise LifecycleError(
            f"'{state.status}' -> '{to_status}' cannot be triggered by {trigger}",
            state,
            details={"allowed_triggers": sorted(triggers)},
        )

    payment_status = "completed" if to_status == "payment_completed" else state.payment_status
    new_state = OrderState(to_status, payment_status)
    if not is_valid_state(new_state):
        raise LifecycleError(
            f"Order cannot be '{to_status}' while payment is '{payment_status}'",
            state,
        )
    return new_state


def payment_failed_state(state: OrderState) -> OrderState:
    """Payment gateway reported failure: only the money axis moves."""
    new_state = OrderState(state.status, "failed")
    if state.is_terminal or not is_valid_state(new_state):
        raise LifecycleError(
            f"Cannot record a failed payment on a '{state.status}' order",
            state,
        )
    return new_state


def refunded_state(state: OrderState) -> OrderState:
    """Collected money returned on a cancelled order."""
    if state != OrderState("cancelled", "completed"):
        raise LifecycleError("Only paid, cancelled orders can be refunded", state)
    return OrderState("cancelled", "refunded")
