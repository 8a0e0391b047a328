"""
Order state machine tests (pure, no database).
"""

import pytest

from tvanamm.services.lifecycle_service import (
    INITIAL_STATE,
    LifecycleError,
    OrderState,
    allowed_next_statuses,
    can_transition,
    is_valid_state,
    next_state,
    payment_failed_state,
    refunded_state,
)
from tvanamm.validation import ConflictError, ValidationError


HAPPY_PATH = [
    ("pending", "confirmed", "staff"),
    ("confirmed", "payment_completed", "payment"),
    ("payment_completed", "packing", "staff"),
    ("packing", "packed", "staff"),
    ("packed", "shipped", "staff"),
    ("shipped", "delivered", "staff"),
]


class TestTransitions:

    def test_happy_path(self):
        state = INITIAL_STATE
        for from_status, to_status, trigger in HAPPY_PATH:
            assert state.status == from_status
            state = next_state(state, to_status, trigger)
        assert state == OrderState("delivered", "completed")

    def test_payment_signal_completes_payment(self):
        state = next_state(OrderState("confirmed", "pending"), "payment_completed", "payment")
        assert state.payment_status == "completed"

    @pytest.mark.parametrize(
        "state,to_status",
        [
            (OrderState("pending", "pending"), "packed"),
            (OrderState("pending", "pending"), "shipped"),
            (OrderState("shipped", "completed"), "pending"),
            (OrderState("packed", "completed"), "packing"),
            (OrderState("shipped", "completed"), "cancelled"),
        ],
    )
    def test_skips_and_reversals_rejected(self, state, to_status):
        with pytest.raises(LifecycleError) as exc:
            next_state(state, to_status, "staff")
        assert exc.value.current_state == state.to_dict()

    @pytest.mark.parametrize("terminal", ["delivered", "cancelled"])
    def test_terminal_states(self, terminal):
        state = OrderState(terminal, "completed")
        with pytest.raises(LifecycleError):
            next_state(state, "cancelled", "staff")

    def test_staff_cannot_mark_paid(self):
        with pytest.raises(LifecycleError) as exc:
            next_state(OrderState("confirmed", "pending"), "payment_completed", "staff")
        assert exc.value.details["allowed_triggers"] == ["payment"]

    def test_customer_may_only_confirm_delivery(self):
        assert next_state(OrderState("shipped", "completed"), "delivered", "customer").status == "delivered"
        with pytest.raises(LifecycleError):
            next_state(OrderState("pending", "pending"), "cancelled", "customer")

    def test_timeout_cancels(self):
        state = next_state(OrderState("confirmed", "pending"), "cancelled", "timeout")
        assert state == OrderState("cancelled", "pending")

    def test_unknown_status_is_bad_input(self):
        with pytest.raises(ValidationError) as exc:
            next_state(OrderState("packed", "completed"), "teleported", "staff")
        assert not isinstance(exc.value, ConflictError)

    def test_unknown_trigger(self):
        with pytest.raises(ValueError):
            next_state(INITIAL_STATE, "confirmed", "robot")

    def test_lifecycle_error_is_conflict(self):
        assert issubclass(LifecycleError, ConflictError)

    def test_can_transition_and_allowed(self):
        assert can_transition("pending", "confirmed")
        assert not can_transition("pending", "packed")
        assert not can_transition("confirmed", "payment_completed", "staff")
        assert sorted(allowed_next_statuses("pending")) == ["cancelled", "confirmed"]
        assert allowed_next_statuses("delivered") == []


class TestPaymentAxis:

    @pytest.mark.parametrize(
        "state,valid",
        [
            (OrderState("pending", "pending"), True),
            (OrderState("confirmed", "failed"), True),
            (OrderState("delivered", "pending"), False),
            (OrderState("packing", "pending"), False),
            (OrderState("cancelled", "refunded"), True),
        ],
    )
    def test_valid_combinations(self, state, valid):
        assert is_valid_state(state) is valid

    def test_failed_payment_keeps_status(self):
        assert payment_failed_state(OrderState("confirmed", "pending")) == OrderState("confirmed", "failed")

    def test_failed_payment_on_pending_order_rejected(self):
        with pytest.raises(LifecycleError):
            payment_failed_state(OrderState("pending", "pending"))

    def test_refund_only_for_paid_cancelled(self):
        assert refunded_state(OrderState("cancelled", "completed")) == OrderState("cancelled", "refunded")
        with pytest.raises(LifecycleError):
            refunded_state(OrderState("cancelled", "pending"))

    def test_open_unpaid(self):
        assert OrderState("confirmed", "failed").is_open_unpaid
        assert not OrderState("payment_completed", "completed").is_open_unpaid
        assert not OrderState("cancelled", "pending").is_open_unpaid
