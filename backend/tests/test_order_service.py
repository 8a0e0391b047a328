"""
Order service tests.

Verifies:
- Checkout writes order, items, loyalty debit and gift stock in one transaction
- One open unpaid order per buyer (query check and unique guard column)
- Persisted transitions, conditional updates and the packing checklist
- Delivery fee re-derives the final amount
- Payment signal: earning points, failure and refund
- Stale unpaid orders are timeout-cancelled
"""

from datetime import timedelta

import pytest

from sqlalchemy import update

from tvanamm.models import LoyaltyGift, LoyaltyTransaction, Order, OrderItem, OrderStatusEvent
from tvanamm.services import loyalty_service, order_service
from tvanamm.services.lifecycle_service import LifecycleError
from tvanamm.services.loyalty_service import (
    ExceedsRedemptionCap,
    InsufficientBalance,
    RedemptionRequest,
    RewardUnavailable,
)
from tvanamm.time_utils import utcnow
from tvanamm.validation import ConflictError, NotFoundError, ValidationError

from conftest import give_points, line_for


def place(user, lines, address, points=0, reward_code=None):
    return order_service.create_order(
        user.id, lines, address, redemption=RedemptionRequest(points=points, reward_code=reward_code)
    )


def pay(order, payment_id="pay_test_1"):
    return order_service.record_payment(order.id, "completed", payment_id=payment_id, payment_method="upi")


def advance_to_paid(order, staff, fee_paise=4_000):
    order_service.confirm_order(order.id, staff.id, delivery_fee_paise=fee_paise)
    return pay(order)


def advance_to_packed(order, staff):
    advance_to_paid(order, staff)
    order_service.start_packing(order.id, staff.id)
    for item in order_service.get_order(order.id).packing_items:
        order_service.update_packing_item(order.id, item.id, staff.id, is_packed=True)
    return order_service.complete_packing(order.id, staff.id)


# =============================================================================
# CHECKOUT
# =============================================================================


class TestCheckout:

    def test_creates_pending_order(self, franchise, tea, biscuits, shipping_address, db_session):
        order = place(franchise, [line_for(tea, 2), line_for(biscuits, 1)], shipping_address)

        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.order_number == "TVO-000001"
        assert order.total_amount_paise == 28_850
        assert order.gst_amount_paise == 3_850
        assert order.delivery_fee_paise is None
        assert order.final_amount_paise == 28_850
        assert order.unpaid_guard_user_id == franchise.id

        items = db_session.query(OrderItem).filter_by(order_id=order.id).order_by(OrderItem.id).all()
        assert [(i.unit_price_paise, i.quantity, i.total_price_paise) for i in items] == [
            (10_000, 2, 23_600),
            (5_000, 1, 5_250),
        ]
        events = order_service.list_status_events(order.id)
        assert [(e.from_status, e.to_status, e.trigger) for e in events] == [(None, "pending", "checkout")]

    def test_redemption_debits_in_same_transaction(self, franchise, tea, biscuits, shipping_address):
        give_points(franchise.id, 100)
        order = place(franchise, [line_for(tea, 2), line_for(biscuits, 1)], shipping_address, points=20)

        assert order.loyalty_points_used == 20
        assert order.loyalty_discount_paise == 2_000
        assert order.final_amount_paise == 26_850
        assert loyalty_service.current_balance(franchise.id) == 80
        [txn] = loyalty_service.order_redemptions(order.id)
        assert txn.points == -20
        assert txn.reward_code is None

    def test_empty_cart(self, franchise, shipping_address):
        with pytest.raises(ValidationError, match="Cart is empty"):
            place(franchise, [], shipping_address)

    def test_bad_address(self, franchise, tea, shipping_address):
        shipping_address["pincode"] = "5000"
        with pytest.raises(ValidationError):
            place(franchise, [line_for(tea, 1)], shipping_address)

    def test_missing_address_fields(self, franchise, tea):
        with pytest.raises(ValidationError) as exc:
            place(franchise, [line_for(tea, 1)], {"name": "Partner"})
        assert "city" in exc.value.details["missing_fields"]

    def test_insufficient_points(self, franchise, tea, shipping_address, db_session):
        give_points(franchise.id, 10)
        with pytest.raises(InsufficientBalance):
            place(franchise, [line_for(tea, 1)], shipping_address, points=11)
        assert db_session.query(Order).count() == 0

    def test_points_over_cap(self, franchise, tea, shipping_address):
        give_points(franchise.id, 1000)
        # Rs 118 subtotal -> cap 35
        with pytest.raises(ExceedsRedemptionCap):
            place(franchise, [line_for(tea, 1)], shipping_address, points=36)
        assert loyalty_service.current_balance(franchise.id) == 1000

    def test_free_delivery_reward(self, franchise, tea, shipping_address, gifts):
        give_points(franchise.id, 500)
        order = place(franchise, [line_for(tea, 1)], shipping_address, reward_code="FREE_DELIVERY")

        assert order.reward_code == "FREE_DELIVERY"
        assert order.delivery_fee_paise == 0
        assert order.loyalty_discount_paise == 0
        assert order.final_amount_paise == 11_800
        assert loyalty_service.current_balance(franchise.id) == 0
        [txn] = loyalty_service.order_redemptions(order.id)
        assert txn.reward_code == "FREE_DELIVERY"
        assert txn.points == -500

    def test_gift_redemption_takes_one_unit_of_stock(self, franchise, tea, shipping_address, gifts):
        give_points(franchise.id, 600)
        order = place(franchise, [line_for(tea, 1)], shipping_address, reward_code="tea_cups_30")

        assert order.reward_code == "TEA_CUPS_30"
        assert loyalty_service.get_gift("TEA_CUPS_30").stock_quantity == 99
        assert loyalty_service.current_balance(franchise.id) == 100

    def test_unlimited_gift_keeps_stock(self, franchise, tea, shipping_address, gifts):
        give_points(franchise.id, 500)
        place(franchise, [line_for(tea, 1)], shipping_address, reward_code="FREE_DELIVERY")
        gift = loyalty_service.get_gift("FREE_DELIVERY")
        assert gift.stock_quantity == 0
        assert gift.in_stock is True

    def test_out_of_stock_gift_blocks_checkout(self, franchise, tea, shipping_address, gifts, db_session):
        give_points(franchise.id, 500)
        loyalty_service.adjust_gift_stock(gifts["TEA_CUPS_30"].id, 0, "Damaged in transit")

        with pytest.raises(RewardUnavailable):
            place(franchise, [line_for(tea, 1)], shipping_address, reward_code="TEA_CUPS_30")
        assert db_session.query(Order).count() == 0
        assert loyalty_service.current_balance(franchise.id) == 500

    def test_gift_sold_out_during_checkout_rolls_back(self, franchise, tea, shipping_address, gifts,
                                                      db_session, monkeypatch):
        give_points(franchise.id, 600)
        cups_id = gifts["TEA_CUPS_30"].id
        loyalty_service.adjust_gift_stock(cups_id, 1, "Last box")
        real_validate = loyalty_service.validate_request

        # Another checkout takes the last unit after this one validated
        def validate_then_sell_out(*args, **kwargs):
            gift = real_validate(*args, **kwargs)
            db_session.execute(update(LoyaltyGift).where(LoyaltyGift.id == cups_id).values(stock_quantity=0))
            db_session.commit()
            return gift

        monkeypatch.setattr(loyalty_service, "validate_request", validate_then_sell_out)
        with pytest.raises(RewardUnavailable):
            place(franchise, [line_for(tea, 1)], shipping_address, points=20, reward_code="TEA_CUPS_30")

        assert loyalty_service.current_balance(franchise.id) == 600
        assert db_session.query(Order).count() == 0
        assert db_session.query(LoyaltyTransaction).filter_by(type="redeemed").count() == 0
        assert loyalty_service.get_gift("TEA_CUPS_30").stock_quantity == 0

    def test_failure_after_debit_rolls_everything_back(self, franchise, tea, shipping_address,
                                                       db_session, monkeypatch):
        give_points(franchise.id, 100)

        def boom(**values):
            raise RuntimeError("disk full")

        monkeypatch.setattr(order_service, "_insert_order", boom)
        with pytest.raises(RuntimeError):
            place(franchise, [line_for(tea, 1)], shipping_address, points=30)

        assert loyalty_service.current_balance(franchise.id) == 100
        assert db_session.query(Order).count() == 0
        assert db_session.query(LoyaltyTransaction).filter_by(type="redeemed").count() == 0
        assert loyalty_service.reconcile_account(franchise.id)["balanced"] is True


class TestUnpaidGuard:

    def test_second_checkout_blocked(self, franchise, tea, shipping_address):
        place(franchise, [line_for(tea, 1)], shipping_address)
        assert order_service.has_pending_unpaid_orders(franchise.id) is True
        with pytest.raises(ConflictError):
            place(franchise, [line_for(tea, 1)], shipping_address)

    def test_guard_column_blocks_race(self, franchise, tea, shipping_address, db_session, monkeypatch):
        give_points(franchise.id, 50)
        place(franchise, [line_for(tea, 1)], shipping_address)

        # Simulate a checkout that passed the query check before the first committed
        monkeypatch.setattr(order_service, "has_pending_unpaid_orders", lambda user_id: False)
        with pytest.raises(ConflictError):
            place(franchise, [line_for(tea, 1)], shipping_address, points=10)

        assert db_session.query(Order).filter_by(user_id=franchise.id).count() == 1
        assert loyalty_service.current_balance(franchise.id) == 50

    def test_other_users_not_blocked(self, franchise, customer, tea, shipping_address):
        place(franchise, [line_for(tea, 1)], shipping_address)
        order = place(customer, [line_for(tea, 1)], shipping_address)
        assert order.status == "pending"

    def test_paid_order_releases_guard(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        advance_to_paid(order, admin)
        assert order_service.has_pending_unpaid_orders(franchise.id) is False
        assert order_service.get_order(order.id).unpaid_guard_user_id is None
        assert place(franchise, [line_for(tea, 1)], shipping_address).status == "pending"

    def test_cancelled_order_releases_guard(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        order_service.cancel_order(order.id, admin.id, reason="Out of stock")
        assert order_service.has_pending_unpaid_orders(franchise.id) is False


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestTransitions:

    def test_confirm_with_fee(self, franchise, admin, tea, biscuits, shipping_address):
        give_points(franchise.id, 100)
        order = place(franchise, [line_for(tea, 2), line_for(biscuits, 1)], shipping_address, points=20)
        order = order_service.confirm_order(order.id, admin.id, delivery_fee_paise=4_000)

        assert order.status == "confirmed"
        assert order.confirmed_by == admin.id
        assert order.confirmed_at is not None
        assert order.delivery_fee_paise == 4_000
        assert order.final_amount_paise == 30_850

    def test_fee_change_rederives_final(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        order_service.set_delivery_fee(order.id, 4_000, admin.id)
        order = order_service.set_delivery_fee(order.id, 2_500, admin.id)
        assert order.final_amount_paise == 11_800 + 2_500

    def test_fee_forced_to_zero_with_free_delivery(self, franchise, admin, tea, shipping_address, gifts):
        give_points(franchise.id, 500)
        order = place(franchise, [line_for(tea, 1)], shipping_address, reward_code="FREE_DELIVERY")
        order = order_service.confirm_order(order.id, admin.id, delivery_fee_paise=4_000)
        assert order.delivery_fee_paise == 0
        assert order.final_amount_paise == 11_800

    def test_fee_after_payment_rejected(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        advance_to_paid(order, admin)
        with pytest.raises(ConflictError):
            order_service.set_delivery_fee(order.id, 1_000, admin.id)

    def test_negative_fee_rejected(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        with pytest.raises(ValidationError):
            order_service.set_delivery_fee(order.id, -1, admin.id)

    def test_skip_rejected_with_current_state(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        with pytest.raises(LifecycleError) as exc:
            order_service.update_order_status(order.id, "packed", admin.id)
        assert exc.value.current_state == {"status": "pending", "payment_status": "pending"}
        assert order_service.get_order(order.id).status == "pending"

    def test_expected_status_mismatch(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        order_service.confirm_order(order.id, admin.id)
        with pytest.raises(ConflictError) as exc:
            order_service.update_order_status(order.id, "cancelled", admin.id, expected_status="pending")
        assert exc.value.current_state["status"] == "confirmed"

    def test_staff_cannot_mark_paid(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        order_service.confirm_order(order.id, admin.id)
        with pytest.raises(LifecycleError):
            order_service.update_order_status(order.id, "payment_completed", admin.id)

    def test_generic_update_cannot_ship(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        advance_to_packed(order, admin)

        with pytest.raises(ValidationError) as exc:
            order_service.update_order_status(order.id, "shipped", admin.id)
        assert exc.value.details["use"] == "ship_order"

        order = order_service.get_order(order.id)
        assert order.status == "packed"
        assert order.shipped_at is None
        assert order.tracking_info is None

    def test_unknown_status_is_bad_input(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        advance_to_packed(order, admin)

        with pytest.raises(ValidationError) as exc:
            order_service.update_order_status(order.id, "bogus", admin.id)
        assert not isinstance(exc.value, ConflictError)
        assert order_service.get_order(order.id).status == "packed"

    def test_non_string_free_text_rejected(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        with pytest.raises(ValidationError):
            order_service.cancel_order(order.id, admin.id, reason=["late"])
        with pytest.raises(ValidationError):
            order_service.confirm_order(order.id, admin.id, notes={"text": "ok"})
        assert order_service.get_order(order.id).status == "pending"

        advance_to_packed(order, admin)
        with pytest.raises(ValidationError):
            order_service.ship_order(order.id, admin.id, 42)
        with pytest.raises(ValidationError):
            order_service.ship_order(order.id, admin.id, "DTDC", driver_name=["Ravi"])
        assert order_service.get_order(order.id).status == "packed"

    def test_unknown_order(self, admin, db_session):
        with pytest.raises(NotFoundError):
            order_service.confirm_order(9999, admin.id)

    def test_full_fulfillment_flow(self, franchise, admin, tea, biscuits, shipping_address):
        order = place(franchise, [line_for(tea, 2), line_for(biscuits, 1)], shipping_address)
        advance_to_paid(order, admin)

        order = order_service.start_packing(order.id, admin.id)
        assert order.status == "packing"
        items = sorted(order.packing_items, key=lambda p: p.id)
        assert [(p.quantity, p.packed_quantity, p.is_packed) for p in items] == [(2, 0, False), (1, 0, False)]

        with pytest.raises(LifecycleError):
            order_service.complete_packing(order.id, admin.id)

        partial = order_service.update_packing_item(order.id, items[0].id, admin.id, packed_quantity=1)
        assert partial.is_packed is False
        order_service.update_packing_item(order.id, items[0].id, admin.id, packed_quantity=2)
        order_service.update_packing_item(order.id, items[1].id, admin.id, is_packed=True)

        order = order_service.complete_packing(order.id, admin.id)
        assert order.status == "packed"

        order = order_service.ship_order(order.id, admin.id, "Blue Dart", vehicle_number="TS09 AB 1234",
                                         tracking_number="BD123")
        assert order.status == "shipped"
        assert order.tracking_info["courier_partner"] == "Blue Dart"
        assert order.tracking_info["tracking_number"] == "BD123"

        order = order_service.mark_delivered(order.id, franchise.id, by_customer=True)
        assert order.status == "delivered"
        assert order.delivered_by == franchise.id

        statuses = [e.to_status for e in order_service.list_status_events(order.id)]
        assert statuses == ["pending", "confirmed", "payment_completed", "packing", "packed", "shipped", "delivered"]

    def test_packing_quantity_out_of_range(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 2)], shipping_address)
        advance_to_paid(order, admin)
        order = order_service.start_packing(order.id, admin.id)
        [item] = order.packing_items
        with pytest.raises(ValidationError):
            order_service.update_packing_item(order.id, item.id, admin.id, packed_quantity=3)
        with pytest.raises(ValidationError):
            order_service.update_packing_item(order.id, item.id, admin.id, packed_quantity=1, is_packed=True)

    def test_ship_requires_transport_company(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        with pytest.raises(ValidationError):
            order_service.ship_order(order.id, admin.id, "  ")

    def test_customer_cannot_deliver_other_users_order(self, franchise, customer, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        with pytest.raises(NotFoundError):
            order_service.mark_delivered(order.id, customer.id, by_customer=True)

    def test_cancel_keeps_redeemed_points(self, franchise, admin, tea, shipping_address):
        give_points(franchise.id, 100)
        order = place(franchise, [line_for(tea, 1)], shipping_address, points=30)
        order = order_service.cancel_order(order.id, admin.id, reason="Customer request")

        assert order.status == "cancelled"
        assert order.cancel_reason == "Customer request"
        assert loyalty_service.current_balance(franchise.id) == 70

    def test_cannot_cancel_shipped(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        advance_to_paid(order, admin)
        order_service.start_packing(order.id, admin.id)
        [item] = order_service.get_order(order.id).packing_items
        order_service.update_packing_item(order.id, item.id, admin.id, is_packed=True)
        order_service.complete_packing(order.id, admin.id)
        order_service.ship_order(order.id, admin.id, "DTDC")
        with pytest.raises(LifecycleError):
            order_service.cancel_order(order.id, admin.id)


# =============================================================================
# PAYMENT SIGNAL
# =============================================================================


class TestPayment:

    def test_payment_awards_points_once(self, franchise, admin, bulk_pack, shipping_address, db_session):
        order = place(franchise, [line_for(bulk_pack, 2)], shipping_address)
        order_service.confirm_order(order.id, admin.id)
        order = pay(order, "pay_1")

        assert order.status == "payment_completed"
        assert order.payment_status == "completed"
        assert order.payment_id == "pay_1"
        # Rs 10000 still earns the flat 20
        assert loyalty_service.current_balance(franchise.id) == 20

        # Gateway retries the same signal
        pay(order, "pay_1")
        assert loyalty_service.current_balance(franchise.id) == 20
        earned = db_session.query(LoyaltyTransaction).filter_by(order_id=order.id, type="earned").count()
        assert earned == 1

    def test_payment_before_confirmation_rejected(self, franchise, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        with pytest.raises(LifecycleError):
            pay(order)

    def test_failed_payment_keeps_order_open(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        order_service.confirm_order(order.id, admin.id)
        order = order_service.record_payment(order.id, "failed")

        assert order.status == "confirmed"
        assert order.payment_status == "failed"
        assert order_service.has_pending_unpaid_orders(franchise.id) is True

        # A later successful attempt still goes through
        order = pay(order, "pay_retry")
        assert order.status == "payment_completed"

    def test_refund_after_cancel(self, franchise, admin, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        advance_to_paid(order, admin)
        order_service.cancel_order(order.id, admin.id, reason="Damaged stock")
        order = order_service.record_payment(order.id, "refunded")
        assert (order.status, order.payment_status) == ("cancelled", "refunded")

    def test_unknown_signal(self, franchise, tea, shipping_address):
        order = place(franchise, [line_for(tea, 1)], shipping_address)
        with pytest.raises(ValidationError):
            order_service.record_payment(order.id, "bounced")


# =============================================================================
# STALE ORDERS
# =============================================================================


class TestStaleOrders:

    def test_cancels_old_unpaid_orders_only(self, franchise, customer, admin, tea, shipping_address, db_session):
        stale = place(franchise, [line_for(tea, 1)], shipping_address)
        fresh = place(customer, [line_for(tea, 1)], shipping_address)

        stale_row = db_session.get(Order, stale.id)
        stale_row.created_at = utcnow() - timedelta(hours=100)
        db_session.commit()

        cancelled = order_service.cancel_stale_orders(72)
        assert cancelled == [stale.order_number]

        assert order_service.get_order(stale.id).status == "cancelled"
        assert order_service.get_order(fresh.id).status == "pending"
        [event] = (
            db_session.query(OrderStatusEvent)
            .filter_by(order_id=stale.id, to_status="cancelled")
            .all()
        )
        assert event.trigger == "timeout"
        assert event.actor_user_id is None
