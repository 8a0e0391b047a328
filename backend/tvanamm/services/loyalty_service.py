# Overview: Loyalty points ledger: redemption validation, atomic debits, earning, rewards and reconciliation.

"""
Loyalty ledger

LoyaltyAccount.current_balance is a cache over the append-only
LoyaltyTransaction ledger:

    current_balance == points_earned - points_redeemed == sum(transaction.points)

Balance changes are single conditional UPDATE statements rather than
read-modify-write, so two concurrent redemptions can never both pass a
balance check against the same snapshot:

    UPDATE loyalty_accounts
       SET current_balance = current_balance - :n, ...
     WHERE user_id = :uid AND current_balance >= :n

Zero matched rows means the balance was insufficient at the moment of the
write. version_id is bumped in the same statement so ORM-loaded copies of
the row notice the change.

Points are worth 1 rupee each. A cash-discount redemption is capped at
floor(30% of the order subtotal). Gifts (LoyaltyGift rows managed by staff)
have their own fixed thresholds; a stock-tracked gift loses one unit per
redemption through the same kind of conditional UPDATE.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from flask import current_app, has_app_context
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LoyaltyAccount, LoyaltyGift, LoyaltyTransaction
from ..money import floor_rupees
from ..validation import ConflictError, NotFoundError, ValidationError, optional_text, require_int
from .concurrency import execute_guarded
from .pricing_service import redemption_cap_points


DEFAULT_EARN_POINTS = 20
DEFAULT_EARN_THRESHOLD_RUPEES = 5000
DEFAULT_TIERS = (("gold", 2000), ("silver", 500), ("bronze", 0))


class InsufficientBalance(ValidationError):
    """Requested points exceed what the account holds."""


class ExceedsRedemptionCap(ValidationError):
    """Requested points exceed the per-order cash discount cap."""


class RewardUnavailable(ValidationError):
    """The gift exists but is switched off or out of stock."""


FREE_DELIVERY = "FREE_DELIVERY"
TEA_CUPS_30 = "TEA_CUPS_30"

# Launch gifts; the loyalty_gifts migration inserts the same rows
DEFAULT_GIFTS = (
    {
        "code": FREE_DELIVERY,
        "name": "Free Delivery",
        "description": "Delivery charges waived on this order",
        "points_required": 500,
        "stock_quantity": 0,
        "auto_update_stock": False,
    },
    {
        "code": TEA_CUPS_30,
        "name": "30 Tea Cups",
        "description": "30 tea cups packed with this order",
        "points_required": 500,
        "stock_quantity": 100,
        "auto_update_stock": True,
    },
)

GIFT_UPDATABLE_FIELDS = ("name", "description", "points_required", "is_active", "auto_update_stock")
_GIFT_CODE_RE = re.compile(r"^[A-Z0-9_]{2,32}$")


@dataclass(frozen=True)
class RedemptionRequest:
    """What the buyer asked to spend at checkout: cash points, at most one gift, or both."""
    points: int = 0
    reward_code: str | None = None


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_redemption(points_requested: int, current_balance: int, order_subtotal_paise: int,
                        points_already_committed: int = 0) -> None:
    """
    Check a cash-discount redemption against balance and the 30% cap.

    points_already_committed covers points the same checkout spends on a
    reward, so the two together cannot overdraw the balance.
    """
    if isinstance(points_requested, bool) or not isinstance(points_requested, int):
        raise ValidationError("points must be an integer")
    if points_requested < 0:
        raise ValidationError("points cannot be negative")
    if points_requested == 0:
        return

    available = current_balance - points_already_committed
    if points_requested > available:
        raise InsufficientBalance(
            "Insufficient loyalty points",
            details={"requested": points_requested, "available": max(available, 0)},
        )

    cap = redemption_cap_points(order_subtotal_paise)
    if points_requested > cap:
        raise ExceedsRedemptionCap(
            f"Can only redeem up to {cap} points (30% of order value)",
            details={"requested": points_requested, "max_redeemable": cap},
        )


def validate_reward(reward_code: str, current_balance: int, points_already_committed: int = 0) -> LoyaltyGift:
    """
    Resolve a gift code for checkout.

    Raises:
        ValidationError: no gift has this code.
        RewardUnavailable: the gift is switched off or out of stock.
        InsufficientBalance: the balance (less committed points) is below
            the gift's threshold.
    """
    gift = get_gift(reward_code)
    if gift is None:
        raise ValidationError(
            f"Unknown reward '{reward_code}'",
            details={"available": [g.code for g in list_gifts()]},
        )
    if not gift.is_active:
        raise RewardUnavailable(f"{gift.name} is not currently offered", details={"reward_code": gift.code})
    if not gift.in_stock:
        raise RewardUnavailable(
            f"{gift.name} is out of stock",
            details={"reward_code": gift.code, "stock_quantity": gift.stock_quantity},
        )

    available = current_balance - points_already_committed
    if gift.points_required > available:
        raise InsufficientBalance(
            f"{gift.name} requires {gift.points_required} points",
            details={"requested": gift.points_required, "available": max(available, 0)},
        )
    return gift


def validate_request(request: RedemptionRequest, current_balance: int,
                     order_subtotal_paise: int) -> LoyaltyGift | None:
    """Gift first (fixed threshold), then the cash discount against what remains."""
    gift = None
    committed = 0
    if request.reward_code:
        gift = validate_reward(request.reward_code, current_balance)
        committed = gift.points_required
    validate_redemption(request.points, current_balance, order_subtotal_paise, committed)
    return gift


def tier_for(points_earned: int) -> str:
    for name, threshold in _config("LOYALTY_TIERS", DEFAULT_TIERS):
        if points_earned >= threshold:
            return name
    return "bronze"


def points_for_amount(final_amount_paise: int) -> int:
    """Flat 20 points on any order settling at Rs 5000 or more; nothing below."""
    threshold = _config("LOYALTY_EARN_THRESHOLD_RUPEES", DEFAULT_EARN_THRESHOLD_RUPEES)
    points = _config("LOYALTY_EARN_POINTS", DEFAULT_EARN_POINTS)
    if final_amount_paise <= 0:
        return 0
    return points if floor_rupees(final_amount_paise) >= threshold else 0


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def get_account(user_id: int) -> LoyaltyAccount | None:
    return db.session.query(LoyaltyAccount).filter_by(user_id=user_id).first()


def get_or_create_account(user_id: int, *, commit: bool = True) -> LoyaltyAccount:
    account = get_account(user_id)
    if account is None:
        account = LoyaltyAccount(user_id=user_id, current_balance=0, points_earned=0,
                                 points_redeemed=0, tier_level="bronze")
        db.session.add(account)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    return account


def current_balance(user_id: int) -> int:
    account = get_account(user_id)
    return account.current_balance if account else 0


def _refresh(row) -> None:
    if row is not None and row in db.session:
        db.session.refresh(row)


def reserve_points(user_id: int, points: int) -> None:
    """
    Conditionally decrement the balance by points. Does not commit.

    Raises:
        InsufficientBalance: the balance was below points at write time
            (or the account does not exist).
    """
    if points <= 0:
        return
    stmt = (
        update(LoyaltyAccount)
        .where(LoyaltyAccount.user_id == user_id)
        .where(LoyaltyAccount.current_balance >= points)
        .values(
            current_balance=LoyaltyAccount.current_balance - points,
            points_redeemed=LoyaltyAccount.points_redeemed + points,
            version_id=LoyaltyAccount.version_id + 1,
        )
    )
    if execute_guarded(stmt) == 0:
        raise InsufficientBalance(
            "Insufficient loyalty points",
            details={"requested": points, "available": current_balance(user_id)},
        )
    _refresh(get_account(user_id))


def _credit(user_id: int, points: int) -> None:
    get_or_create_account(user_id, commit=False)
    stmt = (
        update(LoyaltyAccount)
        .where(LoyaltyAccount.user_id == user_id)
        .values(
            current_balance=LoyaltyAccount.current_balance + points,
            points_earned=LoyaltyAccount.points_earned + points,
            version_id=LoyaltyAccount.version_id + 1,
        )
    )
    execute_guarded(stmt)
    account = get_account(user_id)
    _refresh(account)
    tier = tier_for(account.points_earned)
    if account.tier_level != tier:
        account.tier_level = tier


def record_redemption(user_id: int, points: int, order_id: int | None, description: str,
                      reward_code: str | None = None,
                      created_by_user_id: int | None = None) -> LoyaltyTransaction:
    """Append the negative ledger row matching a reserve_points call. Does not commit."""
    txn = LoyaltyTransaction(
        user_id=user_id,
        order_id=order_id,
        points=-points,
        type="redeemed",
        reward_code=reward_code,
        description=description,
        created_by_user_id=created_by_user_id,
    )
    db.session.add(txn)
    return txn


def apply_redemption(user_id: int, points: int, order_id: int | None, description: str,
                     reward_code: str | None = None) -> LoyaltyTransaction:
    """Atomic debit plus its ledger row, committed together."""
    if points <= 0:
        raise ValidationError("points must be positive")
    try:
        reserve_points(user_id, points)
        txn = record_redemption(user_id, points, order_id, description, reward_code=reward_code)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Loyalty redemption user=%s points=%s order=%s reward=%s",
        user_id, points, order_id, reward_code,
    )
    return txn


def award_order_points(order) -> LoyaltyTransaction | None:
    """
    Credit earning points for a settled order. Does not commit.

    Fires at most once per order: an existing earned row for the order
    makes this a no-op.
    """
    points = points_for_amount(order.final_amount_paise)
    if points <= 0:
        return None

    existing = (
        db.session.query(LoyaltyTransaction.id)
        .filter_by(order_id=order.id, type="earned")
        .first()
    )
    if existing is not None:
        return None

    _credit(order.user_id, points)
    txn = LoyaltyTransaction(
        user_id=order.user_id,
        order_id=order.id,
        points=points,
        type="earned",
        description=f"Earned on order {order.order_number}",
    )
    db.session.add(txn)
    current_app.logger.info(
        "Loyalty earned user=%s points=%s order=%s", order.user_id, points, order.order_number
    )
    return txn


def adjust_points(user_id: int, points: int, description: str,
                  actor_user_id: int | None = None) -> LoyaltyTransaction:
    """Manual adjustment by staff; positive credits, negative debits (never below zero)."""
    if isinstance(points, bool) or not isinstance(points, int) or points == 0:
        raise ValidationError("points must be a non-zero integer")
    if not (description or "").strip():
        raise ValidationError("description is required for manual adjustments")

    try:
        if points > 0:
            _credit(user_id, points)
            txn = LoyaltyTransaction(
                user_id=user_id,
                order_id=None,
                points=points,
                type="earned",
                description=description.strip(),
                created_by_user_id=actor_user_id,
            )
            db.session.add(txn)
        else:
            reserve_points(user_id, -points)
            txn = record_redemption(user_id, -points, None, description.strip(),
                                    created_by_user_id=actor_user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Loyalty adjustment user=%s points=%s actor=%s", user_id, points, actor_user_id
    )
    return txn


def list_transactions(user_id: int, limit: int = 100) -> list[LoyaltyTransaction]:
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(user_id=user_id)
        .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
        .limit(limit)
        .all()
    )


def order_redemptions(order_id: int) -> list[LoyaltyTransaction]:
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(order_id=order_id, type="redeemed")
        .order_by(LoyaltyTransaction.id)
        .all()
    )


def reconcile_account(user_id: int) -> dict:
    """Compare the cached balance against the ledger."""
    account = get_account(user_id)
    ledger_sum = (
        db.session.query(func.coalesce(func.sum(LoyaltyTransaction.points), 0))
        .filter(LoyaltyTransaction.user_id == user_id)
        .scalar()
    )
    cached = account.current_balance if account else 0
    earned = account.points_earned if account else 0
    redeemed = account.points_redeemed if account else 0

    result = {
        "user_id": user_id,
        "current_balance": cached,
        "ledger_balance": int(ledger_sum),
        "points_earned": earned,
        "points_redeemed": redeemed,
        "balanced": cached == int(ledger_sum) == earned - redeemed,
    }
    if not result["balanced"] and has_app_context():
        current_app.logger.error("Loyalty ledger mismatch: %s", result)
    return result


# ---------------------------------------------------------------------------
# Gift catalog
# ---------------------------------------------------------------------------

def get_gift(code) -> LoyaltyGift | None:
    if not isinstance(code, str) or not code.strip():
        return None
    return db.session.query(LoyaltyGift).filter_by(code=code.strip().upper()).first()


def get_gift_by_id(gift_id: int) -> LoyaltyGift:
    gift = db.session.get(LoyaltyGift, gift_id)
    if gift is None:
        raise NotFoundError("Gift not found", details={"gift_id": gift_id})
    return gift


def list_gifts(active_only: bool = True) -> list[LoyaltyGift]:
    query = db.session.query(LoyaltyGift)
    if active_only:
        query = query.filter(LoyaltyGift.is_active.is_(True))
    return query.order_by(LoyaltyGift.points_required, LoyaltyGift.id).all()


def reserve_gift(gift: LoyaltyGift) -> None:
    """
    Take one unit of a stock-tracked gift. Does not commit.

    Raises:
        RewardUnavailable: the gift ran out (or was switched off) between
            validation and the write.
    """
    if not gift.auto_update_stock:
        return
    stmt = (
        update(LoyaltyGift)
        .where(LoyaltyGift.id == gift.id)
        .where(LoyaltyGift.is_active.is_(True))
        .where(LoyaltyGift.stock_quantity >= 1)
        .values(stock_quantity=LoyaltyGift.stock_quantity - 1)
    )
    if execute_guarded(stmt) == 0:
        raise RewardUnavailable(
            f"{gift.name} is out of stock",
            details={"reward_code": gift.code, "stock_quantity": 0},
        )
    _refresh(gift)


def _require_bool(value, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def _gift_name(value) -> str:
    name = optional_text(value, "name")
    if not name:
        raise ValidationError("name is required")
    return name


def create_gift(code: str, name: str, points_required: int, stock_quantity: int = 0,
                description: str | None = None, is_active: bool = True,
                auto_update_stock: bool = True, actor_user_id: int | None = None) -> LoyaltyGift:
    normalized = (optional_text(code, "code") or "").upper()
    if not _GIFT_CODE_RE.match(normalized):
        raise ValidationError("code must be 2-32 characters of A-Z, 0-9 and _", details={"field": "code"})

    gift = LoyaltyGift(
        code=normalized,
        name=_gift_name(name),
        description=optional_text(description, "description"),
        points_required=require_int(points_required, "points_required", minimum=1),
        stock_quantity=require_int(stock_quantity, "stock_quantity", minimum=0),
        is_active=_require_bool(is_active, "is_active"),
        auto_update_stock=_require_bool(auto_update_stock, "auto_update_stock"),
        created_by_user_id=actor_user_id,
    )
    if get_gift(normalized) is not None:
        raise ConflictError(f"Gift '{normalized}' already exists", details={"code": normalized})

    db.session.add(gift)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Gift '{normalized}' already exists", details={"code": normalized})

    current_app.logger.info(
        "Loyalty gift %s created points=%s stock=%s by user=%s",
        gift.code, gift.points_required, gift.stock_quantity, actor_user_id,
    )
    return gift


def update_gift(gift_id: int, changes: dict, actor_user_id: int | None = None) -> LoyaltyGift:
    """
    Edit a gift's details. code is fixed once created and stock moves only
    through adjust_gift_stock.
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes given")
    unknown = sorted(set(changes) - set(GIFT_UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(
            f"Cannot update: {', '.join(unknown)}",
            details={"fields": unknown, "allowed": list(GIFT_UPDATABLE_FIELDS)},
        )

    values = {}
    if "name" in changes:
        values["name"] = _gift_name(changes["name"])
    if "description" in changes:
        values["description"] = optional_text(changes["description"], "description")
    if "points_required" in changes:
        values["points_required"] = require_int(changes["points_required"], "points_required", minimum=1)
    for field in ("is_active", "auto_update_stock"):
        if field in changes:
            values[field] = _require_bool(changes[field], field)

    gift = get_gift_by_id(gift_id)
    for field, value in values.items():
        setattr(gift, field, value)
    db.session.commit()

    current_app.logger.info("Loyalty gift %s updated %s by user=%s", gift.code, sorted(values), actor_user_id)
    return gift


def adjust_gift_stock(gift_id: int, new_quantity: int, reason: str,
                      actor_user_id: int | None = None) -> LoyaltyGift:
    """Set the counted stock of a gift; the reason goes to the log."""
    quantity = require_int(new_quantity, "stock_quantity", minimum=0)
    reason = optional_text(reason, "reason")
    if not reason:
        raise ValidationError("reason is required for stock adjustments")

    gift = get_gift_by_id(gift_id)
    previous = gift.stock_quantity
    gift.stock_quantity = quantity
    db.session.commit()

    current_app.logger.info(
        "Loyalty gift %s stock %s -> %s by user=%s: %s",
        gift.code, previous, quantity, actor_user_id, reason,
    )
    return gift


def seed_default_gifts() -> list[LoyaltyGift]:
    """Insert any launch gift that is missing; existing rows are left untouched."""
    created = []
    for values in DEFAULT_GIFTS:
        if get_gift(values["code"]) is None:
            gift = LoyaltyGift(is_active=True, **values)
            db.session.add(gift)
            created.append(gift)
    db.session.commit()
    return created
