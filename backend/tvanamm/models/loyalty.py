from __future__ import annotations

from ..extensions import db
from tvanamm.time_utils import to_utc_z


class LoyaltyAccount(db.Model):
    """
    Points balance for one portal account.

    current_balance is a maintained cache of points_earned - points_redeemed;
    the transaction ledger is the source of truth for reconciliation.
    """
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_loyalty_accounts_user"),
        db.CheckConstraint("current_balance >= 0", name="ck_loyalty_accounts_balance_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    current_balance = db.Column(db.Integer, nullable=False, default=0)
    points_earned = db.Column(db.Integer, nullable=False, default=0)
    points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    tier_level = db.Column(db.String(16), nullable=False, default="bronze")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", backref=db.backref("loyalty_account", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "current_balance": self.current_balance,
            "points_earned": self.points_earned,
            "points_redeemed": self.points_redeemed,
            "tier_level": self.tier_level,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of point events.

    TRANSACTION TYPES:
    - earned: positive points (order settlement or manual credit)
    - redeemed: negative points (cash discount, reward, or manual debit)

    reward_code is set for non-cash reward redemptions (FREE_DELIVERY, ...);
    cash-discount redemptions leave it NULL.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_user_created", "user_id", "created_at"),
        db.Index("ix_loyalty_txns_order_type", "order_id", "type"),
        db.CheckConstraint("type IN ('earned', 'redeemed')", name="ck_loyalty_txns_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    points = db.Column(db.Integer, nullable=False)  # Positive for earned, negative for redeemed
    type = db.Column(db.String(16), nullable=False)
    reward_code = db.Column(db.String(32), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "points": self.points,
            "type": self.type,
            "reward_code": self.reward_code,
            "description": self.description,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyGift(db.Model):
    """
    Reward redeemable for a fixed number of points, managed by staff.

    code is what checkout requests and ledger rows reference, so it never
    changes once created. With auto_update_stock set, every redemption takes
    one unit of stock_quantity inside the checkout transaction; without it
    the gift is unlimited.
    """
    __tablename__ = "loyalty_gifts"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_loyalty_gifts_code"),
        db.CheckConstraint("points_required > 0", name="ck_loyalty_gifts_points_positive"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_loyalty_gifts_stock_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    points_required = db.Column(db.Integer, nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    auto_update_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def in_stock(self) -> bool:
        return not self.auto_update_stock or self.stock_quantity > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "points_required": self.points_required,
            "stock_quantity": self.stock_quantity,
            "auto_update_stock": self.auto_update_stock,
            "in_stock": self.in_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
