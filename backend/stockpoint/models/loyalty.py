from __future__ import annotations

from ..extensions import db
from stockpoint.time_utils import to_utc_z


POINTS_EARNED = "EARNED"
POINTS_REDEEMED = "REDEEMED"

REWARD_DISCOUNT = "DISCOUNT"
REWARD_PRODUCT = "PRODUCT"
REWARD_TYPES = (REWARD_DISCOUNT, REWARD_PRODUCT)

REWARD_ACTIVE = "ACTIVE"
REWARD_INACTIVE = "INACTIVE"

REDEMPTION_APPLIED = "APPLIED"


class RoyaltyConfig(db.Model):
    """Per-site earning rules. Auto-created with defaults on first read."""
    __tablename__ = "royalty_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, unique=True)

    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    # Points earned per whole currency unit of the bill
    points_per_amount = db.Column(db.Numeric(10, 4), nullable=False, default=1)
    # Currency value of one point (informational, used by reward pricing)
    amount_per_point = db.Column(db.Numeric(10, 4), nullable=False, default=1)
    min_bill_for_points_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "is_enabled": self.is_enabled,
            "points_per_amount": str(self.points_per_amount),
            "amount_per_point": str(self.amount_per_point),
            "min_bill_for_points_cents": self.min_bill_for_points_cents,
            "updated_at": to_utc_z(self.updated_at),
        }


class RoyaltyAccount(db.Model):
    """
    Points balance for one customer phone at one site.

    INVARIANT: current_points = total_points_earned - total_points_redeemed
    CONCURRENCY: redemption locks the row; version_id catches lost updates.
    """
    __tablename__ = "royalty_accounts"
    __table_args__ = (
        db.UniqueConstraint("site_id", "customer_phone", name="uq_royalty_accounts_site_phone"),
        db.CheckConstraint("current_points >= 0", name="ck_royalty_accounts_points_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    customer_phone = db.Column(db.String(32), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)

    current_points = db.Column(db.Integer, nullable=False, default=0)
    total_points_earned = db.Column(db.Integer, nullable=False, default=0)
    total_points_redeemed = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "customer_phone": self.customer_phone,
            "customer_name": self.customer_name,
            "current_points": self.current_points,
            "total_points_earned": self.total_points_earned,
            "total_points_redeemed": self.total_points_redeemed,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class RoyaltyPointTransaction(db.Model):
    """Immutable points ledger row; points is signed (REDEEMED is negative)."""
    __tablename__ = "royalty_point_transactions"
    __table_args__ = (
        db.Index("ix_royalty_point_tx_account_created", "account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("royalty_accounts.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    points = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    sale_bill_no = db.Column(db.String(32), nullable=True)
    bill_amount_cents = db.Column(db.Integer, nullable=True)
    redemption_id = db.Column(db.Integer, db.ForeignKey("royalty_redemptions.id"), nullable=True)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("RoyaltyAccount", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "site_id": self.site_id,
            "points": self.points,
            "type": self.type,
            "sale_id": self.sale_id,
            "sale_bill_no": self.sale_bill_no,
            "bill_amount_cents": self.bill_amount_cents,
            "redemption_id": self.redemption_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class RoyaltyReward(db.Model):
    """
    Site-scoped reward catalog entry.

    DISCOUNT rewards use coupon_name / discount_percent / discount_max_cap_cents.
    PRODUCT rewards use product_id / product_qty.
    """
    __tablename__ = "royalty_rewards"
    __table_args__ = (
        db.UniqueConstraint("site_id", "name", name="uq_royalty_rewards_site_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    reward_type = db.Column(db.String(16), nullable=False)
    points_required = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=REWARD_ACTIVE, index=True)

    coupon_name = db.Column(db.String(64), nullable=True)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=True)
    discount_max_cap_cents = db.Column(db.Integer, nullable=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_qty = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")

    @property
    def is_active(self) -> bool:
        return self.status == REWARD_ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "name": self.name,
            "description": self.description,
            "reward_type": self.reward_type,
            "points_required": self.points_required,
            "status": self.status,
            "coupon_name": self.coupon_name,
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "discount_max_cap_cents": self.discount_max_cap_cents,
            "product_id": self.product_id,
            "product_qty": self.product_qty,
            "product_name": self.product.name if self.product else None,
            "created_at": to_utc_z(self.created_at),
        }


class RoyaltyRedemption(db.Model):
    __tablename__ = "royalty_redemptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("royalty_accounts.id"), nullable=False, index=True)
    reward_id = db.Column(db.Integer, db.ForeignKey("royalty_rewards.id"), nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    points_used = db.Column(db.Integer, nullable=False)
    discount_applied_cents = db.Column(db.Integer, nullable=False, default=0)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    sale_bill_no = db.Column(db.String(32), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=REDEMPTION_APPLIED)

    used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account = db.relationship("RoyaltyAccount", backref=db.backref("redemptions", lazy=True))
    reward = db.relationship("RoyaltyReward", backref=db.backref("redemptions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "reward_id": self.reward_id,
            "reward_name": self.reward.name if self.reward else None,
            "site_id": self.site_id,
            "points_used": self.points_used,
            "discount_applied_cents": self.discount_applied_cents,
            "sale_id": self.sale_id,
            "sale_bill_no": self.sale_bill_no,
            "status": self.status,
            "used_at": to_utc_z(self.used_at),
        }
