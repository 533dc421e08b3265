# Overview: Loyalty points ledger; accrual on sales, redemption against site rewards.

"""
Points ledger invariants:
- royalty_point_transactions is append-only (EARNED positive, REDEEMED negative).
- current_points == total_points_earned - total_points_redeemed, per account.
- A redemption never drives current_points below zero: the account row is
  locked and sufficiency is checked before any write.
- Earning is a relative UPDATE (col = col + points) after an insert that
  ignores an existing (site, phone) row, so concurrent earns on one phone
  both land.

Earning:
    points = floor(bill_amount * points_per_amount)
with bill_amount in whole currency units (cents / 100). Nothing is awarded
when the program is disabled, the bill is below min_bill_for_points, or the
result is zero.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import func, insert, update
from sqlalchemy.dialects import postgresql, sqlite

from ..context import RequestContext
from ..extensions import db
from ..models import (
    Product,
    RoyaltyAccount,
    RoyaltyConfig,
    RoyaltyPointTransaction,
    RoyaltyRedemption,
    RoyaltyReward,
    Sale,
)
from ..models.loyalty import (
    POINTS_EARNED,
    POINTS_REDEEMED,
    REDEMPTION_APPLIED,
    REWARD_ACTIVE,
    REWARD_DISCOUNT,
    REWARD_INACTIVE,
    REWARD_PRODUCT,
    REWARD_TYPES,
)
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_decimal,
    coerce_int,
    validate_payload,
)
from .concurrency import atomic, lock_for_update


MIN_PHONE_LENGTH = 5


class LoyaltyError(Exception):
    """Raised when a points operation violates a business rule."""
    pass


class InsufficientPointsError(LoyaltyError):
    def __init__(self, message: str, *, required: int, available: int):
        super().__init__(message)
        self.required = required
        self.available = available

    @property
    def details(self) -> dict:
        return {"required": self.required, "available": self.available}


REWARD_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "description", "reward_type", "points_required", "status",
        "coupon_name", "discount_percent", "discount_max_cap_cents",
        "product_id", "product_qty",
    },
    required_on_create={"name", "reward_type", "points_required"},
)


# =============================================================================
# Config
# =============================================================================

def _get_or_create_config(site_id: int) -> RoyaltyConfig:
    config = db.session.query(RoyaltyConfig).filter_by(site_id=site_id).first()
    if config:
        return config
    config = RoyaltyConfig(
        site_id=site_id,
        is_enabled=True,
        points_per_amount=Decimal("1"),
        amount_per_point=Decimal("1"),
        min_bill_for_points_cents=0,
    )
    db.session.add(config)
    db.session.flush()
    return config


def get_royalty_config(site_id: int) -> RoyaltyConfig:
    """Site config, created with defaults on first access."""
    config = _get_or_create_config(site_id)
    db.session.commit()
    return config


def update_royalty_config(site_id: int, payload: dict) -> RoyaltyConfig:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    allowed = {"is_enabled", "points_per_amount", "amount_per_point", "min_bill_for_points_cents"}
    for key in payload:
        if key not in allowed:
            raise ValidationError(f"Field not allowed: {key}", key)

    config = _get_or_create_config(site_id)
    if "is_enabled" in payload:
        if not isinstance(payload["is_enabled"], bool):
            raise ValidationError("is_enabled must be a boolean", "is_enabled")
        config.is_enabled = payload["is_enabled"]
    if "points_per_amount" in payload:
        value = coerce_decimal(payload["points_per_amount"], "points_per_amount")
        if value < 0:
            raise ValidationError("points_per_amount must be >= 0", "points_per_amount")
        config.points_per_amount = value
    if "amount_per_point" in payload:
        value = coerce_decimal(payload["amount_per_point"], "amount_per_point")
        if value <= 0:
            raise ValidationError("amount_per_point must be > 0", "amount_per_point")
        config.amount_per_point = value
    if "min_bill_for_points_cents" in payload:
        value = coerce_int(payload["min_bill_for_points_cents"], "min_bill_for_points_cents")
        if value < 0:
            raise ValidationError("min_bill_for_points_cents must be >= 0", "min_bill_for_points_cents")
        config.min_bill_for_points_cents = value
    db.session.commit()
    return config


def points_for_bill(config: RoyaltyConfig, bill_amount_cents: int) -> int:
    if not config.is_enabled:
        return 0
    if bill_amount_cents <= 0 or bill_amount_cents < (config.min_bill_for_points_cents or 0):
        return 0
    amount = Decimal(bill_amount_cents) / Decimal(100)
    points = (amount * Decimal(config.points_per_amount)).to_integral_value(rounding=ROUND_FLOOR)
    return max(int(points), 0)


# =============================================================================
# Accounts
# =============================================================================

def _normalize_phone(phone) -> str:
    return str(phone).strip() if phone is not None else ""


def get_account_by_phone(ctx: RequestContext, phone) -> RoyaltyAccount | None:
    """Phones shorter than MIN_PHONE_LENGTH never match (partial input while typing)."""
    phone = _normalize_phone(phone)
    if len(phone) < MIN_PHONE_LENGTH:
        return None
    return (
        db.session.query(RoyaltyAccount)
        .filter_by(site_id=ctx.site_id, customer_phone=phone)
        .first()
    )


def get_account(ctx: RequestContext, account_id: int) -> RoyaltyAccount:
    account = db.session.query(RoyaltyAccount).filter_by(id=account_id, site_id=ctx.site_id).first()
    if not account:
        raise NotFoundError("Royalty account not found")
    return account


def account_transactions(ctx: RequestContext, account_id: int) -> list[RoyaltyPointTransaction]:
    get_account(ctx, account_id)
    return (
        db.session.query(RoyaltyPointTransaction)
        .filter_by(account_id=account_id, site_id=ctx.site_id)
        .order_by(RoyaltyPointTransaction.created_at.desc(), RoyaltyPointTransaction.id.desc())
        .all()
    )


def _insert_account_if_missing(site_id: int, phone: str, customer_name: str | None) -> None:
    """Zero-balance account for (site, phone); an existing row is left untouched."""
    row = {
        "site_id": site_id,
        "customer_phone": phone,
        "customer_name": customer_name,
        "current_points": 0,
        "total_points_earned": 0,
        "total_points_redeemed": 0,
        "version_id": 1,
    }
    table = RoyaltyAccount.__table__
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(row).on_conflict_do_nothing(
            index_elements=["site_id", "customer_phone"]
        )
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(row).on_conflict_do_nothing(
            index_elements=["site_id", "customer_phone"]
        )
    else:
        exists = (
            db.session.query(RoyaltyAccount.id)
            .filter_by(site_id=site_id, customer_phone=phone)
            .first()
        )
        if exists:
            return
        stmt = insert(table).values(row)
    db.session.execute(stmt)


def earn_points(
    ctx: RequestContext,
    phone,
    bill_amount_cents: int,
    sale: Sale | None = None,
    customer_name: str | None = None,
) -> int:
    """
    Award points for a bill; returns the points awarded (0 when nothing is due).

    Creates the account on first earn. Runs in its own transaction.
    """
    phone = _normalize_phone(phone)
    if not phone:
        raise ValidationError("customer_phone is required", "customer_phone")
    bill_amount_cents = coerce_int(bill_amount_cents, "bill_amount_cents")

    with atomic():
        config = _get_or_create_config(ctx.site_id)
        points = points_for_bill(config, bill_amount_cents)
        if points <= 0:
            return 0

        _insert_account_if_missing(ctx.site_id, phone, customer_name)

        values = {
            RoyaltyAccount.current_points: RoyaltyAccount.current_points + points,
            RoyaltyAccount.total_points_earned: RoyaltyAccount.total_points_earned + points,
            RoyaltyAccount.version_id: RoyaltyAccount.version_id + 1,
        }
        if customer_name:
            values[RoyaltyAccount.customer_name] = func.coalesce(RoyaltyAccount.customer_name, customer_name)
        db.session.execute(
            update(RoyaltyAccount)
            .where(RoyaltyAccount.site_id == ctx.site_id, RoyaltyAccount.customer_phone == phone)
            .values(values)
            .execution_options(synchronize_session=False)
        )

        account = (
            db.session.query(RoyaltyAccount)
            .filter_by(site_id=ctx.site_id, customer_phone=phone)
            .one()
        )
        db.session.refresh(account)

        db.session.add(RoyaltyPointTransaction(
            account_id=account.id,
            site_id=ctx.site_id,
            points=points,
            type=POINTS_EARNED,
            sale_id=sale.id if sale else None,
            sale_bill_no=sale.bill_no if sale else None,
            bill_amount_cents=bill_amount_cents,
            note=f"Earned on bill {sale.bill_no}" if sale else None,
        ))

    return points


# =============================================================================
# Rewards
# =============================================================================

def compute_reward_discount(reward: RoyaltyReward, base_cents: int) -> int:
    """
    Discount a reward grants against base_cents.

    DISCOUNT: base * percent / 100 (half-up to the cent), capped at
    discount_max_cap_cents when set. PRODUCT rewards grant no discount.
    """
    if reward.reward_type != REWARD_DISCOUNT or not reward.discount_percent or base_cents <= 0:
        return 0
    raw = Decimal(base_cents) * Decimal(reward.discount_percent) / Decimal(100)
    discount = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if reward.discount_max_cap_cents is not None:
        discount = min(discount, reward.discount_max_cap_cents)
    return min(discount, base_cents)


def get_reward(ctx: RequestContext, reward_id: int) -> RoyaltyReward:
    reward = db.session.query(RoyaltyReward).filter_by(id=reward_id, site_id=ctx.site_id).first()
    if not reward:
        raise NotFoundError("Reward not found")
    return reward


def check_redeemable(ctx: RequestContext, account: RoyaltyAccount, reward: RoyaltyReward) -> None:
    """Read-only eligibility check shared by the sale pre-check and redemption."""
    if reward.site_id != ctx.site_id or account.site_id != ctx.site_id:
        raise NotFoundError("Reward not found")
    if not reward.is_active:
        raise LoyaltyError(f"Reward '{reward.name}' is not active")
    if account.current_points < reward.points_required:
        raise InsufficientPointsError(
            f"Insufficient points: {reward.points_required} required, {account.current_points} available",
            required=reward.points_required,
            available=account.current_points,
        )


def reward_discount_base(sale: Sale) -> int:
    """Amount a DISCOUNT reward applies to: gross minus item discounts."""
    return sale.gross_amount_cents - sum(item.discount_cents for item in sale.items)


def redeem_reward(
    ctx: RequestContext,
    account_id: int,
    reward_id: int,
    sale: Sale | None = None,
) -> RoyaltyRedemption:
    """
    Spend points on a reward. Locks the account row, verifies the balance,
    then writes the redemption and a negative REDEEMED transaction.

    The discount is always computed from the sale's own amounts; without a
    sale nothing is discounted. PRODUCT rewards only read the product;
    stock is taken by the sale line.
    """
    if sale is not None:
        if sale.site_id != ctx.site_id:
            raise NotFoundError("Sale not found")
        if sale.is_return:
            raise LoyaltyError(f"Rewards cannot be redeemed against return bill {sale.bill_no}")
        already = db.session.query(RoyaltyRedemption.id).filter_by(sale_id=sale.id).first()
        if already:
            raise ConflictError(f"A reward has already been redeemed on bill {sale.bill_no}")

    with atomic():
        account = lock_for_update(
            db.session.query(RoyaltyAccount).filter_by(id=account_id, site_id=ctx.site_id)
        ).first()
        if not account:
            raise NotFoundError("Royalty account not found")
        reward = get_reward(ctx, reward_id)
        check_redeemable(ctx, account, reward)

        if reward.reward_type == REWARD_PRODUCT:
            product = db.session.query(Product).filter_by(id=reward.product_id, site_id=ctx.site_id).first()
            if not product:
                raise LoyaltyError(f"Reward product for '{reward.name}' no longer exists")

        discount = compute_reward_discount(reward, reward_discount_base(sale)) if sale is not None else 0
        points = reward.points_required

        account.current_points -= points
        account.total_points_redeemed = (account.total_points_redeemed or 0) + points

        redemption = RoyaltyRedemption(
            account_id=account.id,
            reward_id=reward.id,
            site_id=ctx.site_id,
            points_used=points,
            discount_applied_cents=discount,
            sale_id=sale.id if sale else None,
            sale_bill_no=sale.bill_no if sale else None,
            status=REDEMPTION_APPLIED,
        )
        db.session.add(redemption)
        db.session.flush()

        db.session.add(RoyaltyPointTransaction(
            account_id=account.id,
            site_id=ctx.site_id,
            points=-points,
            type=POINTS_REDEEMED,
            sale_id=sale.id if sale else None,
            sale_bill_no=sale.bill_no if sale else None,
            redemption_id=redemption.id,
            note=f"Redeemed {reward.name}",
        ))

    current_app.logger.info(
        "Reward redeemed: site=%s account=%s reward=%s points=%s discount=%s",
        ctx.site_id, account.id, reward.id, points, discount,
    )
    return redemption


def eligible_rewards(ctx: RequestContext, account: RoyaltyAccount) -> list[RoyaltyReward]:
    return (
        db.session.query(RoyaltyReward)
        .filter(
            RoyaltyReward.site_id == ctx.site_id,
            RoyaltyReward.status == REWARD_ACTIVE,
            RoyaltyReward.points_required <= account.current_points,
        )
        .order_by(RoyaltyReward.points_required.asc(), RoyaltyReward.name.asc())
        .all()
    )


def list_rewards(ctx: RequestContext, status: str | None = None) -> list[RoyaltyReward]:
    query = db.session.query(RoyaltyReward).filter_by(site_id=ctx.site_id)
    if status:
        query = query.filter_by(status=status.upper())
    return query.order_by(RoyaltyReward.points_required.asc(), RoyaltyReward.name.asc()).all()


def _enforce_reward_rules(ctx: RequestContext, values: dict) -> None:
    """Cross-field rules on the merged (existing + patch) reward values."""
    reward_type = (values.get("reward_type") or "").upper()
    if reward_type not in REWARD_TYPES:
        raise ValidationError(f"reward_type must be one of {', '.join(REWARD_TYPES)}", "reward_type")
    values["reward_type"] = reward_type

    if values.get("points_required") is None or values["points_required"] <= 0:
        raise ValidationError("points_required must be > 0", "points_required")

    status = (values.get("status") or REWARD_ACTIVE).upper()
    if status not in (REWARD_ACTIVE, REWARD_INACTIVE):
        raise ValidationError("status must be ACTIVE or INACTIVE", "status")
    values["status"] = status

    if reward_type == REWARD_DISCOUNT:
        percent = values.get("discount_percent")
        if percent is None or percent <= 0 or percent > 100:
            raise ValidationError("discount_percent must be between 0 and 100", "discount_percent")
        cap = values.get("discount_max_cap_cents")
        if cap is not None and cap < 0:
            raise ValidationError("discount_max_cap_cents must be >= 0", "discount_max_cap_cents")
        values["product_id"] = None
        values["product_qty"] = None
    else:
        if values.get("product_id") is None:
            raise ValidationError("product_id is required for PRODUCT rewards", "product_id")
        product = db.session.query(Product).filter_by(id=values["product_id"], site_id=ctx.site_id).first()
        if not product:
            raise ValidationError("Product not found", "product_id")
        qty = values.get("product_qty") or 1
        if qty <= 0:
            raise ValidationError("product_qty must be > 0", "product_qty")
        values["product_qty"] = qty
        values["coupon_name"] = None
        values["discount_percent"] = None
        values["discount_max_cap_cents"] = None


def _ensure_unique_name(ctx: RequestContext, name: str, exclude_id: int | None = None) -> None:
    query = db.session.query(RoyaltyReward.id).filter_by(site_id=ctx.site_id, name=name)
    if exclude_id:
        query = query.filter(RoyaltyReward.id != exclude_id)
    if query.first():
        raise ConflictError(f"Reward '{name}' already exists")


def create_reward(ctx: RequestContext, payload: dict) -> RoyaltyReward:
    values = validate_payload(model=RoyaltyReward, payload=payload, policy=REWARD_POLICY, partial=False)
    _enforce_reward_rules(ctx, values)
    _ensure_unique_name(ctx, values["name"])

    reward = RoyaltyReward(site_id=ctx.site_id, created_by_user_id=ctx.user_id, **values)
    db.session.add(reward)
    db.session.commit()
    return reward


def update_reward(ctx: RequestContext, reward_id: int, payload: dict) -> RoyaltyReward:
    reward = get_reward(ctx, reward_id)
    patch = validate_payload(model=RoyaltyReward, payload=payload, policy=REWARD_POLICY, partial=True)

    merged = {key: getattr(reward, key) for key in REWARD_POLICY.writable_fields}
    merged.update(patch)
    _enforce_reward_rules(ctx, merged)
    if "name" in patch:
        _ensure_unique_name(ctx, merged["name"], exclude_id=reward.id)

    for key, value in merged.items():
        setattr(reward, key, value)
    db.session.commit()
    return reward


def toggle_reward_status(ctx: RequestContext, reward_id: int) -> RoyaltyReward:
    reward = get_reward(ctx, reward_id)
    reward.status = REWARD_INACTIVE if reward.is_active else REWARD_ACTIVE
    db.session.commit()
    return reward


def delete_reward(ctx: RequestContext, reward_id: int) -> None:
    """Refused once the reward has been redeemed; deactivate it instead."""
    reward = get_reward(ctx, reward_id)
    used = db.session.query(RoyaltyRedemption.id).filter_by(reward_id=reward.id).first()
    if used:
        raise ConflictError("Reward has been redeemed and cannot be deleted; deactivate it instead")
    db.session.delete(reward)
    db.session.commit()
