from __future__ import annotations

from ..extensions import db
from stockpoint.time_utils import to_utc_z


PAYMENT_PAID = "PAID"
PAYMENT_PARTIAL = "PARTIAL"
PAYMENT_UNPAID = "UNPAID"
# Return bills whose refund has been paid out
PAYMENT_REFUNDED = "REFUNDED"
PAYMENT_STATUSES = (PAYMENT_PAID, PAYMENT_PARTIAL, PAYMENT_UNPAID, PAYMENT_REFUNDED)

BILL_SALE = "SALE"
BILL_RETURN = "RETURN"
BILL_TYPES = (BILL_SALE, BILL_RETURN)


class Sale(db.Model):
    """
    A bill. Totals are frozen at creation and only change through an
    explicit edit (is_edited + edit_reason).

    bill_no is unique per site and allocated from document_sequences.

    RETURN bills credit stock back and always reference the original bill
    (return_for_bill_no) with a reason. Amounts on a return are positive;
    paid_amount_cents is the refund handed back.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("site_id", "bill_no", name="uq_sales_site_bill_no"),
        db.Index("ix_sales_site_created", "site_id", "created_at"),
        db.Index("ix_sales_site_return_for", "site_id", "return_for_bill_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    bill_no = db.Column(db.String(32), nullable=False)
    bill_type = db.Column(db.String(16), nullable=False, default=BILL_SALE)
    return_for_bill_no = db.Column(db.String(32), nullable=True)
    return_reason = db.Column(db.Text, nullable=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True, index=True)
    remark = db.Column(db.Text, nullable=True)

    gross_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    # Total discount: item discounts + bill discount + reward discount
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    bill_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    reward_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    due_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_UNPAID, index=True)

    is_edited = db.Column(db.Boolean, nullable=False, default=False)
    edit_reason = db.Column(db.Text, nullable=True)
    edited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    edited_by_user_id = db.Column(db.Integer, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    site = db.relationship("Site", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.line_no",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_return(self) -> bool:
        return self.bill_type == BILL_RETURN

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "site_id": self.site_id,
            "bill_no": self.bill_no,
            "bill_type": self.bill_type,
            "return_for_bill_no": self.return_for_bill_no,
            "return_reason": self.return_reason,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "remark": self.remark,
            "gross_amount_cents": self.gross_amount_cents,
            "discount_cents": self.discount_cents,
            "bill_discount_cents": self.bill_discount_cents,
            "reward_discount_cents": self.reward_discount_cents,
            "net_amount_cents": self.net_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "due_amount_cents": self.due_amount_cents,
            "payment_status": self.payment_status,
            "is_edited": self.is_edited,
            "edit_reason": self.edit_reason,
            "edited_at": to_utc_z(self.edited_at),
            "edited_by_user_id": self.edited_by_user_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Frozen line snapshot. Names, prices and tax rates are copied at sale
    time so later catalog or tax changes never alter a bill.
    """
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False, default=1)

    # Stock reference only; pricing never reads through it
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=True)

    product_name = db.Column(db.String(255), nullable=False)
    batch_number = db.Column(db.String(64), nullable=True)
    is_reward_item = db.Column(db.Boolean, nullable=False, default=False)

    quantity = db.Column(db.Integer, nullable=False)
    mrp_cents = db.Column(db.Integer, nullable=False, default=0)
    rate_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    gst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    hst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    pst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)
    qst_rate = db.Column(db.Numeric(7, 3), nullable=False, default=0)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    gst_cents = db.Column(db.Integer, nullable=False, default=0)
    hst_cents = db.Column(db.Integer, nullable=False, default=0)
    pst_cents = db.Column(db.Integer, nullable=False, default=0)
    qst_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "batch_id": self.batch_id,
            "product_name": self.product_name,
            "batch_number": self.batch_number,
            "is_reward_item": self.is_reward_item,
            "quantity": self.quantity,
            "mrp_cents": self.mrp_cents,
            "rate_cents": self.rate_cents,
            "discount_cents": self.discount_cents,
            "gst_rate": str(self.gst_rate),
            "hst_rate": str(self.hst_rate),
            "pst_rate": str(self.pst_rate),
            "qst_rate": str(self.qst_rate),
            "subtotal_cents": self.subtotal_cents,
            "gst_cents": self.gst_cents,
            "hst_cents": self.hst_cents,
            "pst_cents": self.pst_cents,
            "qst_cents": self.qst_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
        }
