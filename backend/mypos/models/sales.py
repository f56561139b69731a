from __future__ import annotations

from ..errors import ValidationError
from ..extensions import db
from ..time_utils import to_utc_z


STATUS_COMPLETED = "completed"
STATUS_PENDING = "pending"
STATUS_VOIDED = "voided"
TRANSACTION_STATUSES = (STATUS_COMPLETED, STATUS_PENDING, STATUS_VOIDED)

PAYMENT_METHODS = ("cash", "transfer", "qris", "e_wallet")


class Transaction(db.Model):
    """
    Sale invoice.

    Created together with its items by sales_service.process_sale and mutated
    only by sales_service.void_transaction (completed -> voided). Never deleted.

    INVARIANT: grand_total = subtotal - discount + tax. Checked when the object
    is constructed and enforced again by a CHECK constraint.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_transactions_invoice_number"),
        db.CheckConstraint(
            "grand_total = subtotal - discount + tax",
            name="ck_transactions_grand_total",
        ),
        db.Index("ix_transactions_store_status_created", "store_id", "status", "created_at"),
        db.Index("ix_transactions_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-readable number, e.g. "INV-20261019-0001-00042"
    invoice_number = db.Column(db.String(64), nullable=False)

    # Customers live in another module; keep a loose reference plus a name snapshot
    customer_id = db.Column(db.Integer, nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    subtotal = db.Column(db.BigInteger, nullable=False)
    discount = db.Column(db.BigInteger, nullable=False, default=0)
    tax = db.Column(db.BigInteger, nullable=False, default=0)
    grand_total = db.Column(db.BigInteger, nullable=False)
    amount_paid = db.Column(db.BigInteger, nullable=False)
    change = db.Column(db.BigInteger, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    note = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_COMPLETED, index=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Void audit trail
    voided_by = db.Column(db.String(128), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("transactions", lazy=True))
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        order_by="TransactionItem.line_no",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.check_totals()

    def check_totals(self) -> None:
        expected = self.subtotal - (self.discount or 0) + (self.tax or 0)
        if self.grand_total != expected:
            raise ValidationError(
                "grand_total does not match subtotal - discount + tax",
                details={"expected": expected, "got": self.grand_total},
            )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "invoice_number": self.invoice_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax": self.tax,
            "grand_total": self.grand_total,
            "amount_paid": self.amount_paid,
            "change": self.change,
            "payment_method": self.payment_method,
            "note": self.note,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "voided_by": self.voided_by,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """
    Line item on a sale invoice. Immutable once written.

    product_id is nullable: if the product row is ever physically removed the
    line keeps its name/price snapshot and voids skip stock restoration for it.
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", "line_no", name="uq_transaction_items_line"),
        db.CheckConstraint(
            "subtotal = unit_price * quantity - discount",
            name="ck_transaction_items_subtotal",
        ),
        db.CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    product_name = db.Column(db.String(255), nullable=False)

    unit_price = db.Column(db.BigInteger, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    discount = db.Column(db.BigInteger, nullable=False, default=0)
    subtotal = db.Column(db.BigInteger, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", back_populates="items")
    product = db.relationship("Product")

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        expected = self.unit_price * self.quantity - (self.discount or 0)
        if self.subtotal != expected:
            raise ValidationError(
                f"Line {self.line_no}: subtotal does not match unit_price x quantity - discount",
                details={"line": self.line_no, "expected": expected, "got": self.subtotal},
            )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "discount": self.discount,
            "subtotal": self.subtotal,
        }


class SaleIdempotencyKey(db.Model):
    """
    Client-supplied retry token for sale creation.

    One row per (store, key), written in the same unit of work as the sale it
    points to, so a key exists if and only if its sale committed.
    """
    __tablename__ = "sale_idempotency_keys"
    __table_args__ = (
        db.UniqueConstraint("store_id", "key", name="uq_sale_idempotency_store_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    key = db.Column(db.String(128), nullable=False)
    request_hash = db.Column(db.String(64), nullable=False)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction")
