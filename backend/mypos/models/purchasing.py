from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PURCHASE_DRAFT = "draft"
PURCHASE_ORDERED = "ordered"
PURCHASE_RECEIVED = "received"
PURCHASE_CANCELLED = "cancelled"
PURCHASE_STATUSES = (PURCHASE_DRAFT, PURCHASE_ORDERED, PURCHASE_RECEIVED, PURCHASE_CANCELLED)


class Purchase(db.Model):
    """
    Purchase order from a supplier.

    Lifecycle: draft/ordered -> received (stock in, once) or cancelled.
    Received and cancelled are terminal.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("purchase_number", name="uq_purchases_number"),
        db.Index("ix_purchases_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    purchase_number = db.Column(db.String(64), nullable=False)

    supplier_id = db.Column(db.Integer, nullable=True)
    supplier_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=PURCHASE_DRAFT, index=True)
    total = db.Column(db.BigInteger, nullable=False, default=0)
    note = db.Column(db.String(500), nullable=True)

    ordered_on = db.Column(db.Date, nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        order_by="PurchaseItem.line_no",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "purchase_number": self.purchase_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "status": self.status,
            "total": self.total,
            "note": self.note,
            "ordered_on": self.ordered_on.isoformat() if self.ordered_on else None,
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    """Purchase line; lines without product_id are free text and never touch stock."""
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("subtotal = unit_price * quantity", name="ck_purchase_items_subtotal"),
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    unit_price = db.Column(db.BigInteger, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.BigInteger, nullable=False)

    purchase = db.relationship("Purchase", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
        }
