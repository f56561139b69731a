from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_CORRECTION = "correction"
MOVEMENT_KINDS = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_CORRECTION)


class Product(db.Model):
    """
    Product master data with its authoritative stock quantity.

    STOCK: `stock` is written ONLY by inventory_service.apply_movement, always
    together with a StockMovement row. Product create/update routes never
    accept it as a writable field (opening stock goes through the ledger too).

    DELETE: products are deactivated (is_active=False), never removed, so
    transaction lines keep pointing at a real row.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("store_id", "code", name="uq_products_store_code"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonnegative"),
        db.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_nonnegative"),
        db.Index("ix_products_store_name", "store_id", "name"),
        db.Index("ix_products_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Store-assigned code / barcode; optional, unique within the store when set
    code = db.Column(db.String(50), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    unit = db.Column(db.String(20), nullable=False, default="pcs")

    # Smallest currency unit (Rupiah)
    purchase_price = db.Column(db.BigInteger, nullable=False, default=0)
    sale_price = db.Column(db.BigInteger, nullable=False, default=0)

    stock = db.Column(db.BigInteger, nullable=False, default=0)
    min_stock = db.Column(db.BigInteger, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "code": self.code,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "purchase_price": self.purchase_price,
            "sale_price": self.sale_price,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "is_low_stock": self.is_low_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock movement log.

    INVARIANT: stock_after equals products.stock immediately after this row was
    written; both are written in the same unit of work. Rows are never updated
    or deleted.

    quantity is the delta for kind in/out and the absolute target for
    kind=correction.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_store_product", "store_id", "product_id", "id"),
        db.Index("ix_stock_movements_reference", "store_id", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.BigInteger, nullable=False)
    stock_before = db.Column(db.BigInteger, nullable=False)
    stock_after = db.Column(db.BigInteger, nullable=False)

    note = db.Column(db.String(500), nullable=True)

    # initial, sale, void, purchase, manual
    reference_type = db.Column(db.String(16), nullable=False, default="manual")
    # invoice / purchase number that caused the movement
    reference = db.Column(db.String(64), nullable=True)

    user_ref = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product is not None else None,
            "kind": self.kind,
            "quantity": self.quantity,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "note": self.note,
            "reference_type": self.reference_type,
            "reference": self.reference,
            "user_ref": self.user_ref,
            "created_at": to_utc_z(self.created_at),
        }
