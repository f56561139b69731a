"""
Purchase Receiving Service

WHY: Goods arriving from a supplier are the main way stock goes up. Receiving
a purchase order must add stock for every line exactly once: the status change
and all stock movements share one unit of work, and a received order can never
be received again.

Lifecycle:
    draft / ordered --receive--> received   (terminal)
    draft / ordered --cancel---> cancelled  (terminal)

Lines without product_id are free text (e.g. delivery fee) and never touch stock.
"""

from __future__ import annotations

import math
from datetime import date

from flask import current_app

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, Purchase, PurchaseItem
from ..models.inventory import MOVEMENT_IN
from ..models.purchasing import (
    PURCHASE_CANCELLED,
    PURCHASE_DRAFT,
    PURCHASE_ORDERED,
    PURCHASE_RECEIVED,
    PURCHASE_STATUSES,
)
from mypos.time_utils import utcnow
from .concurrency import lock_for_update, run_atomic
from .document_service import next_purchase_number
from .inventory_service import apply_movement


OPEN_STATUSES = (PURCHASE_DRAFT, PURCHASE_ORDERED)


def get_purchase(store_id: int, purchase_id: int, *, lock: bool = False) -> Purchase:
    query = db.session.query(Purchase).filter_by(id=purchase_id, store_id=store_id)
    if lock:
        query = lock_for_update(query)
    purchase = query.first()
    if purchase is None:
        raise NotFoundError("Purchase", purchase_id)
    return purchase


def create_purchase(store_id: int, data: dict, *, user_ref: str | None = None) -> Purchase:
    """
    Create a purchase order with its lines.

    data is the output of validation.parse_purchase_request. Lines that name a
    product must reference one in this store; their name defaults to the
    product's name.
    """
    def _op() -> int:
        product_ids = {item["product_id"] for item in data["items"] if item["product_id"] is not None}
        products = {}
        if product_ids:
            rows = db.session.query(Product).filter(
                Product.store_id == store_id, Product.id.in_(product_ids)
            ).all()
            products = {p.id: p for p in rows}
            for product_id in sorted(product_ids):
                if product_id not in products:
                    raise NotFoundError("Product", product_id)

        purchase = Purchase(
            store_id=store_id,
            purchase_number=next_purchase_number(store_id),
            supplier_id=data.get("supplier_id"),
            supplier_name=data.get("supplier_name"),
            status=data.get("status") or PURCHASE_DRAFT,
            note=data.get("note"),
            ordered_on=data.get("ordered_on") or utcnow().date(),
            created_by=user_ref,
            total=0,
        )
        db.session.add(purchase)
        db.session.flush()

        total = 0
        for line_no, item in enumerate(data["items"], start=1):
            product = products.get(item["product_id"])
            subtotal = item["unit_price"] * item["quantity"]
            total += subtotal
            db.session.add(PurchaseItem(
                purchase_id=purchase.id,
                line_no=line_no,
                product_id=item["product_id"],
                name=item["name"] or product.name,
                unit_price=item["unit_price"],
                quantity=item["quantity"],
                subtotal=subtotal,
            ))

        purchase.total = total
        db.session.flush()
        return purchase.id

    purchase_id = run_atomic(_op)
    return get_purchase(store_id, purchase_id)


def list_purchases(
    store_id: int,
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """
    Purchases of a store, newest first.

    date_from/date_to bound the order date (ordered_on), both inclusive.
    """
    if status is not None and status not in PURCHASE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PURCHASE_STATUSES)}")

    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    q = db.session.query(Purchase).filter(Purchase.store_id == store_id)
    if status is not None:
        q = q.filter(Purchase.status == status)
    if supplier_id is not None:
        q = q.filter(Purchase.supplier_id == supplier_id)
    if date_from is not None:
        q = q.filter(Purchase.ordered_on >= date_from)
    if date_to is not None:
        q = q.filter(Purchase.ordered_on <= date_to)

    total = q.count()
    purchases = (
        q.order_by(Purchase.created_at.desc(), Purchase.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [p.to_dict() for p in purchases],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def receive_purchase(store_id: int, purchase_id: int, *, user_ref: str | None = None) -> Purchase:
    """Take delivery: stock in for every product line, then mark received."""
    def _op() -> int:
        purchase = get_purchase(store_id, purchase_id, lock=True)
        if purchase.status == PURCHASE_RECEIVED:
            raise InvalidStateError(
                "Purchase already received",
                details={"purchase_number": purchase.purchase_number},
            )
        if purchase.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Cannot receive a {purchase.status} purchase",
                details={"status": purchase.status},
            )

        for item in purchase.items:
            if item.product_id is None:
                continue
            apply_movement(
                store_id=store_id,
                product_id=item.product_id,
                kind=MOVEMENT_IN,
                quantity=item.quantity,
                note=f"Purchase {purchase.purchase_number}",
                reference_type="purchase",
                reference=purchase.purchase_number,
                user_ref=user_ref,
            )

        purchase.status = PURCHASE_RECEIVED
        purchase.received_at = utcnow()
        db.session.flush()
        return purchase.id

    run_atomic(_op)
    purchase = get_purchase(store_id, purchase_id)
    current_app.logger.info("Purchase %s received", purchase.purchase_number)
    return purchase


def cancel_purchase(store_id: int, purchase_id: int) -> Purchase:
    def _op() -> None:
        purchase = get_purchase(store_id, purchase_id, lock=True)
        if purchase.status not in OPEN_STATUSES:
            raise InvalidStateError(
                f"Cannot cancel a {purchase.status} purchase",
                details={"status": purchase.status},
            )
        purchase.status = PURCHASE_CANCELLED
        purchase.cancelled_at = utcnow()
        db.session.flush()

    run_atomic(_op)
    return get_purchase(store_id, purchase_id)
