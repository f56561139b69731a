"""
Sale and Void Processors

WHY: A checkout touches several rows that must agree with each other: product
stock, stock movements, the invoice header, its lines and the invoice counter.
Each operation here is ONE unit of work (run_atomic): either every write lands
or none does.

Sale flow (process_sale):
    replay check -> lock products -> aggregated stock check -> invoice number
    -> conditional decrement per line -> header + lines -> idempotency key

Void flow (void_transaction):
    lock transaction -> state check -> restore stock per line -> mark voided
"""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import lazyload

from ..errors import (
    AlreadyVoidedError,
    IdempotencyConflictError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Product, SaleIdempotencyKey, Transaction, TransactionItem
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from ..models.sales import STATUS_COMPLETED, STATUS_VOIDED, TRANSACTION_STATUSES
from ..time_utils import utcnow
from ..validation import SaleRequest
from .concurrency import lock_for_update, run_atomic
from .document_service import next_invoice_number
from .inventory_service import apply_movement


@dataclass(frozen=True)
class SaleResult:
    transaction_id: int
    invoice_number: str
    item_count: int
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "item_count": self.item_count,
        }


@dataclass(frozen=True)
class VoidResult:
    transaction_id: int
    invoice_number: str
    restored_items: int
    skipped_items: int

    def to_dict(self) -> dict:
        return {
            "id": self.transaction_id,
            "invoice_number": self.invoice_number,
            "status": STATUS_VOIDED,
            "restored_items": self.restored_items,
            "skipped_items": self.skipped_items,
        }


class _IdempotencyRaceLost(Exception):
    """A concurrent request with the same key committed first."""


def request_fingerprint(sale: SaleRequest) -> str:
    canonical = json.dumps(sale.fingerprint_payload(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _find_replay(store_id: int, key: str, fingerprint: str) -> SaleResult | None:
    record = db.session.query(SaleIdempotencyKey).filter_by(store_id=store_id, key=key).first()
    if record is None:
        return None
    if record.request_hash != fingerprint:
        raise IdempotencyConflictError(
            "Idempotency-Key was already used with a different request",
            details={"key": key},
        )
    txn = record.transaction
    return SaleResult(
        transaction_id=txn.id,
        invoice_number=txn.invoice_number,
        item_count=len(txn.items),
        replayed=True,
    )


def _lock_products(store_id: int, product_ids: list[int]) -> dict[int, Product]:
    # Sorted so concurrent sales lock rows in the same order
    query = (
        db.session.query(Product)
        .filter(Product.store_id == store_id, Product.id.in_(product_ids))
        .order_by(Product.id)
    )
    products = {p.id: p for p in lock_for_update(query).all()}
    for product_id in product_ids:
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise NotFoundError("Product", product_id)
    return products


def _validate_on_hand(sale: SaleRequest, products: dict[int, Product]) -> None:
    requested: dict[int, int] = {}
    for line in sale.items:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    for product_id, qty in requested.items():
        product = products[product_id]
        if product.stock < qty:
            raise InsufficientStockError(
                product_id=product_id,
                product_name=product.name,
                requested=qty,
                available=product.stock,
            )


def process_sale(
    store_id: int,
    sale: SaleRequest,
    *,
    user_ref: str | None = None,
    idempotency_key: str | None = None,
) -> SaleResult:
    """
    Record a completed sale and take its items out of stock, atomically.

    Raises ValidationError, NotFoundError, InsufficientStockError,
    IdempotencyConflictError or StorageError. On any of them stock, movements,
    transactions, items and idempotency keys are exactly as before the call.
    """
    sale.check_arithmetic()
    fingerprint = request_fingerprint(sale) if idempotency_key else None
    product_ids = sorted({line.product_id for line in sale.items})

    def _op() -> SaleResult:
        if idempotency_key:
            replay = _find_replay(store_id, idempotency_key, fingerprint)
            if replay is not None:
                return replay

        products = _lock_products(store_id, product_ids)
        _validate_on_hand(sale, products)

        invoice_number = next_invoice_number(store_id)

        txn = Transaction(
            store_id=store_id,
            invoice_number=invoice_number,
            customer_id=sale.customer_id,
            customer_name=sale.customer_name,
            subtotal=sale.subtotal,
            discount=sale.discount,
            tax=sale.tax,
            grand_total=sale.grand_total,
            amount_paid=sale.amount_paid,
            change=sale.change,
            payment_method=sale.payment_method,
            note=sale.note,
            status=STATUS_COMPLETED,
            created_by=user_ref,
        )
        db.session.add(txn)
        db.session.flush()

        for line_no, line in enumerate(sale.items, start=1):
            product_name = line.name or products[line.product_id].name
            apply_movement(
                store_id=store_id,
                product_id=line.product_id,
                kind=MOVEMENT_OUT,
                quantity=line.quantity,
                note=f"Sale {invoice_number}",
                reference_type="sale",
                reference=invoice_number,
                user_ref=user_ref,
            )
            db.session.add(TransactionItem(
                transaction_id=txn.id,
                line_no=line_no,
                product_id=line.product_id,
                product_name=product_name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                discount=line.discount,
                subtotal=line.subtotal,
            ))

        if idempotency_key:
            try:
                with db.session.begin_nested():
                    db.session.add(SaleIdempotencyKey(
                        store_id=store_id,
                        key=idempotency_key,
                        request_hash=fingerprint,
                        transaction_id=txn.id,
                    ))
            except IntegrityError as exc:
                raise _IdempotencyRaceLost() from exc

        db.session.flush()
        return SaleResult(
            transaction_id=txn.id,
            invoice_number=invoice_number,
            item_count=len(sale.items),
        )

    try:
        result = run_atomic(_op)
    except _IdempotencyRaceLost:
        current_app.logger.info("Idempotency key %s raced; replaying committed sale", idempotency_key)
        result = run_atomic(lambda: _find_replay(store_id, idempotency_key, fingerprint))

    if result.replayed:
        current_app.logger.info(
            "Replayed sale %s for idempotency key %s", result.invoice_number, idempotency_key
        )
    else:
        current_app.logger.info(
            "Sale %s recorded for store %s (%s lines)", result.invoice_number, store_id, result.item_count
        )
    return result


def void_transaction(
    store_id: int,
    transaction_id: int,
    *,
    reason: str | None = None,
    user_ref: str | None = None,
) -> VoidResult:
    """
    Void a completed sale and put its items back into stock, atomically.

    Lines whose product no longer exists are skipped (logged, counted in
    skipped_items); inactive products still get their stock back.

    Raises NotFoundError, AlreadyVoidedError, InvalidStateError or StorageError.
    """
    def _op() -> VoidResult:
        query = db.session.query(Transaction).filter_by(id=transaction_id, store_id=store_id)
        txn = lock_for_update(query).first()
        if txn is None:
            raise NotFoundError("Transaction", transaction_id)
        if txn.status == STATUS_VOIDED:
            raise AlreadyVoidedError(txn.invoice_number)
        if txn.status != STATUS_COMPLETED:
            raise InvalidStateError(
                f"Cannot void a {txn.status} transaction",
                details={"status": txn.status},
            )

        note = f"Void {txn.invoice_number}"
        if reason:
            note = f"{note}: {reason}"

        restored = 0
        skipped = 0
        for item in txn.items:
            exists = item.product_id is not None and db.session.execute(
                select(Product.id).where(Product.id == item.product_id, Product.store_id == store_id)
            ).first() is not None
            if not exists:
                current_app.logger.warning(
                    "Void %s: line %s (%s) has no product; stock not restored",
                    txn.invoice_number, item.line_no, item.product_name,
                )
                skipped += 1
                continue

            apply_movement(
                store_id=store_id,
                product_id=item.product_id,
                kind=MOVEMENT_IN,
                quantity=item.quantity,
                note=note[:500],
                reference_type="void",
                reference=txn.invoice_number,
                user_ref=user_ref,
            )
            restored += 1

        txn.status = STATUS_VOIDED
        txn.void_reason = reason
        txn.voided_at = utcnow()
        txn.voided_by = user_ref
        db.session.flush()

        return VoidResult(
            transaction_id=txn.id,
            invoice_number=txn.invoice_number,
            restored_items=restored,
            skipped_items=skipped,
        )

    result = run_atomic(_op)
    current_app.logger.info(
        "Transaction %s voided (%s restored, %s skipped)",
        result.invoice_number, result.restored_items, result.skipped_items,
    )
    return result


def get_transaction(store_id: int, transaction_id: int) -> Transaction:
    txn = db.session.query(Transaction).filter_by(id=transaction_id, store_id=store_id).first()
    if txn is None:
        raise NotFoundError("Transaction", transaction_id)
    return txn


def list_transactions(
    store_id: int,
    *,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """
    Newest-first page of a store's transactions.

    date_to is inclusive; callers pass end_of_day() for date-only filters.
    """
    if status is not None and status not in TRANSACTION_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TRANSACTION_STATUSES)}")

    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    item_count = (
        select(func.count(TransactionItem.id))
        .where(TransactionItem.transaction_id == Transaction.id)
        .correlate(Transaction)
        .scalar_subquery()
        .label("item_count")
    )

    q = db.session.query(Transaction).filter(Transaction.store_id == store_id)
    if date_from is not None:
        q = q.filter(Transaction.created_at >= date_from)
    if date_to is not None:
        q = q.filter(Transaction.created_at <= date_to)
    if status is not None:
        q = q.filter(Transaction.status == status)

    total = q.count()
    rows = (
        q.add_columns(item_count)
        .options(lazyload(Transaction.items))
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    items = []
    for txn, count in rows:
        data = txn.to_dict()
        data["item_count"] = count
        items.append(data)

    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
