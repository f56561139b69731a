# Overview: Stock Ledger - the only code path that writes Product.stock.

# backend/mypos/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select, update

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from ..models.inventory import MOVEMENT_CORRECTION, MOVEMENT_IN, MOVEMENT_KINDS, MOVEMENT_OUT
from .concurrency import lock_for_update, run_atomic
"""
MyPOS Stock Invariants (authoritative)

- Product.stock is a stored quantity, never negative (CHECK constraint backs this).
- Every change to Product.stock appends exactly one StockMovement in the same
  unit of work; movement.stock_after == product.stock right after the change.
- Decrements are a single conditional UPDATE (stock = stock - n WHERE stock >= n).
  Zero affected rows means another writer got there first: InsufficientStockError.
  A read-check-write sequence is never relied on for correctness.
- apply_movement never commits; callers compose it into their own unit of work
  (sale, void, purchase receipt) or use adjust_stock for a single movement.
"""


@dataclass(frozen=True)
class MovementResult:
    product_id: int
    previous_stock: int
    new_stock: int
    movement_id: int


def get_product(store_id: int, product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id, store_id=store_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def _validate_quantity(kind: str, quantity) -> None:
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"Invalid movement kind: {kind}")
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    if kind == MOVEMENT_CORRECTION:
        if quantity < 0:
            raise ValidationError("quantity must be >= 0 for correction")
    elif quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {kind}")


def _stock_update(kind: str, store_id: int, product_id: int, quantity: int):
    stmt = update(Product).where(Product.id == product_id, Product.store_id == store_id)
    if kind == MOVEMENT_OUT:
        stmt = stmt.where(Product.stock >= quantity).values(stock=Product.stock - quantity)
    elif kind == MOVEMENT_IN:
        stmt = stmt.values(stock=Product.stock + quantity)
    else:
        stmt = stmt.values(stock=quantity)
    return stmt.values(version_id=Product.version_id + 1).execution_options(synchronize_session=False)


def apply_movement(
    *,
    store_id: int,
    product_id: int,
    kind: str,
    quantity: int,
    note: str | None = None,
    reference_type: str = "manual",
    reference: str | None = None,
    user_ref: str | None = None,
) -> MovementResult:
    """
    Apply one stock movement inside the caller's unit of work.

    - in: stock += quantity (quantity > 0)
    - out: stock -= quantity (quantity > 0, product active, stock >= quantity)
    - correction: stock = quantity (quantity >= 0)

    Raises NotFoundError, ValidationError or InsufficientStockError; on any
    of them nothing has been written.
    """
    _validate_quantity(kind, quantity)

    product = get_product(store_id, product_id, lock=True)
    if kind == MOVEMENT_OUT and not product.is_active:
        raise NotFoundError("Product", product_id)

    observed = product.stock
    result = db.session.execute(_stock_update(kind, store_id, product_id, quantity))
    if result.rowcount != 1:
        if kind == MOVEMENT_OUT:
            raise InsufficientStockError(
                product_id=product_id,
                product_name=product.name,
                requested=quantity,
                available=_current_stock(product_id),
            )
        raise NotFoundError("Product", product_id)

    new_stock = _current_stock(product_id)
    if kind == MOVEMENT_OUT:
        previous = new_stock + quantity
    elif kind == MOVEMENT_IN:
        previous = new_stock - quantity
    else:
        previous = observed

    # The identity-map copy is stale after the Core UPDATE
    db.session.expire(product)

    movement = StockMovement(
        store_id=store_id,
        product_id=product_id,
        kind=kind,
        quantity=quantity,
        stock_before=previous,
        stock_after=new_stock,
        note=note,
        reference_type=reference_type,
        reference=reference,
        user_ref=user_ref,
    )
    db.session.add(movement)
    db.session.flush()

    return MovementResult(
        product_id=product_id,
        previous_stock=previous,
        new_stock=new_stock,
        movement_id=movement.id,
    )


def _current_stock(product_id: int) -> int:
    return db.session.execute(select(Product.stock).where(Product.id == product_id)).scalar_one()


def adjust_stock(
    *,
    store_id: int,
    product_id: int,
    kind: str,
    quantity: int,
    note: str | None = None,
    user_ref: str | None = None,
) -> MovementResult:
    """Manual stock adjustment as its own atomic unit."""
    def _op():
        return apply_movement(
            store_id=store_id,
            product_id=product_id,
            kind=kind,
            quantity=quantity,
            note=note,
            reference_type="manual",
            user_ref=user_ref,
        )

    return run_atomic(_op)


def get_movement(store_id: int, movement_id: int) -> StockMovement:
    movement = db.session.query(StockMovement).filter_by(id=movement_id, store_id=store_id).first()
    if movement is None:
        raise NotFoundError("Stock movement", movement_id)
    return movement


def list_movements(*, store_id: int, product_id: int | None = None, limit: int = 100) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter_by(store_id=store_id)
    if product_id is not None:
        get_product(store_id, product_id)
        q = q.filter_by(product_id=product_id)
    return q.order_by(StockMovement.id.desc()).limit(min(max(limit, 1), 500)).all()
