from __future__ import annotations
from datetime import date, datetime
from mypos.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models.inventory import MOVEMENT_KINDS
from .models.purchasing import PURCHASE_DRAFT, PURCHASE_ORDERED
from .models.sales import PAYMENT_METHODS


# Maximum price: Rp 999,999,999,999 per unit
# This prevents database overflow issues and nonsensical prices
MAX_PRICE = 999_999_999_999

# Upper bound for a document total (sale grand total, purchase total)
MAX_DOCUMENT_TOTAL = MAX_PRICE

# Upper bound for a single line/adjustment quantity
MAX_QUANTITY = 1_000_000

DEFAULT_SALE_MAX_ITEMS = 100
MAX_IDEMPOTENCY_KEY_LENGTH = 128


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false", "1", "0"):
            return value.strip().lower() in ("true", "1")
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                return date.fromisoformat(value.strip())
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
        raise ValidationError(f"{col.key} must be a date")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_price(key: str, value) -> None:
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_PRICE:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE}")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("purchase_price", "sale_price"):
        if key in patch:
            _check_price(key, patch[key])
    if "min_stock" in patch and patch["min_stock"] is not None and patch["min_stock"] < 0:
        raise ValidationError("min_stock must be >= 0")
    if "code" in patch and patch["code"] == "":
        patch["code"] = None


def parse_opening_stock(payload: dict) -> int:
    """Optional `stock` on product create; recorded through the stock ledger."""
    if "stock" not in payload or payload["stock"] is None:
        return 0
    stock = _coerce_int("stock", payload["stock"])
    if stock < 0:
        raise ValidationError("stock must be >= 0")
    if stock > MAX_QUANTITY:
        raise ValidationError(f"stock cannot exceed {MAX_QUANTITY}")
    return stock


# ---------------------------------------------------------------------------
# Checkout payloads


def _require_int(data: dict, key: str, *, default=None, minimum: int | None = 0, maximum: int | None = MAX_PRICE,
                 prefix: str = "") -> int:
    label = f"{prefix}{key}"
    if key not in data or data[key] is None:
        if default is None:
            raise ValidationError(f"{label} is required")
        return default
    value = _coerce_int(label, data[key])
    if minimum is not None and value < minimum:
        raise ValidationError(f"{label} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{label} cannot exceed {maximum}")
    return value


def _optional_str(data: dict, key: str, max_length: int, *, prefix: str = "") -> str | None:
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{prefix}{key} must be a string")
    value = raw.strip()
    if len(value) > max_length:
        raise ValidationError(f"{prefix}{key} exceeds max length {max_length}")
    return value or None


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price: int
    discount: int
    subtotal: int
    name: str | None = None

    @property
    def expected_subtotal(self) -> int:
        return self.unit_price * self.quantity - self.discount


@dataclass(frozen=True)
class SaleRequest:
    items: tuple[SaleLineRequest, ...]
    subtotal: int
    discount: int
    tax: int
    grand_total: int
    amount_paid: int
    change: int
    payment_method: str = "cash"
    customer_id: int | None = None
    customer_name: str | None = None
    note: str | None = None

    def check_arithmetic(self) -> None:
        """
        Raise ValidationError unless the cart adds up.

        Checked at the boundary and again by the sale processor, before any
        stock is touched.
        """
        if not self.items:
            raise ValidationError("Cart is empty")

        for line_no, line in enumerate(self.items, start=1):
            if line.quantity <= 0:
                raise ValidationError(f"Line {line_no}: quantity must be > 0")
            if line.discount < 0:
                raise ValidationError(f"Line {line_no}: discount must be >= 0")
            if line.subtotal != line.expected_subtotal:
                raise ValidationError(
                    f"Line {line_no}: subtotal does not match unit_price x quantity - discount",
                    details={"line": line_no, "expected": line.expected_subtotal, "got": line.subtotal},
                )
            if line.subtotal < 0:
                raise ValidationError(f"Line {line_no}: subtotal must be >= 0")

        lines_total = sum(line.subtotal for line in self.items)
        if self.subtotal != lines_total:
            raise ValidationError(
                "subtotal does not match the sum of line subtotals",
                details={"expected": lines_total, "got": self.subtotal},
            )

        expected_total = self.subtotal - self.discount + self.tax
        if self.grand_total != expected_total:
            raise ValidationError(
                "grand_total does not match subtotal - discount + tax",
                details={"expected": expected_total, "got": self.grand_total},
            )
        if self.grand_total < 0:
            raise ValidationError("grand_total must be >= 0")

        if self.amount_paid < self.grand_total:
            raise ValidationError(
                "amount_paid is less than grand_total",
                details={"grand_total": self.grand_total, "amount_paid": self.amount_paid},
            )
        if self.change != self.amount_paid - self.grand_total:
            raise ValidationError(
                "change does not match amount_paid - grand_total",
                details={"expected": self.amount_paid - self.grand_total, "got": self.change},
            )

    def fingerprint_payload(self) -> dict:
        """Canonical form used to fingerprint the request for idempotent replays."""
        return {
            "items": [
                [line.product_id, line.quantity, line.unit_price, line.discount, line.subtotal]
                for line in self.items
            ],
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax": self.tax,
            "grand_total": self.grand_total,
            "amount_paid": self.amount_paid,
            "change": self.change,
            "payment_method": self.payment_method,
            "customer_id": self.customer_id,
        }


def _parse_sale_line(raw: Any, line_no: int) -> SaleLineRequest:
    prefix = f"items[{line_no}]."
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{line_no}] must be an object")
    product_id = _require_int(raw, "product_id", minimum=1, maximum=None, prefix=prefix)
    quantity = _require_int(raw, "quantity", minimum=1, maximum=MAX_QUANTITY, prefix=prefix)
    unit_price = _require_int(raw, "unit_price", prefix=prefix)
    discount = _require_int(raw, "discount", default=0, prefix=prefix)
    subtotal = _require_int(raw, "subtotal", minimum=None, maximum=None, prefix=prefix)
    name = _optional_str(raw, "name", 255, prefix=prefix)
    return SaleLineRequest(
        product_id=product_id,
        quantity=quantity,
        unit_price=unit_price,
        discount=discount,
        subtotal=subtotal,
        name=name,
    )


def parse_sale_request(payload: Any, *, max_items: int = DEFAULT_SALE_MAX_ITEMS) -> SaleRequest:
    """
    Build a SaleRequest from a JSON body.

    Shape, types and ranges are validated here; totals are checked with
    SaleRequest.check_arithmetic() before returning.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")
    if len(items) > max_items:
        raise ValidationError(f"A sale may contain at most {max_items} items")

    payment_method = payload.get("payment_method") or "cash"
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}",
        )

    customer_id = payload.get("customer_id")
    if customer_id is not None:
        customer_id = _coerce_int("customer_id", customer_id)

    grand_total = _require_int(payload, "grand_total", minimum=None)
    amount_paid = _require_int(payload, "amount_paid")
    # Omitted change is derived; a client-sent value is still checked
    change = _require_int(payload, "change", default=amount_paid - grand_total, minimum=None)

    sale = SaleRequest(
        items=tuple(_parse_sale_line(raw, i) for i, raw in enumerate(items, start=1)),
        subtotal=_require_int(payload, "subtotal"),
        discount=_require_int(payload, "discount", default=0),
        tax=_require_int(payload, "tax", default=0),
        grand_total=grand_total,
        amount_paid=amount_paid,
        change=change,
        payment_method=payment_method,
        customer_id=customer_id,
        customer_name=_optional_str(payload, "customer_name", 255),
        note=_optional_str(payload, "note", 500),
    )
    sale.check_arithmetic()
    return sale


def parse_idempotency_key(raw: str | None) -> str | None:
    if raw is None:
        return None
    key = raw.strip()
    if not key:
        return None
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError(f"Idempotency-Key exceeds max length {MAX_IDEMPOTENCY_KEY_LENGTH}")
    return key


# ---------------------------------------------------------------------------
# Stock adjustments and purchases


def parse_stock_adjustment(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    kind = payload.get("kind")
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(MOVEMENT_KINDS)}")
    minimum = 0 if kind == "correction" else 1
    return {
        "product_id": _require_int(payload, "product_id", minimum=1, maximum=None),
        "kind": kind,
        "quantity": _require_int(payload, "quantity", minimum=minimum, maximum=MAX_QUANTITY),
        "note": _optional_str(payload, "note", 500),
    }


def parse_purchase_request(payload: Any, *, max_items: int = DEFAULT_SALE_MAX_ITEMS) -> dict:
    """Validate a purchase order body; returns header fields plus normalized `items`."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    if len(raw_items) > max_items:
        raise ValidationError(f"A purchase may contain at most {max_items} items")

    status = payload.get("status") or PURCHASE_DRAFT
    if status not in (PURCHASE_DRAFT, PURCHASE_ORDERED):
        raise ValidationError(f"status must be {PURCHASE_DRAFT} or {PURCHASE_ORDERED}")

    items = []
    for line_no, raw in enumerate(raw_items, start=1):
        prefix = f"items[{line_no}]."
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{line_no}] must be an object")
        product_id = raw.get("product_id")
        if product_id is not None:
            product_id = _coerce_int(f"{prefix}product_id", product_id)
        name = _optional_str(raw, "name", 255, prefix=prefix)
        if product_id is None and not name:
            raise ValidationError(f"{prefix}name is required when product_id is not set")
        items.append({
            "product_id": product_id,
            "name": name,
            "unit_price": _require_int(raw, "unit_price", prefix=prefix),
            "quantity": _require_int(raw, "quantity", minimum=1, maximum=MAX_QUANTITY, prefix=prefix),
        })

    total = sum(item["unit_price"] * item["quantity"] for item in items)
    if total > MAX_DOCUMENT_TOTAL:
        raise ValidationError(f"Purchase total cannot exceed {MAX_DOCUMENT_TOTAL}")

    supplier_id = payload.get("supplier_id")
    if supplier_id is not None:
        supplier_id = _coerce_int("supplier_id", supplier_id)

    ordered_on = payload.get("ordered_on")
    if ordered_on is not None:
        try:
            ordered_on = date.fromisoformat(str(ordered_on).strip())
        except ValueError:
            raise ValidationError("ordered_on must be an ISO-8601 date")

    return {
        "supplier_id": supplier_id,
        "supplier_name": _optional_str(payload, "supplier_name", 255),
        "status": status,
        "note": _optional_str(payload, "note", 500),
        "ordered_on": ordered_on,
        "items": items,
    }


def parse_pagination(args, *, default_limit: int = 50, max_limit: int = 100) -> tuple[int, int]:
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1:
        raise ValidationError("limit must be >= 1")
    return page, min(limit, max_limit)
