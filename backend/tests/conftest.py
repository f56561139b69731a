"""
Pytest fixtures for MyPOS backend tests.

Provides a file-backed SQLite app per test (concurrency tests need real
connections), store/token fixtures, and builders for products and sales.
"""

import pytest
from mypos import create_app
from mypos.extensions import db
from mypos.models import Product, Store
from mypos.services import products_service, session_service
from mypos.validation import SaleLineRequest, SaleRequest


@pytest.fixture(scope='function')
def app(tmp_path):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'mypos-test.sqlite3'}",
        'RATE_LIMIT_ENABLED': False,
        'CACHE_ENABLED': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def store(db_session):
    """Store A (first tenant)."""
    store = Store(name="Toko Maju", code="MAJU", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    """Store B (second tenant)."""
    store = Store(name="Toko Jaya", code="JAYA", is_active=True)
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def token(store):
    _, plaintext = session_service.create_session(store.id, user_ref="kasir-1")
    return plaintext


@pytest.fixture(scope='function')
def other_token(other_store):
    _, plaintext = session_service.create_session(other_store.id, user_ref="kasir-2")
    return plaintext


@pytest.fixture(scope='function')
def auth_headers(token):
    """Authorization headers for Store A."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def make_product(store):
    """Factory: make_product(stock=10, sale_price=5000, store_id=None, **fields) -> Product."""
    counter = {"n": 0}

    def _make(stock: int = 10, sale_price: int = 5000, store_id: int | None = None, **fields) -> Product:
        counter["n"] += 1
        patch = {
            "name": fields.pop("name", f"Produk {counter['n']}"),
            "code": fields.pop("code", f"P{counter['n']:03d}"),
            "sale_price": sale_price,
            "purchase_price": fields.pop("purchase_price", sale_price // 2),
            **fields,
        }
        return products_service.create_product(
            store_id or store.id,
            patch=patch,
            opening_stock=stock,
        )

    return _make


@pytest.fixture(scope='function')
def build_sale():
    """
    Factory: build_sale([(product, qty), ...], discount=0, tax=0, paid=None) -> SaleRequest.

    Totals are computed so the request is arithmetically valid.
    """
    def _build(lines, discount: int = 0, tax: int = 0, paid: int | None = None, payment_method: str = "cash"):
        items = tuple(
            SaleLineRequest(
                product_id=product.id,
                quantity=qty,
                unit_price=product.sale_price,
                discount=0,
                subtotal=product.sale_price * qty,
                name=product.name,
            )
            for product, qty in lines
        )
        subtotal = sum(item.subtotal for item in items)
        grand_total = subtotal - discount + tax
        amount_paid = grand_total if paid is None else paid
        return SaleRequest(
            items=items,
            subtotal=subtotal,
            discount=discount,
            tax=tax,
            grand_total=grand_total,
            amount_paid=amount_paid,
            change=amount_paid - grand_total,
            payment_method=payment_method,
        )

    return _build


@pytest.fixture(scope='function')
def sale_payload():
    """Factory: JSON body for POST /api/transactions from [(product, qty), ...]."""
    def _payload(lines, discount: int = 0, tax: int = 0, paid: int | None = None):
        items = [
            {
                "product_id": product.id,
                "name": product.name,
                "unit_price": product.sale_price,
                "quantity": qty,
                "discount": 0,
                "subtotal": product.sale_price * qty,
            }
            for product, qty in lines
        ]
        subtotal = sum(item["subtotal"] for item in items)
        grand_total = subtotal - discount + tax
        amount_paid = grand_total if paid is None else paid
        return {
            "items": items,
            "subtotal": subtotal,
            "discount": discount,
            "tax": tax,
            "grand_total": grand_total,
            "amount_paid": amount_paid,
            "change": amount_paid - grand_total,
            "payment_method": "cash",
        }

    return _payload


@pytest.fixture(scope='function')
def stock_of(app):
    """stock_of(product_id) -> int, a fresh read that bypasses the identity map."""
    def _stock(product_id: int) -> int:
        return db.session.execute(
            db.select(Product.stock).where(Product.id == product_id)
        ).scalar_one()

    return _stock
