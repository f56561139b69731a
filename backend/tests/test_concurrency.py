# Overview: Concurrency tests for checkout and invoice numbering.

"""
Concurrency Tests

Workers run in threads, each inside its own app context (own session and
SQLite connection) against the same database file, so they really compete for
the write lock.

1. Two 6-unit sales against 10 in stock: exactly one succeeds, stock ends at 4
2. Many single-unit sales against a small stock: never oversold
3. Retries carrying one Idempotency-Key sell once; the rest replay it
4. Racing voids of one sale: one wins, stock is restored once
5. 1000 invoice numbers issued by concurrent workers are all distinct
"""

import threading

from mypos.errors import AlreadyVoidedError, InsufficientStockError
from mypos.extensions import db
from mypos.models import SaleIdempotencyKey, StockMovement, Transaction
from mypos.services import sales_service
from mypos.services.concurrency import run_atomic
from mypos.services.document_service import next_invoice_number


def _run_workers(count, target):
    barrier = threading.Barrier(count)
    errors = []

    def _wrapped(index):
        try:
            barrier.wait()
            target(index)
        except Exception as e:  # collected and asserted by the test
            errors.append(e)

    threads = [threading.Thread(target=_wrapped, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=120)
    return errors


class TestConcurrentSales:
    def test_two_sales_race_for_the_same_stock(self, app, store, make_product, build_sale, stock_of):
        product = make_product(stock=10)
        sale = build_sale([(product, 6)])
        store_id = store.id
        outcomes = []

        def _sell(_):
            with app.app_context():
                try:
                    sales_service.process_sale(store_id, sale)
                    outcomes.append("ok")
                except InsufficientStockError:
                    outcomes.append("insufficient")

        errors = _run_workers(2, _sell)

        assert errors == []
        assert sorted(outcomes) == ["insufficient", "ok"]
        assert stock_of(product.id) == 4
        assert db.session.query(Transaction).count() == 1

    def test_stock_is_never_oversold(self, app, store, make_product, build_sale, stock_of):
        product = make_product(stock=15)
        sale = build_sale([(product, 1)])
        store_id = store.id
        invoices = []
        rejected = []

        def _sell(_):
            with app.app_context():
                try:
                    invoices.append(sales_service.process_sale(store_id, sale).invoice_number)
                except InsufficientStockError:
                    rejected.append(1)

        errors = _run_workers(20, _sell)

        assert errors == []
        assert len(invoices) == 15
        assert len(rejected) == 5
        assert len(set(invoices)) == 15
        assert stock_of(product.id) == 0

        movements = (
            db.session.query(StockMovement)
            .filter_by(product_id=product.id, reference_type="sale")
            .all()
        )
        assert len(movements) == 15
        assert sorted(m.stock_after for m in movements) == list(range(15))

    def test_retries_with_one_key_sell_once(self, app, store, make_product, build_sale, stock_of):
        product = make_product(stock=10)
        sale = build_sale([(product, 2)])
        store_id = store.id
        results = []
        lock = threading.Lock()

        def _retry(_):
            with app.app_context():
                result = sales_service.process_sale(store_id, sale, idempotency_key="pos-7-0001")
            with lock:
                results.append((result.transaction_id, result.invoice_number, result.replayed))

        errors = _run_workers(6, _retry)

        assert errors == []
        assert len(results) == 6
        assert len({(txn_id, invoice) for txn_id, invoice, _ in results}) == 1
        assert sorted(replayed for _, _, replayed in results) == [False] + [True] * 5
        assert stock_of(product.id) == 8
        assert db.session.query(Transaction).count() == 1
        assert db.session.query(SaleIdempotencyKey).count() == 1


class TestConcurrentVoids:
    def test_only_one_void_wins(self, app, store, make_product, build_sale, stock_of):
        product = make_product(stock=10)
        sale = sales_service.process_sale(store.id, build_sale([(product, 4)]))
        store_id = store.id
        outcomes = []

        def _void(_):
            with app.app_context():
                try:
                    sales_service.void_transaction(store_id, sale.transaction_id, reason="dobel")
                    outcomes.append("ok")
                except AlreadyVoidedError:
                    outcomes.append("already")

        errors = _run_workers(6, _void)

        assert errors == []
        assert sorted(outcomes) == ["already"] * 5 + ["ok"]
        assert stock_of(product.id) == 10
        restored = (
            db.session.query(StockMovement)
            .filter_by(product_id=product.id, reference_type="void")
            .count()
        )
        assert restored == 1


class TestConcurrentInvoiceNumbers:
    def test_thousand_numbers_are_distinct(self, app, store):
        store_id = store.id
        workers = 8
        per_worker = 125
        numbers = []
        lock = threading.Lock()

        def _issue(_):
            with app.app_context():
                issued = [run_atomic(lambda: next_invoice_number(store_id)) for _ in range(per_worker)]
            with lock:
                numbers.extend(issued)

        errors = _run_workers(workers, _issue)

        assert errors == []
        assert len(numbers) == workers * per_worker
        assert len(set(numbers)) == workers * per_worker
        sequence = sorted(int(n.rsplit("-", 1)[1]) for n in numbers)
        assert sequence == list(range(1, workers * per_worker + 1))
