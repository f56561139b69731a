"""
MyPOS Load Testing with Locust

Issue a token first (from the backend directory):
    python -m flask stores issue-token --store-id 1 --user-ref loadtest

Run with:
    MYPOS_TOKEN=<token> locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    MYPOS_TOKEN=<token> locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

The store needs a few active products with stock. Checkouts that run a
product dry answer 422 and are counted as expected outcomes, not errors.

Pass thresholds:
- p95 response time < 500ms for reads
- p95 response time < 1000ms for writes
- Error rate < 1%

Run against a server started with RATE_LIMIT_ENABLED=false, otherwise the
per-store budget turns most requests into 429.
"""

import os
import time
import random
import uuid
from typing import Optional, Dict, List

from locust import HttpUser, task, between, events


# =============================================================================
# CONFIGURATION
# =============================================================================

TOKEN = os.environ.get("MYPOS_TOKEN", "")
MAX_LINES = int(os.environ.get("MYPOS_STRESS_MAX_LINES", "3"))


# =============================================================================
# METRICS TRACKING
# =============================================================================

class MetricsCollector:
    """Collect and report per-endpoint latency and error counts."""

    def __init__(self):
        self.request_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.response_times: Dict[str, List[float]] = {}

    def record(self, name: str, response_time: float, success: bool):
        if name not in self.request_counts:
            self.request_counts[name] = 0
            self.error_counts[name] = 0
            self.response_times[name] = []

        self.request_counts[name] += 1
        if not success:
            self.error_counts[name] += 1
        self.response_times[name].append(response_time)

    def get_summary(self) -> Dict:
        summary = {}
        for name in self.request_counts:
            times = sorted(self.response_times[name])
            count = len(times)
            if count == 0:
                continue

            p50_idx = int(count * 0.50)
            p95_idx = int(count * 0.95)

            summary[name] = {
                "count": self.request_counts[name],
                "errors": self.error_counts[name],
                "error_rate": self.error_counts[name] / self.request_counts[name] * 100,
                "avg_ms": sum(times) / count,
                "p50_ms": times[p50_idx] if p50_idx < count else times[-1],
                "p95_ms": times[p95_idx] if p95_idx < count else times[-1],
            }
        return summary


metrics = MetricsCollector()


# =============================================================================
# USER BEHAVIORS
# =============================================================================

class MyPOSUser(HttpUser):
    """
    Base user: authenticates with the bearer token and loads the product catalog.
    """
    wait_time = between(0.5, 2)
    abstract = True

    products: List[Dict] = []

    def on_start(self):
        self.refresh_products()

    def get_headers(self, idempotency_key: Optional[str] = None) -> Dict:
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {TOKEN}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def refresh_products(self):
        response = self.client.get(
            "/api/products",
            params={"limit": 100},
            headers=self.get_headers(),
            name="products/list"
        )
        if response.status_code == 200:
            self.products = [p for p in response.json().get("items", []) if p["stock"] > 0]


class BrowsingUser(MyPOSUser):
    """
    Cashier looking things up: product list, recent transactions, stock history.
    """
    weight = 3

    @task(5)
    def list_products(self):
        start = time.time()
        response = self.client.get("/api/products", headers=self.get_headers(), name="products/list")
        metrics.record("products/list", (time.time() - start) * 1000, response.status_code == 200)

    @task(3)
    def list_transactions(self):
        start = time.time()
        response = self.client.get(
            "/api/transactions",
            params={"page": 1, "limit": 20},
            headers=self.get_headers(),
            name="transactions/list"
        )
        metrics.record("transactions/list", (time.time() - start) * 1000, response.status_code == 200)

    @task(2)
    def stock_history(self):
        if not self.products:
            return
        product = random.choice(self.products)
        start = time.time()
        response = self.client.get(
            "/api/stock/adjustments",
            params={"product_id": product["id"], "limit": 20},
            headers=self.get_headers(),
            name="stock/history"
        )
        metrics.record("stock/history", (time.time() - start) * 1000, response.status_code == 200)

    @task(1)
    def health_check(self):
        start = time.time()
        response = self.client.get("/health", name="system/health")
        metrics.record("system/health", (time.time() - start) * 1000, response.status_code == 200)


class CheckoutUser(MyPOSUser):
    """
    Cashier ringing up sales. Several users hitting the same few products is the
    contention this profile exists to measure.
    """
    weight = 2

    def _sale_payload(self) -> Optional[Dict]:
        if not self.products:
            return None
        chosen = random.sample(self.products, min(len(self.products), random.randint(1, MAX_LINES)))
        items = []
        for product in chosen:
            quantity = random.randint(1, 2)
            items.append({
                "product_id": product["id"],
                "name": product["name"],
                "quantity": quantity,
                "unit_price": product["sale_price"],
                "discount": 0,
                "subtotal": quantity * product["sale_price"],
            })
        total = sum(item["subtotal"] for item in items)
        return {
            "items": items,
            "subtotal": total,
            "discount": 0,
            "tax": 0,
            "grand_total": total,
            "amount_paid": total,
            "change": 0,
            "payment_method": "cash",
        }

    @task(5)
    def checkout(self):
        payload = self._sale_payload()
        if payload is None:
            self.refresh_products()
            return

        start = time.time()
        response = self.client.post(
            "/api/transactions",
            json=payload,
            headers=self.get_headers(idempotency_key=str(uuid.uuid4())),
            name="transactions/create"
        )
        # 422 is a legitimate outcome once a product runs dry
        metrics.record("transactions/create", (time.time() - start) * 1000, response.status_code in (201, 422))
        if response.status_code == 422:
            self.refresh_products()

    @task(1)
    def checkout_retry(self):
        """Same Idempotency-Key twice: the second call must replay, not sell again."""
        payload = self._sale_payload()
        if payload is None:
            return
        key = str(uuid.uuid4())

        first = self.client.post(
            "/api/transactions", json=payload, headers=self.get_headers(key), name="transactions/create"
        )
        if first.status_code != 201:
            return

        start = time.time()
        second = self.client.post(
            "/api/transactions", json=payload, headers=self.get_headers(key), name="transactions/replay"
        )
        replayed = second.status_code == 201 and second.json().get("id") == first.json().get("id")
        metrics.record("transactions/replay", (time.time() - start) * 1000, replayed)


class StockUser(MyPOSUser):
    """
    Back office restocking the same products the cashiers are selling.
    """
    weight = 1

    @task(1)
    def restock(self):
        if not self.products:
            self.refresh_products()
            return
        product = random.choice(self.products)
        start = time.time()
        response = self.client.post(
            "/api/stock/adjustments",
            json={
                "product_id": product["id"],
                "kind": "in",
                "quantity": random.randint(5, 20),
                "note": "Load test restock"
            },
            headers=self.get_headers(),
            name="stock/adjust"
        )
        metrics.record("stock/adjust", (time.time() - start) * 1000, response.status_code == 201)


# =============================================================================
# EVENT HANDLERS
# =============================================================================

@events.test_stop.add_listener
def on_test_stop(environment, **kwargs):
    """Print summary when test stops."""
    print("\n" + "=" * 80)
    print("LOAD TEST SUMMARY")
    print("=" * 80)

    summary = metrics.get_summary()

    print(f"\n{'Endpoint':<30} {'Count':>8} {'Errors':>8} {'Err%':>8} {'Avg(ms)':>10} {'P95(ms)':>10}")
    print("-" * 80)

    total_requests = 0
    total_errors = 0
    all_pass = True

    for name, stats in sorted(summary.items()):
        total_requests += stats["count"]
        total_errors += stats["errors"]

        is_write = "create" in name or "replay" in name or "adjust" in name
        p95_threshold = 1000 if is_write else 500
        passed = stats["p95_ms"] < p95_threshold and stats["error_rate"] < 1

        status = "PASS" if passed else "FAIL"
        if not passed:
            all_pass = False

        print(f"{name:<30} {stats['count']:>8} {stats['errors']:>8} {stats['error_rate']:>7.2f}% {stats['avg_ms']:>9.1f} {stats['p95_ms']:>9.1f} [{status}]")

    print("-" * 80)
    print(f"{'TOTAL':<30} {total_requests:>8} {total_errors:>8} {total_errors/max(total_requests,1)*100:>7.2f}%")
    print("=" * 80)

    if all_pass:
        print("\n[PASS] All endpoints within thresholds")
    else:
        print("\n[FAIL] Some endpoints exceeded thresholds")
        print("  - Reads (list/history): P95 < 500ms, Error rate < 1%")
        print("  - Writes (checkout/adjust): P95 < 1000ms, Error rate < 1%")

    print("=" * 80)
