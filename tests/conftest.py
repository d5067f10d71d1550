import os
import tempfile
from datetime import datetime, timezone

import pytest

# Must run before stripe_dash.config is imported anywhere.
_DB_DIR = tempfile.mkdtemp(prefix="stripe-dash-tests-")
os.environ.setdefault("STRIPE_DASH_DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/test.db")

from stripe_dash.errors import UpstreamError  # noqa: E402
from stripe_dash.stripe.client import (  # noqa: E402
    ChargeData,
    ChargeMetrics,
    InvoiceData,
    InvoiceMetrics,
    Metrics,
    ProductRevenue,
    SubscriptionData,
)

CREATED = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeStripeClient:
    """Stands in for StripeClient; records the key it was built with."""

    def __init__(self, api_key, fail=None):
        self.api_key = api_key
        self.fail = fail
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self.closed = True

    def _check(self):
        if self.fail:
            raise UpstreamError(self.fail)

    async def ping(self):
        self._check()

    async def get_metrics(self):
        self._check()
        return Metrics(
            mrr=300000,
            arr=3600000,
            active_subscribers=20,
            total_customers=42,
            available_balance=123456,
            pending_balance=45000,
            new_mrr=50000,
            churned_mrr=10000,
            net_new_mrr=40000,
            churn_rate=4.5,
            arpu=15000,
            trialing_count=3,
            past_due_count=1,
        )

    async def get_invoice_metrics(self):
        self._check()
        return InvoiceMetrics(
            total_revenue=987650, paid_invoices=10, unpaid_invoices=3, overdue_invoices=2
        )

    async def get_subscriptions(self):
        self._check()
        return [SubscriptionData("sub_1", "active", "cus_1", 2500, CREATED, "Pro", "month")]

    async def get_invoices(self):
        self._check()
        return [InvoiceData("in_1", "cus_1", "paid", 2500, 2500, "usd", CREATED, True)]

    async def get_charges(self):
        self._check()
        return [ChargeData("ch_1", "cus_1", "succeeded", 2500, "usd", CREATED, True, False)]

    async def get_charge_metrics(self):
        self._check()
        return ChargeMetrics(
            total_charges=4,
            successful_amount=7500,
            failed_count=1,
            refunded_count=1,
            refunded_amount=2500,
        )

    async def get_revenue_by_product(self):
        self._check()
        return [ProductRevenue("prod_1", "Pro", 5000, 2)]


@pytest.fixture
def fake_client_factory():
    built = []

    def factory(api_key):
        client = FakeStripeClient(api_key)
        built.append(client)
        return client

    factory.built = built
    return factory


@pytest.fixture
def failing_client_factory():
    def factory(api_key):
        return FakeStripeClient(api_key, fail="Invalid API Key provided")

    return factory
