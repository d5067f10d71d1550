from typing import Iterable, List, Optional

from .base import CatalogEntry, MetricDisplayConfig, MetricKind
from .catalog import MetricCatalog

DEFAULT_KIND = MetricKind.MRR

_CURRENCY = MetricDisplayConfig(type="stat", unit="currency_usd")
_COUNT = MetricDisplayConfig(type="stat", unit="none")
_PERCENT = MetricDisplayConfig(type="stat", unit="percent")


def _table(*columns: str) -> MetricDisplayConfig:
    return MetricDisplayConfig(type="table", options={"columns": list(columns)})


# Order drives the selector: revenue, then subscribers, then balance & tables.
BILLING_ENTRIES: List[CatalogEntry] = [
    CatalogEntry(MetricKind.MRR, "MRR", "Monthly Recurring Revenue", "revenue", _CURRENCY),
    CatalogEntry(MetricKind.ARR, "ARR", "Annual Recurring Revenue", "revenue", _CURRENCY),
    CatalogEntry(
        MetricKind.NEW_MRR,
        "New MRR",
        "MRR from new subscriptions (last 30 days)",
        "revenue",
        _CURRENCY,
    ),
    CatalogEntry(
        MetricKind.CHURNED_MRR,
        "Churned MRR",
        "MRR lost from cancellations (last 30 days)",
        "revenue",
        _CURRENCY,
    ),
    CatalogEntry(
        MetricKind.NET_NEW_MRR, "Net New MRR", "New MRR minus Churned MRR", "revenue", _CURRENCY
    ),
    CatalogEntry(
        MetricKind.REVENUE, "Total Revenue", "Total revenue from paid invoices", "revenue", _CURRENCY
    ),
    CatalogEntry(MetricKind.ARPU, "ARPU", "Average Revenue Per User", "revenue", _CURRENCY),
    CatalogEntry(
        MetricKind.SUBSCRIBERS,
        "Active Subscribers",
        "Count of active subscriptions",
        "subscribers",
        _COUNT,
    ),
    CatalogEntry(
        MetricKind.CHURN_RATE,
        "Churn Rate %",
        "Subscriber churn rate (last 30 days)",
        "subscribers",
        _PERCENT,
    ),
    CatalogEntry(MetricKind.TRIALING, "Trialing", "Subscriptions in trial", "subscribers", _COUNT),
    CatalogEntry(MetricKind.PAST_DUE, "Past Due", "Subscriptions past due", "subscribers", _COUNT),
    CatalogEntry(
        MetricKind.CUSTOMERS, "Total Customers", "Total customer count", "subscribers", _COUNT
    ),
    CatalogEntry(
        MetricKind.BALANCE, "Available Balance", "Available balance in USD", "balance", _CURRENCY
    ),
    CatalogEntry(
        MetricKind.SUBSCRIPTIONS,
        "Subscriptions",
        "List of active subscriptions",
        "balance",
        _table("id", "status", "customer", "mrr", "plan", "interval", "created"),
    ),
    CatalogEntry(
        MetricKind.INVOICES,
        "Invoices",
        "List of recent invoices",
        "balance",
        _table("id", "customer", "status", "amount", "amount_paid", "created", "paid"),
    ),
    CatalogEntry(
        MetricKind.CHARGES,
        "Charges",
        "List of recent charges",
        "balance",
        _table("id", "customer", "status", "amount", "created", "paid", "refunded"),
    ),
    CatalogEntry(
        MetricKind.PRODUCTS,
        "Revenue by Product",
        "MRR breakdown by product",
        "balance",
        _table("product", "mrr", "subscriptions"),
    ),
]


def build_catalog(
    enabled: Optional[Iterable[str]] = None,
    entries: Iterable[CatalogEntry] = BILLING_ENTRIES,
) -> MetricCatalog:
    """Build the catalog, optionally restricted to a subset of metric kinds.

    Unknown names in ``enabled`` raise ``ValueError`` so a typo in the
    deployment settings fails at startup instead of hiding a metric.
    """
    entries = list(entries)
    if enabled is not None:
        wanted = set()
        for name in enabled:
            try:
                wanted.add(MetricKind(name))
            except ValueError as exc:
                raise ValueError(f"Unknown metric kind in enabled_metrics: '{name}'") from exc
        entries = [entry for entry in entries if entry.kind in wanted]
    return MetricCatalog(entries, default_kind=DEFAULT_KIND)


DEFAULT_CATALOG = build_catalog()
