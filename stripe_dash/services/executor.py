from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from ..datasource_config import API_KEY
from ..errors import MetricNotFoundError, MissingCredentialError, UpstreamError
from ..frames import DataFrame, DataResponse, Field
from ..metrics.base import CatalogEntry, MetricKind
from ..metrics.catalog import MetricCatalog
from ..queries import Query, default_query, is_runnable
from ..stripe.client import Metrics, StripeClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], StripeClient]

HEALTH_OK = "ok"
HEALTH_ERROR = "error"


@dataclass(frozen=True)
class HealthCheckResult:
    status: str
    message: str

    @property
    def ok(self) -> bool:
        return self.status == HEALTH_OK

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status, "message": self.message}


class QueryAdapter(Protocol):
    """Capabilities a data source hands to the generic query engine."""

    def get_default_query(self) -> Query: ...

    def filter_query(self, query: Query) -> bool: ...

    async def execute_query(self, query: Query) -> DataResponse: ...


def _cents(value: int) -> float:
    return value / 100


# kind -> value in display units
_STAT_VALUES: Dict[MetricKind, Callable[[Metrics], float]] = {
    MetricKind.MRR: lambda m: _cents(m.mrr),
    MetricKind.ARR: lambda m: _cents(m.arr),
    MetricKind.SUBSCRIBERS: lambda m: float(m.active_subscribers),
    MetricKind.CUSTOMERS: lambda m: float(m.total_customers),
    MetricKind.BALANCE: lambda m: _cents(m.available_balance),
    MetricKind.NEW_MRR: lambda m: _cents(m.new_mrr),
    MetricKind.CHURNED_MRR: lambda m: _cents(m.churned_mrr),
    MetricKind.NET_NEW_MRR: lambda m: _cents(m.net_new_mrr),
    MetricKind.CHURN_RATE: lambda m: m.churn_rate,
    MetricKind.ARPU: lambda m: _cents(m.arpu),
    MetricKind.TRIALING: lambda m: float(m.trialing_count),
    MetricKind.PAST_DUE: lambda m: float(m.past_due_count),
}


class StripeDataSource:
    """Query adapter backed by the Stripe API."""

    def __init__(
        self,
        catalog: MetricCatalog,
        secrets: Dict[str, str],
        client_factory: ClientFactory = StripeClient,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.catalog = catalog
        self._api_key = secrets.get(API_KEY) or ""
        self._client_factory = client_factory
        self._clock = clock
        self._handlers: Dict[MetricKind, Callable[[StripeClient, CatalogEntry], Awaitable[List[DataFrame]]]] = {
            MetricKind.SUBSCRIPTIONS: self._subscriptions_frame,
            MetricKind.INVOICES: self._invoices_frame,
            MetricKind.CHARGES: self._charges_frame,
            MetricKind.PRODUCTS: self._products_frame,
            MetricKind.REVENUE: self._revenue_frame,
        }

    def get_default_query(self) -> Query:
        return default_query()

    def filter_query(self, query: Query) -> bool:
        return is_runnable(query)

    async def execute_query(self, query: Query) -> DataResponse:
        try:
            entry = self.catalog.resolve(query.query_kind)
        except MetricNotFoundError:
            logger.warning("Query %s asked for unknown metric %r", query.ref_id, query.query_kind)
            return DataResponse.failure("bad_request", f"unknown query type: {query.query_kind}")
        if not self._api_key:
            return DataResponse.failure("bad_request", MissingCredentialError().message)

        handler = self._handlers.get(entry.kind, self._stat_frame)
        try:
            async with self._client_factory(self._api_key) as client:
                frames = await handler(client, entry)
        except UpstreamError as exc:
            logger.error("Stripe request for %s failed: %s", entry.kind.value, exc)
            return DataResponse.failure("internal", f"stripe error: {exc}")
        return DataResponse(frames=frames)

    async def check_health(self) -> HealthCheckResult:
        if not self._api_key:
            return HealthCheckResult(HEALTH_ERROR, MissingCredentialError().message)
        try:
            async with self._client_factory(self._api_key) as client:
                await client.ping()
        except UpstreamError as exc:
            return HealthCheckResult(HEALTH_ERROR, f"Stripe API error: {exc}")
        return HealthCheckResult(HEALTH_OK, "Connected to Stripe")

    def _stat(self, name: str, entry: CatalogEntry, values: Dict[str, float]) -> DataFrame:
        fields = [Field("time", [self._clock()])]
        fields.extend(Field(label, [value]) for label, value in values.items())
        return DataFrame(
            name=name,
            fields=fields,
            meta={"preferredVisualisationPluginId": "stat", "unit": entry.display.unit},
        )

    async def _stat_frame(self, client: StripeClient, entry: CatalogEntry) -> List[DataFrame]:
        metrics = await client.get_metrics()
        values = {entry.label: _STAT_VALUES[entry.kind](metrics)}
        if entry.kind is MetricKind.BALANCE:
            values["Pending Balance"] = _cents(metrics.pending_balance)
        return [self._stat("metrics", entry, values)]

    async def _revenue_frame(self, client: StripeClient, entry: CatalogEntry) -> List[DataFrame]:
        metrics = await client.get_invoice_metrics()
        values = {
            entry.label: _cents(metrics.total_revenue),
            "Paid Invoices": float(metrics.paid_invoices),
            "Unpaid Invoices": float(metrics.unpaid_invoices),
            "Overdue Invoices": float(metrics.overdue_invoices),
        }
        return [self._stat("revenue", entry, values)]

    async def _subscriptions_frame(
        self, client: StripeClient, entry: CatalogEntry
    ) -> List[DataFrame]:
        rows = [
            {
                "id": s.id,
                "status": s.status,
                "customer": s.customer,
                "mrr": _cents(s.mrr),
                "plan": s.plan_name,
                "interval": s.interval,
                "created": s.created,
            }
            for s in await client.get_subscriptions()
        ]
        return [_table_frame("subscriptions", entry, rows)]

    async def _invoices_frame(self, client: StripeClient, entry: CatalogEntry) -> List[DataFrame]:
        rows = [
            {
                "id": inv.id,
                "customer": inv.customer,
                "status": inv.status,
                "amount": _cents(inv.amount),
                "amount_paid": _cents(inv.amount_paid),
                "created": inv.created,
                "paid": inv.paid,
            }
            for inv in await client.get_invoices()
        ]
        return [_table_frame("invoices", entry, rows)]

    async def _charges_frame(self, client: StripeClient, entry: CatalogEntry) -> List[DataFrame]:
        """Charge table followed by a summary frame for the same window."""
        rows = [
            {
                "id": ch.id,
                "customer": ch.customer,
                "status": ch.status,
                "amount": _cents(ch.amount),
                "created": ch.created,
                "paid": ch.paid,
                "refunded": ch.refunded,
            }
            for ch in await client.get_charges()
        ]
        summary = await client.get_charge_metrics()
        values = {
            "Total Charges": float(summary.total_charges),
            "Successful Amount": _cents(summary.successful_amount),
            "Failed Charges": float(summary.failed_count),
            "Refunded Charges": float(summary.refunded_count),
            "Refunded Amount": _cents(summary.refunded_amount),
        }
        return [_table_frame("charges", entry, rows), self._stat("charge_summary", entry, values)]

    async def _products_frame(self, client: StripeClient, entry: CatalogEntry) -> List[DataFrame]:
        rows = [
            {"product": p.product_name, "mrr": _cents(p.revenue), "subscriptions": p.sub_count}
            for p in await client.get_revenue_by_product()
        ]
        return [_table_frame("products", entry, rows)]


def _table_frame(name: str, entry: CatalogEntry, rows) -> DataFrame:
    columns = (entry.display.options or {}).get("columns") or (list(rows[0]) if rows else [])
    return DataFrame.from_rows(name, columns, rows, meta={"preferredVisualisation": "table"})


class QueryEngine:
    """Runs a batch of queries through an adapter, one response per refId."""

    def __init__(self, adapter: QueryAdapter) -> None:
        self.adapter = adapter

    async def run(self, queries: Iterable[Optional[Query]]) -> Dict[str, DataResponse]:
        responses: Dict[str, DataResponse] = {}
        for query in queries:
            if query is None:
                query = self.adapter.get_default_query()
            if not self.adapter.filter_query(query):
                logger.debug("Skipping query %s without a metric", query.ref_id)
                continue
            responses[query.ref_id] = await self.adapter.execute_query(query)
        return responses
