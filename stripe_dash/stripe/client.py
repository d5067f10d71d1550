"""Async client for the parts of the Stripe REST API the dashboard reads.

Amounts are returned in cents, as Stripe reports them; conversion to
currency units happens when frames are built.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from ..config import settings
from ..errors import UpstreamError

logger = logging.getLogger(__name__)

THIRTY_DAYS = 30 * 24 * 60 * 60
_EXPAND_PRICE = ["data.items.data.price"]

# interval -> (multiplier, divisor) to reach a monthly amount
_MONTHLY_FACTORS: Dict[str, tuple] = {
    "year": (1, 12),
    "month": (1, 1),
    "week": (4, 1),
    "day": (30, 1),
}


@dataclass
class Metrics:
    mrr: int = 0
    arr: int = 0
    active_subscribers: int = 0
    total_customers: int = 0
    available_balance: int = 0
    pending_balance: int = 0
    new_mrr: int = 0
    churned_mrr: int = 0
    net_new_mrr: int = 0
    churn_rate: float = 0.0
    arpu: int = 0
    trialing_count: int = 0
    past_due_count: int = 0
    canceled_count_30d: int = 0


@dataclass
class SubscriptionData:
    id: str
    status: str
    customer: str
    mrr: int
    created: datetime
    plan_name: str = ""
    interval: str = ""


@dataclass
class InvoiceData:
    id: str
    customer: str
    status: str
    amount: int
    amount_paid: int
    currency: str
    created: datetime
    paid: bool
    due_date: Optional[datetime] = None


@dataclass
class InvoiceMetrics:
    total_revenue: int = 0
    paid_invoices: int = 0
    unpaid_invoices: int = 0
    overdue_invoices: int = 0


@dataclass
class ChargeData:
    id: str
    customer: str
    status: str
    amount: int
    currency: str
    created: datetime
    paid: bool
    refunded: bool


@dataclass
class ChargeMetrics:
    total_charges: int = 0
    successful_amount: int = 0
    failed_count: int = 0
    refunded_count: int = 0
    refunded_amount: int = 0


@dataclass
class ProductRevenue:
    product_id: str
    product_name: str
    revenue: int
    sub_count: int


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _object_id(value: Any) -> str:
    """Stripe returns either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id") or ""
    return value or ""


def item_mrr(item: Dict[str, Any]) -> int:
    price = item.get("price") or {}
    recurring = price.get("recurring")
    if not recurring:
        return 0
    factors = _MONTHLY_FACTORS.get(recurring.get("interval"))
    if factors is None:
        return 0
    amount = (price.get("unit_amount") or 0) * (item.get("quantity") or 0)
    multiplier, divisor = factors
    return amount * multiplier // divisor


def calculate_mrr(subscription: Dict[str, Any]) -> int:
    """Normalise every recurring item of a subscription to a monthly amount."""
    items = (subscription.get("items") or {}).get("data") or []
    return sum(item_mrr(item) for item in items)


class StripeClient:
    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.page_size = page_size or settings.page_size
        self._clock = clock
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.stripe_api_base,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout or settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "StripeClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                _error_message(exc.response), status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"invalid JSON from {path}") from exc
        if not isinstance(payload, dict):
            raise UpstreamError(f"invalid JSON from {path}")
        return payload

    async def _list(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Follow ``has_more`` / ``starting_after`` until the list is exhausted."""
        query = dict(params or {})
        query["limit"] = self.page_size
        objects: List[Dict[str, Any]] = []
        while True:
            page = await self._get(path, query)
            data = page.get("data") or []
            objects.extend(data)
            if not page.get("has_more") or not data:
                return objects
            query["starting_after"] = data[-1]["id"]

    async def _subscriptions(self, status: str, expand: bool = True) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"status": status}
        if expand:
            params["expand[]"] = _EXPAND_PRICE
        return await self._list("/subscriptions", params)

    async def ping(self) -> None:
        await self._get("/balance")

    async def get_balance(self) -> Dict[str, int]:
        balance = await self._get("/balance")
        available = sum(
            entry.get("amount", 0)
            for entry in balance.get("available") or []
            if entry.get("currency") == "usd"
        )
        pending = sum(
            entry.get("amount", 0)
            for entry in balance.get("pending") or []
            if entry.get("currency") == "usd"
        )
        return {"available": available, "pending": pending}

    async def get_metrics(self) -> Metrics:
        metrics = Metrics()
        since = int(self._clock()) - THIRTY_DAYS

        for subscription in await self._subscriptions("active"):
            mrr = calculate_mrr(subscription)
            metrics.mrr += mrr
            metrics.active_subscribers += 1
            if (subscription.get("created") or 0) >= since:
                metrics.new_mrr += mrr
        metrics.arr = metrics.mrr * 12
        if metrics.active_subscribers:
            metrics.arpu = metrics.mrr // metrics.active_subscribers

        metrics.trialing_count = len(await self._subscriptions("trialing", expand=False))
        metrics.past_due_count = len(await self._subscriptions("past_due", expand=False))

        for subscription in await self._subscriptions("canceled"):
            if (subscription.get("canceled_at") or 0) >= since:
                metrics.canceled_count_30d += 1
                metrics.churned_mrr += calculate_mrr(subscription)
        metrics.net_new_mrr = metrics.new_mrr - metrics.churned_mrr

        # Subscribers 30 days ago, approximated from today's counts.
        active_before = (
            metrics.active_subscribers
            - metrics.new_mrr // max(metrics.arpu, 1)
            + metrics.canceled_count_30d
        )
        if active_before > 0:
            metrics.churn_rate = metrics.canceled_count_30d / active_before * 100

        metrics.total_customers = len(await self._list("/customers"))

        balance = await self.get_balance()
        metrics.available_balance = balance["available"]
        metrics.pending_balance = balance["pending"]
        logger.debug(
            "Fetched metrics: %d active subscriptions, %d customers",
            metrics.active_subscribers,
            metrics.total_customers,
        )
        return metrics

    async def get_subscriptions(self) -> List[SubscriptionData]:
        result = []
        for subscription in await self._subscriptions("active"):
            data = SubscriptionData(
                id=subscription["id"],
                status=subscription.get("status", ""),
                customer=_object_id(subscription.get("customer")),
                mrr=calculate_mrr(subscription),
                created=_timestamp(subscription.get("created")),
            )
            items = (subscription.get("items") or {}).get("data") or []
            if items and items[0].get("price"):
                price = items[0]["price"]
                if price.get("recurring"):
                    data.interval = price["recurring"].get("interval", "")
                data.plan_name = price.get("nickname") or _object_id(price.get("product"))
            result.append(data)
        return result

    async def get_invoices(self) -> List[InvoiceData]:
        invoices = []
        for invoice in await self._list("/invoices"):
            invoices.append(
                InvoiceData(
                    id=invoice["id"],
                    customer=_object_id(invoice.get("customer")),
                    status=invoice.get("status") or "",
                    amount=invoice.get("total") or 0,
                    amount_paid=invoice.get("amount_paid") or 0,
                    currency=invoice.get("currency") or "",
                    created=_timestamp(invoice.get("created")),
                    paid=invoice.get("status") == "paid",
                    due_date=_timestamp(invoice.get("due_date")),
                )
            )
        return invoices

    async def get_invoice_metrics(self) -> InvoiceMetrics:
        metrics = InvoiceMetrics()
        now = self._clock()
        for invoice in await self._list("/invoices"):
            if invoice.get("status") == "paid":
                metrics.total_revenue += invoice.get("amount_paid") or 0
                metrics.paid_invoices += 1
            else:
                metrics.unpaid_invoices += 1
                due_date = invoice.get("due_date") or 0
                if due_date and due_date < now:
                    metrics.overdue_invoices += 1
        return metrics

    async def get_charges(self) -> List[ChargeData]:
        charges = []
        for charge in await self._list("/charges"):
            charges.append(
                ChargeData(
                    id=charge["id"],
                    customer=_object_id(charge.get("customer")),
                    status=charge.get("status") or "",
                    amount=charge.get("amount") or 0,
                    currency=charge.get("currency") or "",
                    created=_timestamp(charge.get("created")),
                    paid=bool(charge.get("paid")),
                    refunded=bool(charge.get("refunded")),
                )
            )
        return charges

    async def get_charge_metrics(self) -> ChargeMetrics:
        metrics = ChargeMetrics()
        for charge in await self._list("/charges"):
            metrics.total_charges += 1
            if charge.get("paid"):
                metrics.successful_amount += charge.get("amount") or 0
            if charge.get("status") == "failed":
                metrics.failed_count += 1
            if charge.get("refunded"):
                metrics.refunded_count += 1
                metrics.refunded_amount += charge.get("amount_refunded") or 0
        return metrics

    async def get_revenue_by_product(self) -> List[ProductRevenue]:
        products: Dict[str, ProductRevenue] = {}
        for subscription in await self._subscriptions("active"):
            for item in (subscription.get("items") or {}).get("data") or []:
                price = item.get("price")
                if not price:
                    continue
                product_id = _object_id(price.get("product")) or price.get("id", "")
                name = price.get("nickname") or product_id
                entry = products.get(product_id)
                if entry is None:
                    products[product_id] = ProductRevenue(product_id, name, item_mrr(item), 1)
                else:
                    entry.revenue += item_mrr(item)
                    entry.sub_count += 1
        return sorted(products.values(), key=lambda p: p.revenue, reverse=True)


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        error = {}
    message = error.get("message") if isinstance(error, dict) else None
    return message or f"HTTP {response.status_code}"
