from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class MetricKind(str, Enum):
    """Closed set of billing metrics the data source can query."""

    MRR = "mrr"
    ARR = "arr"
    NEW_MRR = "new_mrr"
    CHURNED_MRR = "churned_mrr"
    NET_NEW_MRR = "net_new_mrr"
    REVENUE = "revenue"
    ARPU = "arpu"
    SUBSCRIBERS = "subscribers"
    CHURN_RATE = "churn_rate"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CUSTOMERS = "customers"
    BALANCE = "balance"
    SUBSCRIPTIONS = "subscriptions"
    INVOICES = "invoices"
    CHARGES = "charges"
    PRODUCTS = "products"


@dataclass(frozen=True)
class MetricDisplayConfig:
    """How a metric's frame should be rendered on the dashboard."""

    type: str = "stat"  # stat or table
    unit: Optional[str] = None
    options: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CatalogEntry:
    """Display metadata for one metric kind."""

    kind: MetricKind
    label: str
    description: str
    category: str = "revenue"
    display: MetricDisplayConfig = field(default_factory=MetricDisplayConfig)

    def __post_init__(self) -> None:
        if not self.label or not self.description:
            raise ValueError(f"Catalog entry '{self.kind.value}' needs a label and a description.")

    @property
    def is_table(self) -> bool:
        return self.display.type == "table"

    def as_option(self) -> Dict[str, str]:
        return {"label": self.label, "value": self.kind.value, "description": self.description}
