from __future__ import annotations

from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from .metrics.base import CatalogEntry, MetricKind
from .metrics.billing import DEFAULT_KIND
from .metrics.catalog import MetricCatalog


class Query(BaseModel):
    """A single panel query: the selected metric plus host correlation ids.

    The kind is stored as a plain string so that empty or stale values from
    saved dashboards survive a round trip and can be reported.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    ref_id: str = Field("A", alias="refId")
    id: Optional[str] = None
    datasource_uid: Optional[str] = Field(None, alias="datasourceUid")
    query_kind: Optional[str] = Field(
        None,
        alias="queryType",
        validation_alias=AliasChoices("queryType", "queryKind", "query_kind"),
    )

    @model_validator(mode="before")
    @classmethod
    def _flatten_datasource_ref(cls, data):
        # Saved panel queries carry {"datasource": {"uid": ...}}.
        if isinstance(data, dict) and not (data.get("datasourceUid") or data.get("datasource_uid")):
            ref = data.get("datasource")
            if isinstance(ref, dict) and ref.get("uid"):
                data = {**data, "datasourceUid": ref["uid"]}
        return data

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def default_query(ref_id: str = "A") -> Query:
    return Query(ref_id=ref_id, query_kind=DEFAULT_KIND.value)


def is_runnable(query: Query, catalog: Optional[MetricCatalog] = None) -> bool:
    """Whether the query may be dispatched upstream. Pure, no I/O."""
    if not query.query_kind:
        return False
    if catalog is not None:
        return query.query_kind in catalog
    return True


def update_kind(query: Query, new_kind: Union[MetricKind, str]) -> Query:
    value = new_kind.value if isinstance(new_kind, MetricKind) else new_kind
    return query.model_copy(update={"query_kind": value})


def selected_entry(query: Query, catalog: MetricCatalog) -> CatalogEntry:
    """Entry shown in the metric selector; stale kinds fall back to the default."""
    return catalog.resolve_or_default(query.query_kind)
