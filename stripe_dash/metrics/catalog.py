import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..errors import MetricNotFoundError
from .base import CatalogEntry, MetricKind

logger = logging.getLogger(__name__)


class MetricCatalog:
    """Ordered registry of the metrics offered to the query editor."""

    def __init__(
        self,
        entries: Iterable[CatalogEntry] = (),
        default_kind: MetricKind = MetricKind.MRR,
    ) -> None:
        self._entries: "OrderedDict[MetricKind, CatalogEntry]" = OrderedDict()
        for entry in entries:
            self.register(entry)
        self._default_kind = default_kind

    def register(self, entry: CatalogEntry) -> None:
        if entry.kind in self._entries:
            raise ValueError(f"Metric '{entry.kind.value}' is already registered.")
        self._entries[entry.kind] = entry

    def __contains__(self, kind: object) -> bool:
        return self._coerce(kind) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def list_entries(self) -> Tuple[CatalogEntry, ...]:
        return tuple(self._entries.values())

    def options(self) -> List[Dict[str, str]]:
        return [entry.as_option() for entry in self._entries.values()]

    def resolve(self, kind: Union[MetricKind, str, None]) -> CatalogEntry:
        coerced = self._coerce(kind)
        if coerced is None:
            raise MetricNotFoundError(kind)
        return self._entries[coerced]

    def default_entry(self) -> CatalogEntry:
        if self._default_kind in self._entries:
            return self._entries[self._default_kind]
        if not self._entries:
            raise MetricNotFoundError(self._default_kind.value)
        return next(iter(self._entries.values()))

    def resolve_or_default(self, kind: Union[MetricKind, str, None]) -> CatalogEntry:
        try:
            return self.resolve(kind)
        except MetricNotFoundError:
            fallback = self.default_entry()
            logger.warning(
                "Unknown metric %r, falling back to %s", kind, fallback.kind.value
            )
            return fallback

    def _coerce(self, kind: object) -> Optional[MetricKind]:
        if isinstance(kind, MetricKind):
            return kind if kind in self._entries else None
        if not isinstance(kind, str) or not kind:
            return None
        try:
            coerced = MetricKind(kind)
        except ValueError:
            return None
        return coerced if coerced in self._entries else None
