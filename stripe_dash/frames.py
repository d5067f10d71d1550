from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class Field:
    name: str
    values: List[Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "values": [v.isoformat() if isinstance(v, datetime) else v for v in self.values],
        }


@dataclass
class DataFrame:
    """Columnar result handed to the dashboard panel."""

    name: str
    fields: List[Field] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_rows(
        cls,
        name: str,
        columns: Sequence[str],
        rows: Sequence[Dict[str, Any]],
        meta: Optional[Dict[str, Any]] = None,
    ) -> "DataFrame":
        fields = [Field(column, [row.get(column) for row in rows]) for column in columns]
        return cls(name=name, fields=fields, meta=dict(meta or {}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "meta": self.meta,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class DataResponse:
    frames: List[DataFrame] = field(default_factory=list)
    error: Optional[str] = None
    status: str = "ok"  # ok, bad_request, internal

    @classmethod
    def failure(cls, status: str, message: str) -> "DataResponse":
        return cls(error=message, status=status)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status,
            "frames": [frame.to_dict() for frame in self.frames],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload
