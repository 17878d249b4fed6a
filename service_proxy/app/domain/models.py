"""
Request and response models shared across the proxy pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator


QueryPairs = List[Tuple[str, str]]


class RouteKind(str, Enum):
    """Inbound routes served by the proxy."""

    GENERIC = "generic"
    PROCUREMENTS = "procurements"
    VEHICLES = "vehicles"
    DOCUMENTS = "documents"


@dataclass(frozen=True)
class ProxyRequest:
    """A single inbound call, already URL-decoded by the server."""

    path: str
    route_kind: RouteKind = RouteKind.GENERIC
    query: QueryPairs = field(default_factory=list)
    procurement_id: Optional[str] = None

    @classmethod
    def from_items(
        cls,
        path: str,
        items: Any,
        route_kind: RouteKind = RouteKind.GENERIC,
        procurement_id: Optional[str] = None,
    ) -> "ProxyRequest":
        """Build a request from ``(key, value)`` pairs or a plain mapping."""
        if hasattr(items, "items") and not isinstance(items, list):
            pairs = [(str(key), str(value)) for key, value in items.items()]
        else:
            pairs = [(str(key), str(value)) for key, value in items]
        return cls(path=path, route_kind=route_kind, query=pairs, procurement_id=procurement_id)


@dataclass(frozen=True)
class UpstreamTarget:
    """Fully resolved upstream call produced by the translator."""

    url: str
    path: str
    query: QueryPairs
    procurement_id: Optional[str] = None


class ResponseMetadata(BaseModel):
    """Metadata block attached to every envelope the proxy emits."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    timestamp: str
    source: str


class ProxyResponse(BaseModel):
    """
    Uniform JSON envelope returned to clients.

    ``success`` is true exactly when ``data`` was provided and ``error`` was
    not. Absent fields are omitted from the serialized body, so a successful
    ``null`` payload still renders as ``"data": null``.
    """

    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Optional[ResponseMetadata] = None

    @model_validator(mode="after")
    def _check_envelope(self) -> "ProxyResponse":
        has_data = "data" in self.model_fields_set
        has_error = self.error is not None
        if self.success != (has_data and not has_error):
            raise ValueError("success must be true iff data is present and error is absent")
        if not self.success and not has_error:
            raise ValueError("failed responses must carry an error message")
        return self

    @classmethod
    def ok(cls, data: Any, metadata: Optional[ResponseMetadata] = None) -> "ProxyResponse":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, metadata: Optional[ResponseMetadata] = None) -> "ProxyResponse":
        return cls(success=False, error=error, metadata=metadata)

    def to_body(self) -> Dict[str, Any]:
        """Serialize without the fields that were never set."""
        body: Dict[str, Any] = {"success": self.success}
        if "data" in self.model_fields_set:
            body["data"] = self.data
        if self.error is not None:
            body["error"] = self.error
        if self.metadata is not None:
            body["metadata"] = self.metadata.model_dump()
        return body


@dataclass(frozen=True)
class ProxyResult:
    """Envelope plus the HTTP status it should be delivered with."""

    status_code: int
    response: ProxyResponse
    cache_status: str = "BYPASS"
