"""Domain models for vector records, search filters and query responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class MetadataFilter(BaseModel):
    """Declarative payload filter for vector-store queries.

    Attributes
    ----------
    field:
        The payload key to filter on (e.g. ``"agent_id"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class SearchFilter(BaseModel):
    """Tenant / document restriction for a similarity search.

    Set fields are ANDed together; a ``None`` field is unrestricted.
    """

    agent_id: str | None = None
    document_ids: list[str] | None = None

    def to_metadata_filters(self) -> list[MetadataFilter]:
        filters: list[MetadataFilter] = []
        if self.agent_id:
            filters.append(MetadataFilter.equals("agent_id", self.agent_id))
        if self.document_ids:
            filters.append(MetadataFilter.one_of("document_id", list(self.document_ids)))
        return filters


class VectorRecord(BaseModel):
    """A persisted vector and its payload.

    ``id`` is generated by the store; the document-local ``chunk_index``
    is only payload, never the primary key.
    """

    id: str
    vector: list[float] | None = None
    document_id: str
    agent_id: str | None = None
    chunk_index: int
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchHit(VectorRecord):
    """A record returned by a similarity search (higher score = more similar)."""

    score: float


class QueryResult(BaseModel):
    """One relevant passage as handed to retrieval consumers."""

    score: float
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueryResponse(BaseModel):
    """Best-effort retrieval outcome; ``success=False`` means "nothing usable"."""

    success: bool
    query: str
    results: list[QueryResult] = Field(default_factory=list)
    result_count: int = 0
    error: str | None = None
