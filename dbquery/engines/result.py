"""
Execution results: rows plus the metadata a response layer serialises.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import SQLModel

from dbquery.core.exceptions import ErrorCode, QueryError, QueryValidationError
from dbquery.engines.context import QueryContext
from dbquery.engines.row import Row


class ErrorInfo(SQLModel):
    code: ErrorCode = ErrorCode.EXECUTION_ERROR
    message: str
    query_name: str | None = None
    violations: list[str] = Field(default_factory=list)

    @classmethod
    def from_exception(cls, exc: BaseException, query_name: str | None = None) -> "ErrorInfo":
        if isinstance(exc, QueryError):
            return cls(
                code=exc.code,
                message=exc.raw_message,
                query_name=exc.query_name or query_name,
                violations=list(exc.violations) if isinstance(exc, QueryValidationError) else [],
            )
        return cls(message=str(exc), query_name=query_name)


class PaginationInfo(SQLModel):
    start: int
    end: int
    page_size: int
    total: int | None = None
    has_next: bool = False
    has_previous: bool = False


class AttributeSchema(SQLModel):
    """Per-attribute description for clients."""

    name: str
    type: str
    filterable: bool = True
    sortable: bool = True
    primary_key: bool = False
    virtual: bool = False
    label: str | None = None
    description: str | None = None
    restricted: bool = False


class QueryMetadata(SQLModel):
    pagination: PaginationInfo | None = None
    applied_filters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    applied_sorts: list[dict[str, str]] = Field(default_factory=list)
    applied_criteria: list[dict[str, Any]] = Field(default_factory=list)
    attributes: dict[str, AttributeSchema] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)
    execution_time_ms: float = 0.0
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_context(cls, context: QueryContext, row_count: int) -> "QueryMetadata":
        definition = context.definition
        pagination = None
        page = context.pagination if context.has_pagination() else None
        if page is not None:
            total = context.total_count
            pagination = PaginationInfo(
                start=page.start,
                end=min(page.end, page.start + row_count) if total is None else min(page.end, total),
                page_size=page.page_size,
                total=total,
                has_next=total is not None and page.end < total,
                has_previous=page.start > 0,
            )
        attributes: dict[str, AttributeSchema] = {}
        for attr in definition.attributes.values():
            if not attr.visible or not context.is_attribute_included(attr):
                continue
            try:
                restricted = not attr.is_allowed(context.principal)
            except Exception:
                restricted = True
            attributes[attr.name] = AttributeSchema(
                name=attr.name,
                type=attr.data_type.value,
                filterable=attr.filterable,
                sortable=attr.sortable,
                primary_key=attr.primary_key,
                virtual=attr.virtual,
                label=attr.label,
                description=attr.description,
                restricted=restricted,
            )
        return cls(
            pagination=pagination,
            applied_filters={
                name: f.model_dump(mode="json", exclude_none=True) for name, f in context.filters.items()
            },
            applied_sorts=[
                {"attribute": s.attribute, "direction": s.direction.value} for s in context.sorts
            ],
            applied_criteria=[
                c.model_dump(mode="json") for c in context.applied_criteria
            ],
            attributes=attributes,
            parameters={k: v for k, v in context.params.items() if k in definition.params},
            execution_time_ms=context.execution_time_ms,
            extra=dict(context.metadata),
        )


class QueryResult(BaseModel):
    """Outcome of one execution. Failures carry ``error`` instead of raising."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    query_name: str
    rows: list[Row] = Field(default_factory=list)
    metadata: QueryMetadata | None = None
    success: bool = True
    error: ErrorInfo | None = None
    execution_time_ms: float = 0.0
    count: int | None = None

    @classmethod
    def failure(
        cls, query_name: str, exc: BaseException, execution_time_ms: float = 0.0
    ) -> "QueryResult":
        return cls(
            query_name=query_name,
            success=False,
            error=ErrorInfo.from_exception(exc, query_name),
            execution_time_ms=execution_time_ms,
        )

    @property
    def data(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.rows]

    @property
    def size(self) -> int:
        return len(self.rows)

    def is_empty(self) -> bool:
        return not self.rows

    def first(self) -> Row | None:
        return self.rows[0] if self.rows else None

    def to_response(self) -> dict[str, Any]:
        """JSON-ready dict: ``data``, ``metadata``, ``count`` or ``error``."""
        if not self.success:
            return {
                "success": False,
                "error": self.error.model_dump(mode="json") if self.error else None,
                "execution_time_ms": self.execution_time_ms,
            }
        out: dict[str, Any] = {"success": True, "data": self.data, "count": self.count}
        if self.metadata is not None:
            out["metadata"] = self.metadata.model_dump(mode="json")
        out["execution_time_ms"] = self.execution_time_ms
        return out
