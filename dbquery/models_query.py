"""
Query engine data model.

Enums, the immutable definition models (attributes, params, criteria, the
query definition itself) and the small request objects a caller hands to an
execution (filters, sorts, pagination). Definitions are validated once at
construction and shared read-only across executions.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator
from sqlmodel import SQLModel

from dbquery.core import sqltext
from dbquery.core.config import settings
from dbquery.core.naming import NamingStrategyEnum

if TYPE_CHECKING:
    from dbquery.engines.metadata.cache import MetadataCache


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProductTypeEnum(str, Enum):
    """Supported database product types."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    TRINO = "trino"
    SQLITE = "sqlite"


class DataTypeEnum(str, Enum):
    """Declared value type of an attribute or parameter."""

    STRING = "string"
    INTEGER = "integer"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    BYTES = "bytes"
    OBJECT = "object"


class SqlTypeEnum(str, Enum):
    """Normalised column type reported by the driver."""

    VARCHAR = "VARCHAR"
    CHAR = "CHAR"
    CLOB = "CLOB"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    SMALLINT = "SMALLINT"
    NUMERIC = "NUMERIC"
    FLOAT = "FLOAT"
    DOUBLE = "DOUBLE"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIME = "TIME"
    TIMESTAMP = "TIMESTAMP"
    BLOB = "BLOB"
    BINARY = "BINARY"
    ARRAY = "ARRAY"
    JSON = "JSON"
    OTHER = "OTHER"


class FilterOpEnum(str, Enum):
    """Filter operators. ``parse`` also accepts the short REST aliases."""

    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    LESS_THAN = "LESS_THAN"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    LIKE = "LIKE"
    NOT_LIKE = "NOT_LIKE"
    CONTAINS = "CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    IN = "IN"
    NOT_IN = "NOT_IN"
    BETWEEN = "BETWEEN"
    IS_NULL = "IS_NULL"
    IS_NOT_NULL = "IS_NOT_NULL"

    @classmethod
    def parse(cls, value: FilterOpEnum | str) -> FilterOpEnum:
        if isinstance(value, FilterOpEnum):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Unknown filter operator: {value!r}")
        key = value.strip()
        if key.upper() in cls.__members__:
            return cls[key.upper()]
        op = _FILTER_OP_ALIASES.get(key.lower())
        if op is None:
            raise ValueError(f"Unknown filter operator: {value!r}")
        return op

    @property
    def needs_value(self) -> bool:
        return self not in (FilterOpEnum.IS_NULL, FilterOpEnum.IS_NOT_NULL)

    @property
    def needs_range(self) -> bool:
        return self is FilterOpEnum.BETWEEN

    @property
    def needs_list(self) -> bool:
        return self in (FilterOpEnum.IN, FilterOpEnum.NOT_IN)


_FILTER_OP_ALIASES: dict[str, FilterOpEnum] = {
    "eq": FilterOpEnum.EQUALS,
    "=": FilterOpEnum.EQUALS,
    "ne": FilterOpEnum.NOT_EQUALS,
    "neq": FilterOpEnum.NOT_EQUALS,
    "!=": FilterOpEnum.NOT_EQUALS,
    "<>": FilterOpEnum.NOT_EQUALS,
    "gt": FilterOpEnum.GREATER_THAN,
    ">": FilterOpEnum.GREATER_THAN,
    "gte": FilterOpEnum.GREATER_THAN_OR_EQUAL,
    "ge": FilterOpEnum.GREATER_THAN_OR_EQUAL,
    ">=": FilterOpEnum.GREATER_THAN_OR_EQUAL,
    "lt": FilterOpEnum.LESS_THAN,
    "<": FilterOpEnum.LESS_THAN,
    "lte": FilterOpEnum.LESS_THAN_OR_EQUAL,
    "le": FilterOpEnum.LESS_THAN_OR_EQUAL,
    "<=": FilterOpEnum.LESS_THAN_OR_EQUAL,
    "like": FilterOpEnum.LIKE,
    "notlike": FilterOpEnum.NOT_LIKE,
    "not like": FilterOpEnum.NOT_LIKE,
    "contains": FilterOpEnum.CONTAINS,
    "startswith": FilterOpEnum.STARTS_WITH,
    "starts with": FilterOpEnum.STARTS_WITH,
    "endswith": FilterOpEnum.ENDS_WITH,
    "ends with": FilterOpEnum.ENDS_WITH,
    "in": FilterOpEnum.IN,
    "notin": FilterOpEnum.NOT_IN,
    "nin": FilterOpEnum.NOT_IN,
    "not in": FilterOpEnum.NOT_IN,
    "between": FilterOpEnum.BETWEEN,
    "null": FilterOpEnum.IS_NULL,
    "isnull": FilterOpEnum.IS_NULL,
    "is null": FilterOpEnum.IS_NULL,
    "notnull": FilterOpEnum.IS_NOT_NULL,
    "isnotnull": FilterOpEnum.IS_NOT_NULL,
    "is not null": FilterOpEnum.IS_NOT_NULL,
}


class SortDirEnum(str, Enum):
    ASC = "ASC"
    DESC = "DESC"

    @classmethod
    def parse(cls, value: SortDirEnum | str | None) -> SortDirEnum:
        if isinstance(value, SortDirEnum):
            return value
        if value is None or not str(value).strip():
            return cls.ASC
        key = str(value).strip().upper()
        if key in ("ASC", "ASCENDING"):
            return cls.ASC
        if key in ("DESC", "DESCENDING"):
            return cls.DESC
        raise ValueError(f"Unknown sort direction: {value!r}")


class DialectEnum(str, Enum):
    """Pagination SQL strategy.

    - ROW_NUMBER: nested ``ROWNUM`` window (Oracle 11g and older).
    - OFFSET_FETCH: ``OFFSET n ROWS FETCH NEXT m ROWS ONLY`` (Oracle 12c+,
      SQL Server 2012+, Trino).
    - STANDARD: ``LIMIT m OFFSET n`` (PostgreSQL, MySQL, SQLite).
    """

    ROW_NUMBER = "row_number"
    OFFSET_FETCH = "offset_fetch"
    STANDARD = "standard"

    @classmethod
    def parse(cls, value: DialectEnum | str | None) -> DialectEnum:
        """Lenient lookup: accepts strategy names and database names/versions."""
        if isinstance(value, DialectEnum):
            return value
        if value is None or not str(value).strip():
            return cls(settings.DEFAULT_DIALECT)
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            pass
        if "oracle" in key:
            return cls.OFFSET_FETCH if any(v in key for v in ("12", "18", "19", "21", "23")) else cls.ROW_NUMBER
        if "sql_server" in key or "sqlserver" in key or "mssql" in key or "trino" in key:
            return cls.OFFSET_FETCH
        if any(v in key for v in ("postgres", "mysql", "maria", "sqlite", "h2", "hsql")):
            return cls.STANDARD
        raise ValueError(f"Unknown pagination dialect: {value!r}")


# ---------------------------------------------------------------------------
# Definitions (immutable)
# ---------------------------------------------------------------------------


class AttributeDef(BaseModel):
    """One logical field of a query result.

    A *virtual* attribute has no source column; its value comes from
    ``calculator(row, context)`` at row-mapping time. Setting a calculator
    makes the attribute virtual unless ``virtual`` is given explicitly.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    data_type: DataTypeEnum = DataTypeEnum.STRING
    alias: str | None = None
    filterable: bool = True
    sortable: bool = True
    primary_key: bool = False
    virtual: bool = False
    selected: bool = True
    formatter: Callable[[Any], Any] | None = None
    calculator: Callable[..., Any] | None = None
    security: Callable[[Any], bool] | None = None
    sort_property: str | None = None
    allowed_operators: frozenset[FilterOpEnum] | None = None
    label: str | None = None
    description: str | None = None
    visible: bool = True

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("virtual") is None:
            data["virtual"] = data.get("calculator") is not None
        if data["virtual"]:
            if data.get("filterable") is None:
                data["filterable"] = False
            if data.get("sortable") is None:
                data["sortable"] = data.get("sort_property") is not None
        else:
            if not data.get("alias"):
                data["alias"] = data.get("name")
            if data.get("filterable") is None:
                data["filterable"] = True
            if data.get("sortable") is None:
                data["sortable"] = True
        return data

    @field_validator("allowed_operators", mode="before")
    @classmethod
    def _parse_operators(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, (str, FilterOpEnum)):
            v = [v]
        return frozenset(FilterOpEnum.parse(op) for op in v)

    @model_validator(mode="after")
    def _check_invariants(self) -> AttributeDef:
        if not self.name or not self.name.strip():
            raise ValueError("Attribute name is required")
        if self.virtual:
            if self.alias:
                raise ValueError(f"Virtual attribute '{self.name}' cannot have an alias")
            if self.primary_key:
                raise ValueError(f"Virtual attribute '{self.name}' cannot be a primary key")
            if self.filterable:
                raise ValueError(f"Virtual attribute '{self.name}' cannot be filterable")
            if self.sortable and not self.sort_property:
                raise ValueError(
                    f"Virtual attribute '{self.name}' is sortable only with a sort_property"
                )
            if self.calculator is None:
                raise ValueError(f"Virtual attribute '{self.name}' requires a calculator")
        elif self.calculator is not None:
            raise ValueError(f"Attribute '{self.name}' has a calculator but is not virtual")
        return self

    @property
    def column(self) -> str | None:
        return self.alias

    def is_included(self, selected_fields: Iterable[str] | None) -> bool:
        """Whether the attribute belongs in the output for this field selection.

        Attributes with ``selected=False`` appear only when requested by name.
        """
        fields = set(selected_fields or ())
        if not self.selected:
            return self.name in fields
        return not fields or self.name in fields

    def is_allowed(self, principal: Any) -> bool:
        if self.security is None:
            return True
        return bool(self.security(principal))

    def allows_operator(self, op: FilterOpEnum) -> bool:
        return self.allowed_operators is None or op in self.allowed_operators


class ParamDef(BaseModel):
    """Named, typed input parameter of a definition."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    data_type: DataTypeEnum = DataTypeEnum.STRING
    required: bool = False
    default: Any = None
    validator: Callable[[Any], bool] | None = None
    processor: Callable[..., Any] | None = None
    description: str | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not None


class CriteriaDef(BaseModel):
    """Conditionally injected SQL fragment bound to a ``--name`` placeholder.

    The fragment comes from ``sql``, a ``generator(context) -> str`` or a
    Jinja2 ``template`` rendered with the context's parameters. Without a
    ``condition`` the fragment applies when every bind parameter it
    references has a non-null value.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    sql: str | None = None
    generator: Callable[[Any], str] | None = None
    template: str | None = None
    condition: Callable[[Any], bool] | None = None
    bind_params: frozenset[str] = frozenset()
    priority: int = 0
    security_related: bool = False
    find_by_key: bool = False
    description: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_binds(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("bind_params"):
            return data
        data = dict(data)
        names = set(sqltext.unique_bind_names(data.get("sql")))
        template = data.get("template")
        if template:
            from dbquery.engines.sql.template_engine import SQLTemplateEngine

            names.update(SQLTemplateEngine().parse_parameters(template))
            names.update(sqltext.unique_bind_names(template))
        data["bind_params"] = frozenset(names)
        return data

    @model_validator(mode="after")
    def _check_source(self) -> CriteriaDef:
        if not self.name or not self.name.strip():
            raise ValueError("Criteria name is required")
        sources = [s for s in (self.sql, self.generator, self.template) if s]
        if len(sources) != 1:
            raise ValueError(
                f"Criteria '{self.name}' needs exactly one of sql, generator or template"
            )
        return self


class ValidationRule(BaseModel):
    """Custom request check; ``rule(context)`` returning False is a violation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    rule: Callable[[Any], bool]
    message: str | None = None


def _keyed(items: Any, kind: str) -> Any:
    """Turn a list of named models into a dict, rejecting duplicate names."""
    if items is None:
        return {}
    if isinstance(items, dict):
        return items
    out: dict[str, Any] = {}
    for item in items:
        name = item["name"] if isinstance(item, dict) else item.name
        if name in out:
            raise ValueError(f"Duplicate {kind} name: '{name}'")
        out[name] = item
    return out


class QueryDefinition(BaseModel):
    """A named query: templated SQL plus its attributes, params and criteria.

    Immutable once built. The only late write is the one-time attachment of
    the metadata cache (``attach_metadata_cache``).
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    sql: str
    description: str | None = None
    attributes: dict[str, AttributeDef] = Field(default_factory=dict)
    params: dict[str, ParamDef] = Field(default_factory=dict)
    criteria: dict[str, CriteriaDef] = Field(default_factory=dict)
    default_page_size: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE)
    max_page_size: int = Field(default_factory=lambda: settings.MAX_PAGE_SIZE)
    pagination_enabled: bool = True
    include_dynamic_attributes: bool = False
    naming_strategy: NamingStrategyEnum = NamingStrategyEnum.CAMEL
    query_timeout: float | None = None
    fetch_size: int | None = None
    metadata_cache_enabled: bool = True
    pre_processors: tuple[Callable[..., Any], ...] = ()
    row_processors: tuple[Callable[..., Any], ...] = ()
    post_processors: tuple[Callable[..., Any], ...] = ()
    validation_rules: tuple[ValidationRule, ...] = ()

    _metadata_cache: Any = PrivateAttr(default=None)
    _cache_lock: Any = PrivateAttr(default_factory=threading.Lock)

    @field_validator("attributes", mode="before")
    @classmethod
    def _attributes_by_name(cls, v: Any) -> Any:
        return _keyed(v, "attribute")

    @field_validator("params", mode="before")
    @classmethod
    def _params_by_name(cls, v: Any) -> Any:
        return _keyed(v, "parameter")

    @field_validator("criteria", mode="before")
    @classmethod
    def _criteria_by_name(cls, v: Any) -> Any:
        return _keyed(v, "criteria")

    @model_validator(mode="after")
    def _check_pages(self) -> QueryDefinition:
        if self.default_page_size <= 0:
            raise ValueError("default_page_size must be positive")
        if self.max_page_size < self.default_page_size:
            raise ValueError("max_page_size must not be smaller than default_page_size")
        if self.query_timeout is not None and self.query_timeout < 0:
            raise ValueError("query_timeout must not be negative")
        return self

    # -- metadata cache ------------------------------------------------------

    @property
    def metadata_cache(self) -> MetadataCache | None:
        return self._metadata_cache

    def has_metadata_cache(self) -> bool:
        cache = self._metadata_cache
        return cache is not None and cache.initialized

    def attach_metadata_cache(self, cache: MetadataCache) -> MetadataCache:
        """Attach *cache* once; later calls keep and return the first cache."""
        with self._cache_lock:
            if self._metadata_cache is None:
                self._metadata_cache = cache
            return self._metadata_cache

    # -- lookups -------------------------------------------------------------

    def get_attribute(self, name: str) -> AttributeDef | None:
        return self.attributes.get(name)

    def regular_attributes(self) -> list[AttributeDef]:
        return [a for a in self.attributes.values() if not a.virtual]

    def virtual_attributes(self) -> list[AttributeDef]:
        return [a for a in self.attributes.values() if a.virtual]

    def has_placeholder(self, name: str) -> bool:
        return name in sqltext.placeholder_names(self.sql)

    def find_by_key_criteria(self) -> CriteriaDef | None:
        for c in self.criteria.values():
            if c.find_by_key:
                return c
        return None

    def ordered_criteria(self) -> list[CriteriaDef]:
        """Criteria by ascending priority; ties keep declaration order."""
        return sorted(self.criteria.values(), key=lambda c: c.priority)


# ---------------------------------------------------------------------------
# Request objects
# ---------------------------------------------------------------------------


class Filter(BaseModel):
    """One attribute filter. Range and set operators are checked on construction."""

    model_config = ConfigDict(frozen=True)

    attribute: str
    op: FilterOpEnum = FilterOpEnum.EQUALS
    value: Any = None
    value2: Any = None
    values: tuple[Any, ...] | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        op = FilterOpEnum.parse(data.get("op") or FilterOpEnum.EQUALS)
        data["op"] = op
        if op.needs_list and data.get("values") is None and data.get("value") is not None:
            value = data.pop("value")
            if isinstance(value, (list, tuple, set, frozenset)):
                data["values"] = tuple(value)
            else:
                data["values"] = (value,)
        return data

    @model_validator(mode="after")
    def _check_operands(self) -> Filter:
        op = self.op
        if op.needs_range:
            if self.value is None or self.value2 is None:
                raise ValueError(
                    f"BETWEEN filter on '{self.attribute}' needs both value and value2"
                )
        elif op.needs_list:
            if self.values is None:
                raise ValueError(f"{op.value} filter on '{self.attribute}' needs a values list")
        elif op.needs_value and self.value is None:
            raise ValueError(f"{op.value} filter on '{self.attribute}' needs a value")
        return self


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    attribute: str
    direction: SortDirEnum = SortDirEnum.ASC

    @field_validator("direction", mode="before")
    @classmethod
    def _parse_direction(cls, v: Any) -> SortDirEnum:
        return SortDirEnum.parse(v)


class Pagination(BaseModel):
    """Half-open row window ``[start, end)``."""

    model_config = ConfigDict(frozen=True)

    start: int = 0
    end: int

    @model_validator(mode="after")
    def _check_window(self) -> Pagination:
        if self.start < 0:
            raise ValueError("Pagination start must not be negative")
        if self.end < self.start:
            raise ValueError("Pagination end must not be before start")
        return self

    @classmethod
    def from_offset_limit(cls, offset: int, limit: int) -> Pagination:
        return cls(start=offset, end=offset + limit)

    @property
    def offset(self) -> int:
        return self.start

    @property
    def limit(self) -> int:
        return self.end - self.start

    @property
    def page_size(self) -> int:
        return self.end - self.start


class AppliedCriteria(BaseModel):
    """Audit entry for a criteria that contributed SQL to an execution."""

    name: str
    sql: str
    params: dict[str, Any] = Field(default_factory=dict)
    security_related: bool = False


# ---------------------------------------------------------------------------
# DataSource - connection settings
# ---------------------------------------------------------------------------


class DataSource(SQLModel):
    """Connection settings for the database a registry's queries run against."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = "default"
    product_type: ProductTypeEnum
    host: str | None = None
    port: int | None = None
    database: str
    username: str | None = None
    password: str | None = None
    use_ssl: bool = False
    description: str | None = None
