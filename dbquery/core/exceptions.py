"""
Error taxonomy for the query engine.

Every engine error carries an :class:`ErrorCode` and, where known, the name of
the query it belongs to, so callers can build a structured failure without
parsing messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable error codes surfaced in failed results."""

    QUERY_NOT_FOUND = "QRY001"
    EXECUTION_ERROR = "QRY002"
    TIMEOUT = "QRY003"
    SECURITY_VIOLATION = "QRY004"
    DEFINITION_ERROR = "QRY005"
    VALIDATION_ERROR = "QRY006"
    SQL_ERROR = "QRY007"
    PARAMETER_ERROR = "QRY008"


class QueryError(Exception):
    """Base class for engine errors."""

    code: ErrorCode = ErrorCode.EXECUTION_ERROR

    def __init__(
        self,
        message: str,
        *,
        query_name: str | None = None,
        code: ErrorCode | None = None,
    ) -> None:
        self.query_name = query_name
        if code is not None:
            self.code = code
        self.raw_message = message
        if query_name:
            message = f"Query '{query_name}': {message}"
        super().__init__(message)


class QueryNotFoundError(QueryError):
    code = ErrorCode.QUERY_NOT_FOUND


class QueryDefinitionError(QueryError):
    """Invalid definition; raised at registration, never deferred to execution."""

    code = ErrorCode.DEFINITION_ERROR


class QueryValidationError(QueryError):
    """One or more request violations, collected before any SQL runs."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        violations: list[str] | str,
        *,
        query_name: str | None = None,
    ) -> None:
        if isinstance(violations, str):
            violations = [violations]
        self.violations = list(violations)
        super().__init__("; ".join(self.violations), query_name=query_name)


class QueryExecutionError(QueryError):
    code = ErrorCode.EXECUTION_ERROR


class QueryTimeoutError(QueryExecutionError):
    code = ErrorCode.TIMEOUT


class MetadataCacheError(QueryError):
    """Column metadata could not be discovered for one or more definitions."""

    code = ErrorCode.DEFINITION_ERROR

    def __init__(
        self,
        message: str,
        *,
        query_name: str | None = None,
        failed: dict[str, str] | None = None,
    ) -> None:
        self.failed = dict(failed or {})
        super().__init__(message, query_name=query_name)


class ConversionError(ValueError):
    """Raised when a value cannot be coerced to the requested type."""

    pass
