"""
Analytics Error Taxonomy
========================

**Version**: 1.0.0
**Status**: Active

Error classification and caller-safe messaging for the analytics engine.

WHY THIS FILE EXISTS
--------------------
Failures come from four very different places and callers must be able to
tell them apart without parsing messages:

    1. Validation
       - Pagination out of range
       - Empty-but-present filter arrays
       - Inverted date range
       - Unsupported or duplicated grouping dimensions

    2. Authorization
       - Geographic filter outside the caller's authorized area set

    3. Execution
       - Attempt exceeded the per-attempt timeout
       - Store rejected or failed the query

    4. Programmer errors
       - Anything else (unsupported dimension reaching the compiler, bugs)

This file provides:
- AnalyticsError: base exception with machine-readable code + HTTP status
- ValidationError / AuthorizationDenied / QueryTimeout /
  DatabaseQueryFailed / InternalError: the five kinds callers branch on
- AnalyticsErrorHandler: classifies arbitrary exceptions into the taxonomy

RETRY POLICY
------------
Only QueryTimeout and DatabaseQueryFailed are retryable, and only inside
the executor. Everything else surfaces on first occurrence.

RELATED FILES
-------------
- engagement_analytics/analytics/validator.py: Raises ValidationError
- engagement_analytics/analytics/hierarchy.py: Raises AuthorizationDenied
- engagement_analytics/analytics/executor.py: Raises QueryTimeout / DatabaseQueryFailed
- engagement_analytics/routers/analytics.py: Maps errors to HTTP responses
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, Optional
from enum import Enum
import logging

from sqlalchemy.exc import SQLAlchemyError


# =============================================================================
# LOGGING SETUP
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CLASSIFICATION ENUMS
# =============================================================================

class ErrorCategory(Enum):
    """
    Categories of errors for classification and handling.

    WHAT: Groups error codes by where they originate.

    WHY: Category decides logging level and whether a retry is meaningful.
    """
    VALIDATION = "validation"          # Malformed request
    AUTHORIZATION = "authorization"    # Caller lacks access
    RESOURCE = "resource"              # Database, timeouts
    INTERNAL = "internal"              # Programmer errors


class ErrorSeverity(Enum):
    """Severity levels used when logging errors."""
    WARNING = "warning"            # Caller mistake, nothing broken
    ERROR = "error"                # Operation failed
    CRITICAL = "critical"          # Unexpected state, needs attention


class ErrorCode(Enum):
    """
    Machine-readable error codes.

    WHAT: Stable identifiers surfaced to callers.

    WHY: Callers map codes to messages and status handling; they must not
         depend on message wording.
    """
    VALIDATION_ERROR = "VALIDATION_ERROR"
    GEOGRAPHIC_AUTHORIZATION_DENIED = "GEOGRAPHIC_AUTHORIZATION_DENIED"
    QUERY_TIMEOUT = "QUERY_TIMEOUT"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# BASE EXCEPTION
# =============================================================================

@dataclass(eq=False)
class AnalyticsError(Exception):
    """
    Base exception for every analytics failure.

    WHAT: Carries the error kind, HTTP-equivalent status and diagnostics.

    WHY: One shape for logs, for the HTTP layer, and for tests.

    ATTRIBUTES:
        code: ErrorCode (machine-readable)
        message: Caller-safe message
        category: ErrorCategory
        severity: ErrorSeverity
        status_code: HTTP-equivalent status class
        field_name: Offending request field (validation only)
        details: Structured, caller-safe context
        original_exception: Underlying cause; logged, never sent to callers

    USAGE:
        try:
            wire = await service.get_engagement_metrics(filters, authorized)
        except AnalyticsError as e:
            logger.warning("[ANALYTICS] %s", e, extra=e.to_dict())
            return JSONResponse(status_code=e.status_code, content=e.user_payload())
    """
    code: ErrorCode
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    status_code: int = 500
    field_name: Optional[str] = None
    details: Dict[str, Any] = dataclass_field(default_factory=dict)
    original_exception: Optional[BaseException] = None

    def __str__(self) -> str:
        if self.field_name:
            return f"[{self.code.value}] {self.field_name}: {self.message}"
        return f"[{self.code.value}] {self.message}"

    @property
    def retryable(self) -> bool:
        return self.code in (ErrorCode.QUERY_TIMEOUT, ErrorCode.DATABASE_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        """
        Full representation for logs.

        Includes the underlying cause, so never return this to callers.
        """
        result = {
            "code": self.code.value,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "status_code": self.status_code,
        }

        if self.field_name:
            result["field"] = self.field_name

        if self.details:
            result["details"] = self.details

        if self.original_exception is not None:
            result["cause"] = f"{type(self.original_exception).__name__}: {self.original_exception}"

        return result

    def user_payload(self) -> Dict[str, Any]:
        """
        Caller-safe payload for untrusted callers.

        RETURNS:
            {"error": {"code", "message", "field"?, "details"?}}
        """
        error: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
        }
        if self.field_name:
            error["field"] = self.field_name
        if self.details:
            error["details"] = self.details
        return {"error": error}


# =============================================================================
# ERROR KINDS
# =============================================================================

class ValidationError(AnalyticsError):
    """Malformed request. Never retried."""

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.WARNING,
            status_code=400,
            field_name=field_name,
            details=details or {},
        )


class AuthorizationDenied(AnalyticsError):
    """Caller asked for geographic areas outside their authorized set."""

    def __init__(
        self,
        message: str = "Access denied to requested geographic areas",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=ErrorCode.GEOGRAPHIC_AUTHORIZATION_DENIED,
            message=message,
            category=ErrorCategory.AUTHORIZATION,
            severity=ErrorSeverity.WARNING,
            status_code=403,
            field_name="geographicAreaIds",
            details=details or {},
        )


class QueryTimeout(AnalyticsError):
    """Every attempt of a query exceeded its time bound."""

    def __init__(
        self,
        message: str = "Query execution timeout",
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None,
    ):
        super().__init__(
            code=ErrorCode.QUERY_TIMEOUT,
            message=message,
            category=ErrorCategory.RESOURCE,
            severity=ErrorSeverity.ERROR,
            status_code=504,
            details=details or {},
            original_exception=original_exception,
        )


class DatabaseQueryFailed(AnalyticsError):
    """The store failed the query on every attempt.

    The last underlying cause is kept on ``original_exception`` for logs.
    """

    def __init__(
        self,
        message: str = "Database error occurred",
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None,
    ):
        super().__init__(
            code=ErrorCode.DATABASE_ERROR,
            message=message,
            category=ErrorCategory.RESOURCE,
            severity=ErrorSeverity.ERROR,
            status_code=500,
            details=details or {},
            original_exception=original_exception,
        )


class InternalError(AnalyticsError):
    """Catch-all for programmer errors. Never retried."""

    def __init__(
        self,
        message: str = "Internal server error",
        details: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None,
    ):
        super().__init__(
            code=ErrorCode.INTERNAL_ERROR,
            message=message,
            category=ErrorCategory.INTERNAL,
            severity=ErrorSeverity.CRITICAL,
            status_code=500,
            details=details or {},
            original_exception=original_exception,
        )


# =============================================================================
# ERROR HANDLER
# =============================================================================

class AnalyticsErrorHandler:
    """
    Classifies arbitrary exceptions into the analytics taxonomy.

    WHAT: Turns whatever escaped a pipeline stage into an AnalyticsError.

    WHY: Services must never leak raw driver exceptions to callers, and
         typed errors must pass through untouched.

    USAGE:
        handler = AnalyticsErrorHandler()
        try:
            ...
        except Exception as exc:
            raise handler.classify(exc, context={"stage": "execution"}) from exc

    CLASSIFICATION:
        AnalyticsError        -> unchanged
        asyncio.TimeoutError  -> QueryTimeout
        SQLAlchemyError       -> DatabaseQueryFailed
        anything else         -> InternalError
    """

    def classify(
        self,
        exc: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> AnalyticsError:
        if isinstance(exc, AnalyticsError):
            return exc

        if isinstance(exc, asyncio.TimeoutError):
            return QueryTimeout(original_exception=exc)

        if isinstance(exc, SQLAlchemyError):
            return DatabaseQueryFailed(original_exception=exc)

        return InternalError(
            details={"context": context} if context else None,
            original_exception=exc,
        )

    def log(self, error: AnalyticsError) -> None:
        """Log at a level matching the error severity."""
        if error.severity == ErrorSeverity.WARNING:
            logger.warning("[ANALYTICS] %s", error, extra={"error": error.to_dict()})
        elif error.severity == ErrorSeverity.ERROR:
            logger.error("[ANALYTICS] %s", error, extra={"error": error.to_dict()})
        else:
            logger.critical(
                "[ANALYTICS] %s",
                error,
                extra={"error": error.to_dict()},
                exc_info=error.original_exception,
            )
