"""
Error Hierarchy for the Metric Mesh

Design Principles:
- Storage seams return Result[T, StorageError] instead of raising
- Validation fails fast, before any I/O, by raising ValidationError
- Every error carries a code for programmatic handling and context for logs

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message for logging
- Optional cause chain for root cause analysis
- Timestamp for correlation with log records

Usage:
    result = await store.put(record, expected_seq)
    if result.is_err():
        if result.error.is_condition_failed:
            ...  # lost the CAS race, re-read and retry
        else:
            raise result.error
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage errors
    - 2xxx: Validation errors
    - 3xxx: Query errors
    - 6xxx: Reliability errors
    - 9xxx: Internal/unknown errors
    """

    # Storage errors (1xxx)
    STORAGE_CONNECTION_FAILED = 1001
    STORAGE_TIMEOUT = 1002
    STORAGE_CONDITION_FAILED = 1003
    STORAGE_THROUGHPUT_EXCEEDED = 1004
    STORAGE_CORRUPTION = 1006
    STORAGE_NOT_CONNECTED = 1008

    # Validation errors (2xxx)
    VALIDATION_FAILED = 2001
    VALIDATION_INVALID_OPTION = 2002

    # Query errors (3xxx)
    QUERY_INVALID_STATISTIC = 3001
    QUERY_INVALID_PERIOD = 3002

    # Reliability errors (6xxx)
    RELIABILITY_RETRY_EXHAUSTED = 6002

    # Internal errors (9xxx)
    INTERNAL_ERROR = 9001
    INTERNAL_CONFIGURATION_ERROR = 9002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class MetricMeshError(Exception):
    """
    Base class for all metric mesh errors.

    Provides common infrastructure for error handling:
    - Unique error ID for correlating log lines
    - Error code for programmatic handling
    - Timestamp (epoch nanoseconds)
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp_ns: int = field(default_factory=time.time_ns)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp_ns,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(MetricMeshError):
    """
    Errors from metric store backends.

    `condition_failed` is the only variant the writer retries as a CAS
    collision; `throughput_exceeded` is logged and retried inside the same
    bounded loop; everything else is fatal to the calling operation.
    """

    @property
    def is_condition_failed(self) -> bool:
        return self.code is ErrorCode.STORAGE_CONDITION_FAILED

    @property
    def is_throughput_exceeded(self) -> bool:
        return self.code is ErrorCode.STORAGE_THROUGHPUT_EXCEEDED

    @classmethod
    def condition_failed(
        cls,
        key: str,
        expected_seq: Optional[int],
        current_seq: Optional[int] = None,
    ) -> StorageError:
        """Conditional write rejected: stored seq differs from the expected one."""
        return cls(
            code=ErrorCode.STORAGE_CONDITION_FAILED,
            message=f"Conditional write failed for {key}: expected seq {expected_seq}",
            context={"key": key, "expected_seq": expected_seq, "current_seq": current_seq},
        )

    @classmethod
    def throughput_exceeded(
        cls,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Backend is throttling requests."""
        return cls(
            code=ErrorCode.STORAGE_THROUGHPUT_EXCEEDED,
            message=f"Throughput exceeded during {operation}",
            cause=cause,
            context={"operation": operation},
        )

    @classmethod
    def connection_failed(
        cls,
        host: str,
        port: int,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Store connection failed."""
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Failed to connect to store at {host}:{port}",
            cause=cause,
            context={"host": host, "port": port},
        )

    @classmethod
    def not_connected(cls) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_NOT_CONNECTED,
            message="Store is not connected; call connect() first",
        )

    @classmethod
    def timeout(
        cls,
        operation: str,
        duration_ms: int,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Operation timed out."""
        return cls(
            code=ErrorCode.STORAGE_TIMEOUT,
            message=f"Operation '{operation}' timed out after {duration_ms}ms",
            cause=cause,
            context={"operation": operation, "duration_ms": duration_ms},
        )

    @classmethod
    def corruption(
        cls,
        description: str,
        key: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> StorageError:
        """Stored payload could not be decoded."""
        return cls(
            code=ErrorCode.STORAGE_CORRUPTION,
            message=f"Data corruption detected: {description}",
            cause=cause,
            context={"key": key},
        )

    @classmethod
    def backend(
        cls,
        operation: str,
        cause: BaseException,
    ) -> StorageError:
        """Unclassified backend failure."""
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Store operation '{operation}' failed: {cause}",
            cause=cause,
            context={"operation": operation},
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================
@dataclass
class ValidationError(MetricMeshError):
    """Caller supplied an invalid argument or option."""

    @classmethod
    def invalid_argument(
        cls,
        field: str,
        value: Any,
        reason: str,
    ) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_FAILED,
            message=f"Validation failed for '{field}': {reason}",
            context={"field": field, "value": str(value)[:100], "reason": reason},
        )

    @classmethod
    def invalid_option(
        cls,
        option: str,
        value: Any,
        reason: str,
    ) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_INVALID_OPTION,
            message=f"Invalid '{option}' option: {reason}",
            context={"option": option, "value": str(value)[:100], "reason": reason},
        )


# =============================================================================
# QUERY ERRORS
# =============================================================================
@dataclass
class QueryError(ValidationError):
    """Malformed query parameters."""

    @classmethod
    def invalid_statistic(cls, statistic: Any, reason: str) -> QueryError:
        return cls(
            code=ErrorCode.QUERY_INVALID_STATISTIC,
            message=f"Invalid statistic {statistic!r}: {reason}",
            context={"statistic": str(statistic)},
        )

    @classmethod
    def invalid_period(cls, period: Any) -> QueryError:
        return cls(
            code=ErrorCode.QUERY_INVALID_PERIOD,
            message=f"Query period must be a positive number of seconds, got {period!r}",
            context={"period": str(period)},
        )


# =============================================================================
# RELIABILITY ERRORS
# =============================================================================
@dataclass
class ReliabilityError(MetricMeshError):
    """Errors from the retry subsystem."""

    @classmethod
    def retry_exhausted(
        cls,
        attempts: int,
        last_error: str,
    ) -> ReliabilityError:
        """All retry attempts exhausted."""
        return cls(
            code=ErrorCode.RELIABILITY_RETRY_EXHAUSTED,
            message=f"Retry exhausted after {attempts} attempts: {last_error}",
            context={"attempts": attempts, "last_error": last_error},
        )
