"""
Custom error classes for the synchronization layer.

Provides structured error handling with error codes,
context information, and proper exception chaining.
"""

import re
from typing import Optional, Dict, Any
from dataclasses import dataclass


@dataclass
class ErrorContext:
    """Error context information."""
    service: str
    operation: str
    table: Optional[str] = None
    resource_key: Optional[str] = None
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = None

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}


class SyncError(Exception):
    """Base exception for synchronization errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        result = {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }

        if self.context:
            result["context"] = {
                "service": self.context.service,
                "operation": self.context.operation,
                "table": self.context.table,
                "resource_key": self.context.resource_key,
                "correlation_id": self.context.correlation_id,
                "metadata": self.context.metadata,
            }

        return result


class BackendError(SyncError):
    """Error raised by a backend read or write."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        error_code: str = "BACKEND_ERROR",
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            context=context,
            details=details or {}
        )
        self.operation = operation
        self.table = table

        if operation:
            self.details["operation"] = operation
        if table:
            self.details["table"] = table


class ConnectivityError(BackendError):
    """Error raised when the backend is unreachable."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            table=table,
            error_code="CONNECTIVITY_ERROR",
            context=context,
            details=details
        )


class ConstraintError(BackendError):
    """Error raised when the backend rejects a write."""

    def __init__(
        self,
        message: str,
        constraint: Optional[str] = None,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        user_message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            table=table,
            error_code="CONSTRAINT_ERROR",
            context=context,
            details=details
        )
        self.constraint = constraint
        self.user_message = user_message or message

        if constraint:
            self.details["constraint"] = constraint


class PermissionError(BackendError):
    """Error raised when an access policy denies the operation."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            operation=operation,
            table=table,
            error_code="PERMISSION_ERROR",
            context=context,
            details=details
        )


class SubscriptionError(SyncError):
    """Error raised when a realtime channel cannot be established or drops."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        attempts: Optional[int] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="SUBSCRIPTION_ERROR",
            context=context,
            details=details or {}
        )
        self.table = table
        self.attempts = attempts

        if table:
            self.details["table"] = table
        if attempts is not None:
            self.details["attempts"] = attempts


class ConfigurationError(SyncError):
    """Error raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[ErrorContext] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code="CONFIGURATION_ERROR",
            context=context,
            details=details or {}
        )
        self.config_key = config_key
        self.config_value = config_value

        if config_key:
            self.details["config_key"] = config_key
        if config_value is not None:
            self.details["config_value"] = str(config_value)


_MISSING_REFERENCE = re.compile(r'is not present in table "(?P<table>[^"]+)"')


def describe_missing_reference(detail: Optional[str]) -> Optional[str]:
    """
    Turn a foreign-key violation detail into an inline message.

    ``Key (location_id)=(7) is not present in table "locations".`` becomes
    ``location does not exist - create it first``.
    """
    if not detail:
        return None
    match = _MISSING_REFERENCE.search(detail)
    if not match:
        return None
    table = match.group("table").split(".")[-1]
    noun = table[:-1] if table.endswith("s") else table
    return f"{noun.replace('_', ' ')} does not exist - create it first"


def create_error_context(
    service: str,
    operation: str,
    table: Optional[str] = None,
    resource_key: Optional[str] = None,
    correlation_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> ErrorContext:
    """Create error context."""
    return ErrorContext(
        service=service,
        operation=operation,
        table=table,
        resource_key=resource_key,
        correlation_id=correlation_id,
        metadata=metadata or {}
    )
