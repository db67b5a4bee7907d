"""
Process Health - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

All exceptions for the health monitoring package:
- HealthMonitorError: Base exception
- SourceUnavailable: Process manager cannot be reached
- StorageUnavailable: Persistence layer read/write failure
- InvalidPeriodToken: Unrecognised historical period
- ProcessNotFound: No history and no live match for a process
- ConfigurationError: Invalid configuration

============================================================
FAILURE SAFETY
============================================================

- The monitor loop never propagates errors (log and continue)
- Storage write failures are logged and dropped
- Storage read failures reach the caller as StorageUnavailable
- SourceUnavailable degrades to "no live data" wherever
  persisted history can still answer

============================================================
"""

from typing import Any, Dict, List, Optional


class HealthMonitorError(Exception):
    """
    Base exception for health monitoring errors.

    All health monitoring exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging and API error bodies."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class SourceUnavailable(HealthMonitorError):
    """
    Raised when the process manager cannot be reached.

    Means "zero processes, source down", which callers must keep
    distinct from "zero processes, nothing running".
    """

    def __init__(
        self,
        reason: str,
        command: Optional[str] = None,
    ) -> None:
        details = {"reason": reason}
        if command:
            details["command"] = command
        super().__init__(
            message=f"Metric source unavailable: {reason}",
            details=details,
        )
        self.reason = reason


class StorageUnavailable(HealthMonitorError):
    """Raised when the health store cannot be read or written."""

    def __init__(
        self,
        operation: str,
        reason: str,
        key: Optional[str] = None,
    ) -> None:
        details = {"operation": operation, "reason": reason}
        if key is not None:
            details["key"] = key
        super().__init__(
            message=f"Health storage unavailable during {operation}: {reason}",
            details=details,
        )
        self.operation = operation
        self.key = key


class InvalidPeriodToken(HealthMonitorError):
    """Raised when a historical period token is not recognised."""

    def __init__(
        self,
        token: str,
        valid_tokens: Optional[List[str]] = None,
    ) -> None:
        message = f"Invalid period token: {token!r}"
        details: Dict[str, Any] = {"token": token}
        if valid_tokens:
            details["valid_tokens"] = valid_tokens
            message += f". Valid: {', '.join(valid_tokens)}"
        super().__init__(message=message, details=details)
        self.token = token


class ProcessNotFound(HealthMonitorError):
    """
    Raised when a process has no history and no live match.

    This is an expected outcome, not a system failure.
    """

    def __init__(self, process_id: int) -> None:
        super().__init__(
            message=f"Process not found: {process_id}",
            details={"process_id": process_id},
        )
        self.process_id = process_id


class ConfigurationError(HealthMonitorError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        parameter: str,
        value: Any,
        reason: str,
    ) -> None:
        super().__init__(
            message=f"Invalid configuration '{parameter}={value}': {reason}",
            details={
                "parameter": parameter,
                "value": str(value),
                "reason": reason,
            },
        )
        self.parameter = parameter
