"""
Unified exception hierarchy for logdispatch.

Every failure is contained to the sink that produced it; these types exist so
the containment points can log a stable ``code`` and structured ``details``
instead of free-form strings.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LogDispatchError(Exception):
    """Root of all logdispatch errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


class InitializationFailure(LogDispatchError):
    """A sink could not prepare its backing resources.

    The dispatcher excludes the sink and keeps initializing the others.
    """

    def __init__(self, *, sink: str, reason: str) -> None:
        message = f"Sink '{sink}' failed to initialize: {reason}"
        super().__init__(
            message,
            code="SINK_INIT_FAILED",
            details={"sink": sink, "reason": reason},
        )


class WriteFailure(LogDispatchError):
    """A storage append, read or clear failed."""

    def __init__(self, *, operation: str, blob_id: str, reason: str) -> None:
        message = f"Storage {operation} failed for blob '{blob_id}': {reason}"
        super().__init__(
            message,
            code="STORAGE_WRITE_FAILED",
            details={"operation": operation, "blob_id": blob_id, "reason": reason},
        )


class DeliveryFailure(LogDispatchError):
    """The mail transport could not deliver a buffered batch."""

    def __init__(self, *, reason: str, recipient: Optional[str] = None) -> None:
        message = f"Mail delivery failed: {reason}"
        details: Dict[str, Any] = {"reason": reason}
        if recipient:
            details["recipient"] = recipient
        super().__init__(message, code="MAIL_DELIVERY_FAILED", details=details)


class ConfigurationMisuse(LogDispatchError):
    """The dispatcher was used outside its lifecycle.

    Raised only by a strict dispatcher; the default dispatcher logs instead.
    """

    def __init__(self, *, operation: str, reason: str) -> None:
        message = f"Invalid {operation}: {reason}"
        super().__init__(
            message,
            code="CONFIGURATION_MISUSE",
            details={"operation": operation, "reason": reason},
        )


__all__ = [
    "LogDispatchError",
    "InitializationFailure",
    "WriteFailure",
    "DeliveryFailure",
    "ConfigurationMisuse",
]
