"""
Error types for RefDB Server.

This module defines all exception types raised by the core:
- RefDbError: Base exception
- StorageError: Backing-store connectivity or query failure
- NotFoundError: Ref or its head snapshot does not resolve
- HandleServiceError: Collaboration service round trip failed

Invariants:
    - All errors inherit from RefDbError
    - Errors carry a stable code for the transport layer
    - Nothing in the core retries on these errors
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RefDbError(Exception):
    """Base exception for all RefDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REFDB_ERROR"
        self.details = details or {}


class StorageError(RefDbError):
    """Backing-store operation failed.

    Raised when:
    - The database file cannot be opened
    - A query or commit fails
    - The store is busy past its timeout
    """

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation


class NotFoundError(RefDbError):
    """A ref, or the snapshot it points at, does not exist."""

    def __init__(
        self,
        message: str,
        ref_id: Optional[str] = None,
        snapshot_id: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"ref_id": ref_id, "snapshot_id": snapshot_id},
        )
        self.ref_id = ref_id
        self.snapshot_id = snapshot_id


class HandleServiceError(RefDbError):
    """Request to the collaboration service failed.

    Raised when:
    - The channel is closed or the service is unreachable
    - No acknowledgement arrives within the request timeout
    - The service acknowledges with an error
    - The acknowledgement does not have the expected shape
    """

    def __init__(self, message: str, event: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="HANDLE_SERVICE_ERROR",
            details={"event": event},
        )
        self.event = event


__all__ = [
    "RefDbError",
    "StorageError",
    "NotFoundError",
    "HandleServiceError",
]
