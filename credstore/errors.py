"""
Error types for credstore.

This module defines all exception types raised by the entry store:
- CredStoreError: Base exception
- NotFoundError: Entry id does not exist
- ValidationError: Draft or change set rejected, or advisory uniqueness failure
- UnknownFieldError: Unknown field in a draft or change set
- BackendError: Remote store failure or malformed document
- BackendConnectionError: Transport failure or backend not connected

Invariants:
    - All errors inherit from CredStoreError
    - Errors include context for debugging
    - Error messages never contain stored passwords
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class CredStoreError(Exception):
    """Base exception for all credstore errors.

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
        self.code = code or "CREDSTORE_ERROR"
        self.details = details or {}


class NotFoundError(CredStoreError):
    """Entry not found.

    Raised when get_by_id, update or delete target an id that
    is not (or no longer) stored.
    """

    def __init__(self, entry_id: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Entry not found: {entry_id}",
            code="NOT_FOUND",
            details={"entry_id": entry_id},
        )
        self.entry_id = entry_id


class ValidationError(CredStoreError):
    """Validation failed.

    Raised when:
    - A required draft field is missing or blank
    - The website does not look like a URL
    - An update tries to change a bookkeeping field

    Also used for the advisory username/website collision reported
    by the uniqueness validator (never raised by the store itself).
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class UnknownFieldError(ValidationError):
    """Unknown field in a draft or change set.

    Includes suggestions for similar field names.
    """

    def __init__(
        self,
        field_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown entry field '{field_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(msg, field_name=field_name, errors=[msg])
        self.code = "UNKNOWN_FIELD"
        self.details["suggestions"] = suggestions
        self.suggestions = suggestions


class BackendError(CredStoreError):
    """Backend operation failed.

    Raised when:
    - The document-store proxy answers with a non-2xx status
    - A response body is not the expected JSON shape
    - A stored document cannot be decoded into an Entry
    - Atomic serial allocation gives up after repeated contention
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="BACKEND_ERROR",
            details={"status_code": status_code},
        )
        self.status_code = status_code


class BackendConnectionError(BackendError):
    """Backend unreachable or not connected.

    Raised when:
    - The proxy cannot be reached or the request times out
    - A data operation is issued before connect()
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = "CONNECTION_ERROR"
        self.details["address"] = address
        self.address = address
