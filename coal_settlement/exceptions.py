"""Typed errors raised by the settlement services.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer answers with, so routes never inspect messages.
"""

from __future__ import annotations

from typing import Optional


class SettlementError(Exception):
    code = "SETTLEMENT_ERROR"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SettlementError):
    """A required field is missing or malformed."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(SettlementError):
    """The operation targets an id that does not exist."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class StorageError(SettlementError):
    """The persistence layer failed; the enclosing transaction was rolled back."""

    code = "STORAGE_ERROR"
    status_code = 500


__all__ = ["SettlementError", "ValidationError", "NotFoundError", "StorageError"]
