"""Store layer exceptions.

``StoreUnavailable`` is the only transient error; callers may retry it with
backoff. The others are definitive answers from the store.
"""

from typing import Any


class RepositoryError(Exception):
    """Base exception for all store errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class EntityNotFoundError(RepositoryError):
    """A document that must exist does not."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} '{entity_id}' not found",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateEntityError(RepositoryError):
    """An insert-if-absent found a document under the same id."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} '{entity_id}' already exists",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ConcurrencyError(RepositoryError):
    """A compare-and-set lost against a concurrent writer.

    The write is conditional on the status, and for participation records
    also on the version, that the caller read.
    """

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_status: str,
        actual_status: str | None,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        message = (
            f"{entity_type} '{entity_id}' changed concurrently: "
            f"expected status '{expected_status}', found '{actual_status}'"
        )
        if expected_version is not None:
            message += f" (expected version {expected_version}, found {actual_version})"
        super().__init__(
            message,
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "expected_status": expected_status,
                "actual_status": actual_status,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.expected_status = expected_status
        self.actual_status = actual_status
        self.expected_version = expected_version
        self.actual_version = actual_version


class StoreUnavailable(RepositoryError):
    """The backing store timed out or could not be reached."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        details = {"error_type": type(original_error).__name__} if original_error else {}
        super().__init__(message, details)
        self.original_error = original_error


__all__ = [
    "RepositoryError",
    "EntityNotFoundError",
    "DuplicateEntityError",
    "ConcurrencyError",
    "StoreUnavailable",
]
