"""Storage exceptions.

Every failure raised by a repository derives from ``RepositoryError`` and carries the name of the operation, the
entity type and (where one applies) the key that was being read or written.
"""

from typing import Any, Optional


class RepositoryError(Exception):
    """Base class for all storage failures raised by a repository."""

    def __init__(
        self,
        message: str = "",
        *,
        operation: Optional[str] = None,
        entity_type: Optional[str] = None,
        key: Any = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.entity_type = entity_type
        self.key = key


class DocumentNotFoundError(RepositoryError):
    """Raised when a write references a parent that does not exist (e.g. a content version for a missing page)."""

    pass


class DuplicateInsertError(RepositoryError):
    """Raised when an insert or update would violate a uniqueness constraint."""

    pass


class StorageUnavailableError(RepositoryError):
    """Raised on connection, transport or configuration failures of the backing store."""

    pass


class DataIntegrityError(RepositoryError):
    """Raised when stored data is already inconsistent: two users sharing an email, or unreadable site settings."""

    pass
