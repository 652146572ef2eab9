"""Domain exceptions for the tracking store.

Infrastructure failures (connection, SQL errors, migrations) are raised as
subclasses of TrackingStoreError so callers can fail a single patron cycle
without catching unrelated exceptions.
"""


class TrackingStoreError(Exception):
    """Base exception for all tracking store errors."""


class StoreConnectionError(TrackingStoreError):
    """Raised when the store is used before connect() or after close()."""

    def __init__(self, message: str = "Database not connected") -> None:
        """Initialize the connection error.

        Args:
            message: Human-readable error message.
        """
        super().__init__(message)


class StorageError(TrackingStoreError):
    """Raised when a write or read against SQLite fails.

    The transaction that raised it has already been rolled back, so no
    partial snapshot cycle or transition batch is visible.
    """

    def __init__(self, operation: str, message: str) -> None:
        """Initialize the storage error.

        Args:
            operation: Store operation that failed.
            message: Underlying database error message.
        """
        self.operation = operation
        super().__init__(f"Storage operation '{operation}' failed: {message}")


class MigrationError(TrackingStoreError):
    """Raised when a schema migration fails."""

    def __init__(self, version: int, message: str) -> None:
        """Initialize the migration error.

        Args:
            version: The migration version that failed.
            message: Human-readable error message.
        """
        self.version = version
        super().__init__(f"Migration {version} failed: {message}")


class DuplicateCycleError(TrackingStoreError):
    """Raised when a patron already has a cycle at the given timestamp.

    Nothing from the rejected cycle is written.
    """

    def __init__(self, patron: str, scraped_at: str) -> None:
        """Initialize the duplicate cycle error.

        Args:
            patron: Patron the cycle belongs to.
            scraped_at: Stored timestamp of the existing cycle.
        """
        self.patron = patron
        self.scraped_at = scraped_at
        super().__init__(f"Patron '{patron}' already has a cycle at {scraped_at}")
