"""
Exception hierarchy for the ranking engine.

Errors are split by how the worker loop reacts to them:
- TransientStorageError: contention or I/O, retried with backoff.
- DataIntegrityError: the item's cycle is abandoned and the item stays dirty.
- EventValidationError: rejected at ingestion, nothing is written.
"""


class RankingError(Exception):
    """Base exception for all ranking engine errors."""


class ConfigError(RankingError):
    """Raised when a required configuration key is missing or invalid."""

    def __init__(self, key: str, reason: str = "missing or None"):
        self.key = key
        super().__init__(f"Configuration error for '{key}': {reason}")


class EventValidationError(RankingError):
    """Raised when an incoming event is malformed."""

    def __init__(self, field: str, detail: str):
        self.field = field
        super().__init__(f"Invalid event field '{field}': {detail}")


class StorageError(RankingError):
    """Raised when a SQLite operation fails."""

    def __init__(self, backend: str, detail: str):
        self.backend = backend
        super().__init__(f"Storage error [{backend}]: {detail}")


class TransientStorageError(StorageError):
    """Lock contention or I/O failure; safe to retry."""


class DataIntegrityError(RankingError):
    """Raised when processing an item would corrupt its running statistics."""

    def __init__(self, item_id: str, detail: str):
        self.item_id = item_id
        super().__init__(f"Integrity violation for item '{item_id}': {detail}")
