"""
Error taxonomy for the retention engine.

Sparse member history is not an error: scoring degrades to neutral
defaults instead of raising. Only a missing referenced record is fatal to
a single operation, and sweeps isolate every other failure per unit.
"""


class RetentionError(Exception):
    """Base class for all retention engine errors."""


class ConfigurationError(RetentionError, ValueError):
    """Engine configuration is internally inconsistent."""


class NotFound(RetentionError):
    """A referenced membership, alert or intervention does not exist."""

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key


class TransientStoreError(RetentionError):
    """A read or write against the underlying store failed."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class ConflictOnUnique(RetentionError):
    """An active alert already exists for the (membership, alert type) pair."""

    def __init__(self, membership_id: str, alert_type: str):
        super().__init__(
            f"Active {alert_type} alert already exists for membership {membership_id}"
        )
        self.membership_id = membership_id
        self.alert_type = alert_type


class InvalidEscalation(RetentionError):
    """A requested severity change would not raise the alert's severity."""
