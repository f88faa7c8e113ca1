"""Exception types raised by the replication engine."""


class QuoteSyncError(Exception):
    """Base class for engine errors."""


class ConfigError(QuoteSyncError):
    """Table descriptors or schema registry entries are invalid."""


class SchemaEvolutionError(QuoteSyncError):
    """A tracking column could not be added to a replicated table."""

    def __init__(self, table: str, column: str, cause: Exception):
        super().__init__(f"Failed to add {table}.{column}: {cause}")
        self.table = table
        self.column = column
        self.cause = cause


class ConflictNotFoundError(QuoteSyncError):
    """No recorded conflict has the requested id."""
