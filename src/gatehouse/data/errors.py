"""Data layer error hierarchy."""

from gatehouse.errors import GatehouseError


class DataError(GatehouseError):
    """Base for all gatehouse.data errors."""


class QueryError(DataError):
    """Raised when a SQL statement fails."""


class MigrationError(DataError):
    """Raised when a migration file is invalid or fails to apply."""
