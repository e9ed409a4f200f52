"""Database exception types."""

class DatabaseError(Exception):
    """Base exception for database operations."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema loading or migration fails."""
    pass

class DatabaseNotInitializedError(DatabaseError):
    """Raised when the store is used before its pool exists."""
    pass
