"""Exceptions raised by :mod:`softstore.moderation.services.database`."""


class DatabaseError(RuntimeError):
    """Base for database service exceptions."""


class NoSuchProject(DatabaseError):
    """A request was made for a project that does not exist."""


class TransactionFailed(DatabaseError):
    """Raised when there was a problem committing changes to the database."""


class Unavailable(DatabaseError):
    """The database is not available."""


class ConsistencyError(DatabaseError):
    """Attempted to persist stale or inconsistent state."""
