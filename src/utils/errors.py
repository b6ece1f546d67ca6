"""
Retrieve task error taxonomy.

Lost claims and stale updates are not exceptions: the store signals them
as "0 rows affected" and the caller logs them.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class RetrieveTaskError(Exception):
    """Base class for retrieve task bookkeeping errors."""
    pass


class ValidationFailure(RetrieveTaskError, ValueError):
    """Raised when a required field is missing or an argument is out of range.
    Nothing has been written when this is raised."""

    def __init__(self, field: str, reason: str = "is required"):
        self.field = field
        self.reason = reason
        super().__init__(f"{field} {reason}")


class PersistenceFailure(RetrieveTaskError):
    """Raised when the backing store is unreachable or rejects a write."""
    pass


@contextmanager
def persistence_errors(operation: str):
    """Re-raise SQLAlchemy errors from the wrapped block as PersistenceFailure."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error("%s failed: %s", operation, str(e))
        raise PersistenceFailure(f"{operation} failed: {e}") from e
