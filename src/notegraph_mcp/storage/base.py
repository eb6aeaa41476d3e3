"""Shared plumbing for the SQLAlchemy repositories."""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError

from notegraph_mcp.exceptions import ErrorCode, StorageError

logger = logging.getLogger(__name__)


class Repository:
    """Base class for repositories backed by a session factory.

    Each public method opens its own session; nothing spans calls.
    """

    def __init__(self, session_factory):
        """Initialize the repository.

        Args:
            session_factory: SQLAlchemy session factory for database operations.
        """
        self.session_factory = session_factory

    @contextmanager
    def storage_errors(
        self,
        operation: str,
        note_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
    ) -> Iterator[None]:
        """Re-raise any SQLAlchemy failure inside the block as ``StorageError``."""
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(f"Storage failure during {operation} (note_id={note_id}): {e}")
            raise StorageError(
                f"Storage operation '{operation}' failed",
                operation=operation,
                note_id=note_id,
                code=code,
                original_error=e,
            ) from e
