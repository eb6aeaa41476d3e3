"""Read-only access to the external tasks table."""
import logging
from typing import List, Optional

from sqlalchemy import or_, select

from notegraph_mcp.models.db_models import DBTask
from notegraph_mcp.models.schema import Task, ensure_timezone_aware
from notegraph_mcp.storage.base import Repository
from notegraph_mcp.utils import escape_like_pattern

logger = logging.getLogger(__name__)


class TaskRepository(Repository):
    """Tasks are owned by another subsystem; this repository never writes them."""

    @staticmethod
    def _db_task_to_model(db_task: DBTask) -> Task:
        return Task(
            id=db_task.id,
            title=db_task.title,
            description=db_task.description,
            updated_at=ensure_timezone_aware(db_task.updated_at),
        )

    def get(self, task_id: int) -> Optional[Task]:
        with self.storage_errors("get_task"):
            with self.session_factory() as session:
                db_task = session.get(DBTask, task_id)
                return self._db_task_to_model(db_task) if db_task else None

    def search_text(self, query: str) -> List[Task]:
        """Tasks whose title or description contains ``query`` (case-insensitive).

        Ordered by most recently updated first. SQLite's LIKE only folds ASCII
        case, so non-ASCII queries are matched in Python instead.
        """
        statement = select(DBTask).order_by(DBTask.updated_at.desc(), DBTask.id.desc())
        if query.isascii():
            pattern = f"%{escape_like_pattern(query)}%"
            statement = statement.where(
                or_(
                    DBTask.title.ilike(pattern, escape="\\"),
                    DBTask.description.ilike(pattern, escape="\\"),
                )
            )
        with self.storage_errors("search_tasks"):
            with self.session_factory() as session:
                tasks = [self._db_task_to_model(db) for db in session.scalars(statement)]
        if query.isascii():
            return tasks
        wanted = query.lower()
        return [
            t for t in tasks
            if wanted in t.title.lower() or wanted in (t.description or "").lower()
        ]
