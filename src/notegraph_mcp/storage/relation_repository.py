"""Repository for task-note relations."""
import logging
from typing import List

from sqlalchemy import delete, select

from notegraph_mcp.exceptions import ErrorCode
from notegraph_mcp.models.db_models import DBNote, DBTask, DBTaskNoteRelation
from notegraph_mcp.models.schema import (
    RelatedNote,
    RelatedTask,
    RelationType,
    TaskNoteRelation,
)
from notegraph_mcp.storage.base import Repository

logger = logging.getLogger(__name__)


class RelationRepository(Repository):
    """Repository for the ``task_note_relations`` table.

    Listings are newest relation first.
    """

    def create(self, relation: TaskNoteRelation) -> TaskNoteRelation:
        with self.storage_errors(
            "create_relation", relation.note_id, ErrorCode.STORAGE_WRITE_FAILED
        ):
            with self.session_factory() as session:
                session.add(
                    DBTaskNoteRelation(
                        id=relation.id,
                        task_id=relation.task_id,
                        note_id=relation.note_id,
                        relation_type=relation.relation_type.value,
                        created_at=relation.created_at,
                    )
                )
                session.commit()
        return relation

    def delete(self, relation_id: str) -> bool:
        """Delete a relation. Returns False when there was nothing to delete."""
        with self.storage_errors(
            "delete_relation", relation_id, ErrorCode.STORAGE_DELETE_FAILED
        ):
            with self.session_factory() as session:
                result = session.execute(
                    delete(DBTaskNoteRelation).where(DBTaskNoteRelation.id == relation_id)
                )
                session.commit()
                return result.rowcount > 0

    def get_related_tasks(self, note_id: str) -> List[RelatedTask]:
        with self.storage_errors("get_related_tasks", note_id):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBTaskNoteRelation, DBTask.title)
                    .join(DBTask, DBTask.id == DBTaskNoteRelation.task_id)
                    .where(DBTaskNoteRelation.note_id == note_id)
                    .order_by(
                        DBTaskNoteRelation.created_at.desc(), DBTaskNoteRelation.id.desc()
                    )
                ).all()
                return [
                    RelatedTask(
                        relation_id=rel.id,
                        task_id=rel.task_id,
                        task_title=title,
                        relation_type=RelationType(rel.relation_type),
                    )
                    for rel, title in rows
                ]

    def get_related_notes(self, task_id: int) -> List[RelatedNote]:
        with self.storage_errors("get_related_notes"):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBTaskNoteRelation, DBNote.title)
                    .join(DBNote, DBNote.id == DBTaskNoteRelation.note_id)
                    .where(DBTaskNoteRelation.task_id == task_id)
                    .order_by(
                        DBTaskNoteRelation.created_at.desc(), DBTaskNoteRelation.id.desc()
                    )
                ).all()
                return [
                    RelatedNote(
                        relation_id=rel.id,
                        note_id=rel.note_id,
                        note_title=title,
                        relation_type=RelationType(rel.relation_type),
                    )
                    for rel, title in rows
                ]

    def get_task_ids_for_note(self, note_id: str, limit: int) -> List[int]:
        """Ids of tasks related to a note, newest relation first, at most ``limit``."""
        with self.storage_errors("get_related_tasks", note_id):
            with self.session_factory() as session:
                return list(
                    session.scalars(
                        select(DBTaskNoteRelation.task_id)
                        .where(DBTaskNoteRelation.note_id == note_id)
                        .order_by(
                            DBTaskNoteRelation.created_at.desc(),
                            DBTaskNoteRelation.id.desc(),
                        )
                        .limit(limit)
                    ).all()
                )

    def get_note_ids_for_task(self, task_id: int, limit: int) -> List[str]:
        """Ids of notes related to a task, newest relation first, at most ``limit``."""
        with self.storage_errors("get_related_notes"):
            with self.session_factory() as session:
                return list(
                    session.scalars(
                        select(DBTaskNoteRelation.note_id)
                        .where(DBTaskNoteRelation.task_id == task_id)
                        .order_by(
                            DBTaskNoteRelation.created_at.desc(),
                            DBTaskNoteRelation.id.desc(),
                        )
                        .limit(limit)
                    ).all()
                )
