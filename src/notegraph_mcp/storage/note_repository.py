"""Repository for note storage and retrieval."""
import json
import logging
from threading import Lock
from typing import Dict, List, Optional

from sqlalchemy import delete, or_, select

from notegraph_mcp.exceptions import ErrorCode
from notegraph_mcp.models.db_models import DBNote, DBNoteLink, DBTaskNoteRelation
from notegraph_mcp.models.schema import Note, NoteSummary, utc_now
from notegraph_mcp.services.wikilink_parser import normalize_note_title
from notegraph_mcp.storage.base import Repository
from notegraph_mcp.utils import escape_like_pattern

logger = logging.getLogger(__name__)


class NoteRepository(Repository):
    """Repository for notes.

    Title lookups compare normalized titles. By default every lookup scans
    the (id, title) pairs of all notes; with ``title_index_enabled`` a
    normalized-title map is built on first use and dropped on every write
    made through this repository. Writes made by other processes are not
    seen by the index.
    """

    def __init__(self, session_factory, title_index_enabled: bool = False):
        super().__init__(session_factory)
        self.title_index_enabled = title_index_enabled
        self._title_index: Optional[Dict[str, str]] = None
        self._title_index_lock = Lock()

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        metadata = json.loads(db_note.metadata_json) if db_note.metadata_json else None
        return Note(
            id=db_note.id,
            title=db_note.title,
            folder_path=db_note.folder_path,
            content=db_note.content or "",
            metadata=metadata,
            created_by=db_note.created_by,
            created_at=db_note.created_at,
            updated_at=db_note.updated_at,
        )

    @staticmethod
    def _dump_metadata(note: Note) -> Optional[str]:
        return json.dumps(note.metadata) if note.metadata is not None else None

    def _invalidate_title_index(self) -> None:
        with self._title_index_lock:
            self._title_index = None

    def create(self, note: Note) -> Note:
        """Insert a new note row."""
        with self.storage_errors("create_note", note.id, ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                session.add(
                    DBNote(
                        id=note.id,
                        title=note.title,
                        folder_path=note.folder_path,
                        content=note.content,
                        metadata_json=self._dump_metadata(note),
                        created_by=note.created_by,
                        created_at=note.created_at,
                        updated_at=note.updated_at,
                    )
                )
                session.commit()
        self._invalidate_title_index()
        logger.debug(f"Created note {note.id} ({note.title!r})")
        return note

    def get(self, id: str) -> Optional[Note]:
        """Get a note by ID, or None if it does not exist."""
        with self.storage_errors("get_note", id):
            with self.session_factory() as session:
                db_note = session.get(DBNote, id)
                return self._db_note_to_model(db_note) if db_note else None

    def exists(self, id: str) -> bool:
        with self.storage_errors("get_note", id):
            with self.session_factory() as session:
                return session.scalar(select(DBNote.id).where(DBNote.id == id)) is not None

    def _build_title_index(self) -> Dict[str, str]:
        with self.session_factory() as session:
            rows = session.execute(
                select(DBNote.id, DBNote.title).order_by(DBNote.created_at, DBNote.id)
            ).all()
        index: Dict[str, str] = {}
        for note_id, title in rows:
            index.setdefault(normalize_note_title(title), note_id)
        return index

    def find_id_by_title(self, title: str) -> Optional[str]:
        """Return the id of the note whose normalized title equals ``title``'s."""
        wanted = normalize_note_title(title)
        if not wanted:
            return None
        with self.storage_errors("find_note_by_title"):
            if self.title_index_enabled:
                with self._title_index_lock:
                    if self._title_index is None:
                        self._title_index = self._build_title_index()
                    return self._title_index.get(wanted)

            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNote.id, DBNote.title).order_by(DBNote.created_at, DBNote.id)
                )
                for note_id, note_title in rows:
                    if normalize_note_title(note_title) == wanted:
                        return note_id
        return None

    def get_by_title(self, title: str) -> Optional[Note]:
        note_id = self.find_id_by_title(title)
        return self.get(note_id) if note_id else None

    def list(
        self,
        folder_path: Optional[str] = None,
        created_by: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Note]:
        """List notes, most recently updated first."""
        with self.storage_errors("list_notes"):
            with self.session_factory() as session:
                query = select(DBNote)
                if folder_path is not None:
                    query = query.where(DBNote.folder_path == folder_path)
                if created_by is not None:
                    query = query.where(DBNote.created_by == created_by)
                query = query.order_by(DBNote.updated_at.desc(), DBNote.id.desc())
                if offset > 0:
                    query = query.offset(offset)
                if limit is not None:
                    query = query.limit(limit)
                return [self._db_note_to_model(db) for db in session.scalars(query)]

    def list_summaries(self) -> List[NoteSummary]:
        """Every note as a summary, ordered by title."""
        with self.storage_errors("list_note_summaries"):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNote.id, DBNote.title, DBNote.folder_path).order_by(
                        DBNote.title, DBNote.id
                    )
                ).all()
        return [NoteSummary(id=i, title=t, folder_path=f) for i, t, f in rows]

    def update(self, note: Note) -> Note:
        """Persist every mutable field of ``note`` and bump ``updated_at``.

        A missing row is left alone; callers check existence first.
        """
        note.updated_at = utc_now()
        with self.storage_errors("update_note", note.id, ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                db_note = session.get(DBNote, note.id)
                if db_note is None:
                    return note
                db_note.title = note.title
                db_note.folder_path = note.folder_path
                db_note.content = note.content
                db_note.metadata_json = self._dump_metadata(note)
                db_note.updated_at = note.updated_at
                session.commit()
        self._invalidate_title_index()
        return note

    def delete(self, id: str) -> bool:
        """Delete a note together with its outgoing links and relations.

        Incoming links are not touched here; the caller downgrades them to
        unresolved first.

        Returns:
            True if a note row was deleted.
        """
        with self.storage_errors("delete_note", id, ErrorCode.STORAGE_DELETE_FAILED):
            with self.session_factory() as session:
                session.execute(delete(DBNoteLink).where(DBNoteLink.source_note_id == id))
                session.execute(
                    delete(DBTaskNoteRelation).where(DBTaskNoteRelation.note_id == id)
                )
                result = session.execute(delete(DBNote).where(DBNote.id == id))
                session.commit()
                deleted = result.rowcount > 0
        self._invalidate_title_index()
        return deleted

    def search_text(self, query: str) -> List[Note]:
        """Notes whose title or content contains ``query`` (case-insensitive).

        LIKE wildcards in ``query`` match literally. Ordered by most recently
        updated first. SQLite's LIKE only folds ASCII case, so non-ASCII
        queries are matched in Python instead.
        """
        statement = select(DBNote).order_by(DBNote.updated_at.desc(), DBNote.id.desc())
        if query.isascii():
            pattern = f"%{escape_like_pattern(query)}%"
            statement = statement.where(
                or_(
                    DBNote.title.ilike(pattern, escape="\\"),
                    DBNote.content.ilike(pattern, escape="\\"),
                )
            )
        with self.storage_errors("search_notes"):
            with self.session_factory() as session:
                notes = [self._db_note_to_model(db) for db in session.scalars(statement)]
        if query.isascii():
            return notes
        wanted = query.lower()
        return [n for n in notes if wanted in n.title.lower() or wanted in n.content.lower()]
