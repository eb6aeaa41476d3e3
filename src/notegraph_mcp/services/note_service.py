"""Service layer for notes, their wikilinks and their task relations."""

import logging
from typing import Any, Dict, List, Optional, Union

from notegraph_mcp.config import config
from notegraph_mcp.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    NoteValidationError,
    ValidationError,
)
from notegraph_mcp.models.db_models import get_session_factory, init_db
from notegraph_mcp.models.schema import (
    BacklinkItem,
    Note,
    NoteFullContext,
    NoteLink,
    NoteWithBacklinks,
    RelatedNote,
    RelatedTask,
    RelationType,
    TaskNoteRelation,
    UnresolvedLinkOccurrence,
)
from notegraph_mcp.observability import traced
from notegraph_mcp.services.snippets import extract_wikilink_snippet
from notegraph_mcp.services.wikilink_parser import (
    iter_wikilinks,
    normalize_note_title,
    note_titles_match,
)
from notegraph_mcp.storage.link_repository import LinkRepository
from notegraph_mcp.storage.note_repository import NoteRepository
from notegraph_mcp.storage.relation_repository import RelationRepository

logger = logging.getLogger(__name__)


def _coerce_relation_type(value: Union[str, RelationType]) -> RelationType:
    try:
        return RelationType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in RelationType)
        raise ValidationError(
            f"Invalid relation type '{value}'. Expected one of: {allowed}",
            field="relation_type",
            value=value,
            code=ErrorCode.INVALID_RELATION_TYPE,
        ) from None


class NoteService:
    """Owns every write to notes, note links and task-note relations.

    Links are derived data. Whenever a note body is written its outgoing
    link rows are thrown away and rebuilt from the markdown; whenever a
    note appears (created or renamed) the unresolved links naming it are
    pointed at it; whenever a note is deleted the links pointing at it go
    back to being unresolved.

    Each step runs in its own session. A failure between writing a note and
    re-linking it leaves the note saved with stale links; the next write of
    the body repairs them.
    """

    def __init__(
        self,
        engine: Optional[Any] = None,
        note_repository: Optional[NoteRepository] = None,
        link_repository: Optional[LinkRepository] = None,
        relation_repository: Optional[RelationRepository] = None,
        title_index_enabled: Optional[bool] = None,
    ):
        """Initialize the service.

        Args:
            engine: SQLAlchemy engine shared with the other services. A new
                one is created from config when neither an engine nor
                repositories are given.
            note_repository: Note storage. Built from ``engine`` if None.
            link_repository: Link storage. Built from ``engine`` if None.
            relation_repository: Relation storage. Built from ``engine`` if None.
            title_index_enabled: Override ``config.title_index_enabled``.
        """
        if engine is None and None in (note_repository, link_repository, relation_repository):
            engine = init_db()
        session_factory = get_session_factory(engine) if engine is not None else None

        if title_index_enabled is None:
            title_index_enabled = config.title_index_enabled

        self.notes = note_repository or NoteRepository(
            session_factory, title_index_enabled=title_index_enabled
        )
        self.links = link_repository or LinkRepository(session_factory)
        self.relations = relation_repository or RelationRepository(session_factory)

    # =========================================================================
    # Notes
    # =========================================================================

    def _check_title_available(self, title: str, exclude_id: Optional[str] = None) -> None:
        if not title or not title.strip():
            raise NoteValidationError(
                "Title is required", field="title", code=ErrorCode.NOTE_TITLE_REQUIRED
            )
        existing_id = self.notes.find_id_by_title(title)
        if existing_id is not None and existing_id != exclude_id:
            raise NoteValidationError(
                f"A note titled '{title}' already exists",
                field="title",
                value=title,
                code=ErrorCode.NOTE_ALREADY_EXISTS,
            )

    @traced("create_note")
    def create_note(
        self,
        title: str,
        content: str = "",
        folder_path: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_by: Optional[int] = None,
    ) -> Note:
        """Create a note, link it and resolve links that were waiting for it.

        Args:
            title: Note title; must not collide with an existing title after
                normalization.
            content: Markdown body.
            folder_path: Optional folder.
            metadata: Optional JSON-serializable metadata.
            created_by: Optional creating user.

        Returns:
            The created note.
        """
        self._check_title_available(title)

        note = Note(
            title=title.strip(),
            content=content or "",
            folder_path=folder_path,
            metadata=metadata,
            created_by=created_by,
        )
        created = self.notes.create(note)

        if created.content:
            self._update_note_links(created.id, created.content)
        resolved = self.resolve_links_for_new_note(created.id)
        logger.info(f"Created note {created.id} ({created.title!r}), resolved {resolved} link(s)")
        return created

    def get_note(self, note_id: str) -> Optional[Note]:
        """Retrieve a note by ID."""
        return self.notes.get(note_id)

    def get_note_by_title(self, title: str) -> Optional[Note]:
        """Retrieve a note by normalized title."""
        return self.notes.get_by_title(title)

    def list_notes(
        self,
        folder_path: Optional[str] = None,
        created_by: Optional[int] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Note]:
        if (limit is not None and limit < 0) or offset < 0:
            raise ValidationError(
                "limit and offset must be non-negative",
                code=ErrorCode.INVALID_PAGINATION,
            )
        return self.notes.list(
            folder_path=folder_path, created_by=created_by, limit=limit, offset=offset
        )

    @traced("update_note")
    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        folder_path: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Note:
        """Update the given fields of a note.

        Outgoing links are rebuilt when ``content`` is given. When the title
        changes, unresolved links naming the new title are resolved to this
        note; links already pointing here keep pointing here.
        """
        note = self.notes.get(note_id)
        if not note:
            raise NoteNotFoundError(note_id)

        title_changed = False
        if title is not None:
            self._check_title_available(title, exclude_id=note_id)
            title_changed = not note_titles_match(note.title, title)
            note.title = title.strip()
        if content is not None:
            note.content = content
        if folder_path is not None:
            note.folder_path = folder_path
        if metadata is not None:
            note.metadata = metadata

        updated = self.notes.update(note)

        if content is not None:
            self._update_note_links(updated.id, updated.content)
        if title_changed:
            self.resolve_links_for_new_note(updated.id)
        return updated

    @traced("delete_note")
    def delete_note(self, note_id: str) -> None:
        """Delete a note.

        Links pointing at the note become unresolved links to its title, so
        recreating a note with that title later reconnects them.
        """
        note = self.notes.get(note_id)
        if not note:
            raise NoteNotFoundError(note_id)

        downgraded = self.links.downgrade_incoming(note_id, note.title)
        self.notes.delete(note_id)
        logger.info(f"Deleted note {note_id}; {downgraded} incoming link(s) now unresolved")

    # =========================================================================
    # Link resolution
    # =========================================================================

    def _update_note_links(self, note_id: str, content: str) -> int:
        """Replace the outgoing link rows of a note with those found in ``content``."""
        self.links.delete_outgoing(note_id)

        new_links = []
        for parsed in iter_wikilinks(content):
            target_id = self.notes.find_id_by_title(parsed.note_title)
            new_links.append(
                NoteLink(
                    source_note_id=note_id,
                    target_note_id=target_id,
                    unresolved_target=None if target_id else parsed.note_title,
                    link_type=parsed.link_type,
                )
            )
        count = self.links.create_many(new_links)
        logger.debug(f"Re-linked note {note_id}: {count} link(s)")
        return count

    def resolve_links_for_new_note(self, note_id: str) -> int:
        """Point unresolved links matching this note's title at the note.

        Returns:
            Number of links resolved. Unknown ids resolve nothing.
        """
        note = self.notes.get(note_id)
        if not note or not normalize_note_title(note.title):
            return 0
        return self.links.resolve_unresolved(note_id, note.title)

    def get_outgoing_links(self, note_id: str) -> List[NoteLink]:
        """Raw outgoing link rows of a note, in insertion order."""
        return self.links.get_outgoing(note_id)

    def get_backlinks(self, note_id: str) -> List[BacklinkItem]:
        """Incoming resolved links with a snippet of the linking text.

        One item per link row, ordered by source note title.
        """
        note = self.notes.get(note_id)
        if not note:
            return []
        return [
            BacklinkItem(
                source_note_id=link.source_note_id,
                source_note_title=source_title,
                link_type=link.link_type,
                snippet=extract_wikilink_snippet(
                    source_content,
                    note.title,
                    fallback=source_title,
                    context_chars=config.snippet_context_chars,
                ),
            )
            for link, source_title, source_content in self.links.get_backlink_rows(note_id)
        ]

    def get_note_with_backlinks(self, note_id: str) -> Optional[NoteWithBacklinks]:
        note = self.notes.get(note_id)
        if not note:
            return None
        return NoteWithBacklinks(note=note, backlinks=self.get_backlinks(note_id))

    def get_note_full_context(self, note_id: str) -> Optional[NoteFullContext]:
        """A note with its backlinks, outgoing links and related tasks."""
        note = self.notes.get(note_id)
        if not note:
            return None
        return NoteFullContext(
            note=note,
            backlinks=self.get_backlinks(note_id),
            links=self.links.get_outgoing(note_id),
            related_tasks=self.relations.get_related_tasks(note_id),
        )

    def get_unresolved_link_occurrences(self) -> List[UnresolvedLinkOccurrence]:
        return self.links.get_unresolved_occurrences()

    # =========================================================================
    # Task relations
    # =========================================================================

    def create_relation(
        self,
        task_id: int,
        note_id: str,
        relation_type: Union[str, RelationType] = RelationType.REFERENCE,
    ) -> str:
        """Relate a task to a note.

        Returns:
            The new relation id.
        """
        relation_type = _coerce_relation_type(relation_type)
        if not self.notes.exists(note_id):
            raise NoteNotFoundError(note_id)
        relation = self.relations.create(
            TaskNoteRelation(task_id=task_id, note_id=note_id, relation_type=relation_type)
        )
        return relation.id

    def delete_relation(self, relation_id: str) -> None:
        """Delete a relation. Deleting one that does not exist is not an error."""
        if not self.relations.delete(relation_id):
            logger.debug(f"Relation {relation_id} not found; nothing deleted")

    def get_related_tasks(self, note_id: str) -> List[RelatedTask]:
        return self.relations.get_related_tasks(note_id)

    def get_related_notes(self, task_id: int) -> List[RelatedNote]:
        return self.relations.get_related_notes(task_id)
