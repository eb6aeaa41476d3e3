"""Repository for wikilink storage and retrieval."""
import logging
from typing import List, Optional, Set, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import aliased

from notegraph_mcp.exceptions import ErrorCode
from notegraph_mcp.models.db_models import DBNote, DBNoteLink
from notegraph_mcp.models.schema import (
    LinkType,
    NoteLink,
    NoteSummary,
    UnresolvedLinkGroup,
    UnresolvedLinkOccurrence,
)
from notegraph_mcp.services.wikilink_parser import normalize_note_title
from notegraph_mcp.storage.base import Repository

logger = logging.getLogger(__name__)


class LinkRepository(Repository):
    """Repository for the ``note_links`` table.

    Rows are derived from note bodies: the service layer replaces a note's
    outgoing rows wholesale whenever its content is written.
    """

    @staticmethod
    def _db_link_to_model(db_link: DBNoteLink) -> NoteLink:
        return NoteLink(
            id=db_link.id,
            source_note_id=db_link.source_note_id,
            target_note_id=db_link.target_note_id,
            unresolved_target=db_link.unresolved_target,
            link_type=LinkType(db_link.link_type),
            created_at=db_link.created_at,
        )

    def create_many(self, links: List[NoteLink]) -> int:
        """Insert link rows in the order given.

        Returns:
            Number of rows inserted.
        """
        if not links:
            return 0
        source_id = links[0].source_note_id
        with self.storage_errors("create_links", source_id, ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                for link in links:
                    session.add(
                        DBNoteLink(
                            source_note_id=link.source_note_id,
                            target_note_id=link.target_note_id,
                            unresolved_target=link.unresolved_target,
                            link_type=link.link_type.value,
                            created_at=link.created_at,
                        )
                    )
                session.commit()
        return len(links)

    def delete_outgoing(self, note_id: str) -> int:
        """Delete every link row whose source is ``note_id``."""
        with self.storage_errors("delete_links", note_id, ErrorCode.STORAGE_DELETE_FAILED):
            with self.session_factory() as session:
                result = session.execute(
                    delete(DBNoteLink).where(DBNoteLink.source_note_id == note_id)
                )
                session.commit()
                return result.rowcount

    def get_outgoing(self, note_id: str) -> List[NoteLink]:
        """Outgoing rows of a note, resolved and unresolved, in insertion order."""
        with self.storage_errors("get_outgoing_links", note_id):
            with self.session_factory() as session:
                db_links = session.scalars(
                    select(DBNoteLink)
                    .where(DBNoteLink.source_note_id == note_id)
                    .order_by(DBNoteLink.id)
                ).all()
                return [self._db_link_to_model(link) for link in db_links]

    def get_outgoing_with_targets(
        self, note_id: str
    ) -> List[Tuple[NoteLink, Optional[NoteSummary]]]:
        """Outgoing rows paired with their target note (None when unresolved)."""
        with self.storage_errors("get_outgoing_links", note_id):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNoteLink, DBNote.id, DBNote.title, DBNote.folder_path)
                    .outerjoin(DBNote, DBNote.id == DBNoteLink.target_note_id)
                    .where(DBNoteLink.source_note_id == note_id)
                    .order_by(DBNoteLink.id)
                ).all()
                return [
                    (
                        self._db_link_to_model(link),
                        NoteSummary(id=tid, title=title, folder_path=folder)
                        if tid is not None
                        else None,
                    )
                    for link, tid, title, folder in rows
                ]

    def get_incoming_with_sources(self, note_id: str) -> List[Tuple[NoteLink, NoteSummary]]:
        """Resolved rows pointing at ``note_id`` paired with their source note."""
        with self.storage_errors("get_incoming_links", note_id):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNoteLink, DBNote.id, DBNote.title, DBNote.folder_path)
                    .join(DBNote, DBNote.id == DBNoteLink.source_note_id)
                    .where(DBNoteLink.target_note_id == note_id)
                    .order_by(DBNoteLink.id)
                ).all()
                return [
                    (
                        self._db_link_to_model(link),
                        NoteSummary(id=sid, title=title, folder_path=folder),
                    )
                    for link, sid, title, folder in rows
                ]

    def get_backlink_rows(self, note_id: str) -> List[Tuple[NoteLink, str, str]]:
        """Incoming resolved rows with the source title and content, by source title."""
        with self.storage_errors("get_backlinks", note_id):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNoteLink, DBNote.title, DBNote.content)
                    .join(DBNote, DBNote.id == DBNoteLink.source_note_id)
                    .where(DBNoteLink.target_note_id == note_id)
                    .order_by(DBNote.title, DBNoteLink.id)
                ).all()
                return [
                    (self._db_link_to_model(link), title, content or "")
                    for link, title, content in rows
                ]

    def get_backlink_sources(self, note_id: str) -> List[NoteSummary]:
        """Distinct notes with at least one resolved link to ``note_id``, by title."""
        with self.storage_errors("get_backlinks", note_id):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNote.id, DBNote.title, DBNote.folder_path)
                    .join(DBNoteLink, DBNoteLink.source_note_id == DBNote.id)
                    .where(DBNoteLink.target_note_id == note_id)
                    .distinct()
                    .order_by(DBNote.title, DBNote.id)
                ).all()
        return [NoteSummary(id=i, title=t, folder_path=f) for i, t, f in rows]

    def downgrade_incoming(self, note_id: str, title: str) -> int:
        """Turn resolved links to ``note_id`` into unresolved links to ``title``.

        Link kinds are kept. Returns the number of rows changed.
        """
        with self.storage_errors("unresolve_links", note_id, ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                result = session.execute(
                    update(DBNoteLink)
                    .where(DBNoteLink.target_note_id == note_id)
                    .values(target_note_id=None, unresolved_target=title)
                )
                session.commit()
                return result.rowcount

    def resolve_unresolved(self, note_id: str, title: str) -> int:
        """Point every unresolved link whose text matches ``title`` at ``note_id``.

        Matching is on normalized titles, so it runs over the distinct
        unresolved texts in Python rather than in SQL.
        """
        wanted = normalize_note_title(title)
        with self.storage_errors("resolve_links", note_id, ErrorCode.STORAGE_WRITE_FAILED):
            with self.session_factory() as session:
                candidates = session.scalars(
                    select(DBNoteLink.unresolved_target)
                    .where(DBNoteLink.unresolved_target.is_not(None))
                    .distinct()
                ).all()
                matching = [t for t in candidates if normalize_note_title(t) == wanted]
                if not matching:
                    return 0
                result = session.execute(
                    update(DBNoteLink)
                    .where(DBNoteLink.unresolved_target.in_(matching))
                    .values(target_note_id=note_id, unresolved_target=None)
                )
                session.commit()
                return result.rowcount

    def get_unresolved_groups(self) -> List[UnresolvedLinkGroup]:
        """Unresolved rows grouped by their exact text, most frequent first."""
        count_col = func.count(DBNoteLink.id).label("occurrences")
        with self.storage_errors("get_unresolved_links"):
            with self.session_factory() as session:
                rows = session.execute(
                    select(
                        DBNoteLink.unresolved_target,
                        func.min(DBNoteLink.source_note_id),
                        count_col,
                    )
                    .where(DBNoteLink.unresolved_target.is_not(None))
                    .group_by(DBNoteLink.unresolved_target)
                    .order_by(count_col.desc(), DBNoteLink.unresolved_target)
                ).all()
        return [
            UnresolvedLinkGroup(missing_title=title, source_note_id=source, count=count)
            for title, source, count in rows
        ]

    def get_unresolved_occurrences(self) -> List[UnresolvedLinkOccurrence]:
        source = aliased(DBNote)
        with self.storage_errors("get_unresolved_links"):
            with self.session_factory() as session:
                rows = session.execute(
                    select(DBNoteLink, source.title)
                    .join(source, source.id == DBNoteLink.source_note_id)
                    .where(DBNoteLink.unresolved_target.is_not(None))
                    .order_by(DBNoteLink.unresolved_target, source.title, DBNoteLink.id)
                ).all()
        return [
            UnresolvedLinkOccurrence(
                link_id=link.id,
                source_note_id=link.source_note_id,
                source_note_title=source_title,
                unresolved_target=link.unresolved_target,
                link_type=LinkType(link.link_type),
            )
            for link, source_title in rows
        ]

    def find_connected_note_ids(self) -> Set[str]:
        """Ids of notes with any outgoing row or any incoming resolved row."""
        with self.storage_errors("find_connected_notes"):
            with self.session_factory() as session:
                linked_as_source = set(
                    session.scalars(select(DBNoteLink.source_note_id).distinct()).all()
                )
                linked_as_target = set(
                    session.scalars(
                        select(DBNoteLink.target_note_id)
                        .where(DBNoteLink.target_note_id.is_not(None))
                        .distinct()
                    ).all()
                )
        return linked_as_source | linked_as_target
