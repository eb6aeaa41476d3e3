"""Ranked substring search across notes and tasks."""

import logging
from typing import Any, Iterable, List, Optional, Sequence, Set, Union

from notegraph_mcp.config import config
from notegraph_mcp.exceptions import ErrorCode, SearchError, StorageError, ValidationError
from notegraph_mcp.models.db_models import get_session_factory, init_db
from notegraph_mcp.models.schema import RelatedEntities, SearchResult, SearchResultType
from notegraph_mcp.observability import traced
from notegraph_mcp.services.snippets import extract_search_snippet
from notegraph_mcp.storage.note_repository import NoteRepository
from notegraph_mcp.storage.relation_repository import RelationRepository
from notegraph_mcp.storage.task_repository import TaskRepository

logger = logging.getLogger(__name__)

TITLE_MATCH_SCORE = 100
BODY_MATCH_SCORE = 50

# Tie-break between equally scored results of different kinds
_TYPE_RANK = {SearchResultType.NOTE: 0, SearchResultType.TASK: 1}

ALL_TYPES = (SearchResultType.NOTE.value, SearchResultType.TASK.value)


class UnifiedSearchService:
    """Search notes and tasks together.

    Matching is a case-insensitive substring test against titles and bodies.
    A title hit scores 100 and a body-only hit scores 50. Results are sorted
    by score, notes before tasks on equal scores, and otherwise keep the
    most-recently-updated-first order of their source.
    """

    def __init__(
        self,
        engine: Optional[Any] = None,
        note_repository: Optional[NoteRepository] = None,
        task_repository: Optional[TaskRepository] = None,
        relation_repository: Optional[RelationRepository] = None,
    ):
        if engine is None and None in (note_repository, task_repository, relation_repository):
            engine = init_db()
        session_factory = get_session_factory(engine) if engine is not None else None
        self.notes = note_repository or NoteRepository(session_factory)
        self.tasks = task_repository or TaskRepository(session_factory)
        self.relations = relation_repository or RelationRepository(session_factory)

    @staticmethod
    def _validate_types(types: Iterable[Union[str, SearchResultType]]) -> Set[SearchResultType]:
        wanted = set()
        for value in types:
            try:
                wanted.add(SearchResultType(value))
            except ValueError:
                raise ValidationError(
                    f"Invalid result type '{value}'. Expected 'note' or 'task'",
                    field="types",
                    value=value,
                    code=ErrorCode.INVALID_RESULT_TYPE,
                ) from None
        return wanted

    def _search_notes(self, query: str) -> List[SearchResult]:
        results = []
        for note in self.notes.search_text(query):
            if query in note.title.lower():
                score, snippet = TITLE_MATCH_SCORE, note.title
            else:
                score = BODY_MATCH_SCORE
                snippet = extract_search_snippet(
                    note.content, query, fallback=note.title,
                    context_chars=config.snippet_context_chars,
                )
            results.append(
                SearchResult(
                    id=note.id,
                    type=SearchResultType.NOTE,
                    title=note.title,
                    snippet=snippet,
                    score=score,
                )
            )
        return results

    def _search_tasks(self, query: str) -> List[SearchResult]:
        results = []
        for task in self.tasks.search_text(query):
            if query in task.title.lower():
                score, snippet = TITLE_MATCH_SCORE, task.title
            else:
                score = BODY_MATCH_SCORE
                snippet = extract_search_snippet(
                    task.description or "", query, fallback=task.title,
                    context_chars=config.snippet_context_chars,
                )
            results.append(
                SearchResult(
                    id=str(task.id),
                    type=SearchResultType.TASK,
                    title=task.title,
                    snippet=snippet,
                    score=score,
                )
            )
        return results

    def _attach_related(self, results: List[SearchResult]) -> None:
        limit = config.related_limit
        for result in results:
            if result.type is SearchResultType.NOTE:
                task_ids = self.relations.get_task_ids_for_note(result.id, limit)
                if task_ids:
                    result.related = RelatedEntities(tasks=[str(t) for t in task_ids])
            else:
                note_ids = self.relations.get_note_ids_for_task(int(result.id), limit)
                if note_ids:
                    result.related = RelatedEntities(notes=note_ids)

    @traced("search")
    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        offset: int = 0,
        types: Sequence[Union[str, SearchResultType]] = ALL_TYPES,
        include_related: bool = True,
    ) -> List[SearchResult]:
        """Search notes and/or tasks.

        Args:
            query: Text to look for. Blank queries return no results without
                touching storage.
            limit: Page size, defaults to ``config.search_default_limit``.
            offset: Results to skip, applied after ranking.
            types: Any of "note" and "task".
            include_related: Attach up to ``config.related_limit`` related
                task ids to note hits and note ids to task hits.

        Raises:
            ValidationError: On unknown types or negative limit/offset.
            SearchError: If reading notes or tasks fails.
        """
        if limit is None:
            limit = config.search_default_limit
        if limit < 0 or offset < 0:
            raise ValidationError(
                "limit and offset must be non-negative",
                code=ErrorCode.INVALID_PAGINATION,
            )
        wanted = self._validate_types(types)

        normalized = (query or "").strip().lower()
        if not normalized:
            return []

        results: List[SearchResult] = []
        try:
            if SearchResultType.NOTE in wanted:
                results.extend(self._search_notes(normalized))
            if SearchResultType.TASK in wanted:
                results.extend(self._search_tasks(normalized))
        except StorageError as e:
            raise SearchError(
                f"Search failed: {e.message}",
                query=normalized,
                code=ErrorCode.SEARCH_FAILED,
            ) from e

        # sort() is stable, so each source's own order survives within ties
        results.sort(key=lambda r: (-r.score, _TYPE_RANK[r.type]))
        page = results[offset:offset + limit]

        if include_related:
            self._attach_related(page)

        logger.debug(f"search({normalized!r}) matched {len(results)}, returning {len(page)}")
        return page

    def quick_search(self, query: str) -> List[SearchResult]:
        """Top results for typeahead; never includes related entities."""
        return self.search(query, limit=config.quick_search_limit, include_related=False)

    def search_notes_only(self, query: str, limit: int = 20) -> List[SearchResult]:
        return self.search(
            query, limit=limit, types=(SearchResultType.NOTE.value,), include_related=False
        )

    def search_tasks_only(self, query: str, limit: int = 20) -> List[SearchResult]:
        return self.search(
            query, limit=limit, types=(SearchResultType.TASK.value,), include_related=False
        )
