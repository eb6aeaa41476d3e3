"""MCP server implementation for Notegraph."""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from notegraph_mcp.config import config
from notegraph_mcp.exceptions import NotegraphError, ValidationError
from notegraph_mcp.models.db_models import init_db
from notegraph_mcp.models.schema import NoteSummary, SearchResult
from notegraph_mcp.observability import metrics, timed_operation
from notegraph_mcp.services.graph_service import GraphService
from notegraph_mcp.services.note_service import NoteService
from notegraph_mcp.services.search_service import UnifiedSearchService
from notegraph_mcp.services.wikilink_parser import validate_wikilink_syntax

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 1_000_000  # 1 MB


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters", field="title"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters",
            field="content",
        )


def _parse_metadata(metadata: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse the JSON object passed as a tool argument."""
    if metadata is None or not metadata.strip():
        return None
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Metadata is not valid JSON: {e.msg}", field="metadata") from e
    if not isinstance(parsed, dict):
        raise ValidationError("Metadata must be a JSON object", field="metadata")
    return parsed


def _format_summaries(heading: str, notes: List[NoteSummary]) -> str:
    if not notes:
        return f"{heading}: none"
    lines = [f"{heading} ({len(notes)}):"]
    for note in notes:
        folder = f" [{note.folder_path}]" if note.folder_path else ""
        lines.append(f"- {note.title} (ID: {note.id}){folder}")
    return "\n".join(lines)


def _format_search_results(query: str, results: List[SearchResult]) -> str:
    if not results:
        return f"No results for '{query}'"
    lines = [f"Found {len(results)} result(s) for '{query}':", ""]
    for i, result in enumerate(results, 1):
        lines.append(f"{i}. [{result.type.value}] {result.title} (ID: {result.id}, score: {result.score})")
        if result.snippet and result.snippet != result.title:
            lines.append(f"   {result.snippet}")
        if result.related:
            if result.related.tasks:
                lines.append(f"   Related tasks: {', '.join(result.related.tasks)}")
            if result.related.notes:
                lines.append(f"   Related notes: {', '.join(result.related.notes)}")
    return "\n".join(lines)


class NotegraphMcpServer:
    """MCP server exposing the note graph."""

    def __init__(self, engine=None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine shared by all services.
                    A new one is created from config when None.
        """
        self.mcp = FastMCP(config.server_name)
        engine = engine if engine is not None else init_db()
        self.note_service = NoteService(engine=engine)
        self.graph_service = GraphService(engine=engine)
        self.search_service = UnifiedSearchService(engine=engine)
        self._register_tools()
        logger.info("Notegraph MCP server initialized")

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors carry a message safe to show; anything else is logged
        with a reference id and reported generically.
        """
        error_id = uuid.uuid4().hex[:8]

        if isinstance(error, NotegraphError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {error}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {error}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        # ---------------------------------------------------------------------
        # Notes
        # ---------------------------------------------------------------------

        @self.mcp.tool(name="ng_create_note")
        def ng_create_note(
            title: str,
            content: str = "",
            folder_path: Optional[str] = None,
            metadata: Optional[str] = None,
        ) -> str:
            """Create a note. [[Wikilinks]] in the content are linked automatically.
            Args:
                title: Title of the note; must be unique ignoring case and extra spaces
                content: Markdown body
                folder_path: Optional folder, e.g. "Work/Projects"
                metadata: Optional JSON object
            """
            with timed_operation("ng_create_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, content=content)
                    note = self.note_service.create_note(
                        title=title,
                        content=content,
                        folder_path=folder_path,
                        metadata=_parse_metadata(metadata),
                    )
                    op["note_id"] = note.id
                    links = self.note_service.get_outgoing_links(note.id)
                    unresolved = sum(1 for link in links if not link.is_resolved)
                    return (
                        f"Note created successfully with ID: {note.id}\n"
                        f"Links: {len(links)} ({unresolved} unresolved)"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_get_note")
        def ng_get_note(identifier: str, include_context: bool = False) -> str:
            """Retrieve a note by ID or title.
            Args:
                identifier: The ID or title of the note
                include_context: Also list backlinks, outgoing links and related tasks
            """
            with timed_operation("ng_get_note", identifier=identifier[:30]) as op:
                try:
                    note = self.note_service.get_note(identifier)
                    if not note:
                        note = self.note_service.get_note_by_title(identifier)
                    if not note:
                        op["found"] = False
                        return f"Note not found: {identifier}"
                    op["found"] = True

                    lines = [f"# {note.title}", f"ID: {note.id}"]
                    if note.folder_path:
                        lines.append(f"Folder: {note.folder_path}")
                    lines.append(f"Created: {note.created_at.isoformat()}")
                    lines.append(f"Updated: {note.updated_at.isoformat()}")
                    if note.metadata:
                        lines.append(f"Metadata: {json.dumps(note.metadata)}")
                    lines.append("")
                    lines.append(note.content)

                    if include_context:
                        context = self.note_service.get_note_full_context(note.id)
                        lines.append("")
                        lines.append(f"## Backlinks ({len(context.backlinks)})")
                        for backlink in context.backlinks:
                            lines.append(
                                f"- {backlink.source_note_title} ({backlink.source_note_id}): "
                                f"{backlink.snippet}"
                            )
                        lines.append(f"## Outgoing links ({len(context.links)})")
                        for link in context.links:
                            target = link.target_note_id or f"unresolved: {link.unresolved_target}"
                            lines.append(f"- [{link.link_type.value}] {target}")
                        lines.append(f"## Related tasks ({len(context.related_tasks)})")
                        for task in context.related_tasks:
                            lines.append(
                                f"- #{task.task_id} {task.task_title} "
                                f"({task.relation_type.value}, relation {task.relation_id})"
                            )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_update_note")
        def ng_update_note(
            note_id: str,
            title: Optional[str] = None,
            content: Optional[str] = None,
            folder_path: Optional[str] = None,
            metadata: Optional[str] = None,
        ) -> str:
            """Update a note. Only the arguments given are changed.
            Args:
                note_id: The ID of the note to update
                title: New title
                content: New markdown body (wikilinks are re-derived)
                folder_path: New folder
                metadata: New metadata as a JSON object
            """
            with timed_operation("ng_update_note", note_id=note_id):
                try:
                    _validate_input_lengths(title=title, content=content)
                    note = self.note_service.update_note(
                        note_id,
                        title=title,
                        content=content,
                        folder_path=folder_path,
                        metadata=_parse_metadata(metadata),
                    )
                    return f"Note updated successfully: {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_delete_note")
        def ng_delete_note(note_id: str) -> str:
            """Delete a note. Links pointing to it become unresolved.
            Args:
                note_id: The ID of the note to delete
            """
            with timed_operation("ng_delete_note", note_id=note_id):
                try:
                    self.note_service.delete_note(note_id)
                    return f"Note deleted successfully: {note_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_list_notes")
        def ng_list_notes(
            folder_path: Optional[str] = None, limit: int = 20, offset: int = 0
        ) -> str:
            """List notes, most recently updated first.
            Args:
                folder_path: Only notes in this folder
                limit: Maximum number of notes (default: 20)
                offset: Notes to skip
            """
            with timed_operation("ng_list_notes") as op:
                try:
                    notes = self.note_service.list_notes(
                        folder_path=folder_path, limit=limit, offset=offset
                    )
                    op["result_count"] = len(notes)
                    return _format_summaries(
                        "Notes",
                        [NoteSummary(id=n.id, title=n.title, folder_path=n.folder_path) for n in notes],
                    )
                except Exception as e:
                    return self.format_error_response(e)

        # ---------------------------------------------------------------------
        # Graph
        # ---------------------------------------------------------------------

        @self.mcp.tool(name="ng_outgoing_links")
        def ng_outgoing_links(note_id: str) -> str:
            """List the notes a note links to; missing notes are marked unresolved.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("ng_outgoing_links", note_id=note_id):
                try:
                    return _format_summaries(
                        "Outgoing links", self.graph_service.outgoing_links(note_id)
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_backlinks")
        def ng_backlinks(note_id: str, with_snippets: bool = True) -> str:
            """List the notes linking to a note.
            Args:
                note_id: The ID of the note
                with_snippets: Show the text around each link
            """
            with timed_operation("ng_backlinks", note_id=note_id):
                try:
                    if not with_snippets:
                        return _format_summaries(
                            "Backlinks", self.graph_service.backlinks(note_id)
                        )
                    items = self.note_service.get_backlinks(note_id)
                    if not items:
                        return "Backlinks: none"
                    lines = [f"Backlinks ({len(items)}):"]
                    for item in items:
                        lines.append(
                            f"- {item.source_note_title} (ID: {item.source_note_id}, "
                            f"{item.link_type.value}): {item.snippet}"
                        )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_neighbors")
        def ng_neighbors(note_id: str, depth: int = 1) -> str:
            """Notes within `depth` link hops of a note, following links both ways.
            Args:
                note_id: The ID of the starting note
                depth: Maximum number of hops (capped at the configured maximum)
            """
            with timed_operation("ng_neighbors", note_id=note_id, depth=depth) as op:
                try:
                    depth = min(depth, config.max_neighbor_depth)
                    result = self.graph_service.neighbors(note_id, depth)
                    op["result_count"] = len(result.nodes)
                    if not result.nodes:
                        return f"Note not found: {note_id}"
                    lines = [f"Nodes ({len(result.nodes)}):"]
                    for node in result.nodes:
                        lines.append(f"- [depth {node.depth}] {node.title} (ID: {node.note_id})")
                    lines.append(f"Edges ({len(result.edges)}):")
                    for edge in result.edges:
                        lines.append(
                            f"- {edge.source_note_id} -> {edge.target_note_id} ({edge.link_type.value})"
                        )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_unresolved_links")
        def ng_unresolved_links(detailed: bool = False) -> str:
            """List titles that are linked to but have no note yet, most linked first.
            Args:
                detailed: List every unresolved link with the note containing it
            """
            with timed_operation("ng_unresolved_links"):
                try:
                    if detailed:
                        occurrences = self.note_service.get_unresolved_link_occurrences()
                        if not occurrences:
                            return "No unresolved links"
                        lines = [f"Unresolved links ({len(occurrences)}):"]
                        for occurrence in occurrences:
                            lines.append(
                                f"- {occurrence.unresolved_target} ({occurrence.link_type.value}) "
                                f"in {occurrence.source_note_title} (ID: {occurrence.source_note_id})"
                            )
                        return "\n".join(lines)

                    groups = self.graph_service.unresolved_links()
                    if not groups:
                        return "No unresolved links"
                    lines = [f"Unresolved links ({len(groups)}):"]
                    for group in groups:
                        lines.append(
                            f"- {group.missing_title}: {group.count} link(s), e.g. from {group.source_note_id}"
                        )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_orphan_notes")
        def ng_orphan_notes() -> str:
            """List notes with no links in or out."""
            with timed_operation("ng_orphan_notes"):
                try:
                    return _format_summaries("Orphan notes", self.graph_service.orphan_notes())
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_connected_notes")
        def ng_connected_notes() -> str:
            """List notes with at least one link in or out."""
            with timed_operation("ng_connected_notes"):
                try:
                    return _format_summaries(
                        "Connected notes", self.graph_service.connected_notes()
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_validate_wikilink")
        def ng_validate_wikilink(link_text: str) -> str:
            """Check the text that goes between [[ and ]].
            Args:
                link_text: e.g. "Note Title#Heading"
            """
            result = validate_wikilink_syntax(link_text)
            if result.valid:
                return "Valid wikilink"
            return "Invalid wikilink:\n" + "\n".join(f"- {e}" for e in result.errors)

        # ---------------------------------------------------------------------
        # Task relations
        # ---------------------------------------------------------------------

        @self.mcp.tool(name="ng_create_relation")
        def ng_create_relation(
            task_id: int, note_id: str, relation_type: str = "reference"
        ) -> str:
            """Relate a task to a note.
            Args:
                task_id: The ID of the task
                note_id: The ID of the note
                relation_type: reference, spec, meeting, evidence or derived
            """
            with timed_operation("ng_create_relation", note_id=note_id):
                try:
                    relation_id = self.note_service.create_relation(
                        task_id, note_id, relation_type.lower()
                    )
                    return f"Relation created with ID: {relation_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_delete_relation")
        def ng_delete_relation(relation_id: str) -> str:
            """Delete a task-note relation.
            Args:
                relation_id: The ID of the relation
            """
            with timed_operation("ng_delete_relation"):
                try:
                    self.note_service.delete_relation(relation_id)
                    return f"Relation deleted: {relation_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_related_tasks")
        def ng_related_tasks(note_id: str) -> str:
            """List tasks related to a note, newest first.
            Args:
                note_id: The ID of the note
            """
            with timed_operation("ng_related_tasks", note_id=note_id):
                try:
                    tasks = self.note_service.get_related_tasks(note_id)
                    if not tasks:
                        return "Related tasks: none"
                    lines = [f"Related tasks ({len(tasks)}):"]
                    for task in tasks:
                        lines.append(
                            f"- #{task.task_id} {task.task_title} "
                            f"({task.relation_type.value}, relation {task.relation_id})"
                        )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_related_notes")
        def ng_related_notes(task_id: int) -> str:
            """List notes related to a task, newest first.
            Args:
                task_id: The ID of the task
            """
            with timed_operation("ng_related_notes"):
                try:
                    notes = self.note_service.get_related_notes(task_id)
                    if not notes:
                        return "Related notes: none"
                    lines = [f"Related notes ({len(notes)}):"]
                    for note in notes:
                        lines.append(
                            f"- {note.note_title} (ID: {note.note_id}, "
                            f"{note.relation_type.value}, relation {note.relation_id})"
                        )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        # ---------------------------------------------------------------------
        # Search
        # ---------------------------------------------------------------------

        @self.mcp.tool(name="ng_search")
        def ng_search(
            query: str,
            limit: Optional[int] = None,
            offset: int = 0,
            types: str = "note,task",
            include_related: bool = True,
        ) -> str:
            """Search notes and tasks. Title matches rank above body matches.
            Args:
                query: Text to search for (case-insensitive substring)
                limit: Maximum number of results (default from config)
                offset: Results to skip
                types: Comma-separated subset of "note,task"
                include_related: List related task/note ids with each result
            """
            with timed_operation("ng_search", query=query[:30]) as op:
                try:
                    type_list = [t.strip().lower() for t in types.split(",") if t.strip()]
                    results = self.search_service.search(
                        query,
                        limit=limit,
                        offset=offset,
                        types=type_list,
                        include_related=include_related,
                    )
                    op["result_count"] = len(results)
                    return _format_search_results(query, results)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_quick_search")
        def ng_quick_search(query: str) -> str:
            """Fast search returning only the top few results.
            Args:
                query: Text to search for
            """
            with timed_operation("ng_quick_search", query=query[:30]):
                try:
                    return _format_search_results(query, self.search_service.quick_search(query))
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="ng_status")
        def ng_status() -> str:
            """Show operation counts and error rates since the server started."""
            summary = metrics.get_summary()
            lines = [
                f"Uptime: {summary['uptime_seconds']:.0f}s",
                f"Operations: {summary['total_operations']} ({summary['total_errors']} failed)",
            ]
            for name, stats in sorted(metrics.get_metrics().items()):
                lines.append(
                    f"- {name}: {stats['count']} call(s), avg {stats['avg_duration_ms']}ms, "
                    f"{stats['error_count']} error(s)"
                )
            return "\n".join(lines)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
