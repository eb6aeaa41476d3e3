# tests/test_mcp_server.py
"""Tests for the MCP server implementation."""
import datetime
from datetime import timezone
from unittest.mock import MagicMock, patch

from notegraph_mcp.exceptions import NoteNotFoundError, StorageError, ValidationError
from notegraph_mcp.models.schema import (
    GraphEdge,
    GraphNode,
    LinkType,
    NeighborsResult,
    Note,
    NoteLink,
    NoteSummary,
    RelatedEntities,
    SearchResult,
    SearchResultType,
    UnresolvedLinkGroup,
    UnresolvedLinkOccurrence,
)
from notegraph_mcp.server.mcp_server import NotegraphMcpServer


class TestMcpServer:
    """Tests for the NotegraphMcpServer class."""

    def setup_method(self):
        """Set up test environment before each test."""
        # Capture the tool decorator functions when registering
        self.registered_tools = {}
        self.mock_mcp = MagicMock()

        def mock_tool_decorator(*args, **kwargs):
            def tool_wrapper(func):
                self.registered_tools[kwargs.get("name")] = func
                return func
            return tool_wrapper
        self.mock_mcp.tool = mock_tool_decorator

        self.mock_note_service = MagicMock()
        self.mock_graph_service = MagicMock()
        self.mock_search_service = MagicMock()

        self.patchers = [
            patch("notegraph_mcp.server.mcp_server.FastMCP", return_value=self.mock_mcp),
            patch("notegraph_mcp.server.mcp_server.init_db", return_value=MagicMock()),
            patch(
                "notegraph_mcp.server.mcp_server.NoteService",
                return_value=self.mock_note_service,
            ),
            patch(
                "notegraph_mcp.server.mcp_server.GraphService",
                return_value=self.mock_graph_service,
            ),
            patch(
                "notegraph_mcp.server.mcp_server.UnifiedSearchService",
                return_value=self.mock_search_service,
            ),
        ]
        for patcher in self.patchers:
            patcher.start()

        self.server = NotegraphMcpServer()

    def teardown_method(self):
        """Clean up after each test."""
        for patcher in self.patchers:
            patcher.stop()

    def test_all_tools_registered(self):
        expected = {
            "ng_create_note", "ng_get_note", "ng_update_note", "ng_delete_note",
            "ng_list_notes", "ng_outgoing_links", "ng_backlinks", "ng_neighbors",
            "ng_unresolved_links", "ng_orphan_notes", "ng_connected_notes",
            "ng_validate_wikilink", "ng_create_relation", "ng_delete_relation",
            "ng_related_tasks", "ng_related_notes", "ng_search", "ng_quick_search",
            "ng_status",
        }
        assert expected <= set(self.registered_tools)

    def test_create_note_tool(self):
        mock_note = MagicMock()
        mock_note.id = "note123"
        self.mock_note_service.create_note.return_value = mock_note
        self.mock_note_service.get_outgoing_links.return_value = [
            NoteLink(source_note_id="note123", target_note_id="other"),
            NoteLink(source_note_id="note123", unresolved_target="Missing"),
        ]

        result = self.registered_tools["ng_create_note"](
            title="Test Note",
            content="[[Other]] [[Missing]]",
            folder_path="Work",
            metadata='{"tags": ["a"]}',
        )

        assert "successfully" in result
        assert "note123" in result
        assert "Links: 2 (1 unresolved)" in result
        self.mock_note_service.create_note.assert_called_with(
            title="Test Note",
            content="[[Other]] [[Missing]]",
            folder_path="Work",
            metadata={"tags": ["a"]},
        )

    def test_create_note_rejects_bad_metadata(self):
        result = self.registered_tools["ng_create_note"](title="T", metadata="[1, 2]")
        assert result.startswith("Error:")
        assert "JSON object" in result
        self.mock_note_service.create_note.assert_not_called()

    def test_create_note_rejects_long_title(self):
        result = self.registered_tools["ng_create_note"](title="x" * 501)
        assert "maximum length" in result

    def test_get_note_falls_back_to_title(self):
        now = datetime.datetime(2024, 1, 1, tzinfo=timezone.utc)
        note = Note(id="n1", title="Found", content="Body text", created_at=now, updated_at=now)
        self.mock_note_service.get_note.return_value = None
        self.mock_note_service.get_note_by_title.return_value = note

        result = self.registered_tools["ng_get_note"](identifier="Found")

        assert "# Found" in result
        assert "ID: n1" in result
        assert "Body text" in result
        self.mock_note_service.get_note_by_title.assert_called_with("Found")

    def test_get_note_not_found(self):
        self.mock_note_service.get_note.return_value = None
        self.mock_note_service.get_note_by_title.return_value = None
        assert "Note not found" in self.registered_tools["ng_get_note"](identifier="nope")

    def test_delete_note_reports_missing(self):
        self.mock_note_service.delete_note.side_effect = NoteNotFoundError("gone")
        result = self.registered_tools["ng_delete_note"](note_id="gone")
        assert result == "Error: Note with ID 'gone' not found"

    def test_outgoing_links_tool(self):
        self.mock_graph_service.outgoing_links.return_value = [
            NoteSummary(id="n2", title="Target"),
            NoteSummary.unresolved("Missing"),
        ]
        result = self.registered_tools["ng_outgoing_links"](note_id="n1")
        assert "Outgoing links (2):" in result
        assert "unresolved:Missing" in result

    def test_neighbors_depth_is_capped(self):
        self.mock_graph_service.neighbors.return_value = NeighborsResult(
            nodes=[
                GraphNode(note_id="a", title="A", depth=0),
                GraphNode(note_id="b", title="B", depth=1),
            ],
            edges=[GraphEdge(source_note_id="a", target_note_id="b", link_type=LinkType.HEADING)],
        )
        result = self.registered_tools["ng_neighbors"](note_id="a", depth=500)

        self.mock_graph_service.neighbors.assert_called_with("a", 10)
        assert "[depth 1] B (ID: b)" in result
        assert "a -> b (heading)" in result

    def test_neighbors_negative_depth_is_an_error(self):
        self.mock_graph_service.neighbors.side_effect = ValidationError("Depth must be non-negative")
        result = self.registered_tools["ng_neighbors"](note_id="a", depth=-1)
        assert result == "Error: Depth must be non-negative"

    def test_unresolved_links_tool(self):
        self.mock_graph_service.unresolved_links.return_value = [
            UnresolvedLinkGroup(missing_title="Missing", source_note_id="n1", count=3)
        ]
        self.mock_note_service.get_unresolved_link_occurrences.return_value = [
            UnresolvedLinkOccurrence(
                link_id=1,
                source_note_id="n1",
                source_note_title="Source",
                unresolved_target="Missing",
                link_type=LinkType.BLOCK,
            )
        ]
        tool = self.registered_tools["ng_unresolved_links"]
        assert "- Missing: 3 link(s), e.g. from n1" in tool()
        assert "- Missing (block) in Source (ID: n1)" in tool(detailed=True)

    def test_validate_wikilink_tool(self):
        tool = self.registered_tools["ng_validate_wikilink"]
        assert tool(link_text="Note#Heading") == "Valid wikilink"
        assert "Cannot have both" in tool(link_text="Note#H^b")

    def test_create_relation_lowercases_type(self):
        self.mock_note_service.create_relation.return_value = "rel1"
        result = self.registered_tools["ng_create_relation"](
            task_id=3, note_id="n1", relation_type="SPEC"
        )
        assert "rel1" in result
        self.mock_note_service.create_relation.assert_called_with(3, "n1", "spec")

    def test_search_tool_splits_types(self):
        self.mock_search_service.search.return_value = [
            SearchResult(
                id="n1",
                type=SearchResultType.NOTE,
                title="Graph",
                snippet="Graph",
                score=100,
                related=RelatedEntities(tasks=["4"]),
            )
        ]
        result = self.registered_tools["ng_search"](query="graph", types="note, TASK")

        self.mock_search_service.search.assert_called_with(
            "graph", limit=None, offset=0, types=["note", "task"], include_related=True
        )
        assert "[note] Graph (ID: n1, score: 100)" in result
        assert "Related tasks: 4" in result

    def test_search_tool_no_results(self):
        self.mock_search_service.quick_search.return_value = []
        assert self.registered_tools["ng_quick_search"](query="zzz") == "No results for 'zzz'"

    def test_storage_errors_are_reported(self):
        self.mock_graph_service.orphan_notes.side_effect = StorageError(
            "Storage operation 'list_notes' failed", operation="list_notes"
        )
        result = self.registered_tools["ng_orphan_notes"]()
        assert result == "Error: Storage operation 'list_notes' failed"

    def test_unexpected_errors_are_not_leaked(self):
        self.mock_graph_service.connected_notes.side_effect = RuntimeError("secret path")
        result = self.registered_tools["ng_connected_notes"]()
        assert "secret path" not in result
        assert "unexpected error" in result

    def test_status_tool(self):
        assert "Uptime:" in self.registered_tools["ng_status"]()

    def test_run(self):
        self.server.run()
        self.mock_mcp.run.assert_called_once()
