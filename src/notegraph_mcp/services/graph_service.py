"""Read-only graph queries over the note link table."""
import logging
from collections import deque
from typing import Any, List, Optional, Set

from notegraph_mcp.exceptions import ErrorCode, ValidationError
from notegraph_mcp.models.db_models import get_session_factory, init_db
from notegraph_mcp.models.schema import (
    GraphEdge,
    GraphNode,
    NeighborsResult,
    NoteSummary,
    UnresolvedLinkGroup,
)
from notegraph_mcp.observability import traced
from notegraph_mcp.storage.link_repository import LinkRepository
from notegraph_mcp.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)


class GraphService:
    """Backlinks, neighborhoods, orphans and missing notes.

    Nothing here writes. Queries that take several round trips (neighbors
    in particular) are not isolated from concurrent writes.
    """

    def __init__(
        self,
        engine: Optional[Any] = None,
        note_repository: Optional[NoteRepository] = None,
        link_repository: Optional[LinkRepository] = None,
    ):
        if engine is None and None in (note_repository, link_repository):
            engine = init_db()
        session_factory = get_session_factory(engine) if engine is not None else None
        self.notes = note_repository or NoteRepository(session_factory)
        self.links = link_repository or LinkRepository(session_factory)

    def outgoing_links(self, note_id: str) -> List[NoteSummary]:
        """Targets of a note's links in the order they were written.

        Unresolved targets appear as placeholders whose id is
        ``unresolved:<title>``.
        """
        return [
            target if target is not None else NoteSummary.unresolved(link.unresolved_target)
            for link, target in self.links.get_outgoing_with_targets(note_id)
        ]

    def backlinks(self, note_id: str) -> List[NoteSummary]:
        """Distinct notes linking to ``note_id``, ordered by title."""
        return self.links.get_backlink_sources(note_id)

    @traced("graph.neighbors")
    def neighbors(self, origin_id: str, depth: int) -> NeighborsResult:
        """Breadth-first walk over links in both directions, up to ``depth`` hops.

        Each node appears once, at the depth it was first reached. Nodes at
        the depth limit are reported but not expanded, so ``depth=0`` gives
        just the origin and no edges. Each link row is reported as an edge at
        most once. Unresolved links are not followed.

        Raises:
            ValidationError: If ``depth`` is negative.
        """
        if depth < 0:
            raise ValidationError(
                "Depth must be non-negative",
                field="depth",
                value=depth,
                code=ErrorCode.INVALID_DEPTH,
            )

        origin = self.notes.get(origin_id)
        if origin is None:
            return NeighborsResult()

        nodes = [GraphNode(note_id=origin.id, title=origin.title, depth=0)]
        edges: List[GraphEdge] = []
        visited: Set[str] = {origin.id}
        seen_links: Set[int] = set()
        queue = deque([(origin.id, 0)])

        while queue:
            current_id, current_depth = queue.popleft()
            if current_depth >= depth:
                continue

            outgoing = [
                (link, target)
                for link, target in self.links.get_outgoing_with_targets(current_id)
                if target is not None
            ]
            incoming = self.links.get_incoming_with_sources(current_id)

            for link, other in outgoing + incoming:
                if link.id not in seen_links:
                    seen_links.add(link.id)
                    edges.append(
                        GraphEdge(
                            source_note_id=link.source_note_id,
                            target_note_id=link.target_note_id,
                            link_type=link.link_type,
                        )
                    )
                if other.id not in visited:
                    visited.add(other.id)
                    nodes.append(
                        GraphNode(note_id=other.id, title=other.title, depth=current_depth + 1)
                    )
                    queue.append((other.id, current_depth + 1))

        logger.debug(
            f"neighbors({origin_id}, {depth}): {len(nodes)} node(s), {len(edges)} edge(s)"
        )
        return NeighborsResult(nodes=nodes, edges=edges)

    def unresolved_links(self) -> List[UnresolvedLinkGroup]:
        """Missing notes, most referenced first."""
        return self.links.get_unresolved_groups()

    def orphan_notes(self) -> List[NoteSummary]:
        """Notes with no outgoing links and no resolved incoming links, by title."""
        connected = self.links.find_connected_note_ids()
        return [n for n in self.notes.list_summaries() if n.id not in connected]

    def connected_notes(self) -> List[NoteSummary]:
        """Notes that are not orphans, by title."""
        connected = self.links.find_connected_note_ids()
        return [n for n in self.notes.list_summaries() if n.id in connected]
