"""Storage layer for the Notegraph MCP server."""

from notegraph_mcp.storage.base import Repository
from notegraph_mcp.storage.link_repository import LinkRepository
from notegraph_mcp.storage.note_repository import NoteRepository
from notegraph_mcp.storage.relation_repository import RelationRepository
from notegraph_mcp.storage.task_repository import TaskRepository

__all__ = [
    "Repository",
    "NoteRepository",
    "LinkRepository",
    "RelationRepository",
    "TaskRepository",
]
