"""Data models for the Notegraph MCP server."""

import datetime
import os
import threading
from datetime import timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Prefix used for the synthetic id of an unresolved outgoing link target
UNRESOLVED_ID_PREFIX = "unresolved:"


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Attach UTC to naive datetimes read back from SQLite.

    SQLite has no timezone-aware column type, so values come back naive even
    though they were written as UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


# Thread-safe counter for uniqueness (seeded from PID for cross-process safety)
_id_lock = threading.Lock()
_last_timestamp = 0
_counter = (os.getpid() * 7) % 1_000_000


def generate_id() -> str:
    """Generate a sortable timestamp-based ID.

    Returns:
        A string "YYYYMMDDTHHMMSSsssssscccccc": the UTC date and time to the
        microsecond followed by a 6-digit counter that disambiguates ids
        produced within the same microsecond.
    """
    global _last_timestamp, _counter

    with _id_lock:
        now = utc_now()
        current_timestamp = int(now.timestamp() * 1_000_000)
        if current_timestamp == _last_timestamp:
            _counter = (_counter + 1) % 1_000_000
        else:
            _last_timestamp = current_timestamp
            _counter = (os.getpid() * 7) % 1_000_000
        return f"{now.strftime('%Y%m%dT%H%M%S')}{now.microsecond:06d}{_counter:06d}"


class LinkType(str, Enum):
    """Kinds of wikilink, by what part of the target they address."""

    WIKILINK = "wikilink"  # [[Title]]
    HEADING = "heading"  # [[Title#Heading]]
    BLOCK = "block"  # [[Title^block-id]]


class RelationType(str, Enum):
    """How a task relates to a note."""

    REFERENCE = "reference"  # Task refers to the note for context
    SPEC = "spec"  # Note specifies the task
    MEETING = "meeting"  # Task came out of meeting notes
    EVIDENCE = "evidence"  # Note is evidence the task is done
    DERIVED = "derived"  # Task was extracted from the note's content


class SearchResultType(str, Enum):
    """Entity kinds returned by unified search."""

    NOTE = "note"
    TASK = "task"


class Note(BaseModel):
    """A markdown note."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title, also the text used in [[Title]] links")
    folder_path: Optional[str] = Field(
        default=None, description="Optional folder hierarchy, e.g. 'Work/Projects'"
    )
    content: str = Field(default="", description="Raw markdown body")
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, description="Free-form metadata stored as JSON"
    )
    created_by: Optional[int] = Field(default=None, description="Creating user")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_timezone_aware(v)


class NoteLink(BaseModel):
    """A stored wikilink occurrence; either resolved or unresolved, never both."""

    id: Optional[int] = Field(default=None, description="Row id, increasing with insertion")
    source_note_id: str
    target_note_id: Optional[str] = None
    unresolved_target: Optional[str] = None
    link_type: LinkType = LinkType.WIKILINK
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_exactly_one_target(self) -> "NoteLink":
        if (self.target_note_id is None) == (self.unresolved_target is None):
            raise ValueError(
                "Exactly one of target_note_id and unresolved_target must be set"
            )
        return self

    @property
    def is_resolved(self) -> bool:
        return self.target_note_id is not None


class TaskNoteRelation(BaseModel):
    """An explicit link between a task and a note."""

    id: str = Field(default_factory=generate_id)
    task_id: int
    note_id: str
    relation_type: RelationType = RelationType.REFERENCE
    created_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class Task(BaseModel):
    """Read-only view of a row in the external tasks table."""

    id: int
    title: str
    description: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None


class NoteSummary(BaseModel):
    """Minimal note reference used by graph queries."""

    id: str
    title: str
    folder_path: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def unresolved(cls, title: str) -> "NoteSummary":
        """Placeholder for a link target that has no note yet."""
        return cls(id=f"{UNRESOLVED_ID_PREFIX}{title}", title=title, folder_path=None)


class GraphNode(BaseModel):
    """A note reached by neighbor traversal, with its hop count from the origin."""

    note_id: str
    title: str
    depth: int = Field(..., ge=0)


class GraphEdge(BaseModel):
    """A resolved link traversed during neighbor traversal."""

    source_note_id: str
    target_note_id: str
    link_type: LinkType


class NeighborsResult(BaseModel):
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class UnresolvedLinkGroup(BaseModel):
    """All unresolved links sharing one missing title."""

    missing_title: str
    source_note_id: str = Field(..., description="One note containing the link")
    count: int


class UnresolvedLinkOccurrence(BaseModel):
    """A single unresolved link row together with its source note title."""

    link_id: int
    source_note_id: str
    source_note_title: str
    unresolved_target: str
    link_type: LinkType


class BacklinkItem(BaseModel):
    """An incoming link with the text surrounding it in the source note."""

    source_note_id: str
    source_note_title: str
    link_type: LinkType
    snippet: str


class RelatedTask(BaseModel):
    relation_id: str
    task_id: int
    task_title: str
    relation_type: RelationType


class RelatedNote(BaseModel):
    relation_id: str
    note_id: str
    note_title: str
    relation_type: RelationType


class NoteWithBacklinks(BaseModel):
    note: Note
    backlinks: List[BacklinkItem] = Field(default_factory=list)


class NoteFullContext(BaseModel):
    """A note with everything that points at or from it."""

    note: Note
    backlinks: List[BacklinkItem] = Field(default_factory=list)
    links: List[NoteLink] = Field(default_factory=list)
    related_tasks: List[RelatedTask] = Field(default_factory=list)


class RelatedEntities(BaseModel):
    notes: List[str] = Field(default_factory=list)
    tasks: List[str] = Field(default_factory=list)


class SearchResult(BaseModel):
    """One ranked hit from unified search."""

    id: str
    type: SearchResultType
    title: str
    snippet: str
    score: int
    related: Optional[RelatedEntities] = None
