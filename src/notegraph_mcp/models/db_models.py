"""SQLAlchemy database models for the Notegraph MCP server."""
import logging
from typing import Optional

from sqlalchemy import (CheckConstraint, Column, DateTime, ForeignKey, Index,
                        Integer, String, Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from notegraph_mcp.config import config
from notegraph_mcp.models.schema import LinkType, RelationType, utc_now

logger = logging.getLogger(__name__)

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Database model for a note."""
    __tablename__ = "notes"
    id = Column(String(255), primary_key=True)
    title = Column(String(512), nullable=False, index=True)
    folder_path = Column(String(1024), nullable=True, index=True)
    content = Column(Text, nullable=False, default="")
    # "metadata" is reserved on declarative classes
    metadata_json = Column("metadata", Text, nullable=True)
    created_by = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Note(id='{self.id}', title='{self.title}')>"


class DBNoteLink(Base):
    """Database model for one wikilink occurrence."""
    __tablename__ = "note_links"
    id = Column(Integer, primary_key=True, autoincrement=True)
    source_note_id = Column(
        String(255), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Incoming links are downgraded to unresolved before a target is deleted,
    # so the target side carries no cascade.
    target_note_id = Column(String(255), ForeignKey("notes.id"), nullable=True, index=True)
    unresolved_target = Column(String(512), nullable=True, index=True)
    link_type = Column(String(20), default=LinkType.WIKILINK.value, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "(target_note_id IS NULL) <> (unresolved_target IS NULL)",
            name="ck_note_links_one_target",
        ),
    )

    def __repr__(self) -> str:
        target = self.target_note_id or f"?{self.unresolved_target}"
        return (
            f"<NoteLink(id={self.id}, source='{self.source_note_id}', "
            f"target='{target}', type='{self.link_type}')>"
        )


class DBTask(Base):
    """The external tasks table. Only read here; declared so the schema can be created."""
    __tablename__ = "tasks"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(512), nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, title='{self.title}')>"


class DBTaskNoteRelation(Base):
    """Database model for a task-note relation."""
    __tablename__ = "task_note_relations"
    id = Column(String(255), primary_key=True)
    task_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    note_id = Column(
        String(255), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    relation_type = Column(String(20), default=RelationType.REFERENCE.value, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_task_note_relations_task_note", "task_id", "note_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<TaskNoteRelation(id='{self.id}', task={self.task_id}, "
            f"note='{self.note_id}', type='{self.relation_type}')>"
        )


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in db_url


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and the schema.

    File databases get a small QueuePool and WAL journaling. In-memory
    databases use a StaticPool so every session sees the same connection
    (and therefore the same database). Foreign keys are enabled on every
    connection in both cases; ON DELETE CASCADE depends on it.
    """
    db_url = db_url or config.get_db_url()
    in_memory = _is_memory_url(db_url)

    if in_memory:
        engine = create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is enough
        engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_recycle=3600,
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    Base.metadata.create_all(engine)
    logger.info(f"Database initialized ({'in-memory' if in_memory else db_url})")
    return engine


def get_session_factory(engine: Optional[Engine] = None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine)
