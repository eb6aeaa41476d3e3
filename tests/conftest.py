"""Common test fixtures for the Notegraph MCP server."""
import datetime
from datetime import timezone

import pytest

from notegraph_mcp.models.db_models import DBTask, get_session_factory, init_db
from notegraph_mcp.services.graph_service import GraphService
from notegraph_mcp.services.note_service import NoteService
from notegraph_mcp.services.search_service import UnifiedSearchService


@pytest.fixture
def engine():
    """A private in-memory database per test."""
    engine = init_db("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def note_service(engine):
    return NoteService(engine=engine, title_index_enabled=False)


@pytest.fixture
def graph_service(engine):
    return GraphService(engine=engine)


@pytest.fixture
def search_service(engine):
    return UnifiedSearchService(engine=engine)


@pytest.fixture
def add_task(session_factory):
    """Insert a row into the external tasks table and return its id.

    ``age_minutes`` pushes ``updated_at`` into the past so tests can control
    recency ordering.
    """
    def _add_task(title, description=None, age_minutes=0):
        updated_at = datetime.datetime.now(timezone.utc) - datetime.timedelta(
            minutes=age_minutes
        )
        with session_factory() as session:
            task = DBTask(title=title, description=description, updated_at=updated_at)
            session.add(task)
            session.commit()
            return task.id

    return _add_task
