"""Tests for NoteService: note lifecycle, link resolution and task relations."""
import pytest

from notegraph_mcp.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    NoteValidationError,
    ValidationError,
)
from notegraph_mcp.models.schema import LinkType, RelationType
from notegraph_mcp.services.note_service import NoteService


def _link_shape(links):
    return [(l.target_note_id, l.unresolved_target, l.link_type) for l in links]


class TestNoteLifecycle:
    """Create, read, update, list and delete."""

    def test_create_and_get_round_trip(self, note_service):
        note = note_service.create_note(
            title="Alpha",
            content="Body",
            folder_path="Work/Projects",
            metadata={"tags": ["x"], "aliases": []},
            created_by=7,
        )
        stored = note_service.get_note(note.id)
        assert stored is not None
        assert stored.title == "Alpha"
        assert stored.content == "Body"
        assert stored.folder_path == "Work/Projects"
        assert stored.metadata == {"tags": ["x"], "aliases": []}
        assert stored.created_by == 7
        assert stored.created_at.tzinfo is not None

    def test_create_without_content(self, note_service):
        note = note_service.create_note(title="Empty")
        assert note_service.get_note(note.id).content == ""
        assert note_service.get_outgoing_links(note.id) == []

    def test_get_missing_note_returns_none(self, note_service):
        assert note_service.get_note("nope") is None
        assert note_service.get_note_by_title("nope") is None

    def test_get_by_title_is_normalized(self, note_service):
        note = note_service.create_note(title="Project Plan")
        assert note_service.get_note_by_title("  project   PLAN ").id == note.id

    def test_empty_title_rejected(self, note_service):
        with pytest.raises(NoteValidationError) as exc_info:
            note_service.create_note(title="   ")
        assert exc_info.value.code is ErrorCode.NOTE_TITLE_REQUIRED

    def test_duplicate_title_rejected(self, note_service):
        note_service.create_note(title="Alpha")
        with pytest.raises(NoteValidationError) as exc_info:
            note_service.create_note(title="  alpha ")
        assert exc_info.value.code is ErrorCode.NOTE_ALREADY_EXISTS

    def test_rename_into_existing_title_rejected(self, note_service):
        note_service.create_note(title="Alpha")
        beta = note_service.create_note(title="Beta")
        with pytest.raises(NoteValidationError):
            note_service.update_note(beta.id, title="ALPHA")

    def test_rename_to_same_title_with_different_case_allowed(self, note_service):
        note = note_service.create_note(title="Alpha")
        updated = note_service.update_note(note.id, title="ALPHA")
        assert updated.title == "ALPHA"

    def test_update_fields(self, note_service):
        note = note_service.create_note(title="Alpha", content="old")
        note_service.update_note(note.id, content="new", folder_path="F", metadata={"k": 1})
        stored = note_service.get_note(note.id)
        assert stored.content == "new"
        assert stored.folder_path == "F"
        assert stored.metadata == {"k": 1}
        assert stored.updated_at >= note.created_at

    def test_update_unknown_note(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.update_note("missing", content="x")

    def test_delete_unknown_note(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.delete_note("missing")

    def test_delete_removes_note(self, note_service):
        note = note_service.create_note(title="Gone")
        note_service.delete_note(note.id)
        assert note_service.get_note(note.id) is None

    def test_list_most_recently_updated_first(self, note_service):
        a = note_service.create_note(title="A", folder_path="f")
        b = note_service.create_note(title="B", folder_path="f")
        note_service.create_note(title="C", folder_path="g")
        note_service.update_note(a.id, content="touched")

        listed = note_service.list_notes(folder_path="f")
        assert [n.id for n in listed] == [a.id, b.id]

        page = note_service.list_notes(limit=1, offset=1)
        assert len(page) == 1

    def test_list_rejects_negative_pagination(self, note_service):
        with pytest.raises(ValidationError):
            note_service.list_notes(offset=-1)


class TestLinkResolution:
    """Link rows follow note bodies and titles."""

    def test_links_to_missing_notes_are_unresolved(self, note_service):
        a = note_service.create_note(title="A", content="[[Missing]] and [[Missing#Part]]")
        links = note_service.get_outgoing_links(a.id)
        assert _link_shape(links) == [
            (None, "Missing", LinkType.WIKILINK),
            (None, "Missing", LinkType.HEADING),
        ]
        assert links[0].id < links[1].id

    def test_links_to_existing_notes_are_resolved(self, note_service):
        b = note_service.create_note(title="B")
        a = note_service.create_note(title="A", content="see [[ b ^block1]]")
        assert _link_shape(note_service.get_outgoing_links(a.id)) == [
            (b.id, None, LinkType.BLOCK)
        ]

    def test_creating_a_note_resolves_waiting_links(self, note_service):
        a = note_service.create_note(title="A", content="[[Future Note]]")
        c = note_service.create_note(title="C", content="[[future   note#x]]")
        future = note_service.create_note(title="Future Note")

        assert _link_shape(note_service.get_outgoing_links(a.id)) == [
            (future.id, None, LinkType.WIKILINK)
        ]
        assert _link_shape(note_service.get_outgoing_links(c.id)) == [
            (future.id, None, LinkType.HEADING)
        ]

    def test_resolve_links_for_new_note_counts(self, note_service):
        note_service.create_note(title="A", content="[[T]] [[t]]")
        target = note_service.create_note(title="T")
        # Already resolved during creation
        assert note_service.resolve_links_for_new_note(target.id) == 0
        assert note_service.resolve_links_for_new_note("unknown") == 0

    def test_mixed_links_keep_document_order(self, note_service):
        b = note_service.create_note(title="B")
        c = note_service.create_note(title="C")
        a = note_service.create_note(
            title="A", content="[[B]] [[C#h]] [[B^x]] [[Missing]] [[b]] [[Missing]]"
        )
        links = note_service.get_outgoing_links(a.id)
        assert _link_shape(links) == [
            (b.id, None, LinkType.WIKILINK),
            (c.id, None, LinkType.HEADING),
            (b.id, None, LinkType.BLOCK),
            (None, "Missing", LinkType.WIKILINK),
            (b.id, None, LinkType.WIKILINK),
            (None, "Missing", LinkType.WIKILINK),
        ]
        assert [l.id for l in links] == sorted(l.id for l in links)

    def test_relink_is_idempotent(self, note_service):
        note_service.create_note(title="B")
        a = note_service.create_note(title="A", content="[[B]] [[C]]")
        first = _link_shape(note_service.get_outgoing_links(a.id))
        note_service.update_note(a.id, content="[[B]] [[C]]")
        note_service.update_note(a.id, content="[[B]] [[C]]")
        assert _link_shape(note_service.get_outgoing_links(a.id)) == first

    def test_content_update_replaces_links(self, note_service):
        note_service.create_note(title="B")
        a = note_service.create_note(title="A", content="[[B]]")
        note_service.update_note(a.id, content="[[C]]")
        assert _link_shape(note_service.get_outgoing_links(a.id)) == [
            (None, "C", LinkType.WIKILINK)
        ]

    def test_title_only_update_keeps_links(self, note_service):
        note_service.create_note(title="B")
        a = note_service.create_note(title="A", content="[[B]]")
        before = _link_shape(note_service.get_outgoing_links(a.id))
        note_service.update_note(a.id, folder_path="moved")
        assert _link_shape(note_service.get_outgoing_links(a.id)) == before

    def test_rename_resolves_links_to_new_title(self, note_service):
        a = note_service.create_note(title="A", content="[[New Name]]")
        c = note_service.create_note(title="Old Name")
        note_service.update_note(c.id, title="New Name")
        assert _link_shape(note_service.get_outgoing_links(a.id)) == [
            (c.id, None, LinkType.WIKILINK)
        ]

    def test_self_link(self, note_service):
        note = note_service.create_note(title="Self", content="I am [[Self]]")
        assert _link_shape(note_service.get_outgoing_links(note.id)) == [
            (note.id, None, LinkType.WIKILINK)
        ]
        note_service.delete_note(note.id)
        assert note_service.get_unresolved_link_occurrences() == []

    def test_title_index_gives_same_resolution(self, engine):
        service = NoteService(engine=engine, title_index_enabled=True)
        a = service.create_note(title="A", content="[[B]]")
        b = service.create_note(title="B", content="[[A]]")
        assert _link_shape(service.get_outgoing_links(a.id)) == [(b.id, None, LinkType.WIKILINK)]
        assert _link_shape(service.get_outgoing_links(b.id)) == [(a.id, None, LinkType.WIKILINK)]
        service.update_note(b.id, title="B2")
        assert service.get_note_by_title("b2").id == b.id
        assert service.get_note_by_title("B") is None


class TestDeletion:
    """Deleting a note leaves no dangling references."""

    def test_incoming_links_become_unresolved(self, note_service):
        a = note_service.create_note(title="A", content="[[B#Section]] and [[B]]")
        b = note_service.create_note(title="B", content="[[A]]")

        note_service.delete_note(b.id)

        assert _link_shape(note_service.get_outgoing_links(a.id)) == [
            (None, "B", LinkType.HEADING),
            (None, "B", LinkType.WIKILINK),
        ]
        assert note_service.get_outgoing_links(b.id) == []
        assert note_service.get_backlinks(a.id) == []

    def test_recreating_a_deleted_note_reconnects_links(self, note_service):
        a = note_service.create_note(title="A", content="[[B]]")
        b = note_service.create_note(title="B")
        note_service.delete_note(b.id)
        b2 = note_service.create_note(title="b")
        assert _link_shape(note_service.get_outgoing_links(a.id)) == [
            (b2.id, None, LinkType.WIKILINK)
        ]

    def test_relations_are_removed(self, note_service, add_task):
        task_id = add_task("Write report")
        note = note_service.create_note(title="Report")
        note_service.create_relation(task_id, note.id, "spec")
        note_service.delete_note(note.id)
        assert note_service.get_related_notes(task_id) == []


class TestBacklinksAndContext:
    def test_backlinks_ordered_by_source_title_with_snippets(self, note_service):
        target = note_service.create_note(title="Target")
        note_service.create_note(title="Zeta", content="Last mention of [[Target]] here")
        note_service.create_note(title="Alpha", content="First [[target#Intro]]")

        backlinks = note_service.get_backlinks(target.id)
        assert [b.source_note_title for b in backlinks] == ["Alpha", "Zeta"]
        assert backlinks[0].link_type is LinkType.HEADING
        assert "[[target#Intro]]" in backlinks[0].snippet
        assert "[[Target]]" in backlinks[1].snippet

    def test_backlinks_of_unknown_note(self, note_service):
        assert note_service.get_backlinks("missing") == []

    def test_note_with_backlinks(self, note_service):
        target = note_service.create_note(title="Target")
        note_service.create_note(title="Src", content="[[Target]]")
        result = note_service.get_note_with_backlinks(target.id)
        assert result.note.id == target.id
        assert len(result.backlinks) == 1
        assert note_service.get_note_with_backlinks("missing") is None

    def test_full_context(self, note_service, add_task):
        other = note_service.create_note(title="Other")
        note = note_service.create_note(title="Center", content="[[Other]] [[Nowhere]]")
        note_service.create_note(title="Fan", content="[[Center]]")
        task_id = add_task("Ship it")
        note_service.create_relation(task_id, note.id, RelationType.EVIDENCE)

        context = note_service.get_note_full_context(note.id)
        assert context.note.title == "Center"
        assert [b.source_note_title for b in context.backlinks] == ["Fan"]
        assert _link_shape(context.links) == [
            (other.id, None, LinkType.WIKILINK),
            (None, "Nowhere", LinkType.WIKILINK),
        ]
        assert [t.task_title for t in context.related_tasks] == ["Ship it"]
        assert note_service.get_note_full_context("missing") is None

    def test_unresolved_occurrences(self, note_service):
        note_service.create_note(title="B note", content="[[Missing]]")
        note_service.create_note(title="A note", content="[[Missing]] [[Also Missing]]")
        rows = note_service.get_unresolved_link_occurrences()
        assert [(r.unresolved_target, r.source_note_title) for r in rows] == [
            ("Also Missing", "A note"),
            ("Missing", "A note"),
            ("Missing", "B note"),
        ]


class TestRelations:
    """Explicit task-note relations."""

    def test_create_and_list_both_directions(self, note_service, add_task):
        task_id = add_task("Task one")
        note = note_service.create_note(title="Spec")
        relation_id = note_service.create_relation(task_id, note.id, "spec")

        tasks = note_service.get_related_tasks(note.id)
        assert [(t.relation_id, t.task_id, t.task_title, t.relation_type) for t in tasks] == [
            (relation_id, task_id, "Task one", RelationType.SPEC)
        ]
        notes = note_service.get_related_notes(task_id)
        assert [(n.note_id, n.note_title) for n in notes] == [(note.id, "Spec")]

    def test_newest_relation_first(self, note_service, add_task):
        first_task = add_task("First")
        second_task = add_task("Second")
        note = note_service.create_note(title="N")
        note_service.create_relation(first_task, note.id)
        note_service.create_relation(second_task, note.id, "meeting")
        assert [t.task_title for t in note_service.get_related_tasks(note.id)] == [
            "Second",
            "First",
        ]

    def test_unknown_note(self, note_service, add_task):
        task_id = add_task("T")
        with pytest.raises(NoteNotFoundError):
            note_service.create_relation(task_id, "missing", "reference")

    def test_invalid_relation_type(self, note_service, add_task):
        task_id = add_task("T")
        note = note_service.create_note(title="N")
        with pytest.raises(ValidationError) as exc_info:
            note_service.create_relation(task_id, note.id, "blocks")
        assert exc_info.value.code is ErrorCode.INVALID_RELATION_TYPE

    def test_delete_relation(self, note_service, add_task):
        task_id = add_task("T")
        note = note_service.create_note(title="N")
        relation_id = note_service.create_relation(task_id, note.id)
        note_service.delete_relation(relation_id)
        assert note_service.get_related_tasks(note.id) == []
        # Deleting again is a no-op
        note_service.delete_relation(relation_id)
        note_service.delete_relation("never-existed")
