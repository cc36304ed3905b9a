"""Tests for the relational note repository."""
import pytest
from sqlalchemy import func, select

from knowling.exceptions import (
    DuplicateIdError,
    ErrorCode,
    NoteNotFoundError,
    ValidationError,
)
from knowling.models.db_models import note_category
from knowling.models.schema import Note


def _association_count(repository, note_id=None):
    stmt = select(func.count()).select_from(note_category)
    if note_id is not None:
        stmt = stmt.where(note_category.c.note_id == note_id)
    with repository.engine.connect() as conn:
        return conn.execute(stmt).scalar()


class TestNoteCrud:
    """Create, read, update and delete of note rows."""

    def test_add_and_get(self, note_repository):
        note = Note(text="Hello", created_at=10, modified_at=20)
        note_repository.add_note(note)

        loaded = note_repository.get_note(note.id)
        assert loaded is not None
        assert loaded.id == note.id
        assert loaded.text == "Hello"
        assert loaded.created_at == 10
        assert loaded.modified_at == 20
        assert loaded.categories == set()

    def test_get_missing_returns_none(self, note_repository):
        assert note_repository.get_note("nope") is None

    def test_add_duplicate_id(self, note_repository):
        note = Note(text="one")
        note_repository.add_note(note)
        with pytest.raises(DuplicateIdError) as exc_info:
            note_repository.add_note(Note(id=note.id, text="two"))
        assert exc_info.value.note_id == note.id
        assert note_repository.get_note(note.id).text == "one"

    def test_add_notes_batch(self, note_repository):
        notes = [Note(text=f"note {i}") for i in range(5)]
        assert note_repository.add_notes(notes) == 5
        assert note_repository.count_notes() == 5
        assert note_repository.add_notes([]) == 0

    def test_add_notes_is_all_or_nothing(self, note_repository):
        existing = Note(text="existing")
        note_repository.add_note(existing)
        batch = [Note(text="new"), Note(id=existing.id, text="clash")]
        with pytest.raises(DuplicateIdError):
            note_repository.add_notes(batch)
        assert note_repository.count_notes() == 1

    def test_update_text(self, note_repository):
        note = Note(text="before", created_at=1, modified_at=1)
        note_repository.add_note(note)
        note.text = "after"
        note.touch(99)
        note_repository.update_note_text(note)

        loaded = note_repository.get_note(note.id)
        assert loaded.text == "after"
        assert loaded.modified_at == 99
        assert loaded.created_at == 1

    def test_update_missing_note(self, note_repository):
        with pytest.raises(NoteNotFoundError):
            note_repository.update_note_text(Note(text="ghost"))

    def test_get_notes_by_ids_omits_missing(self, note_repository):
        a, b = Note(text="a"), Note(text="b")
        note_repository.add_notes([a, b])
        found = note_repository.get_notes_by_ids([a.id, "missing", b.id, a.id])
        assert {n.id for n in found} == {a.id, b.id}
        assert len(found) == 2
        assert note_repository.get_notes_by_ids([]) == []

    def test_get_all_notes_oldest_first(self, note_repository):
        newer = Note(text="newer", created_at=200, modified_at=200)
        older = Note(text="older", created_at=100, modified_at=100)
        note_repository.add_notes([newer, older])
        assert [n.text for n in note_repository.get_all_notes()] == ["older", "newer"]

    def test_delete_note(self, note_repository):
        note = Note(text="bye")
        note_repository.add_note(note)
        assert note_repository.delete_note(note.id) is True
        assert note_repository.get_note(note.id) is None
        assert note_repository.delete_note(note.id) is False

    def test_delete_cascades_association_rows(self, note_repository):
        note = Note(text="tagged")
        note_repository.add_note(note)
        note.add_category(note_repository.get_or_create_category("Work"))
        note_repository.reconcile_note_categories(note)
        assert _association_count(note_repository, note.id) == 1

        note_repository.delete_note(note.id)
        assert _association_count(note_repository, note.id) == 0
        # The category itself survives
        assert [c.label for c in note_repository.get_all_categories()] == ["Work"]

    def test_delete_all_notes(self, note_repository):
        note_repository.add_notes([Note(text="a"), Note(text="b")])
        note_repository.get_or_create_category("Keep")
        assert note_repository.delete_all_notes() == 2
        assert note_repository.get_all_notes() == []
        assert len(note_repository.get_all_categories()) == 1


class TestCategories:
    """Case-insensitive category lookup and association reconciliation."""

    def test_get_or_create_is_case_insensitive(self, note_repository):
        first = note_repository.get_or_create_category("Work")
        second = note_repository.get_or_create_category("work")
        third = note_repository.get_or_create_category("  WORK ")
        assert first.id == second.id == third.id
        # First writer decides the spelling
        assert second.label == "Work"
        assert len(note_repository.get_all_categories()) == 1

    def test_non_ascii_labels_fold(self, note_repository):
        a = note_repository.get_or_create_category("Straße")
        b = note_repository.get_or_create_category("STRASSE")
        assert a.id == b.id

    def test_empty_label_rejected(self, note_repository):
        with pytest.raises(ValidationError) as exc_info:
            note_repository.get_or_create_category("   ")
        assert exc_info.value.code == ErrorCode.CATEGORY_INVALID

    def test_get_category_by_id(self, note_repository):
        category = note_repository.get_or_create_category("Ideas")
        assert note_repository.get_category_by_id(category.id) == category
        assert note_repository.get_category_by_id("missing") is None

    def test_all_categories_sorted(self, note_repository):
        for label in ["beta", "Alpha", "gamma"]:
            note_repository.get_or_create_category(label)
        labels = [c.label for c in note_repository.get_all_categories()]
        assert labels == ["Alpha", "beta", "gamma"]

    def test_reconcile_replaces_all_rows(self, note_repository):
        note = Note(text="x")
        note_repository.add_note(note)
        work = note_repository.get_or_create_category("Work")
        home = note_repository.get_or_create_category("Home")

        note.add_category(work)
        note.add_category(home)
        note_repository.reconcile_note_categories(note)
        assert note_repository.get_note(note.id).category_labels == ["Home", "Work"]

        note.remove_category(work.id)
        note_repository.reconcile_note_categories(note)
        assert note_repository.get_note(note.id).category_labels == ["Home"]
        assert _association_count(note_repository) == 1

        note.remove_category(home.id)
        note_repository.reconcile_note_categories(note)
        assert _association_count(note_repository) == 0

    def test_hydrated_notes_carry_categories(self, note_repository):
        a, b = Note(text="a"), Note(text="b")
        note_repository.add_notes([a, b])
        tag = note_repository.get_or_create_category("Shared")
        for note in (a, b):
            note.add_category(tag)
            note_repository.reconcile_note_categories(note)

        for note in note_repository.get_all_notes():
            assert note.category_labels == ["Shared"]
        for note in note_repository.get_notes_by_ids([a.id, b.id]):
            assert note.has_category(tag.id)
