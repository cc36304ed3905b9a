"""Tests for exporting notes to files and importing them back."""
import os

import pytest

from knowling.exceptions import ErrorCode, FileAccessError
from knowling.services.notebook_service import EXPORT_DIR_PREFIX


class TestExport:
    def test_export_writes_one_file_per_note(self, notebook, tmp_path):
        notebook.upsert(None, "# Hello, World!!\nbody")
        notebook.upsert(None, "Second note")

        count, export_dir = notebook.export_notes(tmp_path)
        assert count == 2
        assert export_dir.parent == tmp_path
        assert export_dir.name.startswith(EXPORT_DIR_PREFIX)
        assert sorted(p.name for p in export_dir.iterdir()) == [
            "Hello_World.md",
            "Second_note.md",
        ]
        assert (export_dir / "Hello_World.md").read_text(encoding="utf-8") == (
            "# Hello, World!!\nbody"
        )

    def test_duplicate_titles(self, notebook, tmp_path):
        notebook.upsert(None, "")
        notebook.upsert(None, "!!!")

        count, export_dir = notebook.export_notes(tmp_path)
        assert count == 2
        assert sorted(p.name for p in export_dir.iterdir()) == [
            "Untitled-dupe_1.md",
            "Untitled.md",
        ]

    def test_titles_differing_only_in_case(self, notebook, tmp_path):
        notebook.upsert(None, "Hello")
        notebook.upsert(None, "hello")

        count, export_dir = notebook.export_notes(tmp_path)
        names = [p.name for p in export_dir.iterdir()]
        assert count == 2
        assert len({name.casefold() for name in names}) == 2

    def test_each_export_gets_a_new_directory(self, notebook, tmp_path):
        notebook.upsert(None, "x")
        _, first = notebook.export_notes(tmp_path)
        _, second = notebook.export_notes(tmp_path)
        assert first != second
        assert first.is_dir() and second.is_dir()

    def test_empty_notebook(self, notebook, tmp_path):
        count, export_dir = notebook.export_notes(tmp_path)
        assert count == 0
        assert list(export_dir.iterdir()) == []

    def test_missing_target(self, notebook, tmp_path):
        with pytest.raises(FileAccessError) as exc_info:
            notebook.export_notes(tmp_path / "nope")
        assert exc_info.value.code == ErrorCode.FILE_NOT_FOUND

    def test_target_is_a_file(self, notebook, tmp_path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        with pytest.raises(FileAccessError) as exc_info:
            notebook.export_notes(target)
        assert exc_info.value.code == ErrorCode.FILE_NOT_DIRECTORY

    def test_unwritable_target(self, notebook, tmp_path, monkeypatch):
        monkeypatch.setattr(os, "access", lambda path, mode: False)
        with pytest.raises(FileAccessError) as exc_info:
            notebook.export_notes(tmp_path)
        assert exc_info.value.code == ErrorCode.FILE_NOT_WRITABLE
        assert exc_info.value.path == str(tmp_path)


class TestImport:
    def test_import_count(self, notebook, tmp_path):
        source = tmp_path / "source"
        source.mkdir()
        for i in range(5):
            (source / f"note{i}.md").write_text(f"note number {i}", encoding="utf-8")
        (source / "readme.txt").write_text("not a note")
        (source / "data.json").write_text("{}")

        assert notebook.import_notes(source) == 5
        texts = sorted(n.text for n in notebook.get_notes())
        assert texts == [f"note number {i}" for i in range(5)]
        assert notebook.vector_index.count() == 5

    def test_imported_notes_get_fresh_ids(self, notebook, tmp_path):
        (tmp_path / "a.md").write_text("same")
        notebook.import_notes(tmp_path)
        notebook.import_notes(tmp_path)
        notes = notebook.get_notes()
        assert len(notes) == 2
        assert notes[0].id != notes[1].id

    def test_full_contents_are_kept(self, notebook, tmp_path):
        text = "# Title\n\nParagraph one.\n\n- item\n"
        (tmp_path / "n.md").write_text(text, encoding="utf-8")
        notebook.import_notes(tmp_path)
        assert notebook.get_notes()[0].text == text

    def test_subdirectories_are_skipped(self, notebook, tmp_path):
        (tmp_path / "top.md").write_text("top")
        nested = tmp_path / "nested.md"
        nested.mkdir()
        (nested / "inner.md").write_text("inner")
        assert notebook.import_notes(tmp_path) == 1

    def test_empty_directory(self, notebook, tmp_path):
        assert notebook.import_notes(tmp_path) == 0

    def test_missing_source(self, notebook, tmp_path):
        with pytest.raises(FileAccessError) as exc_info:
            notebook.import_notes(tmp_path / "missing")
        assert exc_info.value.code == ErrorCode.FILE_NOT_FOUND

    def test_source_is_a_file(self, notebook, tmp_path):
        path = tmp_path / "note.md"
        path.write_text("x")
        with pytest.raises(FileAccessError) as exc_info:
            notebook.import_notes(path)
        assert exc_info.value.code == ErrorCode.FILE_NOT_DIRECTORY

    def test_undecodable_file(self, notebook, tmp_path):
        (tmp_path / "bad.md").write_bytes(b"\xff\xfe\xfa")
        with pytest.raises(FileAccessError):
            notebook.import_notes(tmp_path)
        assert notebook.get_notes() == []


class TestRoundTrip:
    def test_export_then_import(self, notebook, tmp_path):
        originals = ["# One\nfirst", "# Two\nsecond", ""]
        for text in originals:
            notebook.upsert(None, text)
        count, export_dir = notebook.export_notes(tmp_path)
        assert count == 3

        notebook.reset()
        assert notebook.import_notes(export_dir) == 3
        assert sorted(n.text for n in notebook.get_notes()) == sorted(originals)
