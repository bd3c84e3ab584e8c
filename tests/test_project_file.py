"""
Tests for project_file module.

Tests project persistence including:
- JSON shape and round trip
- Version and format validation
- Locked-file fallback on save
"""

import json
from pathlib import Path

import pytest
import project_file
from project_file import (
    PROJECT_VERSION,
    ProjectFormatError,
    UnsupportedProjectVersionError,
    create_project_data,
    dump_project,
    load_project,
    parse_project,
    save_project,
)


DOCUMENT = "E=mc^2\n\\label{eq:einstein}\n\n---\n\nx^2"


# ═══════════════════════════════════════════════════════════════════════════════
# SERIALIZATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestProjectJson:
    """Tests for the project JSON shape."""

    def test_dump_shape(self):
        project = create_project_data(DOCUMENT, global_preamble="\\usepackage{bm}", name="Notes")
        data = json.loads(dump_project(project))

        assert data["version"] == PROJECT_VERSION
        assert data["document"] == DOCUMENT
        assert data["globalPreamble"] == "\\usepackage{bm}"
        assert data["metadata"]["name"] == "Notes"
        assert data["metadata"]["generator"] == "mathedit"
        assert data["metadata"]["createdAt"].endswith("Z")

    def test_optional_fields_omitted(self):
        data = json.loads(dump_project(create_project_data("x")))

        assert "globalPreamble" not in data
        assert "name" not in data["metadata"]

    def test_round_trip(self):
        project = create_project_data(DOCUMENT, global_preamble="\\def\\R{\\mathbb{R}}", name="Notes")
        loaded = parse_project(dump_project(project))

        assert loaded.document == DOCUMENT
        assert loaded.global_preamble == project.global_preamble
        assert loaded.metadata == project.metadata

    def test_unknown_keys_preserved(self):
        text = json.dumps({"version": PROJECT_VERSION, "document": "x", "theme": "dark"})
        loaded = parse_project(text)

        assert loaded.extra == {"theme": "dark"}
        assert json.loads(dump_project(loaded))["theme"] == "dark"


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════


class TestParseProject:
    """Tests for rejecting bad project files."""

    def test_unsupported_version(self):
        text = json.dumps({"version": "2.0.0", "document": "x"})
        with pytest.raises(UnsupportedProjectVersionError, match="Unsupported project version: 2.0.0"):
            parse_project(text)

    def test_missing_version(self):
        with pytest.raises(UnsupportedProjectVersionError):
            parse_project(json.dumps({"document": "x"}))

    def test_invalid_json(self):
        with pytest.raises(ProjectFormatError, match="Invalid project file"):
            parse_project("{not json")

    def test_not_an_object(self):
        with pytest.raises(ProjectFormatError):
            parse_project("[]")

    def test_missing_document(self):
        with pytest.raises(ProjectFormatError, match="missing document"):
            parse_project(json.dumps({"version": PROJECT_VERSION}))

    def test_missing_metadata_gets_defaults(self):
        loaded = parse_project(json.dumps({"version": PROJECT_VERSION, "document": ""}))

        assert loaded.document == ""
        assert loaded.metadata.generator == "mathedit"
        assert loaded.metadata.name is None


# ═══════════════════════════════════════════════════════════════════════════════
# FILE I/O
# ═══════════════════════════════════════════════════════════════════════════════


class TestSaveProject:
    """Tests for writing project files."""

    def test_save_and_load(self, tmp_path):
        project = create_project_data(DOCUMENT, name="Notes")
        path = save_project(project, tmp_path / "sub" / "notes.json")

        assert path == tmp_path / "sub" / "notes.json"
        assert load_project(path).document == DOCUMENT

    def test_save_refreshes_updated_at(self, tmp_path, monkeypatch):
        project = create_project_data("x")
        monkeypatch.setattr(project_file, "_utc_now", lambda: "2030-01-01T00:00:00.000Z")

        save_project(project, tmp_path / "p.json")

        assert project.metadata.updated_at == "2030-01-01T00:00:00.000Z"
        assert project.metadata.created_at != project.metadata.updated_at

    def test_locked_file_gets_timestamp_suffix(self, tmp_path, monkeypatch):
        original_write = Path.write_text

        def locked_write(self, *args, **kwargs):
            if self.name == "locked.json":
                raise PermissionError("locked")
            return original_write(self, *args, **kwargs)

        monkeypatch.setattr(Path, "write_text", locked_write)
        monkeypatch.setattr(project_file.time, "time", lambda: 1700000000.5)

        path = save_project(create_project_data("x"), tmp_path / "locked.json")

        assert path.name == "locked_1700000000.json"
        assert parse_project(path.read_text(encoding="utf-8")).document == "x"
