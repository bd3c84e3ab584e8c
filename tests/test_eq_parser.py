"""
Tests for eq_parser module.

Tests core parsing functionality including:
- Directive extraction (label, color)
- Frontmatter heuristic
- Section splitting and line ranges
- Id carry-over on re-parse
- File reading with encoding detection
"""

import itertools

import pytest
from eq_parser import (
    DocumentParser,
    extract_color,
    extract_label,
    is_frontmatter,
    is_separator,
    parse_document,
    parse_document_file,
    parse_frontmatter,
    read_document_file,
    strip_label,
)


def counter_ids(prefix="id"):
    counter = itertools.count(1)
    return lambda: "{p}{n}".format(p=prefix, n=next(counter))


# ═══════════════════════════════════════════════════════════════════════════════
# DIRECTIVE EXTRACTORS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDirectives:
    """Tests for the named directive extractors."""

    def test_separator_lines(self):
        assert is_separator("---")
        assert is_separator("  -----  ")
        assert not is_separator("--")
        assert not is_separator("--- x")
        assert not is_separator("")

    def test_label_inline_or_own_line(self):
        assert extract_label("E=mc^2\n\\label{eq:einstein}") == "eq:einstein"
        assert extract_label("x^2 \\label{sq}") == "sq"

    def test_first_label_wins(self):
        assert extract_label("\\label{a}\n\\label{b}") == "a"

    def test_missing_or_empty_label(self):
        assert extract_label("x^2") is None
        assert extract_label("x^2 \\label{}") is None

    def test_color_on_last_line(self):
        assert extract_color("x^2\n% color: #ff0000") == "#ff0000"
        assert extract_color("x^2\n%color:red  \n\n") == "red"

    def test_color_mid_section_ignored(self):
        """A color comment followed by more LaTeX does not count."""
        assert extract_color("% color: #ff0000\nx^2") is None

    def test_strip_label(self):
        assert strip_label("E=mc^2\n\\label{eq:einstein}") == "E=mc^2"
        assert strip_label("a \\label{x} + b") == "a + b"


# ═══════════════════════════════════════════════════════════════════════════════
# FRONTMATTER
# ═══════════════════════════════════════════════════════════════════════════════


class TestFrontmatter:
    """Tests for the frontmatter heuristic."""

    def test_key_value_block(self):
        assert is_frontmatter("color: #336699\ntitle: Notes")

    def test_comments_and_blanks_skipped(self):
        assert is_frontmatter("% document settings\n\ncolor: blue")

    def test_backslash_disqualifies(self):
        assert not is_frontmatter("color: blue\nx: \\alpha")

    def test_non_key_value_line_disqualifies(self):
        assert not is_frontmatter("color: blue\nx^2 + y^2")

    def test_comments_only_is_not_frontmatter(self):
        assert not is_frontmatter("% just a note")

    def test_parse_keys(self):
        fm = parse_frontmatter("color: #336699\ntitle: My Notes\n% comment")
        assert fm.color == "#336699"
        assert fm.extra == {"title": "My Notes"}


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT PARSER
# ═══════════════════════════════════════════════════════════════════════════════


class TestDocumentParser:
    """Tests for splitting documents into equations."""

    def test_two_equations_with_label(self):
        """Labeled and auto-labeled equations with trimmed latex."""
        doc = parse_document("E=mc^2\n\\label{eq:einstein}\n\n---\n\nx^2")

        assert len(doc.equations) == 2
        first, second = doc.equations
        assert first.label == "eq:einstein"
        assert first.latex == "E=mc^2\n\\label{eq:einstein}"
        assert second.label == "eq1"
        assert second.latex == "x^2"

    def test_line_ranges(self):
        doc = parse_document("E=mc^2\n\\label{eq:einstein}\n\n---\n\nx^2")
        first, second = doc.equations

        assert (first.start_line, first.end_line) == (0, 2)
        assert (second.start_line, second.end_line) == (4, 5)
        assert second.contains_line(5)
        assert not second.contains_line(3)

    def test_crlf_line_endings(self):
        doc = parse_document("x\r\n% color: red\r\n---\r\ny")
        first, second = doc.equations

        assert first.latex == "x\n% color: red"
        assert first.color == "red"
        assert (first.start_line, first.end_line) == (0, 1)
        assert (second.start_line, second.end_line) == (3, 3)

    def test_auto_labels_are_positional(self):
        text = "\\label{a}\n---\nz\n---\ny\n---\n\\label{b} x\n---\nw"
        labels = [eq.label for eq in parse_document(text).equations]
        assert labels == ["a", "eq1", "eq2", "b", "eq3"]

    def test_single_section_without_separator(self):
        doc = parse_document("\\int_0^1 x\\,dx")
        assert len(doc.equations) == 1
        assert doc.equations[0].label == "eq1"

    def test_empty_sections_produce_nothing(self):
        doc = parse_document("x\n---\n\n---\n   \n---\n")
        assert [eq.latex for eq in doc.equations] == ["x"]

    def test_empty_document(self):
        doc = parse_document("")
        assert doc.equations == []
        assert doc.frontmatter.color is None

    def test_frontmatter_only_first_section(self):
        doc = parse_document("color: red\n---\nx^2\n---\nsize: big")

        assert doc.frontmatter.color == "red"
        assert [eq.latex for eq in doc.equations] == ["x^2", "size: big"]

    def test_frontmatter_after_leading_blank_lines(self):
        doc = parse_document("\n\ncolor: red\n---\nx")
        assert doc.frontmatter.color == "red"
        assert len(doc.equations) == 1

    def test_equation_color(self):
        doc = parse_document("x^2\n% color: #00aa00\n---\ny^2")
        assert doc.equations[0].color == "#00aa00"
        assert doc.equations[1].color is None

    def test_ids_are_unique(self):
        doc = parse_document("a\n---\nb\n---\nc")
        ids = [eq.id for eq in doc.equations]
        assert len(set(ids)) == 3

    def test_reparse_keeps_ids(self):
        """Re-parsing unchanged text with the previous list is idempotent."""
        parser = DocumentParser(id_factory=counter_ids())
        text = "color: red\n---\nE=mc^2\n\\label{e}\n---\nx^2\n% color: blue"

        first = parser.parse(text)
        second = parser.parse(text, first.equations)

        assert second.equations == first.equations

    def test_reparse_after_edit_keeps_position_ids(self):
        parser = DocumentParser(id_factory=counter_ids())
        first = parser.parse("a\n---\nb")
        second = parser.parse("a + 1\n---\nb\n---\nc", first.equations)

        assert [eq.id for eq in second.equations] == ["id1", "id2", "id3"]

    def test_find(self):
        parser = DocumentParser(id_factory=counter_ids("eq-"))
        doc = parser.parse("a\n---\nb")
        assert doc.find("eq-2").latex == "b"
        assert doc.find("missing") is None


# ═══════════════════════════════════════════════════════════════════════════════
# FILE READING
# ═══════════════════════════════════════════════════════════════════════════════


class TestReadDocumentFile:
    """Tests for reading documents from disk."""

    def test_utf8(self, tmp_path):
        file = tmp_path / "doc.txt"
        file.write_bytes("α + β\n---\nγ".encode("utf-8"))
        assert read_document_file(file) == "α + β\n---\nγ"

    def test_utf8_bom(self, tmp_path):
        file = tmp_path / "doc.txt"
        file.write_bytes(b"\xef\xbb\xbfx^2")
        assert read_document_file(file) == "x^2"

    def test_crlf_normalized(self, tmp_path):
        file = tmp_path / "doc.txt"
        file.write_bytes(b"a\r\n---\r\nb\r\n")
        assert read_document_file(file) == "a\n---\nb\n"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_document_file(tmp_path / "nope.txt")

    def test_parse_document_file(self, tmp_path):
        file = tmp_path / "doc.txt"
        file.write_text("a\n---\nb\n", encoding="utf-8")
        assert len(parse_document_file(file).equations) == 2
