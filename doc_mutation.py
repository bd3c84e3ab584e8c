"""
Document Mutation
Line-range edits on a ``---`` delimited document.

Every edit returns the new text plus a suggested cursor line and leaves the
document in a shape the parser reads back without merged sections or
spurious empty equations:

    delete_section        remove a section and exactly one adjacent separator
    replace_section       rewrite a section in place, keeping its separators
    insert_section_after  open a new section right after an existing one
    append_section        add a section at the end of the document
    add_empty_section     make room for typing a new equation
"""

from dataclasses import dataclass
from typing import List, Optional
import logging

from eq_parser import is_separator


logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class SectionSpan:
    """Lines between two separators (or a document edge)"""

    start_line: int
    end_line: int  # start_line - 1 for a section with no lines
    has_content: bool
    is_last: bool = False

    def contains_line(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


@dataclass(frozen=True)
class MutationResult:
    """New document text plus where the cursor should go"""

    text: str
    cursor_line: Optional[int] = None


# ═══════════════════════════════════════════════════════════════════════════════
# STRUCTURE ANALYSIS
# ═══════════════════════════════════════════════════════════════════════════════


def _is_blank(line: str) -> bool:
    return not line.strip()


def analyze_sections(text: str) -> List[SectionSpan]:
    """
    Split a document into section spans, empty ones included.

    A document ending with a separator gets a trailing empty section, which
    is where a new equation would be typed.
    """
    lines = text.split("\n")
    spans: List[SectionSpan] = []
    start = 0

    for i, line in enumerate(lines):
        if is_separator(line):
            chunk = lines[start:i]
            spans.append(SectionSpan(start, i - 1, any(not _is_blank(l) for l in chunk)))
            start = i + 1

    chunk = lines[start:]
    spans.append(SectionSpan(start, len(lines) - 1, any(not _is_blank(l) for l in chunk), is_last=True))
    return spans


def find_section_index(sections: List[SectionSpan], line: int) -> int:
    """
    Index of the section holding ``line``.

    A separator line belongs to the section above it. Returns -1 for an
    empty section list.
    """
    if not sections:
        return -1

    for index, section in enumerate(sections):
        if section.contains_line(line):
            return index
        if line < section.start_line:
            return max(index - 1, 0)

    return len(sections) - 1


def _separator_before(lines: List[str], start_line: int) -> Optional[int]:
    i = start_line - 1
    while i >= 0 and _is_blank(lines[i]):
        i -= 1
    if i >= 0 and is_separator(lines[i]):
        return i
    return None


def _separator_after(lines: List[str], end_line: int) -> Optional[int]:
    i = end_line + 1
    while i < len(lines) and _is_blank(lines[i]):
        i += 1
    if i < len(lines) and is_separator(lines[i]):
        return i
    return None


def _join(lines: List[str]) -> str:
    text = "\n".join(lines)
    return "" if not text.strip() else text


# ═══════════════════════════════════════════════════════════════════════════════
# EDITS
# ═══════════════════════════════════════════════════════════════════════════════


def delete_section(text: str, start_line: int, end_line: int) -> MutationResult:
    """
    Remove a section together with one adjacent separator.

    The separator above the section is preferred; when the section is the
    first one, the separator below is taken instead. Blank lines hugging the
    consumed separator go with it unless they still pad a neighbouring
    section.

    Args:
        text: Document text
        start_line: First line of the section (0-based)
        end_line: Last line of the section (inclusive)

    Returns:
        MutationResult with the cursor on the line where the section was
    """
    lines = text.split("\n")
    before = _separator_before(lines, start_line)
    after = _separator_after(lines, end_line)

    if before is not None:
        cut_start, cut_end = before, end_line
        if after is None:
            # Last section: the blank lines above the separator are trailing noise
            while cut_start > 0 and _is_blank(lines[cut_start - 1]):
                cut_start -= 1
    elif after is not None:
        cut_start, cut_end = start_line, after
        while cut_end + 1 < len(lines) and _is_blank(lines[cut_end + 1]):
            cut_end += 1
    else:
        cut_start, cut_end = start_line, end_line

    new_lines = lines[:cut_start] + lines[cut_end + 1:]
    logger.debug("Deleted lines %d-%d", cut_start, cut_end)

    new_text = _join(new_lines)
    cursor = min(cut_start, max(len(new_lines) - 1, 0))
    return MutationResult(text=new_text, cursor_line=cursor if new_text else 0)


def replace_section(text: str, start_line: int, end_line: int, new_content: str) -> MutationResult:
    """
    Rewrite one section in place.

    "separator + blank lines + content + blank lines" collapses to
    "separator + blank line + new content + blank line". A separator below
    the section is kept so the next section is never swallowed.
    """
    lines = text.split("\n")
    before = _separator_before(lines, start_line)
    after = _separator_after(lines, end_line)

    if before is not None:
        replacement = ["---", "", new_content, ""]
        begin = before
    else:
        replacement = [new_content]
        begin = start_line

    if after is not None:
        replacement += ["---"] if before is not None else ["", "---"]
        finish = after
    else:
        finish = end_line

    new_lines = lines[:begin] + replacement + lines[finish + 1:]
    cursor = begin + 2 if before is not None else begin
    return MutationResult(text=_join(new_lines), cursor_line=cursor)


def append_section(text: str, content: str) -> MutationResult:
    """
    Add a section at the end of the document.

    An empty document gets the content with no separator; a document already
    ending in a bare ``---`` gets the content right after it.
    """
    if not text.strip():
        return MutationResult(text=content + "\n", cursor_line=0)

    base = text.rstrip()
    last_line = base.split("\n")[-1]

    if is_separator(last_line):
        new_text = base + "\n\n" + content + "\n"
        cursor = base.count("\n") + 2
    else:
        new_text = base + "\n\n---\n\n" + content + "\n"
        cursor = base.count("\n") + 4

    return MutationResult(text=new_text, cursor_line=cursor)


def insert_section_after(text: str, end_line: int, content: str) -> MutationResult:
    """
    Open a new section directly after the section ending at ``end_line``.

    The new section goes in front of the next separator, so the sections
    below keep their own separators. Without a following separator this is
    an append.
    """
    lines = text.split("\n")
    after = _separator_after(lines, end_line)
    if after is None:
        return append_section(text, content)

    block = ["---", ""] + content.split("\n") + [""]
    new_lines = lines[:after] + block + lines[after:]
    return MutationResult(text="\n".join(new_lines), cursor_line=after + 2)


def add_empty_section(text: str, cursor_line: int) -> MutationResult:
    """
    Make room for a new equation near the cursor.

    An empty trailing section is reused. Otherwise an empty section opens
    after the cursor's section (or at the end of the document) and the
    cursor lands on the middle of three blank lines.
    """
    if not text.strip():
        return MutationResult(text=text, cursor_line=0)

    sections = analyze_sections(text)
    last = sections[-1]

    if len(sections) > 1 and not last.has_content:
        base = text.rstrip()
        return MutationResult(text=base + "\n\n\n", cursor_line=base.count("\n") + 2)

    index = find_section_index(sections, cursor_line)
    if index == len(sections) - 1:
        return append_section(text, "")
    return insert_section_after(text, sections[index].end_line, "")
