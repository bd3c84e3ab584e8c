"""
Equation Document Parser
Splits a plain-text document into an optional frontmatter block and an
ordered list of LaTeX equation sections separated by ``---`` lines.

Document syntax:
    - A line whose trimmed content matches ^---+$ is a section separator
    - The first non-empty section may be frontmatter (key: value lines, no LaTeX)
    - Every other non-empty section is one equation
    - \\label{name} anywhere in a section sets the equation label
    - A trailing "% color: <value>" line (last non-blank line) sets its color

Dependencies:
    Required: charset-normalizer (encoding detection for document files)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union
import logging
import re
import uuid

from charset_normalizer import from_bytes

from eq_identity import reconcile_ids


logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Equation:
    """One equation section of a document"""

    id: str
    label: str
    latex: str  # trimmed section content, directives included
    start_line: int  # 0-based, inclusive
    end_line: int  # 0-based, inclusive
    color: Optional[str] = None

    def contains_line(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


@dataclass
class DocumentFrontmatter:
    """Document-wide defaults from the leading key: value section"""

    color: Optional[str] = None
    extra: Dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedDocument:
    """Result of parsing a document"""

    frontmatter: DocumentFrontmatter = field(default_factory=DocumentFrontmatter)
    equations: List[Equation] = field(default_factory=list)

    def find(self, equation_id: str) -> Optional[Equation]:
        for eq in self.equations:
            if eq.id == equation_id:
                return eq
        return None


def new_equation_id() -> str:
    """Generate a fresh opaque equation id."""
    return str(uuid.uuid4())


# ═══════════════════════════════════════════════════════════════════════════════
# DIRECTIVE EXTRACTORS
# ═══════════════════════════════════════════════════════════════════════════════

SEPARATOR_RE = re.compile(r"^---+$")
LABEL_RE = re.compile(r"\\label\{([^}]+)\}")
COLOR_RE = re.compile(r"^%\s*color:\s*(.+)$")
FRONTMATTER_LINE_RE = re.compile(r"^(\w+):\s*(.+)$")

# Strips the directive together with the whitespace around it
_LABEL_STRIP_RE = re.compile(r"\s*\\label\{[^}]*\}\s*")


def is_separator(line: str) -> bool:
    """True for a section separator line (three or more hyphens)."""
    return bool(SEPARATOR_RE.match(line.strip()))


def extract_label(latex: str) -> Optional[str]:
    """
    Return the name inside the first \\label{...} directive.

    The directive may appear anywhere in the section, on its own line or
    inline after the math. An empty ``\\label{}`` does not count.
    """
    match = LABEL_RE.search(latex)
    return match.group(1) if match else None


def extract_color(latex: str) -> Optional[str]:
    """
    Return the value of a trailing ``% color: <value>`` directive.

    Only the last non-blank line is inspected, so a color comment followed by
    more LaTeX is ignored.
    """
    for line in reversed(latex.split("\n")):
        stripped = line.strip()
        if not stripped:
            continue
        match = COLOR_RE.match(stripped)
        return match.group(1).strip() if match else None
    return None


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def strip_label(latex: str) -> str:
    """Remove every \\label{...} directive; the engine does not understand it."""
    return _LABEL_STRIP_RE.sub(" ", latex).strip()


def is_frontmatter(content: str) -> bool:
    """
    Check whether a section reads as frontmatter rather than an equation.

    Blank lines and %-comments are skipped. Every other line must be a
    ``key: value`` pair, at least one must exist, and a backslash anywhere in
    the section (a LaTeX command) disqualifies it.
    """
    if "\\" in content:
        return False

    has_key_value = False
    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("%"):
            continue
        if not FRONTMATTER_LINE_RE.match(stripped):
            return False
        has_key_value = True

    return has_key_value


def parse_frontmatter(content: str) -> DocumentFrontmatter:
    """Parse key: value lines into DocumentFrontmatter (``color`` is recognized)."""
    frontmatter = DocumentFrontmatter()

    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped or stripped.startswith("%"):
            continue
        match = FRONTMATTER_LINE_RE.match(stripped)
        if not match:
            continue
        key, value = match.group(1), match.group(2).strip()
        if key == "color":
            frontmatter.color = value
        else:
            frontmatter.extra[key] = value

    return frontmatter


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT PARSER
# ═══════════════════════════════════════════════════════════════════════════════


class DocumentParser:
    """Parses a delimited document into frontmatter + equations"""

    def __init__(self, id_factory: Optional[IdFactory] = None):
        self.id_factory = id_factory or new_equation_id

    def parse(
        self,
        text: str,
        previous_equations: Optional[Sequence[Equation]] = None,
    ) -> ParsedDocument:
        """
        Parse document text.

        Args:
            text: Raw document text
            previous_equations: Equations from the previous parse; ids are
                carried over by position (see eq_identity.reconcile_ids)

        Returns:
            ParsedDocument with frontmatter and ordered equations
        """
        lines = [line.rstrip("\r") for line in text.split("\n")]
        frontmatter = DocumentFrontmatter()
        drafts: List[Equation] = []

        unlabeled_count = 0
        is_first_section = True
        current: List[str] = []
        start_line = 0

        def flush(end_line: int) -> None:
            nonlocal unlabeled_count, is_first_section, frontmatter
            content = "\n".join(current).strip()
            if not content:
                return

            if is_first_section and is_frontmatter(content):
                frontmatter = parse_frontmatter(content)
                logger.debug("Frontmatter section at lines %d-%d", start_line, end_line)
            else:
                label = extract_label(content)
                if label is None:
                    unlabeled_count += 1
                    label = "eq{n}".format(n=unlabeled_count)
                drafts.append(
                    Equation(
                        id="",
                        label=label,
                        latex=content,
                        start_line=start_line,
                        end_line=end_line,
                        color=extract_color(content),
                    )
                )
            is_first_section = False

        for i, line in enumerate(lines):
            if is_separator(line):
                flush(i - 1)
                current = []
                start_line = i + 1
            else:
                current.append(line)

        flush(len(lines) - 1)

        equations = reconcile_ids(drafts, previous_equations or [], self.id_factory)
        return ParsedDocument(frontmatter=frontmatter, equations=equations)


def parse_document(
    text: str,
    previous_equations: Optional[Sequence[Equation]] = None,
    id_factory: Optional[IdFactory] = None,
) -> ParsedDocument:
    """Parse document text with a default DocumentParser."""
    return DocumentParser(id_factory=id_factory).parse(text, previous_equations)


# ═══════════════════════════════════════════════════════════════════════════════
# FILE READING
# ═══════════════════════════════════════════════════════════════════════════════


def read_document_file(file_path: Union[str, Path]) -> str:
    """
    Read document text with encoding detection. Line endings come back as "\n".

    Strategy:
        1. UTF-8 BOM
        2. Strict UTF-8
        3. charset_normalizer statistical detection
        4. CP1252 as a last resort

    Raises:
        FileNotFoundError: If the file does not exist
        UnicodeDecodeError: If no strategy decodes the file
    """
    return normalize_newlines(_decode_document(Path(file_path).read_bytes(), file_path))


def _decode_document(raw_bytes: bytes, file_path: Union[str, Path]) -> str:

    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        return raw_bytes.decode("utf-8-sig")

    try:
        return raw_bytes.decode("utf-8")
    except UnicodeDecodeError:
        pass

    result = from_bytes(raw_bytes).best()
    if result is not None and result.encoding:
        logger.debug("Encoding detected by charset_normalizer: %s", result.encoding)
        return str(result)

    logger.warning("Could not detect encoding of %s; decoding as cp1252", file_path)
    return raw_bytes.decode("cp1252")


def parse_document_file(file_path: Union[str, Path]) -> ParsedDocument:
    """Read and parse a document file."""
    parsed = parse_document(read_document_file(file_path))

    logger.info(
        "Parsed %s: %d equations, frontmatter color=%s",
        file_path,
        len(parsed.equations),
        parsed.frontmatter.color or "-",
    )
    return parsed
