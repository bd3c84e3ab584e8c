"""
Equation import and duplicate resolution.

Equations recovered from an SVG are merged into a document one at a time.
An incoming equation is a duplicate candidate when an existing equation has
the same id, the same LaTeX once labels are stripped, or the same
hand-written label. Duplicates wait for a decision:

    CANCEL     leave the document alone
    OVERWRITE  rewrite the existing section in place
    KEEP_BOTH  add the incoming equation under a fresh ``<label>-N`` label

ImportSession is the state machine driving this (IDLE → AWAITING_DECISION →
APPLYING → ...), with decisions injected through resolve().
"""

from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Deque, Iterable, List, Optional, Sequence, Set, Tuple
import logging
import re

from doc_mutation import (
    MutationResult,
    analyze_sections,
    append_section,
    find_section_index,
    insert_section_after,
    replace_section,
)
from eq_parser import Equation, LABEL_RE, extract_label, parse_document, strip_label
from svg_metadata import ImportedEquation


logger = logging.getLogger(__name__)

AUTO_LABEL_RE = re.compile(r"^(?:eq|imported)\d+$")


# ═══════════════════════════════════════════════════════════════════════════════
# MATCHING
# ═══════════════════════════════════════════════════════════════════════════════


class MatchReason(Enum):
    """Why an incoming equation counts as already present"""

    ID = auto()
    CONTENT = auto()
    LABEL = auto()


@dataclass(frozen=True)
class DuplicateMatch:
    existing: Equation
    reason: MatchReason


def normalize_latex(latex: str) -> str:
    """LaTeX with label directives and surrounding whitespace removed."""
    return strip_label(latex)


def is_auto_label(label: Optional[str]) -> bool:
    """True for generated labels (``eq3``, ``imported2``) that carry no meaning."""
    return not label or bool(AUTO_LABEL_RE.match(label))


def find_duplicate(imported: ImportedEquation, equations: Sequence[Equation]) -> Optional[DuplicateMatch]:
    """
    Find the existing equation an incoming one collides with.

    Precedence: exact id, then normalized content, then label (hand-written
    labels only). First hit wins.
    """
    for eq in equations:
        if eq.id == imported.id:
            return DuplicateMatch(eq, MatchReason.ID)

    normalized = normalize_latex(imported.latex)
    for eq in equations:
        if normalize_latex(eq.latex) == normalized:
            return DuplicateMatch(eq, MatchReason.CONTENT)

    if not is_auto_label(imported.label):
        for eq in equations:
            if eq.label == imported.label:
                return DuplicateMatch(eq, MatchReason.LABEL)

    return None


# ═══════════════════════════════════════════════════════════════════════════════
# LABELS
# ═══════════════════════════════════════════════════════════════════════════════


def generate_unique_label(base: str, existing_labels: Iterable[str]) -> str:
    """Append -2, -3, ... to ``base`` until the label is unused."""
    taken = set(existing_labels)
    suffix = 2
    label = "{base}-{n}".format(base=base, n=suffix)
    while label in taken:
        suffix += 1
        label = "{base}-{n}".format(base=base, n=suffix)
    return label


def ensure_label(latex: str, label: str) -> str:
    """Append ``\\label{label}`` when the LaTeX has no label directive."""
    if extract_label(latex) is not None:
        return latex
    return "{latex}\n\\label{{{label}}}".format(latex=latex.rstrip(), label=label)


def relabel_latex(latex: str, old_label: str, new_label: str) -> str:
    """
    Point the label directive at ``new_label``.

    ``\\label{old_label}`` is rewritten when present, otherwise the first
    label directive is; LaTeX without one gets a directive appended.
    """
    old_directive = "\\label{" + old_label + "}"
    new_directive = "\\label{" + new_label + "}"

    if old_directive in latex:
        return latex.replace(old_directive, new_directive)
    if LABEL_RE.search(latex):
        return LABEL_RE.sub(lambda _m: new_directive, latex, count=1)
    return ensure_label(latex, new_label)


# ═══════════════════════════════════════════════════════════════════════════════
# IMPORT STATE MACHINE
# ═══════════════════════════════════════════════════════════════════════════════


class ImportDecision(Enum):
    CANCEL = auto()
    OVERWRITE = auto()
    KEEP_BOTH = auto()


class ImportState(Enum):
    IDLE = auto()
    AWAITING_DECISION = auto()
    APPLYING = auto()


@dataclass(frozen=True)
class DuplicateCandidate:
    """An incoming equation waiting for a decision"""

    imported: ImportedEquation
    existing: Equation
    reason: MatchReason


class ImportStateError(RuntimeError):
    """A decision was injected while no duplicate was pending"""


class ImportSession:
    """
    Merges imported equations into a document, one duplicate prompt at a time.

    Non-duplicates are written immediately; the first duplicate stops the
    queue until resolve() is called. The text is re-parsed after every edit
    so later candidates are matched against current line ranges.

    Usage:
        session = ImportSession(text, equations)
        session.start(imported)
        while session.state is ImportState.AWAITING_DECISION:
            session.resolve(ask_user(session.pending))
        text = session.text
    """

    def __init__(
        self,
        text: str,
        equations: Sequence[Equation],
        insert_after_line: Optional[int] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.text = text
        self.equations: List[Equation] = list(equations)
        self.insert_after_line = insert_after_line
        self.id_factory = id_factory

        self.state = ImportState.IDLE
        self.pending: Optional[DuplicateCandidate] = None
        self.applied: List[Tuple[ImportedEquation, Optional[ImportDecision]]] = []
        self.cursor_line: Optional[int] = None

        self._queue: Deque[ImportedEquation] = deque()
        self._started = False

    @property
    def finished(self) -> bool:
        return self._started and self.state is ImportState.IDLE

    def start(self, imported: Sequence[ImportedEquation]) -> ImportState:
        """Queue the incoming equations and process until the first duplicate."""
        if self.state is not ImportState.IDLE or self._started:
            raise ImportStateError("Import session already started")

        self._started = True
        self._queue.extend(imported)
        logger.info("Importing %d equations", len(self._queue))
        return self._advance()

    def resolve(self, decision: ImportDecision) -> ImportState:
        """Apply a decision to the pending duplicate and continue the queue."""
        if self.state is not ImportState.AWAITING_DECISION or self.pending is None:
            raise ImportStateError("No duplicate is awaiting a decision")

        candidate = self.pending
        self._queue.popleft()
        self.pending = None
        self.state = ImportState.APPLYING

        if decision is ImportDecision.OVERWRITE:
            self._overwrite(candidate)
        elif decision is ImportDecision.KEEP_BOTH:
            self._keep_both(candidate)
        else:
            logger.info("Skipped duplicate %s", candidate.imported.label)

        self.applied.append((candidate.imported, decision))
        return self._advance()

    def cancel_all(self) -> None:
        """Cancel the pending duplicate and drop everything still queued."""
        if self.pending is not None:
            self.applied.append((self.pending.imported, ImportDecision.CANCEL))
        if self._queue:
            logger.info("Import cancelled; %d equations not imported", len(self._queue))
        self._queue.clear()
        self.pending = None
        self.state = ImportState.IDLE

    # ── internals ──────────────────────────────────────────────────────────

    def _advance(self) -> ImportState:
        self.state = ImportState.APPLYING

        while self._queue:
            incoming = self._queue[0]
            match = find_duplicate(incoming, self.equations)
            if match is not None:
                logger.debug(
                    "Duplicate %s matches %s by %s", incoming.label, match.existing.label, match.reason.name
                )
                self.pending = DuplicateCandidate(incoming, match.existing, match.reason)
                self.state = ImportState.AWAITING_DECISION
                return self.state

            self._queue.popleft()
            latex = incoming.latex if is_auto_label(incoming.label) else ensure_label(incoming.latex, incoming.label)
            self._insert(latex)
            self.applied.append((incoming, None))

        self.state = ImportState.IDLE
        return self.state

    def _insert(self, latex: str) -> None:
        if self.insert_after_line is None:
            result = append_section(self.text, latex)
        else:
            sections = analyze_sections(self.text)
            index = find_section_index(sections, self.insert_after_line)
            result = insert_section_after(self.text, sections[index].end_line, latex)

        self._commit(result)
        if self.insert_after_line is not None and result.cursor_line is not None:
            # Keep batch order: the next import goes after this one
            self.insert_after_line = result.cursor_line + latex.count("\n")

    def _overwrite(self, candidate: DuplicateCandidate) -> None:
        existing = candidate.existing
        imported = candidate.imported
        latex = imported.latex if is_auto_label(imported.label) else ensure_label(imported.latex, imported.label)

        old_line_count = self.text.count("\n")
        result = replace_section(self.text, existing.start_line, existing.end_line, latex)
        self._commit(result)

        if self.insert_after_line is not None and existing.start_line <= self.insert_after_line:
            delta = self.text.count("\n") - old_line_count
            self.insert_after_line = max(0, self.insert_after_line + delta)
        logger.info("Overwrote %s", existing.label)

    def _keep_both(self, candidate: DuplicateCandidate) -> None:
        imported = candidate.imported
        existing_labels: Set[str] = {eq.label for eq in self.equations}
        new_label = generate_unique_label(imported.label, existing_labels)

        self._insert(relabel_latex(imported.latex, imported.label, new_label))
        logger.info("Imported %s as %s", imported.label, new_label)

    def _commit(self, result: MutationResult) -> None:
        self.text = result.text
        self.cursor_line = result.cursor_line
        self.equations = parse_document(self.text, self.equations, id_factory=self.id_factory).equations
