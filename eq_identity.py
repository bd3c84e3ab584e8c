"""
Equation identity and render bookkeeping.

Keeps equation ids stable across re-parses of an edited document and tracks
which cached renders are still valid:

    - reconcile_ids: positional id carry-over plus collision repair
    - RenderCache: id -> (latex, fragment), invalidated when latex changes
    - RenderTracker: drops render results for deleted, edited or superseded equations
    - EditCoalescer: debounce window for edit -> render cycles

Positional matching misattributes identity when an equation is inserted or
deleted in the middle of a document: every later equation is treated as new
and re-rendered. Content hashing would instead lose identity whenever a
single equation is edited, so position stays the policy.
"""

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Optional, Sequence, Set
import logging
import time

if TYPE_CHECKING:
    from eq_parser import Equation


logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ID RECONCILIATION
# ═══════════════════════════════════════════════════════════════════════════════


def reconcile_ids(
    equations: Sequence["Equation"],
    previous: Sequence["Equation"],
    id_factory: Callable[[], str],
) -> List["Equation"]:
    """
    Assign ids to freshly parsed equations.

    Equation i inherits previous[i].id; equations beyond the previous list get
    a new id. An id already claimed earlier in the list is regenerated for the
    later equation so ids stay unique within the snapshot.

    Args:
        equations: Parsed equations in document order (ids ignored)
        previous: Equations of the prior snapshot, in document order
        id_factory: Generator for fresh ids

    Returns:
        New Equation objects carrying the reconciled ids
    """
    result: List["Equation"] = []
    seen: Set[str] = set()

    for index, eq in enumerate(equations):
        equation_id = previous[index].id if index < len(previous) else ""
        if not equation_id:
            equation_id = id_factory()

        while equation_id in seen:
            logger.debug("Duplicate equation id %s at index %d; regenerating", equation_id, index)
            equation_id = id_factory()

        seen.add(equation_id)
        result.append(replace(eq, id=equation_id))

    return result


# ═══════════════════════════════════════════════════════════════════════════════
# RENDER CACHE
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CachedRender:
    """Engine output for one version of an equation's latex"""

    latex: str
    fragment: str


class RenderCache:
    """Rendered fragments keyed by equation id, owned by one document session."""

    def __init__(self):
        self._entries: Dict[str, CachedRender] = {}

    def __contains__(self, equation_id: str) -> bool:
        return equation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, equation_id: str, latex: Optional[str] = None) -> Optional[str]:
        """Return the cached fragment, or None when missing or rendered from other latex."""
        entry = self._entries.get(equation_id)
        if entry is None:
            return None
        if latex is not None and entry.latex != latex:
            return None
        return entry.fragment

    def entry(self, equation_id: str) -> Optional[CachedRender]:
        return self._entries.get(equation_id)

    def store(self, equation_id: str, latex: str, fragment: str) -> None:
        self._entries[equation_id] = CachedRender(latex=latex, fragment=fragment)

    def discard(self, equation_id: str) -> None:
        self._entries.pop(equation_id, None)

    def needs_render(self, equation: "Equation") -> bool:
        return self.get(equation.id, equation.latex) is None

    def retain(self, equations: Sequence["Equation"]) -> List[str]:
        """
        Drop entries for ids that disappeared from the document.

        Entries whose latex changed stay as the last good render: get() with
        the new latex misses and needs_render() is true until a fresh result
        is stored.

        Returns:
            Ids of the dropped entries
        """
        current = {eq.id: eq.latex for eq in equations}
        dropped = [equation_id for equation_id in self._entries if equation_id not in current]
        for equation_id in dropped:
            del self._entries[equation_id]

        stale = sum(1 for equation_id, entry in self._entries.items() if current[equation_id] != entry.latex)
        if dropped or stale:
            logger.debug("Render cache: %d dropped, %d stale", len(dropped), stale)
        return dropped

    def is_stale(self, equation: "Equation") -> bool:
        entry = self._entries.get(equation.id)
        return entry is not None and entry.latex != equation.latex


# ═══════════════════════════════════════════════════════════════════════════════
# RENDER REQUEST TRACKING
# ═══════════════════════════════════════════════════════════════════════════════


class RenderDecision(Enum):
    """What to do with a render result that just arrived"""

    APPLY = auto()
    DISCARD_DELETED = auto()  # equation no longer exists
    DISCARD_STALE = auto()  # latex changed since the request
    DISCARD_SUPERSEDED = auto()  # a newer request for the id was issued


class RenderTracker:
    """Issues request tokens and judges results against the current snapshot."""

    def __init__(self):
        self._counter = 0
        self._latest: Dict[str, int] = {}

    def begin(self, equation_id: str) -> int:
        self._counter += 1
        self._latest[equation_id] = self._counter
        return self._counter

    def retain(self, equation_ids: Iterable[str]) -> None:
        """Forget request tokens of equations that no longer exist."""
        live = set(equation_ids)
        for equation_id in [i for i in self._latest if i not in live]:
            del self._latest[equation_id]

    def accept(
        self,
        equation_id: str,
        latex: str,
        token: Optional[int],
        equations: Sequence["Equation"],
    ) -> RenderDecision:
        """
        Decide whether a result may be cached.

        Args:
            equation_id: Id the request was issued for
            latex: Latex the request was rendered from
            token: Token returned by begin(), or None for untracked results
            equations: Current equation snapshot
        """
        latest = self._latest.get(equation_id)
        if token is not None and latest is not None and token < latest:
            return RenderDecision.DISCARD_SUPERSEDED

        current = next((eq for eq in equations if eq.id == equation_id), None)
        if current is None:
            return RenderDecision.DISCARD_DELETED
        if current.latex != latex:
            return RenderDecision.DISCARD_STALE
        return RenderDecision.APPLY


# ═══════════════════════════════════════════════════════════════════════════════
# EDIT COALESCING
# ═══════════════════════════════════════════════════════════════════════════════


class EditCoalescer:
    """Collapses bursts of edits into one render cycle."""

    def __init__(self, window_seconds: float = 0.3, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.clock = clock
        self._pending = False
        self._last_edit = 0.0

    @property
    def pending(self) -> bool:
        return self._pending

    def push(self) -> None:
        self._pending = True
        self._last_edit = self.clock()

    def due(self) -> bool:
        if not self._pending:
            return False
        return self.clock() - self._last_edit >= self.window_seconds

    def take(self) -> bool:
        """Clear the pending flag; returns whether an edit was pending."""
        was_pending = self._pending
        self._pending = False
        return was_pending
