"""
Editing session for one equation document.

EquationSession owns everything tied to a single open document: the raw
text, the parsed equations, the render cache and the request tracker. No
state is shared between sessions.

Typical flow:
    session = EquationSession(text, engine=engine)
    session.set_document(edited_text)     # parse now, render later
    session.render_if_due()               # after the debounce window
    svg = session.rendered_svg(equation_id)
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging
import re
import time

from app_config import AppConfig
from doc_mutation import MutationResult, add_empty_section, delete_section
from eq_identity import EditCoalescer, RenderCache, RenderDecision, RenderTracker
from eq_importer import ImportSession, ImportStateError
from eq_parser import (
    DocumentFrontmatter,
    DocumentParser,
    Equation,
    ParsedDocument,
    normalize_newlines,
    strip_label,
)
from project_file import ProjectData, create_project_data, safe_write_text
from render_engine import EngineUnavailableError, LatexSvgEngine, LatexSyntaxError, RenderEngine
from svg_generator import GeneratedSvg, RenderedEquation, generate_svg
from svg_metadata import SvgParseResult, parse_svg


logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_-]")


def safe_file_stem(label: str) -> str:
    """Label reduced to characters that are safe in a file name."""
    return _UNSAFE_FILENAME_RE.sub("_", label) or "equation"


class EquationSession:
    """One open document with its equations and rendered output"""

    def __init__(
        self,
        document: str = "",
        global_preamble: Optional[str] = None,
        engine: Optional[RenderEngine] = None,
        config: Optional[AppConfig] = None,
        id_factory: Optional[Callable[[], str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or AppConfig()
        self.engine: RenderEngine = engine or LatexSvgEngine(
            latex_command=self.config.latex_command,
            dvisvgm_command=self.config.dvisvgm_command,
            timeout=self.config.render_timeout,
        )
        self.global_preamble = global_preamble if global_preamble is not None else self.config.global_preamble

        self.parser = DocumentParser(id_factory=id_factory)
        self.cache = RenderCache()
        self.tracker = RenderTracker()
        self.coalescer = EditCoalescer(window_seconds=self.config.debounce_seconds, clock=clock)
        self.render_errors: Dict[str, str] = {}

        self.text = ""
        self.parsed = ParsedDocument()
        self.set_document(document)

    @classmethod
    def from_project(cls, project: ProjectData, **kwargs: Any) -> "EquationSession":
        kwargs.setdefault("global_preamble", project.global_preamble)
        return cls(document=project.document, **kwargs)

    # ── document state ────────────────────────────────────────────────────

    @property
    def equations(self) -> List[Equation]:
        return self.parsed.equations

    @property
    def frontmatter(self) -> DocumentFrontmatter:
        return self.parsed.frontmatter

    def find(self, equation_id: str) -> Optional[Equation]:
        return self.parsed.find(equation_id)

    def equation_at_line(self, line: int) -> Optional[Equation]:
        for eq in self.equations:
            if eq.contains_line(line):
                return eq
        return None

    def set_document(self, text: str) -> ParsedDocument:
        """
        Replace the document text.

        The text is parsed right away so ids and line ranges are always
        current; rendering waits for render_if_due(). CRLF and lone CR
        line endings become plain newlines.
        """
        text = normalize_newlines(text)
        self.parsed = self.parser.parse(text, self.equations)
        self.text = text

        self.cache.retain(self.equations)
        live_ids = {eq.id for eq in self.equations}
        self.tracker.retain(live_ids)
        for equation_id in [i for i in self.render_errors if i not in live_ids]:
            del self.render_errors[equation_id]

        self.coalescer.push()
        return self.parsed

    # ── rendering ─────────────────────────────────────────────────────────

    def render_if_due(self) -> int:
        """Render once the debounce window has passed; returns renders applied."""
        if not self.coalescer.due():
            return 0
        self.coalescer.take()
        return self.render_changed()

    def render_changed(self) -> int:
        """
        Render every equation without a current cache entry.

        A LaTeX error is recorded for that equation and the batch continues.
        An unavailable engine stops the batch; cached output is never touched
        by a failure.

        Returns:
            Number of render results applied to the cache
        """
        applied = 0

        for eq in list(self.equations):
            if not self.cache.needs_render(eq):
                continue

            token = self.tracker.begin(eq.id)
            try:
                fragment = self.engine.render(strip_label(eq.latex), self.config.display_mode, self.global_preamble)
            except LatexSyntaxError as e:
                self.record_render_failure(eq.id, eq.latex, str(e), token)
                continue
            except EngineUnavailableError as e:
                logger.error("Rendering engine unavailable: %s", e)
                self.record_render_failure(eq.id, eq.latex, str(e), token)
                break

            if self.apply_render_result(eq.id, eq.latex, fragment, token) is RenderDecision.APPLY:
                applied += 1

        return applied

    def apply_render_result(
        self,
        equation_id: str,
        latex: str,
        fragment: str,
        token: Optional[int] = None,
    ) -> RenderDecision:
        """
        Cache a render result if it still belongs to the current document.

        Results for deleted equations, for LaTeX that has since changed and
        for superseded requests are dropped.
        """
        decision = self.tracker.accept(equation_id, latex, token, self.equations)
        if decision is RenderDecision.APPLY:
            self.cache.store(equation_id, latex, fragment)
            self.render_errors.pop(equation_id, None)
        else:
            logger.debug("Dropped render result for %s: %s", equation_id, decision.name)
        return decision

    def record_render_failure(
        self,
        equation_id: str,
        latex: str,
        message: str,
        token: Optional[int] = None,
    ) -> RenderDecision:
        """Remember a render error for the equation; the cached fragment stays."""
        decision = self.tracker.accept(equation_id, latex, token, self.equations)
        if decision is RenderDecision.APPLY:
            self.render_errors[equation_id] = message
            logger.warning("Render failed for %s: %s", equation_id, message)
        return decision

    # ── export ────────────────────────────────────────────────────────────

    def color_for(self, equation: Equation) -> Optional[str]:
        return equation.color or self.frontmatter.color or self.config.default_color

    def _rendered(self, equation: Equation) -> RenderedEquation:
        return RenderedEquation(
            equation_id=equation.id,
            latex=equation.latex,
            fragment=self.cache.get(equation.id, equation.latex),
            display_mode=self.config.display_mode,
            label=equation.label,
            color=self.color_for(equation),
            error=self.render_errors.get(equation.id),
        )

    def _generate(self, equations: Sequence[Equation]) -> GeneratedSvg:
        return generate_svg(
            [self._rendered(eq) for eq in equations],
            global_preamble=self.global_preamble,
            color=self.frontmatter.color or self.config.default_color,
            embed_metadata=self.config.embed_metadata,
            engine_version=self.engine.version,
            engine_options={"displayMode": self.config.display_mode},
        )

    def rendered_svg(self, equation_id: str) -> Optional[str]:
        """Self-describing SVG for one equation, or None without a current render."""
        eq = self.find(equation_id)
        if eq is None or self.cache.needs_render(eq):
            return None
        return self._generate([eq]).svg

    def preview_fragment(self, equation_id: str) -> Optional[str]:
        """Last good engine output for an equation, even if its LaTeX has changed since."""
        entry = self.cache.entry(equation_id)
        return entry.fragment if entry is not None else None

    def export_document_svg(self, ids: Optional[Sequence[str]] = None) -> GeneratedSvg:
        """All equations (or the given ids, in document order) in one SVG."""
        if ids is None:
            selected = list(self.equations)
        else:
            wanted = set(ids)
            selected = [eq for eq in self.equations if eq.id in wanted]
        return self._generate(selected)

    def export_all(self, directory: Union[str, Path]) -> List[Path]:
        """
        Write one SVG file per rendered equation, named after its label.

        Returns:
            Paths written
        """
        out_dir = Path(directory)
        written: List[Path] = []
        used_stems: Dict[str, int] = {}

        for eq in self.equations:
            svg = self.rendered_svg(eq.id)
            if svg is None:
                logger.warning("Skipping %s: not rendered", eq.label)
                continue

            stem = safe_file_stem(eq.label)
            count = used_stems.get(stem, 0) + 1
            used_stems[stem] = count
            if count > 1:
                stem = "{stem}-{n}".format(stem=stem, n=count)

            written.append(safe_write_text(out_dir / "{stem}.svg".format(stem=stem), svg))

        logger.info("Exported %d of %d equations to %s", len(written), len(self.equations), out_dir)
        return written

    # ── edits ─────────────────────────────────────────────────────────────

    def delete_equation(self, equation_id: str) -> bool:
        eq = self.find(equation_id)
        if eq is None:
            return False
        result = delete_section(self.text, eq.start_line, eq.end_line)
        self.set_document(result.text)
        logger.info("Deleted %s", eq.label)
        return True

    def add_equation(self, cursor_line: int) -> MutationResult:
        """Open an empty section near the cursor; the result says where to type."""
        result = add_empty_section(self.text, cursor_line)
        if result.text != self.text:
            self.set_document(result.text)
        return result

    # ── import ────────────────────────────────────────────────────────────

    def begin_import(
        self,
        svg_text: str,
        insert_after_line: Optional[int] = None,
    ) -> Tuple[Optional[ImportSession], SvgParseResult]:
        """
        Start importing the equations of an SVG.

        Returns:
            (import session, parse result). The session is None when the SVG
            yields no equations; check the parse result's status to tell an
            empty SVG from an unreadable one.
        """
        result = parse_svg(svg_text)
        if not result.equations:
            if result.is_failure:
                logger.warning("SVG import failed: %s", "; ".join(result.errors))
            else:
                logger.info("SVG lists no equations")
            return None, result

        import_session = ImportSession(
            self.text,
            self.equations,
            insert_after_line=insert_after_line,
            id_factory=self.parser.id_factory,
        )
        import_session.start(result.equations)
        return import_session, result

    def finish_import(self, import_session: ImportSession) -> None:
        """Adopt the text of a completed import."""
        if not import_session.finished:
            raise ImportStateError("Import is still awaiting a decision")
        if import_session.text != self.text:
            self.set_document(import_session.text)

    # ── persistence ───────────────────────────────────────────────────────

    def to_project(self, name: Optional[str] = None) -> ProjectData:
        return create_project_data(self.text, global_preamble=self.global_preamble, name=name)
