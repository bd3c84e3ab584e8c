"""
LaTeX → SVG rendering engines.

The engine is an external collaborator: a pure function from a LaTeX string
and a display mode to SVG markup. Failures come in two kinds:

    - LatexSyntaxError: the equation itself is broken (shown per equation)
    - EngineUnavailableError: the engine is missing, crashed or timed out;
      already-rendered equations must be left untouched

LatexSvgEngine drives a TeX installation (latex + dvisvgm) through subprocess.
"""

from pathlib import Path
from typing import List, Optional, Protocol, Sequence
import logging
import re
import shutil
import subprocess
import tempfile


logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════════


class RenderError(Exception):
    """Base class for rendering failures"""


class LatexSyntaxError(RenderError):
    """The engine rejected the LaTeX source"""


class EngineUnavailableError(RenderError):
    """The engine could not be run at all"""


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE CONTRACT
# ═══════════════════════════════════════════════════════════════════════════════

DISPLAY_MODES = ("inline", "block")


class RenderEngine(Protocol):
    """LaTeX → SVG markup"""

    @property
    def version(self) -> str:
        ...

    def render(self, latex: str, display_mode: str = "block", preamble: Optional[str] = None) -> str:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# LATEX + DVISVGM ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

DOCUMENT_TEMPLATE = r"""\documentclass[preview,border=1pt]{{standalone}}
\usepackage{{amsmath}}
\usepackage{{amssymb}}
{preamble}
\begin{{document}}
{body}
\end{{document}}
"""

_TEX_ERROR_RE = re.compile(r"^! (.+)$", re.MULTILINE)
_SVG_ROOT_RE = re.compile(r"<svg\b.*</svg>", re.DOTALL)


class LatexSvgEngine:
    """
    Renders through ``latex`` (DVI output) and ``dvisvgm --no-fonts``.

    Each call compiles a standalone document in a fresh temporary directory.
    """

    def __init__(
        self,
        latex_command: str = "latex",
        dvisvgm_command: str = "dvisvgm",
        timeout: float = 30.0,
    ):
        self.latex_command = latex_command
        self.dvisvgm_command = dvisvgm_command
        self.timeout = timeout
        self._version: Optional[str] = None

    @property
    def version(self) -> str:
        """dvisvgm version string, or "unknown" when it cannot be queried."""
        if self._version is None:
            try:
                proc = self._run([self.dvisvgm_command, "--version"], cwd=None)
                self._version = proc.stdout.decode(errors="ignore").strip() or "unknown"
            except EngineUnavailableError:
                self._version = "unknown"
        return self._version

    def is_available(self) -> bool:
        return bool(shutil.which(self.latex_command) and shutil.which(self.dvisvgm_command))

    def render(self, latex: str, display_mode: str = "block", preamble: Optional[str] = None) -> str:
        """
        Render one equation.

        Args:
            latex: Equation body (no \\label directives)
            display_mode: "block" for display math, "inline" for text math
            preamble: Extra preamble lines (macros, packages)

        Returns:
            SVG markup of the equation

        Raises:
            LatexSyntaxError: latex failed on this input
            EngineUnavailableError: a tool is missing, crashed or timed out
        """
        if display_mode not in DISPLAY_MODES:
            raise ValueError("display_mode must be one of: inline, block")
        if not latex.strip():
            raise LatexSyntaxError("Empty equation")

        body = "\\[\n{latex}\n\\]".format(latex=latex) if display_mode == "block" else "${latex}$".format(latex=latex)
        source = DOCUMENT_TEMPLATE.format(preamble=preamble or "", body=body)

        with tempfile.TemporaryDirectory(prefix="mathedit-") as tmpdir:
            workdir = Path(tmpdir)
            (workdir / "equation.tex").write_text(source, encoding="utf-8")

            proc = self._run(
                [self.latex_command, "-interaction=nonstopmode", "-halt-on-error", "equation.tex"],
                cwd=workdir,
            )
            if proc.returncode != 0 or not (workdir / "equation.dvi").exists():
                log_text = proc.stdout.decode(errors="ignore")
                raise LatexSyntaxError(self._first_tex_error(log_text))

            proc = self._run(
                [self.dvisvgm_command, "--no-fonts", "--exact-bbox", "--stdout", "equation.dvi"],
                cwd=workdir,
            )
            if proc.returncode != 0:
                raise EngineUnavailableError(
                    "dvisvgm failed with return code {code}: {err}".format(
                        code=proc.returncode,
                        err=proc.stderr.decode(errors="ignore").strip(),
                    )
                )

        svg = _SVG_ROOT_RE.search(proc.stdout.decode("utf-8", errors="replace"))
        if not svg:
            raise EngineUnavailableError("dvisvgm produced no SVG output")
        return svg.group(0)

    def _run(self, cmd: Sequence[str], cwd: Optional[Path]) -> subprocess.CompletedProcess:
        logger.debug("Running: %s", " ".join(cmd))
        try:
            return subprocess.run(
                list(cmd),
                cwd=str(cwd) if cwd else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise EngineUnavailableError("{tool} not found".format(tool=cmd[0])) from e
        except subprocess.TimeoutExpired as e:
            raise EngineUnavailableError(
                "{tool} timed out after {timeout:g}s".format(tool=cmd[0], timeout=self.timeout)
            ) from e
        except OSError as e:
            raise EngineUnavailableError("{tool} could not be started: {err}".format(tool=cmd[0], err=e)) from e

    @staticmethod
    def _first_tex_error(log_text: str) -> str:
        errors: List[str] = _TEX_ERROR_RE.findall(log_text)
        if errors:
            return errors[0].strip()
        return "LaTeX compilation failed"
