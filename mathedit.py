"""
mathedit - LaTeX equation documents with self-describing SVG export.

Usage:
    mathedit parse equations.txt                    # List equations
    mathedit parse project.json --json              # Same, as JSON
    mathedit inspect figure.svg                     # Show embedded equations
    mathedit export equations.txt -o all.svg        # One SVG with every equation
    mathedit export equations.txt --split out/      # One SVG per equation
    mathedit import figure.svg --into equations.txt --on-duplicate keep-both
    mathedit new -o project.json --from equations.txt --name "Thesis ch. 2"

FILE arguments ending in .json are project files; anything else is a plain
``---`` delimited document.
"""

from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple
import argparse
import json
import logging
import sys
import time
import traceback

from app_config import AppConfig, ConfigError, load_config
from editor_session import EquationSession
from eq_importer import DuplicateCandidate, ImportDecision, ImportSession, ImportState
from eq_parser import parse_document, read_document_file
from project_file import (
    ProjectData,
    ProjectFormatError,
    create_project_data,
    load_project,
    safe_write_text,
    save_project,
)
from render_engine import RenderError
from svg_metadata import SvgImportError, SvgParseStatus, parse_svg


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════

PROJECT_SUFFIX = ".json"

DUPLICATE_POLICIES: Dict[str, Optional[ImportDecision]] = {
    "ask": None,
    "overwrite": ImportDecision.OVERWRITE,
    "keep-both": ImportDecision.KEEP_BOTH,
    "cancel": ImportDecision.CANCEL,
}

logger = logging.getLogger("mathedit")


# ═══════════════════════════════════════════════════════════════════════════════
# LOGGING SETUP
# ═══════════════════════════════════════════════════════════════════════════════


class LogFormatter(logging.Formatter):
    """Custom log formatter with level-based prefixes"""

    PREFIXES = {
        logging.DEBUG: "[DEBUG]",
        logging.INFO: "[INFO]",
        logging.WARNING: "[WARNING]",
        logging.ERROR: "[ERROR]",
        logging.CRITICAL: "[CRITICAL]",
    }

    def format(self, record: logging.LogRecord) -> str:
        prefix = self.PREFIXES.get(record.levelno, "[LOG]")
        return f"{prefix} {record.getMessage()}"


def setup_logging(verbose: bool = False):
    """Route every module logger through one prefixed stdout handler"""
    level = logging.DEBUG if verbose else logging.INFO
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(LogFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE FILES
# ═══════════════════════════════════════════════════════════════════════════════


def is_project_path(path: Path) -> bool:
    return path.suffix.lower() == PROJECT_SUFFIX


def load_source(path: Path) -> Tuple[str, Optional[ProjectData]]:
    """
    Read a document or project file.

    Returns:
        (document text, project) where project is None for plain documents
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if is_project_path(path):
        project = load_project(path)
        return project.document, project
    return read_document_file(path), None


def write_source(path: Path, text: str, project: Optional[ProjectData]) -> Path:
    if project is not None:
        project.document = text
        return save_project(project, path)
    return safe_write_text(path, text)


def first_line(latex: str, width: int = 48) -> str:
    line = latex.split("\n", 1)[0]
    return line if len(line) <= width else line[: width - 3] + "..."


# ═══════════════════════════════════════════════════════════════════════════════
# COMMANDS
# ═══════════════════════════════════════════════════════════════════════════════


def cmd_parse(args, config: AppConfig) -> int:
    text, _ = load_source(Path(args.file))
    parsed = parse_document(text)

    if args.json:
        payload = {
            "frontmatter": {"color": parsed.frontmatter.color, **parsed.frontmatter.extra},
            "equations": [
                {
                    "id": eq.id,
                    "label": eq.label,
                    "latex": eq.latex,
                    "startLine": eq.start_line,
                    "endLine": eq.end_line,
                    "color": eq.color,
                }
                for eq in parsed.equations
            ],
        }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0

    if parsed.frontmatter.color:
        print(f"Document color: {parsed.frontmatter.color}")
    print(f"{len(parsed.equations)} equations")
    for eq in parsed.equations:
        color = f"  [{eq.color}]" if eq.color else ""
        print(f"  {eq.label:<20} lines {eq.start_line + 1}-{eq.end_line + 1}  {first_line(eq.latex)}{color}")
    return 0


def cmd_inspect(args, config: AppConfig) -> int:
    svg_text = read_document_file(Path(args.svg))
    result = parse_svg(svg_text)

    if args.json:
        payload = {
            "status": result.status.name.lower(),
            "hasMetadata": result.has_metadata,
            "equations": [{"id": eq.id, "label": eq.label, "latex": eq.latex} for eq in result.equations],
            "errors": result.errors,
        }
        if result.metadata is not None:
            payload["generator"] = result.metadata.generator
            payload["generatorVersion"] = result.metadata.generator_version
            payload["generatedAt"] = result.metadata.generated_at
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        source = "metadata block" if result.has_metadata else "group attributes"
        print(f"Status: {result.status.name.lower()} ({source})")
        if result.metadata is not None:
            print(f"Generator: {result.metadata.generator} {result.metadata.generator_version}")
        for eq in result.equations:
            print(f"  {eq.label:<20} {eq.id}  {first_line(eq.latex)}")
        for error in result.errors:
            print(f"  ! {error}")

    return 1 if result.status is SvgParseStatus.UNREADABLE else 0


def cmd_export(args, config: AppConfig) -> int:
    text, project = load_source(Path(args.file))
    preamble = project.global_preamble if project is not None else None
    session = EquationSession(text, global_preamble=preamble, config=config)

    if not session.equations:
        logger.warning("No equations in %s", args.file)
        return 1

    started = time.time()
    session.render_changed()
    logger.info("Rendered %d equations in %.1fs", len(session.equations), time.time() - started)
    for equation_id, message in session.render_errors.items():
        eq = session.find(equation_id)
        logger.error("%s: %s", eq.label if eq else equation_id, message)

    if args.split:
        written = session.export_all(args.split)
        return 0 if written else 1

    result = session.export_document_svg()
    for error in result.errors:
        logger.warning("%s", error)
    if len(result.errors) == len(session.equations):
        logger.error("Nothing to export")
        return 1

    output_path = Path(args.output) if args.output else Path(args.file).with_suffix(".svg")
    saved = safe_write_text(output_path, result.svg)

    print(f"\n{'=' * 65}")
    print("  Export complete!")
    print(f"  Input:  {args.file}")
    print(f"  Output: {saved}")
    print(f"{'=' * 65}\n")
    return 0


def prompt_decision(candidate: DuplicateCandidate) -> Optional[ImportDecision]:
    """Ask on the terminal; None aborts the rest of the import."""
    print(
        f"\nDuplicate: '{candidate.imported.label}' matches existing "
        f"'{candidate.existing.label}' (by {candidate.reason.name.lower()})"
    )
    print(f"  existing: {first_line(candidate.existing.latex)}")
    print(f"  incoming: {first_line(candidate.imported.latex)}")

    choices = {"o": ImportDecision.OVERWRITE, "k": ImportDecision.KEEP_BOTH, "c": ImportDecision.CANCEL}
    while True:
        try:
            answer = input("[o]verwrite / [k]eep both / [c]ancel / [a]bort all: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            return None
        if answer[:1] == "a":
            return None
        if answer[:1] in choices:
            return choices[answer[:1]]


def run_import(import_session: ImportSession, policy: Optional[ImportDecision]):
    while import_session.state is ImportState.AWAITING_DECISION:
        candidate = import_session.pending
        decision = policy if policy is not None else prompt_decision(candidate)
        if decision is None:
            import_session.cancel_all()
            break
        import_session.resolve(decision)


def cmd_import(args, config: AppConfig) -> int:
    target = Path(args.into)
    if target.exists():
        text, project = load_source(target)
    else:
        text, project = "", (create_project_data("") if is_project_path(target) else None)

    svg_text = read_document_file(Path(args.svg))
    after_line = args.after_line - 1 if args.after_line is not None else None

    session = EquationSession(text, config=config)
    import_session, result = session.begin_import(svg_text, insert_after_line=after_line)

    if import_session is None:
        if result.is_failure:
            raise SvgImportError("; ".join(result.errors))
        logger.info("%s lists no equations; nothing imported", args.svg)
        return 0

    run_import(import_session, DUPLICATE_POLICIES[args.on_duplicate])
    session.finish_import(import_session)

    written = [item for item, decision in import_session.applied if decision is not ImportDecision.CANCEL]
    if not written:
        logger.info("Nothing imported")
        return 0

    saved = write_source(target, session.text, project)
    logger.info("Imported %d of %d equations into %s", len(written), len(result.equations), saved)
    return 0


def cmd_new(args, config: AppConfig) -> int:
    document = read_document_file(Path(args.source)) if args.source else ""
    project = create_project_data(document, global_preamble=config.global_preamble, name=args.name)

    output_path = Path(args.output)
    if output_path.suffix.lower() != PROJECT_SUFFIX:
        output_path = output_path.with_suffix(PROJECT_SUFFIX)

    save_project(project, output_path)
    return 0


COMMANDS = {
    "parse": cmd_parse,
    "inspect": cmd_inspect,
    "export": cmd_export,
    "import": cmd_import,
    "new": cmd_new,
}


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════


def build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser"""
    parser = argparse.ArgumentParser(
        prog="mathedit",
        description="Edit LaTeX equation documents and round-trip them through SVG",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    mathedit parse equations.txt
    mathedit inspect figure.svg --json
    mathedit export equations.txt -o all.svg --color "#0055aa"
    mathedit export project.json --split out/
    mathedit import figure.svg --into equations.txt --after-line 12
    mathedit new -o project.json --from equations.txt
        """,
    )

    parser.add_argument("--config", help="YAML config file (default: ./mathedit.yaml if present)")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose (debug) output",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("parse", help="List the equations of a document")
    p.add_argument("file", help="Document or project file")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    p = sub.add_parser("inspect", help="Show the equations embedded in an SVG")
    p.add_argument("svg", help="SVG file")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    p = sub.add_parser("export", help="Render a document to SVG")
    p.add_argument("file", help="Document or project file")
    target = p.add_mutually_exclusive_group()
    target.add_argument("-o", "--output", help="Output SVG (default: FILE with .svg suffix)")
    target.add_argument("--split", metavar="DIR", help="Write one SVG per equation into DIR")
    p.add_argument("--color", help="Color for equations without their own color directive")
    p.add_argument("--inline", action="store_true", help="Render in inline (text) math mode")
    p.add_argument("--no-metadata", action="store_true", help="Do not embed the metadata block")

    p = sub.add_parser("import", help="Merge the equations of an SVG into a document")
    p.add_argument("svg", help="SVG file exported by mathedit (or carrying equation groups)")
    p.add_argument("--into", required=True, metavar="FILE", help="Target document or project file")
    p.add_argument(
        "--on-duplicate",
        choices=list(DUPLICATE_POLICIES),
        default="ask",
        help="What to do with equations already in the document",
    )
    p.add_argument(
        "--after-line",
        type=int,
        metavar="N",
        help="Insert after the equation at line N (1-based) instead of appending",
    )

    p = sub.add_parser("new", help="Create a project file")
    p.add_argument("-o", "--output", required=True, help="Project file to write")
    p.add_argument("--from", dest="source", metavar="FILE", help="Seed the project with a document")
    p.add_argument("--name", help="Project name")

    return parser


def run(argv: Optional[Sequence[str]] = None) -> int:
    """
    Parse arguments and run one command.

    Returns:
        Exit code (0 = success, 1 = error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    try:
        config = load_config(args.config)
        if args.command == "export":
            config = config.merged(
                default_color=args.color,
                display_mode="inline" if args.inline else None,
                embed_metadata=False if args.no_metadata else None,
            )
        return COMMANDS[args.command](args, config)

    except (FileNotFoundError, ConfigError, ProjectFormatError, SvgImportError) as e:
        logger.error("%s", e)
        return 1

    except RenderError as e:
        logger.error("Rendering failed: %s", e)
        return 1

    except Exception as e:
        logger.error("Unexpected error: %s", e)
        if args.verbose:
            traceback.print_exc()
        return 1


def main():
    """Main entry point with CLI argument parsing"""
    sys.exit(run())


if __name__ == "__main__":
    main()
