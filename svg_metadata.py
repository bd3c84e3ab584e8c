"""
SVG metadata codec.

An exported SVG describes its own equations twice:

    <metadata id="latex-equations" data-type="application/json">
        { "generator": ..., "equations": [ {id, latex, label, ...} ] }
    </metadata>
    <g id="<id>-group" data-role="latex-equation" data-equation-id="<id>"
       data-latex="<escaped latex>" data-display-mode="block"> ... </g>

parse_svg reads the metadata block first and falls back to the group
attributes when the block is missing or its JSON is unreadable.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Dict, List, Optional
import json
import logging
import re
import uuid


logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════

GENERATOR_NAME = "mathedit"
GENERATOR_VERSION = "0.1.0"

METADATA_ELEMENT_ID = "latex-equations"
EQUATION_GROUP_ROLE = "latex-equation"

NO_EQUATIONS_ERROR = "No LaTeX equations found in SVG"

_METADATA_BLOCK_RE = re.compile(
    r'<metadata[^>]*?id="' + METADATA_ELEMENT_ID + r'"[^>]*?>(.*?)</metadata>',
    re.DOTALL,
)
_GROUP_TAG_RE = re.compile(r'<g\b[^>]*?data-role="' + EQUATION_GROUP_ROLE + r'"[^>]*>')
_GROUP_ID_RE = re.compile(r'data-equation-id="([^"]+)"')
_GROUP_LATEX_RE = re.compile(r'data-latex="([^"]+)"')
_FALLBACK_LABEL_RE = re.compile(r"\\label\{([\w:.-]+)\}")


# ═══════════════════════════════════════════════════════════════════════════════
# XML ESCAPING
# ═══════════════════════════════════════════════════════════════════════════════


def escape_xml_text(text: str) -> str:
    """Escape element text content (quotes are legal there)."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def escape_xml_attribute(text: str) -> str:
    """Escape a double- or single-quoted attribute value. ``&`` goes first."""
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def unescape_xml(text: str) -> str:
    """Reverse the five XML entities. ``&amp;`` goes last so ``&amp;lt;`` stays ``&lt;``."""
    return (
        text.replace("&lt;", "<")
        .replace("&gt;", ">")
        .replace("&quot;", '"')
        .replace("&apos;", "'")
        .replace("&amp;", "&")
    )


# ═══════════════════════════════════════════════════════════════════════════════
# METADATA MODEL
# ═══════════════════════════════════════════════════════════════════════════════


def _number(value: Any) -> float:
    """JSON value as a float; anything non-numeric reads as 0."""
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


@dataclass
class BBox:
    """Position of an equation inside the exported canvas"""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Any) -> "BBox":
        if not isinstance(data, dict):
            return cls()
        return cls(
            x=_number(data.get("x")),
            y=_number(data.get("y")),
            width=_number(data.get("width")),
            height=_number(data.get("height")),
        )


@dataclass
class EquationRecord:
    """One equation entry of the metadata block"""

    id: str
    latex: str
    display_mode: str = "block"  # inline | block
    environment: Optional[str] = None
    label: Optional[str] = None
    preamble_override: Optional[str] = None
    bbox: BBox = field(default_factory=BBox)
    custom_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "latex": self.latex,
            "displayMode": self.display_mode,
            "environment": self.environment,
            "label": self.label,
            "preambleOverride": self.preamble_override,
            "bbox": self.bbox.to_dict(),
            "customData": self.custom_data,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EquationRecord":
        custom = data.get("customData")
        return cls(
            id=str(data.get("id") or ""),
            latex=str(data.get("latex") or ""),
            display_mode=str(data.get("displayMode") or "block"),
            environment=_text(data.get("environment")),
            label=_text(data.get("label")),
            preamble_override=_text(data.get("preambleOverride")),
            bbox=BBox.from_dict(data.get("bbox")),
            custom_data=custom if isinstance(custom, dict) else {},
        )


@dataclass
class RendererMetadata:
    """Provenance plus equation list embedded in an exported SVG"""

    generator: str
    generator_version: str
    generated_at: str
    engine_version: str
    engine_options: Dict[str, Any] = field(default_factory=dict)
    equations: List[EquationRecord] = field(default_factory=list)
    global_preamble: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "generator": self.generator,
            "generatorVersion": self.generator_version,
            "generatedAt": self.generated_at,
        }
        if self.global_preamble is not None:
            data["globalPreamble"] = self.global_preamble
        data["engineVersion"] = self.engine_version
        data["engineOptions"] = self.engine_options
        data["equations"] = [eq.to_dict() for eq in self.equations]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RendererMetadata":
        options = data.get("engineOptions")
        return cls(
            generator=str(data.get("generator") or ""),
            generator_version=str(data.get("generatorVersion") or ""),
            generated_at=str(data.get("generatedAt") or ""),
            engine_version=str(data.get("engineVersion") or ""),
            engine_options=options if isinstance(options, dict) else {},
            equations=[
                EquationRecord.from_dict(eq) for eq in data.get("equations", []) if isinstance(eq, dict)
            ],
            global_preamble=_text(data.get("globalPreamble")),
        )


def create_metadata(
    equations: List[EquationRecord],
    engine_version: str,
    engine_options: Optional[Dict[str, Any]] = None,
    global_preamble: Optional[str] = None,
) -> RendererMetadata:
    """Build metadata stamped with this generator and the current UTC time."""
    return RendererMetadata(
        generator=GENERATOR_NAME,
        generator_version=GENERATOR_VERSION,
        generated_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        engine_version=engine_version,
        engine_options=dict(engine_options or {}),
        equations=list(equations),
        global_preamble=global_preamble,
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SERIALIZATION
# ═══════════════════════════════════════════════════════════════════════════════


def serialize_metadata(metadata: RendererMetadata, indent: str = "    ") -> str:
    """
    Pretty-print metadata as JSON ready to sit inside <metadata> text.

    ``&``, ``<`` and ``>`` are escaped; quotes are left alone since the JSON
    is element content, not an attribute value. Each line gets ``indent``.
    """
    text = escape_xml_text(json.dumps(metadata.to_dict(), indent=2, ensure_ascii=False))
    return "\n".join(indent + line for line in text.split("\n"))


def build_metadata_element(metadata: RendererMetadata) -> str:
    return (
        '  <metadata id="{element_id}" data-type="application/json">\n'
        "{body}\n"
        "  </metadata>"
    ).format(element_id=METADATA_ELEMENT_ID, body=serialize_metadata(metadata))


def build_group_open_tag(
    record: EquationRecord,
    transform: Optional[str] = None,
    fill: Optional[str] = None,
) -> str:
    """Opening <g> tag carrying the per-equation fallback attributes."""
    attrs = [
        'id="{id}-group"'.format(id=escape_xml_attribute(record.id)),
        'data-role="{role}"'.format(role=EQUATION_GROUP_ROLE),
        'data-equation-id="{id}"'.format(id=escape_xml_attribute(record.id)),
        'data-latex="{latex}"'.format(latex=escape_xml_attribute(record.latex)),
        'data-display-mode="{mode}"'.format(mode=escape_xml_attribute(record.display_mode)),
    ]
    if transform:
        attrs.append('transform="{t}"'.format(t=transform))
    if fill:
        attrs.append('fill="{fill}"'.format(fill=escape_xml_attribute(fill)))
    return "<g " + "\n     ".join(attrs) + ">"


# ═══════════════════════════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════════════════════════


class SvgParseStatus(Enum):
    """Overall outcome of parse_svg"""

    FOUND = auto()  # at least one equation recovered
    EMPTY = auto()  # understood the SVG, it lists no equations
    UNREADABLE = auto()  # nothing recoverable


@dataclass(frozen=True)
class ImportedEquation:
    """An equation recovered from an SVG"""

    id: str
    latex: str
    label: str


@dataclass
class SvgParseResult:
    """Equations recovered from an SVG plus diagnostics"""

    has_metadata: bool = False
    equations: List[ImportedEquation] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Optional[RendererMetadata] = None

    @property
    def status(self) -> SvgParseStatus:
        if self.equations:
            return SvgParseStatus.FOUND
        if self.has_metadata:
            return SvgParseStatus.EMPTY
        return SvgParseStatus.UNREADABLE

    @property
    def is_failure(self) -> bool:
        return self.status is SvgParseStatus.UNREADABLE


class SvgImportError(ValueError):
    """Raised by import_svg when an SVG yields nothing importable"""


def _new_id() -> str:
    return str(uuid.uuid4())


def _parse_metadata_block(content: str) -> RendererMetadata:
    """Decode the metadata block text. Raises ValueError on anything unusable."""
    data = json.loads(unescape_xml(content.strip()))
    if not isinstance(data, dict):
        raise ValueError("metadata is not a JSON object")
    if not isinstance(data.get("equations"), list):
        raise ValueError("metadata has no equations list")
    return RendererMetadata.from_dict(data)


def _parse_groups(svg_text: str) -> List[ImportedEquation]:
    equations: List[ImportedEquation] = []

    for match in _GROUP_TAG_RE.finditer(svg_text):
        tag = match.group(0)
        latex_match = _GROUP_LATEX_RE.search(tag)
        if not latex_match:
            continue

        latex = unescape_xml(latex_match.group(1))
        id_match = _GROUP_ID_RE.search(tag)
        label_match = _FALLBACK_LABEL_RE.search(latex)

        equations.append(
            ImportedEquation(
                id=unescape_xml(id_match.group(1)) if id_match else _new_id(),
                latex=latex,
                label=label_match.group(1) if label_match else "imported{n}".format(n=len(equations) + 1),
            )
        )

    return equations


def parse_svg(svg_text: str) -> SvgParseResult:
    """
    Recover equations from arbitrary SVG text. Never raises.

    Args:
        svg_text: SVG document text

    Returns:
        SvgParseResult; check ``status`` to tell an empty SVG from an unreadable one
    """
    errors: List[str] = []

    block = _METADATA_BLOCK_RE.search(svg_text)
    if block and block.group(1).strip():
        try:
            metadata = _parse_metadata_block(block.group(1))
        except (TypeError, ValueError) as e:
            logger.warning("Metadata block unreadable, falling back to group attributes: %s", e)
            errors.append("Failed to parse metadata JSON: {reason}".format(reason=e))
        else:
            equations = [
                ImportedEquation(
                    id=record.id or _new_id(),
                    latex=record.latex,
                    label=record.label or "imported{n}".format(n=index + 1),
                )
                for index, record in enumerate(metadata.equations)
            ]
            logger.debug("Metadata block lists %d equations", len(equations))
            return SvgParseResult(has_metadata=True, equations=equations, errors=[], metadata=metadata)

    equations = _parse_groups(svg_text)
    if equations:
        logger.debug("Recovered %d equations from group attributes", len(equations))
    else:
        errors.append(NO_EQUATIONS_ERROR)

    return SvgParseResult(has_metadata=False, equations=equations, errors=errors)


def import_svg(svg_text: str) -> List[ImportedEquation]:
    """Return the equations of an SVG, raising SvgImportError when it is unreadable."""
    result = parse_svg(svg_text)
    if result.is_failure:
        raise SvgImportError(", ".join(result.errors) or NO_EQUATIONS_ERROR)
    return result.equations
