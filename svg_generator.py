"""
Self-describing SVG assembly.

Takes engine output for one or more equations and lays it out into a single
SVG document: equations stacked top to bottom, each wrapped in a group that
carries its LaTeX as data-* attributes, with the metadata block as the first
child of the root element.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging
import re

from svg_metadata import (
    BBox,
    EquationRecord,
    RendererMetadata,
    build_group_open_tag,
    build_metadata_element,
    create_metadata,
    escape_xml_attribute,
)


logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════════

SVG_NAMESPACE = "http://www.w3.org/2000/svg"

DEFAULT_WIDTH = 100.0
DEFAULT_HEIGHT = 40.0
EMPTY_DOCUMENT_WIDTH = 100.0
EMPTY_DOCUMENT_HEIGHT = 50.0

VIEWBOX_SCALE = 0.05
PX_PER_EX = 8.0

_SVG_OPEN_RE = re.compile(r"<svg\b[^>]*>", re.DOTALL)
_SVG_INNER_RE = re.compile(r"<svg\b[^>]*>(.*)</svg>", re.DOTALL)
_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(pt|ex|px)?\s*$")

_BLACK = r"(?:black|#000000|#000)"
_BLACK_ATTR_RE = re.compile(r"\b(fill|stroke)=([\"'])" + _BLACK + r"\2", re.IGNORECASE)
_BLACK_ATTR_STRIP_RE = re.compile(r"\s+(?:fill|stroke)=([\"'])" + _BLACK + r"\1", re.IGNORECASE)


# ═══════════════════════════════════════════════════════════════════════════════
# DATA MODELS
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class RenderedEquation:
    """One equation plus the engine output it was rendered to"""

    equation_id: str
    latex: str  # source latex, label directive included
    fragment: Optional[str]  # engine SVG markup; None when rendering failed
    display_mode: str = "block"
    label: Optional[str] = None
    environment: Optional[str] = None
    preamble_override: Optional[str] = None
    custom_data: Dict[str, Any] = field(default_factory=dict)
    color: Optional[str] = None  # overrides the document color
    error: Optional[str] = None


@dataclass
class GeneratedSvg:
    """Result of generate_svg"""

    svg: str
    metadata: Optional[RendererMetadata] = None
    errors: List[str] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# FRAGMENT MEASUREMENT
# ═══════════════════════════════════════════════════════════════════════════════


def format_number(value: float) -> str:
    """Render a length without trailing zeros (``12.5``, ``40``)."""
    text = "{:.3f}".format(value).rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def _attribute(tag: str, name: str) -> Optional[str]:
    match = re.search(r"\b" + name + r"\s*=\s*([\"'])(.*?)\1", tag, re.DOTALL)
    return match.group(2) if match else None


def _length_px(value: Optional[str]) -> Optional[float]:
    """Convert an SVG length to pixels; None for missing or relative lengths."""
    if value is None:
        return None
    match = _LENGTH_RE.match(value)
    if not match:
        return None

    number, unit = float(match.group(1)), match.group(2)
    if unit == "pt":
        return number * 4.0 / 3.0
    if unit == "ex":
        return number * PX_PER_EX
    return number


def measure_fragment(fragment: str) -> Tuple[str, float, float, str]:
    """
    Read the geometry of an engine SVG fragment.

    Width and height come from the root's width/height attributes when they
    are absolute lengths; otherwise from the viewBox scaled by VIEWBOX_SCALE.

    Args:
        fragment: SVG markup produced by the engine

    Returns:
        (view_box, width, height, inner_markup)
    """
    open_tag = _SVG_OPEN_RE.search(fragment)
    tag = open_tag.group(0) if open_tag else ""

    view_box = _attribute(tag, "viewBox")
    width = _length_px(_attribute(tag, "width"))
    height = _length_px(_attribute(tag, "height"))

    if view_box and (width is None or height is None):
        parts = view_box.replace(",", " ").split()
        try:
            vb_width, vb_height = float(parts[2]), float(parts[3])
        except (IndexError, ValueError):
            vb_width, vb_height = DEFAULT_WIDTH / VIEWBOX_SCALE, DEFAULT_HEIGHT / VIEWBOX_SCALE
        if width is None:
            width = (vb_width or DEFAULT_WIDTH / VIEWBOX_SCALE) * VIEWBOX_SCALE
        if height is None:
            height = (vb_height or DEFAULT_HEIGHT / VIEWBOX_SCALE) * VIEWBOX_SCALE

    if width is None:
        width = DEFAULT_WIDTH
    if height is None:
        height = DEFAULT_HEIGHT
    if not view_box:
        view_box = "0 0 {w} {h}".format(w=format_number(width), h=format_number(height))

    inner = _SVG_INNER_RE.search(fragment)
    inner_markup = inner.group(1).strip() if inner else fragment.strip()

    return view_box, width, height, inner_markup


# ═══════════════════════════════════════════════════════════════════════════════
# COLOR
# ═══════════════════════════════════════════════════════════════════════════════


def apply_color(markup: str, color: Optional[str]) -> str:
    """
    Recolor hard-coded black fills and strokes.

    With no color the black attributes are removed so the glyphs inherit
    ``fill`` from the enclosing group or the host page's CSS.
    """
    if color:
        escaped = escape_xml_attribute(color)
        return _BLACK_ATTR_RE.sub(lambda m: '{attr}="{color}"'.format(attr=m.group(1), color=escaped), markup)
    return _BLACK_ATTR_STRIP_RE.sub("", markup)


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT ASSEMBLY
# ═══════════════════════════════════════════════════════════════════════════════


def generate_svg(
    equations: List[RenderedEquation],
    global_preamble: Optional[str] = None,
    color: Optional[str] = None,
    embed_metadata: bool = True,
    engine_version: str = "unknown",
    engine_options: Optional[Dict[str, Any]] = None,
) -> GeneratedSvg:
    """
    Assemble rendered equations into one SVG document.

    Equations without a fragment are reported in ``errors`` and left out of
    both the drawing and the metadata block.

    Args:
        equations: Rendered equations in document order
        global_preamble: Preamble recorded in the metadata block
        color: Fill/stroke color for equations without their own color
            (None keeps inheritance)
        embed_metadata: Write the <metadata> block
        engine_version: Engine provenance for the metadata block
        engine_options: Engine options for the metadata block

    Returns:
        GeneratedSvg with markup, metadata (when embedded) and errors
    """
    errors: List[str] = []
    records: List[EquationRecord] = []
    groups: List[str] = []

    max_width = 0.0
    current_y = 0.0

    for eq in equations:
        if not eq.fragment:
            errors.append(
                'Error rendering equation "{latex}": {reason}'.format(
                    latex=eq.latex, reason=eq.error or "no SVG output"
                )
            )
            continue

        view_box, width, height, inner = measure_fragment(eq.fragment)
        eq_color = eq.color or color
        inner = apply_color(inner, eq_color)

        record = EquationRecord(
            id=eq.equation_id,
            latex=eq.latex,
            display_mode=eq.display_mode,
            environment=eq.environment,
            label=eq.label,
            preamble_override=eq.preamble_override,
            bbox=BBox(x=0.0, y=current_y, width=width, height=height),
            custom_data=dict(eq.custom_data),
        )
        records.append(record)

        open_tag = build_group_open_tag(
            record,
            transform="translate(0, {y})".format(y=format_number(current_y)),
            fill=eq_color,
        )
        groups.append(
            "  {open_tag}\n"
            '    <svg viewBox="{view_box}" width="{width}" height="{height}">\n'
            "      {inner}\n"
            "    </svg>\n"
            "  </g>".format(
                open_tag=open_tag,
                view_box=escape_xml_attribute(view_box),
                width=format_number(width),
                height=format_number(height),
                inner=inner,
            )
        )

        max_width = max(max_width, width)
        current_y += height

    total_width = max_width or EMPTY_DOCUMENT_WIDTH
    total_height = current_y or EMPTY_DOCUMENT_HEIGHT

    metadata = create_metadata(
        records,
        engine_version=engine_version,
        engine_options=engine_options,
        global_preamble=global_preamble,
    )

    parts = [
        '<svg xmlns="{ns}"\n'
        '     width="{w}"\n'
        '     height="{h}"\n'
        '     viewBox="0 0 {w} {h}">'.format(
            ns=SVG_NAMESPACE, w=format_number(total_width), h=format_number(total_height)
        )
    ]
    if embed_metadata:
        parts.append(build_metadata_element(metadata))
    parts.extend(groups)
    parts.append("</svg>")

    if errors:
        logger.warning("%d of %d equations could not be placed in the SVG", len(errors), len(equations))
    logger.debug("Generated SVG: %d equations, %sx%s", len(records), total_width, total_height)

    return GeneratedSvg(
        svg="\n".join(parts),
        metadata=metadata if embed_metadata else None,
        errors=errors,
    )


_INTER_TAG_WS_RE = re.compile(r">\s+<")
_ATTR_BREAK_RE = re.compile(r"\s*\n\s*(?=[A-Za-z_:][-\w:.]*=[\"'])")


def minify_svg(svg: str) -> str:
    """
    Drop layout whitespace between tags and between attributes.

    Text content and attribute values are left alone, so the metadata block
    and data-latex attributes survive byte for byte.
    """
    svg = _ATTR_BREAK_RE.sub(" ", svg)
    svg = _INTER_TAG_WS_RE.sub("><", svg)
    return svg.strip()
