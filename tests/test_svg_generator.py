"""
Tests for svg_generator module.

Tests SVG document assembly including:
- Fragment measurement (units, viewBox fallback)
- Color replacement and removal
- Vertical layout and root dimensions
- Metadata embedding and the export → import round trip
"""

import pytest
from svg_generator import (
    RenderedEquation,
    apply_color,
    format_number,
    generate_svg,
    measure_fragment,
    minify_svg,
)
from svg_metadata import parse_svg


DVISVGM_FRAGMENT = (
    "<?xml version='1.0' encoding='UTF-8'?>\n"
    "<svg version='1.1' xmlns='http://www.w3.org/2000/svg' width='30pt' height='12pt' "
    "viewBox='0 -9 30 12'>\n"
    "<g id='page1'>\n<path d='M1 1L2 2' fill='black'/>\n</g>\n"
    "</svg>"
)

VIEWBOX_ONLY_FRAGMENT = '<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 -800 2000 1000"><path d="M0"/></svg>'


def rendered(equation_id, latex, fragment=DVISVGM_FRAGMENT, **kwargs):
    return RenderedEquation(equation_id=equation_id, latex=latex, fragment=fragment, **kwargs)


# ═══════════════════════════════════════════════════════════════════════════════
# MEASUREMENT
# ═══════════════════════════════════════════════════════════════════════════════


class TestMeasureFragment:
    """Tests for reading fragment geometry."""

    def test_point_units(self):
        view_box, width, height, inner = measure_fragment(DVISVGM_FRAGMENT)

        assert view_box == "0 -9 30 12"
        assert width == pytest.approx(40.0)
        assert height == pytest.approx(16.0)
        assert inner.startswith("<g id='page1'>")
        assert "<svg" not in inner

    def test_ex_units(self):
        _, width, height, _ = measure_fragment('<svg width="2.5ex" height="1ex"><g/></svg>')
        assert (width, height) == (20.0, 8.0)

    def test_viewbox_scaled_when_no_absolute_size(self):
        _, width, height, _ = measure_fragment(VIEWBOX_ONLY_FRAGMENT)
        assert width == pytest.approx(100.0)
        assert height == pytest.approx(50.0)

    def test_percentage_width_ignored(self):
        _, width, _, _ = measure_fragment('<svg width="100%" height="10px" viewBox="0 0 400 200"></svg>')
        assert width == pytest.approx(20.0)

    def test_defaults_without_geometry(self):
        view_box, width, height, _ = measure_fragment("<svg><g/></svg>")
        assert (width, height) == (100.0, 40.0)
        assert view_box == "0 0 100 40"

    def test_format_number(self):
        assert format_number(40.0) == "40"
        assert format_number(12.5) == "12.5"
        assert format_number(1 / 3) == "0.333"


# ═══════════════════════════════════════════════════════════════════════════════
# COLOR
# ═══════════════════════════════════════════════════════════════════════════════


class TestApplyColor:
    """Tests for recoloring black glyphs."""

    def test_replaces_black_variants(self):
        markup = "<path fill=\"black\"/><path stroke='#000'/><path fill=\"#000000\"/>"
        result = apply_color(markup, "#ff0000")

        assert result == "<path fill=\"#ff0000\"/><path stroke=\"#ff0000\"/><path fill=\"#ff0000\"/>"

    def test_other_colors_untouched(self):
        assert apply_color('<path fill="white"/>', "red") == '<path fill="white"/>'

    def test_removes_black_without_color(self):
        assert apply_color('<path d="M0" fill="black" stroke="black"/>', None) == '<path d="M0"/>'


# ═══════════════════════════════════════════════════════════════════════════════
# DOCUMENT ASSEMBLY
# ═══════════════════════════════════════════════════════════════════════════════


class TestGenerateSvg:
    """Tests for whole-document generation."""

    def test_root_and_metadata_first(self):
        result = generate_svg([rendered("abc", "x^2", label="eq1")], engine_version="dvisvgm 3.2")

        assert result.svg.startswith('<svg xmlns="http://www.w3.org/2000/svg"')
        body = result.svg.split(">", 1)[1].lstrip()
        assert body.startswith('<metadata id="latex-equations" data-type="application/json">')
        assert result.svg.rstrip().endswith("</svg>")
        assert result.metadata.engine_version == "dvisvgm 3.2"
        assert result.errors == []

    def test_stacks_vertically(self):
        result = generate_svg([rendered("a", "x"), rendered("b", "y")])

        assert 'transform="translate(0, 0)"' in result.svg
        assert 'transform="translate(0, 16)"' in result.svg
        assert 'width="40"\n     height="32"' in result.svg
        assert [eq.bbox.y for eq in result.metadata.equations] == [0.0, 16.0]

    def test_empty_document_defaults(self):
        result = generate_svg([])
        assert 'viewBox="0 0 100 50"' in result.svg

    def test_color_sets_group_fill(self):
        result = generate_svg([rendered("a", "x")], color="#123456")

        assert 'fill="#123456"' in result.svg
        assert "fill='black'" not in result.svg

    def test_equation_color_overrides_document_color(self):
        result = generate_svg([rendered("a", "x", color="blue"), rendered("b", "y")], color="green")

        groups = result.svg.split('<g id="')
        assert 'fill="blue"' in groups[1]
        assert 'fill="green"' in groups[2]

    def test_no_color_strips_black(self):
        result = generate_svg([rendered("a", "x")])
        assert "fill='black'" not in result.svg
        assert "fill=" not in result.svg.split('<g id="')[1]

    def test_without_metadata(self):
        result = generate_svg([rendered("a", "x")], embed_metadata=False)

        assert "<metadata" not in result.svg
        assert result.metadata is None
        assert 'data-role="latex-equation"' in result.svg

    def test_missing_fragment_reported(self):
        result = generate_svg([rendered("a", "\\frac{", fragment=None, error="Missing } inserted"), rendered("b", "y")])

        assert result.errors == ['Error rendering equation "\\frac{": Missing } inserted']
        assert [eq.id for eq in result.metadata.equations] == ["b"]

    def test_round_trip_through_parser(self):
        """Generated SVG imports back with the same ids, latex and labels."""
        equations = [
            rendered("abc", "x^2", label="eq1"),
            rendered("def", "a < b & c\n\\label{eq:ineq}", label="eq:ineq"),
        ]
        result = parse_svg(generate_svg(equations, global_preamble="\\usepackage{bm}").svg)

        assert result.has_metadata
        assert [(eq.id, eq.latex, eq.label) for eq in result.equations] == [
            ("abc", "x^2", "eq1"),
            ("def", "a < b & c\n\\label{eq:ineq}", "eq:ineq"),
        ]
        assert result.metadata.global_preamble == "\\usepackage{bm}"

    def test_fallback_recovers_without_metadata(self):
        svg = generate_svg([rendered("abc", "y\n\\label{eq:y}")], embed_metadata=False).svg
        result = parse_svg(svg)

        assert not result.has_metadata
        assert [(eq.id, eq.label) for eq in result.equations] == [("abc", "eq:y")]


class TestMinifySvg:
    """Tests for whitespace removal."""

    def test_collapses_layout_whitespace(self):
        svg = generate_svg([rendered("a", "x")], embed_metadata=False).svg
        minified = minify_svg(svg)

        assert "\n     data-role" not in minified
        assert ">\n" not in minified
        assert 'data-role="latex-equation"' in minified

    def test_keeps_metadata_parseable(self):
        svg = generate_svg([rendered("a", "x^2\n\\label{eq:a}", label="eq:a")]).svg
        result = parse_svg(minify_svg(svg))

        assert result.has_metadata
        assert result.equations[0].latex == "x^2\n\\label{eq:a}"
