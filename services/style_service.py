"""
SLD 1.0 / SE 1.1 style document parser.

Produces the ordered StyleRule list the analysis engine consumes. Elements
are matched by local name so both the ``sld:``/``ogc:`` and ``se:``
vocabularies are accepted. Parsing is all-or-nothing: any problem raises
StyleParseError and no rules are returned.
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any

from models.filter_models import (
    DEFAULT_RULE_NAME,
    EMPTY,
    Comparison,
    FilterExpr,
    Logical,
    Negation,
    ScaleRange,
    StyleRule,
    UnsupportedFilter,
    parse_number,
)

logger = logging.getLogger(__name__)

_COMPARISON_TAGS = {
    "PropertyIsEqualTo": "eq",
    "PropertyIsNotEqualTo": "neq",
    "PropertyIsGreaterThan": "gt",
    "PropertyIsGreaterThanOrEqualTo": "gte",
    "PropertyIsLessThan": "lt",
    "PropertyIsLessThanOrEqualTo": "lte",
}

_LOGICAL_TAGS = {"And": "and", "Or": "or"}


class StyleParseError(ValueError):
    def __init__(self, detail: str):
        super().__init__(f"Failed to parse SLD: {detail}")
        self.detail = detail


@dataclass(frozen=True)
class ParsedStyle:
    name: str
    rules: tuple[StyleRule, ...]


# ── Public entry point ────────────────────────────────────────────────────────

def parse_sld(content: str | bytes) -> ParsedStyle:
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise StyleParseError(f"malformed XML: {exc}") from exc

    if _local(root) != "StyledLayerDescriptor":
        raise StyleParseError(f"expected StyledLayerDescriptor, got {_local(root)}")

    style_name = ""
    rules: list[StyleRule] = []
    for named_layer in _children(root, "NamedLayer", "UserLayer"):
        for user_style in _children(named_layer, "UserStyle"):
            if not style_name:
                style_name = _child_text(user_style, "Name") or _child_text(named_layer, "Name")
            for fts in _children(user_style, "FeatureTypeStyle"):
                for rule_elem in _children(fts, "Rule"):
                    rules.append(_parse_rule(rule_elem))

    if not rules:
        raise StyleParseError("no rules found")

    logger.info("Parsed SLD style %r with %d rules", style_name, len(rules))
    return ParsedStyle(name=style_name, rules=tuple(rules))


# ── Rules ─────────────────────────────────────────────────────────────────────

def _parse_rule(elem: ET.Element) -> StyleRule:
    name = _child_text(elem, "Name") or DEFAULT_RULE_NAME

    filter_elem = _first_child(elem, "Filter")
    expr: FilterExpr = EMPTY
    if filter_elem is not None:
        operands = list(filter_elem)
        if len(operands) != 1:
            raise StyleParseError(f"rule '{name}': Filter must have exactly one child")
        expr = _parse_filter_element(operands[0])

    return StyleRule(
        name=name,
        filter=expr,
        symbolizers=tuple(_parse_symbolizers(elem)),
        scale_range=_parse_scale_range(elem, name),
    )


def _parse_scale_range(elem: ET.Element, rule_name: str) -> ScaleRange | None:
    bounds = {}
    for tag, key in (("MinScaleDenominator", "min"), ("MaxScaleDenominator", "max")):
        raw = _child_text(elem, tag)
        if raw:
            try:
                bounds[key] = float(raw)
            except ValueError:
                raise StyleParseError(f"rule '{rule_name}': invalid {tag} '{raw}'")
    return ScaleRange(**bounds) if bounds else None


# ── Filters ───────────────────────────────────────────────────────────────────

def _parse_filter_element(elem: ET.Element) -> FilterExpr:
    tag = _local(elem)

    if tag in _COMPARISON_TAGS:
        prop = _child_text(elem, "PropertyName") or _child_text(elem, "ValueReference")
        literal_elem = _first_child(elem, "Literal")
        if not prop or literal_elem is None:
            raise StyleParseError(f"{tag} needs a PropertyName and a Literal")
        return Comparison(_COMPARISON_TAGS[tag], prop, coerce_literal(literal_elem.text))

    if tag in _LOGICAL_TAGS:
        operands = tuple(_parse_filter_element(child) for child in elem)
        if not operands:
            raise StyleParseError(f"{tag} has no operands")
        return Logical(_LOGICAL_TAGS[tag], operands)

    if tag == "Not":
        children = list(elem)
        if len(children) != 1:
            raise StyleParseError("Not must have exactly one operand")
        return Negation(_parse_filter_element(children[0]))

    # PropertyIsLike, PropertyIsNull, PropertyIsBetween, spatial operators...
    raw: list[Any] = [tag]
    raw.extend((_local(c), (c.text or "").strip()) for c in elem)
    logger.debug("Unsupported SLD filter element %s", tag)
    return UnsupportedFilter(raw)


def coerce_literal(text: str | None) -> Any:
    if text is None:
        return ""
    value = text.strip()
    number = parse_number(value)
    return value if number is None else number


# ── Symbolizers (geostyler-style dicts) ───────────────────────────────────────

def _parse_symbolizers(rule_elem: ET.Element) -> list[dict[str, Any]]:
    result = []
    for child in rule_elem:
        tag = _local(child)
        if tag == "PointSymbolizer":
            result.append(_point_symbolizer(child))
        elif tag == "LineSymbolizer":
            result.append(_line_symbolizer(child))
        elif tag == "PolygonSymbolizer":
            result.append(_polygon_symbolizer(child))
        elif tag == "TextSymbolizer":
            result.append(_text_symbolizer(child))
    return result


def _point_symbolizer(elem: ET.Element) -> dict[str, Any]:
    sym: dict[str, Any] = {"kind": "Mark", "wellKnownName": "circle"}
    graphic = _first_child(elem, "Graphic")
    if graphic is None:
        return sym
    mark = _first_child(graphic, "Mark")
    if mark is not None:
        sym["wellKnownName"] = (_child_text(mark, "WellKnownName") or "circle").lower()
        fill = _params(_first_child(mark, "Fill"))
        stroke = _params(_first_child(mark, "Stroke"))
        _put(sym, "color", fill.get("fill"))
        _put(sym, "fillOpacity", _num(fill.get("fill-opacity")))
        _put(sym, "strokeColor", stroke.get("stroke"))
        _put(sym, "strokeWidth", _num(stroke.get("stroke-width")))
    elif _first_child(graphic, "ExternalGraphic") is not None:
        sym["kind"] = "Icon"
    size = _num(_child_text(graphic, "Size"))
    if size is not None:
        sym["radius"] = size / 2
    return sym


def _line_symbolizer(elem: ET.Element) -> dict[str, Any]:
    sym: dict[str, Any] = {"kind": "Line"}
    stroke = _params(_first_child(elem, "Stroke"))
    _put(sym, "color", stroke.get("stroke"))
    _put(sym, "width", _num(stroke.get("stroke-width")))
    _put(sym, "opacity", _num(stroke.get("stroke-opacity")))
    _put(sym, "dasharray", stroke.get("stroke-dasharray"))
    return sym


def _polygon_symbolizer(elem: ET.Element) -> dict[str, Any]:
    sym: dict[str, Any] = {"kind": "Fill"}
    fill = _params(_first_child(elem, "Fill"))
    stroke = _params(_first_child(elem, "Stroke"))
    _put(sym, "color", fill.get("fill"))
    _put(sym, "fillOpacity", _num(fill.get("fill-opacity")))
    _put(sym, "outlineColor", stroke.get("stroke"))
    _put(sym, "outlineWidth", _num(stroke.get("stroke-width")))
    return sym


def _text_symbolizer(elem: ET.Element) -> dict[str, Any]:
    sym: dict[str, Any] = {"kind": "Text"}
    label = _first_child(elem, "Label")
    if label is not None:
        prop = _child_text(label, "PropertyName")
        sym["label"] = f"{{{{{prop}}}}}" if prop else (label.text or "").strip()
    fill = _params(_first_child(elem, "Fill"))
    _put(sym, "color", fill.get("fill"))
    return sym


def _params(elem: ET.Element | None) -> dict[str, str]:
    """CssParameter / SvgParameter name -> text."""
    if elem is None:
        return {}
    return {
        p.get("name"): (p.text or "").strip()
        for p in elem
        if _local(p) in ("CssParameter", "SvgParameter") and p.get("name")
    }


def _put(sym: dict[str, Any], key: str, value: Any) -> None:
    if value is not None and value != "":
        sym[key] = value


def _num(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# ── XML helpers ───────────────────────────────────────────────────────────────

def _local(elem: ET.Element) -> str:
    return elem.tag.split("}")[-1] if "}" in elem.tag else elem.tag


def _children(parent: ET.Element, *locals_: str) -> list[ET.Element]:
    return [c for c in parent if _local(c) in locals_]


def _first_child(parent: ET.Element, local: str) -> ET.Element | None:
    for c in parent:
        if _local(c) == local:
            return c
    return None


def _child_text(parent: ET.Element, local: str) -> str:
    child = _first_child(parent, local)
    if child is None or child.text is None:
        return ""
    return child.text.strip()
