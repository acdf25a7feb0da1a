"""
Paint descriptions for the map client.

Turns a projected rule list into flat paint settings the client can apply
per rule. Symbolizers are passed through untouched next to the derived
paint so the client may use whichever it understands.
"""
from __future__ import annotations

from typing import Any, Mapping, Sequence

from models.filter_models import StyleRule, to_geostyler
from services.analysis_service import resolve_rule


DEFAULT_STYLE = {
    "fill_color": "#3388ff",
    "fill_opacity": 0.6,
    "stroke_color": "#ffffff",
    "stroke_width": 1.5,
    "point_radius": 6.0,
}


def render_style(rules: Sequence[StyleRule]) -> list[dict[str, Any]]:
    return [render_rule(rule) for rule in rules]


def render_rule(rule: StyleRule) -> dict[str, Any]:
    scale = rule.scale_range
    return {
        "name": rule.name,
        "filter": to_geostyler(rule.filter),
        "min_scale": scale.min if scale else None,
        "max_scale": scale.max if scale else None,
        "paint": paint_from_symbolizers(rule.symbolizers),
        "symbolizers": [dict(s) for s in rule.symbolizers],
    }


def paint_for(rules: Sequence[StyleRule], properties: Mapping[str, Any]) -> dict[str, Any] | None:
    """Paint of the first rule matching the properties, or None."""
    index = resolve_rule(rules, properties)
    if index is None:
        return None
    return paint_from_symbolizers(rules[index].symbolizers)


def paint_from_symbolizers(symbolizers: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    paint = dict(DEFAULT_STYLE)
    for sym in symbolizers:
        kind = sym.get("kind")
        if kind == "Fill":
            _set(paint, "fill_color", sym.get("color"))
            _set(paint, "fill_opacity", sym.get("fillOpacity"))
            _set(paint, "stroke_color", sym.get("outlineColor"))
            _set(paint, "stroke_width", sym.get("outlineWidth"))
        elif kind == "Line":
            _set(paint, "stroke_color", sym.get("color"))
            _set(paint, "stroke_width", sym.get("width"))
        elif kind in ("Mark", "Icon"):
            _set(paint, "fill_color", sym.get("color"))
            _set(paint, "fill_opacity", sym.get("fillOpacity"))
            _set(paint, "stroke_color", sym.get("strokeColor"))
            _set(paint, "stroke_width", sym.get("strokeWidth"))
            _set(paint, "point_radius", sym.get("radius"))
    return paint


def _set(paint: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        paint[key] = value
