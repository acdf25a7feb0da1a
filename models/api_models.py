from __future__ import annotations
from typing import Any, Optional
from pydantic import BaseModel, Field


# ── Project ───────────────────────────────────────────────────────────────────

class ProjectResponse(BaseModel):
    id: int
    name: str
    layer_filename: str
    style_filename: str
    style_name: str
    geometry_type: str
    bbox: Optional[list[float]] = None   # [minx, miny, maxx, maxy] or None
    feature_count: int
    rule_count: int
    attribute_schema: dict[str, str]
    created_at: str
    updated_at: str


# ── Legend ────────────────────────────────────────────────────────────────────

class ScaleRangeModel(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class LegendRule(BaseModel):
    index: int
    name: str
    count: int
    filter: Any = None               # geostyler array form
    filter_text: str = ""
    symbolizers: list[dict[str, Any]] = Field(default_factory=list)
    visible: bool
    selected: bool


class LegendGroup(BaseModel):
    scale_range: ScaleRangeModel
    label: str
    general: bool
    active: bool
    rules: list[LegendRule]


class LegendResponse(BaseModel):
    project_id: int
    layer_name: str
    title: str
    current_scale: Optional[float] = None
    total_features: int
    unmatched_count: int
    all_matched: bool
    summary: str
    styling_fields: list[str]
    active_rule_indices: list[int]
    show_unmatched: bool
    groups: list[LegendGroup]


# ── Style ─────────────────────────────────────────────────────────────────────

class RenderedRule(BaseModel):
    name: str
    filter: Any = None
    min_scale: Optional[float] = None
    max_scale: Optional[float] = None
    paint: dict[str, Any]
    symbolizers: list[dict[str, Any]] = Field(default_factory=list)


class StyleResponse(BaseModel):
    project_id: int
    active_rule_indices: list[int]
    show_unmatched: bool
    rules: list[RenderedRule]


# ── Click resolution ──────────────────────────────────────────────────────────

class ResolveRequest(BaseModel):
    properties: dict[str, Any]


class ResolveResponse(BaseModel):
    rule_index: Optional[int] = None
    rule_name: Optional[str] = None
    unmatched: bool
    styling_properties: dict[str, Any]
    other_properties: dict[str, Any]
