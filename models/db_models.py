from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any

from models.filter_models import ActiveSet, active_set_from_indices


@dataclass
class Project:
    id: int
    name: str
    layer_filename: str
    style_filename: str
    style_name: str
    sld_content: str
    geometry_type: str
    bbox_minx: float | None
    bbox_miny: float | None
    bbox_maxx: float | None
    bbox_maxy: float | None
    feature_count: int
    attribute_schema: dict[str, str]
    active_rule_indices: list[int]
    show_unmatched: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row) -> "Project":
        return cls(
            id=row["id"],
            name=row["name"],
            layer_filename=row["layer_filename"],
            style_filename=row["style_filename"],
            style_name=row["style_name"],
            sld_content=row["sld_content"],
            geometry_type=row["geometry_type"],
            bbox_minx=row["bbox_minx"],
            bbox_miny=row["bbox_miny"],
            bbox_maxx=row["bbox_maxx"],
            bbox_maxy=row["bbox_maxy"],
            feature_count=row["feature_count"],
            attribute_schema=json.loads(row["attribute_schema"] or "{}"),
            active_rule_indices=json.loads(row["active_rule_indices"] or "[]"),
            show_unmatched=bool(row["show_unmatched"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def has_bbox(self) -> bool:
        return all(v is not None for v in [self.bbox_minx, self.bbox_miny, self.bbox_maxx, self.bbox_maxy])

    @property
    def active_set(self) -> ActiveSet:
        return active_set_from_indices(self.active_rule_indices)


@dataclass
class Feature:
    id: int
    project_id: int
    fid: str
    geometry: bytes | None
    properties: dict[str, Any]

    @classmethod
    def from_row(cls, row) -> "Feature":
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            fid=row["fid"],
            geometry=row["geometry"],
            properties=json.loads(row["properties"] or "{}"),
        )
