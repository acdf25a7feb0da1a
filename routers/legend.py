import json
import sqlite3
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from database import get_db
from models.api_models import LegendResponse, ResolveRequest, ResolveResponse, StyleResponse
from models.db_models import Project
from models.filter_models import ALL_ACTIVE, ActiveSet, OnlyIndices, active_indices, to_geostyler
from services import labels
from services.analysis_service import (
    UNMATCHED_FIELD,
    analyze,
    is_rule_visible,
    project as project_rules_for_render,
    referenced_fields,
    resolve_rule,
    toggle_rule,
)
from services.filter_service import format_filter
from services.render_service import render_style
from services.scale_service import bucket_label, group_by_scale, is_active, scale_from_resolution
from routers.projects import get_project_or_404, project_features, project_rules

router = APIRouter()


def _style_response(project: Project) -> dict:
    rules = project_rules(project)
    active = project.active_set
    return {
        "project_id": project.id,
        "active_rule_indices": active_indices(active),
        "show_unmatched": project.show_unmatched,
        "rules": render_style(project_rules_for_render(rules, active, project.show_unmatched)),
    }


def _save_selection(
    project_id: int, active: ActiveSet, show_unmatched: bool, db: sqlite3.Connection
) -> Project:
    with db:
        db.execute(
            """UPDATE projects SET active_rule_indices = ?, show_unmatched = ?,
               updated_at = datetime('now') WHERE id = ?""",
            (json.dumps(active_indices(active)), int(show_unmatched), project_id),
        )
    return get_project_or_404(project_id, db)


def _split_properties(props: dict[str, Any], styling_fields: frozenset[str]):
    styling = {k: v for k, v in props.items() if k in styling_fields}
    other = {
        k: v for k, v in props.items()
        if k not in styling_fields and k != UNMATCHED_FIELD and k != "geometry"
    }
    return styling, other


# ── Legend ────────────────────────────────────────────────────────────────────

@router.get("/projects/{project_id}/legend", response_model=LegendResponse)
def get_legend(
    project_id: int,
    scale: Optional[float] = Query(default=None, gt=0),
    resolution: Optional[float] = Query(default=None, gt=0),
    language: Optional[str] = Query(default=None),
    db: sqlite3.Connection = Depends(get_db),
):
    project = get_project_or_404(project_id, db)
    rules = project_rules(project)
    features = project_features(project_id, db)
    analysis = analyze(rules, [f.properties for f in features])

    current_scale = scale
    if current_scale is None and resolution is not None:
        current_scale = scale_from_resolution(resolution)

    op_labels = labels.label_lookup(language)
    active = project.active_set
    groups = []
    for key, bucket in group_by_scale(rules).items():
        bucket_active = is_active(key, current_scale)
        label = bucket_label(key)
        groups.append({
            "scale_range": {"min": key.min, "max": key.max},
            "label": label if key.is_general else f"{labels.text(language, 'scale')}: {label}",
            "general": key.is_general,
            "active": bucket_active,
            "rules": [
                {
                    "index": i,
                    "name": analysis.stats[i].rule.name,
                    "count": analysis.stats[i].count,
                    "filter": to_geostyler(rules[i].filter),
                    "filter_text": format_filter(rules[i].filter, op_labels),
                    "symbolizers": list(rules[i].symbolizers),
                    "visible": is_rule_visible(active, i),
                    "selected": isinstance(active, OnlyIndices) and i in active.indices,
                }
                for i in bucket.rule_indices
            ],
        })

    if analysis.all_matched:
        summary = labels.text(language, "allFeaturesStyled")
    else:
        summary = f"{analysis.unmatched_count} {labels.text(language, 'unmatchedFeatures')}"

    return {
        "project_id": project.id,
        "layer_name": project.layer_filename,
        "title": labels.text(language, "legend"),
        "current_scale": current_scale,
        "total_features": analysis.total_features,
        "unmatched_count": analysis.unmatched_count,
        "all_matched": analysis.all_matched,
        "summary": summary,
        "styling_fields": sorted(analysis.referenced_fields),
        "active_rule_indices": active_indices(active),
        "show_unmatched": project.show_unmatched,
        "groups": groups,
    }


# ── Style and selection ───────────────────────────────────────────────────────

@router.get("/projects/{project_id}/style", response_model=StyleResponse)
def get_style(project_id: int, db: sqlite3.Connection = Depends(get_db)):
    return _style_response(get_project_or_404(project_id, db))


@router.post("/projects/{project_id}/rules/{index}/toggle", response_model=StyleResponse)
def toggle_rule_visibility(project_id: int, index: int, db: sqlite3.Connection = Depends(get_db)):
    project = get_project_or_404(project_id, db)
    rule_count = len(project_rules(project))
    if not 0 <= index < rule_count:
        raise HTTPException(status_code=400, detail=f"Rule index {index} out of range (0-{rule_count - 1})")
    active = toggle_rule(project.active_set, index)
    return _style_response(_save_selection(project_id, active, project.show_unmatched, db))


@router.post("/projects/{project_id}/unmatched/toggle", response_model=StyleResponse)
def toggle_unmatched(project_id: int, db: sqlite3.Connection = Depends(get_db)):
    project = get_project_or_404(project_id, db)
    return _style_response(
        _save_selection(project_id, project.active_set, not project.show_unmatched, db)
    )


@router.post("/projects/{project_id}/rules/reset", response_model=StyleResponse)
def reset_selection(project_id: int, db: sqlite3.Connection = Depends(get_db)):
    get_project_or_404(project_id, db)
    return _style_response(_save_selection(project_id, ALL_ACTIVE, False, db))


# ── Click resolution ──────────────────────────────────────────────────────────

@router.post("/projects/{project_id}/resolve", response_model=ResolveResponse)
def resolve_properties(
    project_id: int, body: ResolveRequest, db: sqlite3.Connection = Depends(get_db)
):
    project = get_project_or_404(project_id, db)
    return _resolve(project_rules(project), body.properties)


@router.get("/projects/{project_id}/features/{fid}/inspect", response_model=ResolveResponse)
def inspect_feature(project_id: int, fid: str, db: sqlite3.Connection = Depends(get_db)):
    project = get_project_or_404(project_id, db)
    row = db.execute(
        "SELECT properties FROM features WHERE project_id = ? AND fid = ?", (project_id, fid)
    ).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail=f"Feature {fid} not found")
    return _resolve(project_rules(project), json.loads(row["properties"] or "{}"))


def _resolve(rules, props: dict[str, Any]) -> dict:
    index = resolve_rule(rules, props)
    styling, other = _split_properties(props, referenced_fields(rules))
    return {
        "rule_index": index,
        "rule_name": rules[index].name if index is not None else None,
        "unmatched": index is None,
        "styling_properties": styling,
        "other_properties": other,
    }
