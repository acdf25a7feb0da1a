import logging
import shutil
import sqlite3
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from config import settings
from database import get_db
from models.api_models import ProjectResponse
from models.db_models import Feature, Project
from models.filter_models import StyleRule
from services.analysis_service import analyze
from services.geometry_service import geom_to_geojson, wkb_to_geom
from services.import_service import SUPPORTED_EXTENSIONS, load_features, store_features
from services.style_service import StyleParseError, parse_sld

logger = logging.getLogger(__name__)

router = APIRouter()


def project_response(project: Project) -> dict:
    bbox = (
        [project.bbox_minx, project.bbox_miny, project.bbox_maxx, project.bbox_maxy]
        if project.has_bbox
        else None
    )
    return {
        "id": project.id,
        "name": project.name,
        "layer_filename": project.layer_filename,
        "style_filename": project.style_filename,
        "style_name": project.style_name,
        "geometry_type": project.geometry_type,
        "bbox": bbox,
        "feature_count": project.feature_count,
        "rule_count": len(project_rules(project)),
        "attribute_schema": project.attribute_schema,
        "created_at": project.created_at,
        "updated_at": project.updated_at,
    }


def get_project_or_404(project_id: int, db: sqlite3.Connection) -> Project:
    row = db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return Project.from_row(row)


def project_rules(project: Project) -> tuple[StyleRule, ...]:
    # Stored documents were validated on upload
    return parse_sld(project.sld_content).rules


def project_features(project_id: int, db: sqlite3.Connection) -> list[Feature]:
    rows = db.execute(
        "SELECT * FROM features WHERE project_id = ? ORDER BY id ASC", (project_id,)
    ).fetchall()
    return [Feature.from_row(r) for r in rows]


# ── List ──────────────────────────────────────────────────────────────────────

@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(db: sqlite3.Connection = Depends(get_db)):
    rows = db.execute("SELECT * FROM projects ORDER BY created_at DESC, id DESC").fetchall()
    return [project_response(Project.from_row(r)) for r in rows]


# ── Create (layer file + SLD) ─────────────────────────────────────────────────

@router.post("/projects", response_model=ProjectResponse, status_code=201)
async def create_project(
    layer_file: UploadFile = File(...),
    sld_file: UploadFile = File(...),
    name: str | None = Form(default=None),
    srid: int = Form(default=4326),
    lat_field: str | None = Form(default=None),
    lon_field: str | None = Form(default=None),
    db: sqlite3.Connection = Depends(get_db),
):
    layer_filename = layer_file.filename or "layer"
    suffix = Path(layer_filename).suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type '{suffix}'. Allowed: {', '.join(sorted(SUPPORTED_EXTENSIONS))}",
        )

    # Style first: a broken SLD aborts before any feature is read
    sld_content = (await sld_file.read()).decode("utf-8-sig", errors="replace")
    try:
        style = parse_sld(sld_content)
    except StyleParseError as e:
        raise HTTPException(status_code=422, detail=str(e))

    uploads_dir = Path(settings.uploads_dir)
    uploads_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = uploads_dir / f"upload_{Path(layer_filename).name}"

    try:
        with open(tmp_path, "wb") as dst:
            shutil.copyfileobj(layer_file.file, dst)
        loaded = load_features(
            tmp_path,
            source_srid=srid,
            lat_field=lat_field or None,
            lon_field=lon_field or None,
        )
    except (ValueError, ImportError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    finally:
        tmp_path.unlink(missing_ok=True)

    if len(loaded.features) > settings.max_features_per_project:
        raise HTTPException(
            status_code=422,
            detail=f"Layer has {len(loaded.features)} features; limit is {settings.max_features_per_project}",
        )

    # Project row and features commit together or not at all
    try:
        with db:
            cur = db.execute(
                """INSERT INTO projects (name, layer_filename, style_filename, style_name, sld_content)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    name or layer_filename,
                    layer_filename,
                    sld_file.filename or "",
                    style.name,
                    sld_content,
                ),
            )
            project_id = cur.lastrowid
            store_features(project_id, loaded, db)
    except sqlite3.Error as e:
        logger.error("Storing %s failed: %s", layer_filename, e)
        raise HTTPException(status_code=422, detail=f"Failed to store features: {e}")

    logger.info("Created project %d (%s) with %d rules", project_id, layer_filename, len(style.rules))
    return project_response(get_project_or_404(project_id, db))


# ── Get ───────────────────────────────────────────────────────────────────────

@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(project_id: int, db: sqlite3.Connection = Depends(get_db)):
    return project_response(get_project_or_404(project_id, db))


# ── Delete ────────────────────────────────────────────────────────────────────

@router.delete("/projects/{project_id}", status_code=204)
def delete_project(project_id: int, db: sqlite3.Connection = Depends(get_db)):
    get_project_or_404(project_id, db)
    with db:
        db.execute("DELETE FROM projects WHERE id = ?", (project_id,))


# ── Classified features (GeoJSON) ─────────────────────────────────────────────

@router.get("/projects/{project_id}/features")
def project_feature_collection(project_id: int, db: sqlite3.Connection = Depends(get_db)):
    project = get_project_or_404(project_id, db)
    features = project_features(project_id, db)
    analysis = analyze(project_rules(project), [f.properties for f in features])

    out = []
    for feat, props in zip(features, analysis.features):
        geom_json = None
        if feat.geometry:
            try:
                geom_json = geom_to_geojson(wkb_to_geom(bytes(feat.geometry)))
            except Exception:
                logger.warning("Unreadable geometry for feature %s", feat.fid)
        out.append({
            "type": "Feature",
            "id": feat.fid,
            "geometry": geom_json,
            "properties": props,
        })

    return JSONResponse({
        "type": "FeatureCollection",
        "features": out,
        "numberMatched": analysis.matched_count,
        "numberUnmatched": analysis.unmatched_count,
    })
