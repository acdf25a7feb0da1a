"""
Layer file loading for GeoJSON, CSV, KML, GML, Shapefile (.zip) and
GeoPackage (.gpkg).

Loading is split in two: load_features() reads a file into attribute
records plus WGS84 geometries without touching the database, and
store_features() writes a loaded layer into the features table of a
project. A style can therefore be validated against a layer before
anything is persisted.
"""
from __future__ import annotations

import csv
import json
import logging
import math
import shutil
import sqlite3
import tempfile
import uuid
import xml.etree.ElementTree as ET
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import shapely.geometry
from shapely.geometry.base import BaseGeometry

from models.filter_models import parse_number
from services.analysis_service import UNMATCHED_FIELD
from services.geometry_service import (
    bbox_from_geom,
    find_gml_geometry,
    find_kml_geometry,
    geom_to_wkb,
    gml_to_geom,
    infer_schema,
    is_gml_geometry,
    kml_to_geom,
    local_name,
    make_transformer,
    reproject_geom,
)

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".geojson", ".json", ".csv", ".kml", ".gml", ".xml", ".zip", ".gpkg"}


@dataclass
class LoadedFeature:
    fid: str
    geometry: BaseGeometry | None
    properties: dict[str, Any]


@dataclass
class LoadResult:
    features: list[LoadedFeature] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    _fids: set[str] = field(default_factory=set, repr=False)

    def add(self, geom: BaseGeometry | None, props: dict[str, Any], fid: Any = None) -> None:
        # NaN / Infinity (GeoJSON, fiona) cannot be serialized back to JSON
        props = {
            k: None if isinstance(v, float) and not math.isfinite(v) else v
            for k, v in props.items()
            if k != UNMATCHED_FIELD
        }
        key = str(fid) if fid not in (None, "") else None
        if key is not None and key in self._fids:
            logger.warning("Duplicate feature id %r, assigning a new one", key)
            key = None
        if key is None:
            key = str(uuid.uuid4())
        self._fids.add(key)
        self.features.append(LoadedFeature(fid=key, geometry=geom, properties=props))

    @property
    def geometry_type(self) -> str:
        for feat in self.features:
            if feat.geometry is not None:
                return feat.geometry.geom_type
        return ""


# ── Public entry points ───────────────────────────────────────────────────────

def load_features(
    file_path: Path,
    source_srid: int = 4326,
    lat_field: str | None = None,
    lon_field: str | None = None,
) -> LoadResult:
    ext = file_path.suffix.lower()

    if ext in (".geojson", ".json"):
        result = _load_geojson(file_path, source_srid)
    elif ext == ".csv":
        result = _load_csv(file_path, source_srid, lat_field, lon_field)
    elif ext == ".kml":
        result = _load_kml(file_path)
    elif ext in (".gml", ".xml"):
        result = _load_gml(file_path, source_srid)
    elif ext == ".zip":
        result = _load_shapefile_zip(file_path, source_srid)
    elif ext == ".gpkg":
        result = _load_via_fiona(file_path, source_srid)
    else:
        raise ValueError(f"Unsupported file format: {ext}")

    # Any unreadable feature fails the whole load
    if result.errors:
        shown = "; ".join(result.errors[:5])
        more = len(result.errors) - 5
        if more > 0:
            shown += f" (and {more} more)"
        raise ValueError(f"Failed to load layer file: {shown}")
    if not result.features:
        raise ValueError("No features found in layer file")

    logger.info("Loaded %d features from %s", len(result.features), file_path.name)
    return result


def store_features(project_id: int, loaded: LoadResult, db: sqlite3.Connection) -> int:
    """
    Insert loaded features for a project and refresh its stats.

    Does not commit; the caller owns the transaction. sqlite3 errors
    propagate.
    """
    records = [_make_record(project_id, f) for f in loaded.features]
    inserted = _batch_insert(db, records)
    _update_attribute_schema(project_id, db, [f.properties for f in loaded.features[:100]])
    _update_project_stats(project_id, db, loaded.geometry_type)
    return inserted


# ── GeoJSON ───────────────────────────────────────────────────────────────────

def _load_geojson(path: Path, source_srid: int) -> LoadResult:
    with open(path, encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid GeoJSON: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError("GeoJSON must be a FeatureCollection or Feature")
    if data.get("type") == "FeatureCollection":
        features_raw = data.get("features", [])
    elif data.get("type") == "Feature":
        features_raw = [data]
    else:
        raise ValueError("GeoJSON must be a FeatureCollection or Feature")

    transformer = make_transformer(source_srid)
    result = LoadResult()

    for i, feat in enumerate(features_raw):
        try:
            geom = None
            geom_data = feat.get("geometry")
            if geom_data:
                geom = shapely.geometry.shape(geom_data)
                if transformer:
                    geom = reproject_geom(geom, transformer)
            result.add(geom, feat.get("properties") or {}, feat.get("id"))
        except Exception as e:
            result.errors.append(f"Feature {i}: {e}")
    return result


# ── CSV ───────────────────────────────────────────────────────────────────────

_LAT_NAMES = {"lat", "latitude", "y", "northing", "ylat"}
_LON_NAMES = {"lon", "lng", "longitude", "x", "easting", "xlon", "xlong"}


def _load_csv(
    path: Path,
    source_srid: int,
    lat_field: str | None,
    lon_field: str | None,
) -> LoadResult:
    with open(path, newline="", encoding="utf-8-sig") as f:
        rows = list(csv.DictReader(f))

    if not rows:
        return LoadResult(errors=["CSV has no data rows"])

    headers = list(rows[0].keys())
    if not lat_field:
        lat_field = next((h for h in headers if h.lower() in _LAT_NAMES), None)
    if not lon_field:
        lon_field = next((h for h in headers if h.lower() in _LON_NAMES), None)

    if not lat_field or not lon_field:
        raise ValueError(
            f"Cannot detect lat/lon columns. Found: {headers}. "
            "Specify lat_field and lon_field explicitly."
        )

    transformer = make_transformer(source_srid)
    result = LoadResult()

    for i, row in enumerate(rows):
        try:
            geom = shapely.geometry.Point(float(row[lon_field]), float(row[lat_field]))
            if transformer:
                geom = reproject_geom(geom, transformer)
            props = {k: v for k, v in row.items() if k not in (lat_field, lon_field)}
            result.add(geom, coerce_types(props))
        except Exception as e:
            result.errors.append(f"Row {i + 1}: {e}")
    return result


# ── KML ───────────────────────────────────────────────────────────────────────

def _load_kml(path: Path) -> LoadResult:
    root = _parse_xml(path, "KML")
    result = LoadResult()

    placemarks = [e for e in root.iter() if local_name(e) == "Placemark"]
    for i, pm in enumerate(placemarks):
        try:
            props: dict[str, Any] = {}
            for elem in pm.iter():
                tag = local_name(elem)
                if tag == "Data" and elem.get("name"):
                    value = next((c for c in elem if local_name(c) == "value"), None)
                    props[elem.get("name")] = value.text if value is not None else None
                elif tag == "SimpleData" and elem.get("name"):
                    props[elem.get("name")] = elem.text
            for child in pm:
                if local_name(child) in ("name", "description") and child.text:
                    props.setdefault(local_name(child), child.text.strip())

            geom_elem = find_kml_geometry(pm)
            geom = kml_to_geom(geom_elem) if geom_elem is not None else None
            result.add(geom, coerce_types(props), pm.get("id"))
        except Exception as e:
            result.errors.append(f"Placemark {i}: {e}")
    return result


# ── GML feature collections ───────────────────────────────────────────────────

def _load_gml(path: Path, source_srid: int) -> LoadResult:
    root = _parse_xml(path, "GML")
    result = LoadResult()

    for i, feature_elem in enumerate(_gml_feature_elements(root)):
        try:
            fid = next((v for k, v in feature_elem.attrib.items() if local_name_attr(k) in ("id", "fid")), None)
            geom = None
            props: dict[str, Any] = {}
            for child in feature_elem:
                gml_elem = child if is_gml_geometry(child) else find_gml_geometry(child)
                if gml_elem is not None:
                    geom, srid = gml_to_geom(gml_elem)
                    transformer = make_transformer(srid if gml_elem.get("srsName") else source_srid)
                    if transformer:
                        geom = reproject_geom(geom, transformer)
                elif len(child) == 0:
                    props[local_name(child)] = child.text
            result.add(geom, coerce_types(props), fid)
        except Exception as e:
            result.errors.append(f"Feature {i}: {e}")
    return result


def _gml_feature_elements(root: ET.Element) -> list[ET.Element]:
    """Features wrapped in (wfs:)member / featureMember / featureMembers."""
    features = []
    for wrapper in root.iter():
        tag = local_name(wrapper)
        if tag in ("featureMember", "member"):
            features.extend(list(wrapper)[:1])
        elif tag == "featureMembers":
            features.extend(list(wrapper))
    return features


def local_name_attr(key: str) -> str:
    return key.split("}")[-1] if "}" in key else key


# ── Shapefile ZIP / GeoPackage (fiona) ────────────────────────────────────────

def _load_shapefile_zip(path: Path, source_srid: int) -> LoadResult:
    tmpdir = Path(tempfile.mkdtemp())
    try:
        with zipfile.ZipFile(path) as zf:
            zf.extractall(tmpdir)

        shp_files = list(tmpdir.rglob("*.shp"))
        if not shp_files:
            raise ValueError("No .shp file found in ZIP archive")

        return _load_via_fiona(shp_files[0], source_srid)
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


def _load_via_fiona(path: Path, source_srid: int) -> LoadResult:
    try:
        import fiona
        from pyproj import CRS
    except ImportError:
        raise ImportError("fiona is required to load Shapefile and GeoPackage files")

    result = LoadResult()

    with fiona.open(str(path)) as src:
        detected_srid = source_srid
        if src.crs:
            try:
                detected_srid = CRS.from_user_input(src.crs).to_epsg() or source_srid
            except Exception:
                logger.warning("Could not read CRS of %s, assuming EPSG:%d", path.name, source_srid)

        transformer = make_transformer(detected_srid)

        for i, feat in enumerate(src):
            try:
                geom = None
                if feat.geometry:
                    geom = shapely.geometry.shape(feat.geometry)
                    if transformer:
                        geom = reproject_geom(geom, transformer)
                result.add(geom, dict(feat.properties or {}), feat.id)
            except Exception as e:
                result.errors.append(f"Feature {i}: {e}")
    return result


# ── Shared helpers ────────────────────────────────────────────────────────────

def _parse_xml(path: Path, kind: str) -> ET.Element:
    try:
        return ET.parse(path).getroot()
    except ET.ParseError as exc:
        raise ValueError(f"Invalid {kind} document: {exc}") from exc


def coerce_types(props: dict[str, Any]) -> dict[str, Any]:
    """Turn numeric-looking strings into int / float; blank strings into None."""
    result = {}
    for k, v in props.items():
        if not isinstance(v, str):
            result[k] = v
        elif v.strip() == "":
            result[k] = None
        else:
            number = parse_number(v)
            result[k] = v if number is None else number
    return result


def _make_record(project_id: int, feat: LoadedFeature) -> dict[str, Any]:
    bbox: tuple[Any, ...] = (None, None, None, None)
    wkb = None
    if feat.geometry is not None and not feat.geometry.is_empty:
        wkb = geom_to_wkb(feat.geometry)
        bbox = bbox_from_geom(feat.geometry)
    minx, miny, maxx, maxy = bbox
    return {
        "project_id": project_id,
        "fid": feat.fid,
        "geometry": wkb,
        "properties": json.dumps(feat.properties, default=str),
        "bbox_minx": minx,
        "bbox_miny": miny,
        "bbox_maxx": maxx,
        "bbox_maxy": maxy,
    }


def _batch_insert(
    db: sqlite3.Connection,
    records: list[dict[str, Any]],
    chunk_size: int = 500,
) -> int:
    sql = """
        INSERT INTO features
            (project_id, fid, geometry, properties, bbox_minx, bbox_miny, bbox_maxx, bbox_maxy)
        VALUES
            (:project_id, :fid, :geometry, :properties, :bbox_minx, :bbox_miny, :bbox_maxx, :bbox_maxy)
    """
    for i in range(0, len(records), chunk_size):
        db.executemany(sql, records[i : i + chunk_size])
    return len(records)


def _update_project_stats(project_id: int, db: sqlite3.Connection, geometry_type: str) -> None:
    row = db.execute(
        """SELECT COUNT(*) as cnt,
                  MIN(bbox_minx) as minx, MIN(bbox_miny) as miny,
                  MAX(bbox_maxx) as maxx, MAX(bbox_maxy) as maxy
           FROM features WHERE project_id = ?""",
        (project_id,),
    ).fetchone()

    db.execute(
        """UPDATE projects SET
            feature_count = ?,
            bbox_minx = ?, bbox_miny = ?, bbox_maxx = ?, bbox_maxy = ?,
            geometry_type = ?,
            updated_at = datetime('now')
           WHERE id = ?""",
        (
            row["cnt"], row["minx"], row["miny"], row["maxx"], row["maxy"],
            geometry_type, project_id,
        ),
    )


def _update_attribute_schema(
    project_id: int, db: sqlite3.Connection, sample_props: list[dict]
) -> None:
    schema = infer_schema(sample_props)
    if schema:
        db.execute(
            "UPDATE projects SET attribute_schema = ? WHERE id = ?",
            (json.dumps(schema), project_id),
        )
