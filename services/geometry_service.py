"""
Geometry utilities for loaded layers: WKB encode/decode, bbox extraction,
GeoJSON output, GML and KML geometry parsing, CRS reprojection via pyproj.
"""
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from typing import Any

import shapely.geometry
import shapely.ops
import shapely.wkb
from shapely.geometry.base import BaseGeometry
from pyproj import Transformer, CRS


# ── CRS / reprojection ────────────────────────────────────────────────────────

def make_transformer(from_srid: int, to_srid: int = 4326) -> Transformer | None:
    """Return a pyproj Transformer or None if source is already WGS84."""
    if from_srid == to_srid:
        return None
    src = CRS.from_epsg(from_srid)
    dst = CRS.from_epsg(to_srid)
    return Transformer.from_crs(src, dst, always_xy=True)


def reproject_geom(geom: BaseGeometry, transformer: Transformer) -> BaseGeometry:
    return shapely.ops.transform(transformer.transform, geom)


# ── WKB / bbox / GeoJSON ──────────────────────────────────────────────────────

def geom_to_wkb(geom: BaseGeometry) -> bytes:
    return shapely.wkb.dumps(geom, include_srid=False)


def wkb_to_geom(wkb: bytes) -> BaseGeometry:
    return shapely.wkb.loads(wkb)


def bbox_from_geom(geom: BaseGeometry) -> tuple[float, float, float, float]:
    """Return (minx, miny, maxx, maxy)."""
    return geom.bounds  # type: ignore[return-value]


def geom_to_geojson(geom: BaseGeometry) -> dict[str, Any]:
    return shapely.geometry.mapping(geom)


# ── Shared XML helpers ────────────────────────────────────────────────────────

def local_name(elem: ET.Element) -> str:
    return elem.tag.split("}")[-1] if "}" in elem.tag else elem.tag


def _child(elem: ET.Element, local: str) -> ET.Element | None:
    for c in elem:
        if local_name(c) == local:
            return c
    return None


def _children(elem: ET.Element, local: str) -> list[ET.Element]:
    return [c for c in elem if local_name(c) == local]


# ── GML (2 / 3.1 / 3.2) ───────────────────────────────────────────────────────

GML_GEOMETRY_TAGS = {
    "Point", "LineString", "Polygon", "MultiPoint", "MultiLineString",
    "MultiCurve", "MultiPolygon", "MultiSurface", "MultiGeometry",
}


def is_gml_geometry(elem: ET.Element) -> bool:
    return local_name(elem) in GML_GEOMETRY_TAGS


def find_gml_geometry(parent: ET.Element) -> ET.Element | None:
    """First GML geometry element among parent's direct children."""
    for c in parent:
        if is_gml_geometry(c):
            return c
    return None


def gml_srid(elem: ET.Element, default: int = 4326) -> int:
    """EPSG code from srsName, accepting both URN and ``EPSG:nnnn`` forms."""
    srs = elem.get("srsName", "")
    m = re.search(r"EPSG:+(\d+)", srs) or re.search(r"epsg\.xml#(\d+)", srs)
    return int(m.group(1)) if m else default


def gml_to_geom(elem: ET.Element) -> tuple[BaseGeometry, int]:
    """
    Parse a GML geometry element into a Shapely geometry.

    Returns (geometry, srid). Axis order is swapped for EPSG:4326 URNs
    (lat,lon) only; plain ``EPSG:4326`` and GML 2 coordinates are x,y.
    """
    srs = elem.get("srsName", "")
    srid = gml_srid(elem)
    swap = srid == 4326 and srs.startswith("urn:")
    return _parse_gml(elem, swap), srid


def _parse_gml(elem: ET.Element, swap: bool) -> BaseGeometry:
    tag = local_name(elem)
    if tag == "Point":
        return shapely.geometry.Point(_gml_coords(elem, swap)[0])
    if tag == "LineString":
        return shapely.geometry.LineString(_gml_coords(elem, swap))
    if tag == "Polygon":
        return _gml_polygon(elem, swap)
    if tag == "MultiPoint":
        return shapely.geometry.MultiPoint(_gml_members(elem, swap))
    if tag in ("MultiLineString", "MultiCurve"):
        return shapely.geometry.MultiLineString(_gml_members(elem, swap))
    if tag in ("MultiPolygon", "MultiSurface"):
        return shapely.geometry.MultiPolygon(_gml_members(elem, swap))
    if tag == "MultiGeometry":
        return shapely.geometry.GeometryCollection(_gml_members(elem, swap))
    raise ValueError(f"Unsupported GML geometry type: {tag}")


def _gml_coords(elem: ET.Element, swap: bool) -> list[tuple[float, float]]:
    """Coordinates from gml:pos, gml:posList or GML 2 gml:coordinates."""
    pos = _children(elem, "pos")
    if pos:
        return [_pairs(p.text or "", swap)[0] for p in pos]
    pos_list = _child(elem, "posList")
    if pos_list is not None:
        return _pairs(pos_list.text or "", swap)
    coordinates = _child(elem, "coordinates")
    if coordinates is not None:
        text = " ".join((coordinates.text or "").replace(",", " ").split())
        return _pairs(text, False)
    raise ValueError(f"<gml:{local_name(elem)}> has no coordinates")


def _pairs(text: str, swap: bool) -> list[tuple[float, float]]:
    parts = [float(p) for p in text.split()]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Invalid coordinate list: '{text.strip()[:40]}'")
    coords = list(zip(parts[0::2], parts[1::2]))
    return [(b, a) for a, b in coords] if swap else coords


def _gml_ring(boundary: ET.Element | None, swap: bool) -> list[tuple[float, float]]:
    ring = _child(boundary, "LinearRing") if boundary is not None else None
    if ring is None:
        raise ValueError("Polygon boundary missing <gml:LinearRing>")
    return _gml_coords(ring, swap)


def _gml_polygon(elem: ET.Element, swap: bool) -> BaseGeometry:
    outer = _child(elem, "exterior")
    if outer is None:
        outer = _child(elem, "outerBoundaryIs")
    if outer is None:
        raise ValueError("Polygon missing exterior ring")
    holes = [
        _gml_ring(b, swap)
        for b in elem
        if local_name(b) in ("interior", "innerBoundaryIs")
    ]
    return shapely.geometry.Polygon(_gml_ring(outer, swap), holes)


def _gml_members(elem: ET.Element, swap: bool) -> list[BaseGeometry]:
    """Members of a multi-geometry: every geometry nested one level down."""
    parts = []
    for member in elem:
        for child in member:
            if is_gml_geometry(child):
                parts.append(_parse_gml(child, swap))
    return parts


# ── KML ───────────────────────────────────────────────────────────────────────

KML_GEOMETRY_TAGS = {"Point", "LineString", "LinearRing", "Polygon", "MultiGeometry"}


def find_kml_geometry(placemark: ET.Element) -> ET.Element | None:
    for c in placemark:
        if local_name(c) in KML_GEOMETRY_TAGS:
            return c
    return None


def kml_to_geom(elem: ET.Element) -> BaseGeometry:
    """Parse a KML geometry element (always lon,lat in EPSG:4326)."""
    tag = local_name(elem)
    if tag == "Point":
        return shapely.geometry.Point(_kml_coords(elem)[0])
    if tag in ("LineString", "LinearRing"):
        return shapely.geometry.LineString(_kml_coords(elem))
    if tag == "Polygon":
        outer = _child(elem, "outerBoundaryIs")
        if outer is None or _child(outer, "LinearRing") is None:
            raise ValueError("KML Polygon missing outerBoundaryIs")
        holes = [
            _kml_coords(_child(b, "LinearRing"))
            for b in _children(elem, "innerBoundaryIs")
            if _child(b, "LinearRing") is not None
        ]
        return shapely.geometry.Polygon(_kml_coords(_child(outer, "LinearRing")), holes)
    if tag == "MultiGeometry":
        return shapely.geometry.GeometryCollection(
            [kml_to_geom(c) for c in elem if local_name(c) in KML_GEOMETRY_TAGS]
        )
    raise ValueError(f"Unsupported KML geometry type: {tag}")


def _kml_coords(elem: ET.Element) -> list[tuple[float, float]]:
    node = _child(elem, "coordinates")
    if node is None or not (node.text or "").strip():
        raise ValueError(f"KML {local_name(elem)} has no coordinates")
    coords = []
    for tuple_text in node.text.split():
        parts = tuple_text.split(",")
        coords.append((float(parts[0]), float(parts[1])))
    return coords


# ── Attribute type inference ───────────────────────────────────────────────────

def infer_schema(sample_props: list[dict[str, Any]]) -> dict[str, str]:
    """
    Infer attribute types from a sample of property dicts.
    Returns {"field_name": "String"|"Integer"|"Real"|"Boolean"}.
    """
    if not sample_props:
        return {}

    fields: dict[str, set[str]] = {}
    for props in sample_props:
        for k, v in props.items():
            if v is None:
                fields.setdefault(k, set())
                continue
            fields.setdefault(k, set()).add(_value_type(v))

    result: dict[str, str] = {}
    for k, types in fields.items():
        if types == {"Integer"}:
            result[k] = "Integer"
        elif types and types <= {"Integer", "Real"}:
            result[k] = "Real"
        elif types == {"Boolean"}:
            result[k] = "Boolean"
        else:
            result[k] = "String"
    return result


def _value_type(v: Any) -> str:
    if isinstance(v, bool):
        return "Boolean"
    if isinstance(v, int):
        return "Integer"
    if isinstance(v, float):
        return "Real"
    return "String"
