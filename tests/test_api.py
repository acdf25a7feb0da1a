import base64
import json
import sqlite3

from config import settings
from database import connect
from services import import_service


def test_create_and_list_project(client, project_id):
    r = client.get(f"/api/projects/{project_id}")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["feature_count"] == 3
    assert body["rule_count"] == 2
    assert body["style_name"] == "network_style"
    assert body["geometry_type"] == "LineString"
    assert body["bbox"] == [0.0, 0.0, 5.0, 1.0]

    listed = client.get("/api/projects").json()
    assert [p["id"] for p in listed] == [project_id]


def test_legend_statistics(client, project_id):
    r = client.get(f"/api/projects/{project_id}/legend", params={"language": "en", "scale": 3000})
    assert r.status_code == 200, r.text
    legend = r.json()
    assert legend["total_features"] == 3
    assert legend["unmatched_count"] == 1
    assert legend["all_matched"] is False
    assert legend["summary"] == "1 features not matched by any rule"
    assert legend["styling_fields"] == ["type"]

    general, rivers = legend["groups"]
    assert general["general"] is True and general["active"] is True
    assert general["rules"][0]["name"] == "Roads"
    assert general["rules"][0]["count"] == 1
    assert general["rules"][0]["filter"] == ["==", "type", "road"]
    assert general["rules"][0]["filter_text"] == "type equals road"
    assert rivers["label"] == "Scale: 1:1000 - 1:5000"
    assert rivers["scale_range"] == {"min": 1000.0, "max": 5000.0}
    assert rivers["active"] is True
    assert rivers["rules"][0]["index"] == 1


def test_legend_scale_outside_range(client, project_id):
    legend = client.get(f"/api/projects/{project_id}/legend", params={"scale": 6000}).json()
    assert [g["active"] for g in legend["groups"]] == [True, False]

    no_scale = client.get(f"/api/projects/{project_id}/legend").json()
    assert [g["active"] for g in no_scale["groups"]] == [True, False]


def test_legend_scale_from_resolution(client, project_id):
    legend = client.get(f"/api/projects/{project_id}/legend", params={"resolution": 1.0}).json()
    assert 3571 < legend["current_scale"] < 3572
    assert legend["groups"][1]["active"] is True


def test_classified_features(client, project_id):
    fc = client.get(f"/api/projects/{project_id}/features").json()
    flags = {f["id"]: f["properties"].get("_unmatched", False) for f in fc["features"]}
    assert flags == {"f1": False, "f2": False, "f3": True}
    assert fc["numberUnmatched"] == 1
    assert fc["features"][0]["geometry"]["type"] == "LineString"


def test_toggle_rules_and_unmatched(client, project_id):
    style = client.get(f"/api/projects/{project_id}/style").json()
    assert [r["name"] for r in style["rules"]] == ["Roads", "Rivers"]
    assert style["rules"][0]["paint"]["stroke_color"] == "#333333"

    style = client.post(f"/api/projects/{project_id}/rules/1/toggle").json()
    assert style["active_rule_indices"] == [1]
    assert [r["name"] for r in style["rules"]] == ["Rivers"]

    style = client.post(f"/api/projects/{project_id}/unmatched/toggle").json()
    assert style["show_unmatched"] is True
    assert [r["name"] for r in style["rules"]] == ["Rivers", "Unmatched"]
    assert style["rules"][-1]["filter"] == ["==", "_unmatched", True]
    assert style["rules"][-1]["paint"]["fill_color"] == "#FF0000"

    legend = client.get(f"/api/projects/{project_id}/legend").json()
    roads = legend["groups"][0]["rules"][0]
    assert roads["visible"] is False and roads["selected"] is False

    style = client.post(f"/api/projects/{project_id}/rules/1/toggle").json()
    assert style["active_rule_indices"] == []
    assert [r["name"] for r in style["rules"]] == ["Roads", "Rivers", "Unmatched"]

    style = client.post(f"/api/projects/{project_id}/rules/reset").json()
    assert style["show_unmatched"] is False
    assert len(style["rules"]) == 2


def test_toggle_out_of_range(client, project_id):
    r = client.post(f"/api/projects/{project_id}/rules/7/toggle")
    assert r.status_code == 400


def test_resolve_and_inspect(client, project_id):
    r = client.post(f"/api/projects/{project_id}/resolve", json={"properties": {"type": "river", "lanes": 1}})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["rule_index"] == 1
    assert body["rule_name"] == "Rivers"
    assert body["styling_properties"] == {"type": "river"}
    assert body["other_properties"] == {"lanes": 1}

    body = client.get(f"/api/projects/{project_id}/features/f3/inspect").json()
    assert body["rule_index"] is None
    assert body["unmatched"] is True
    assert body["other_properties"] == {"name": "Banyoles"}

    assert client.get(f"/api/projects/{project_id}/features/nope/inspect").status_code == 404


def test_bad_sld_aborts_project_creation(client, network_geojson):
    r = client.post(
        "/api/projects",
        files={
            "layer_file": ("network.geojson", network_geojson.read_bytes(), "application/geo+json"),
            "sld_file": ("broken.sld", "<StyledLayerDescriptor><NamedLayer>", "application/xml"),
        },
    )
    assert r.status_code == 422
    assert r.json()["detail"].startswith("Failed to parse SLD")
    assert client.get("/api/projects").json() == []


def test_unsupported_layer_type(client, roads_sld):
    r = client.post(
        "/api/projects",
        files={
            "layer_file": ("layer.dxf", "0\nSECTION", "application/octet-stream"),
            "sld_file": ("network.sld", roads_sld, "application/xml"),
        },
    )
    assert r.status_code == 400


def test_empty_layer_is_rejected(client, roads_sld):
    r = client.post(
        "/api/projects",
        files={
            "layer_file": ("empty.geojson", json.dumps({"type": "FeatureCollection", "features": []}), "application/geo+json"),
            "sld_file": ("network.sld", roads_sld, "application/xml"),
        },
    )
    assert r.status_code == 422
    assert "No features found" in r.json()["detail"]


def test_delete_project(client, project_id):
    assert client.delete(f"/api/projects/{project_id}").status_code == 204
    assert client.get(f"/api/projects/{project_id}").status_code == 404
    assert client.get(f"/api/projects/{project_id}/legend").status_code == 404


def test_basic_auth(client, monkeypatch):
    monkeypatch.setattr(settings, "auth_enabled", True)
    assert client.get("/api/projects").status_code == 401

    token = base64.b64encode(f"{settings.admin_user}:{settings.admin_pass}".encode()).decode()
    r = client.get("/api/projects", headers={"Authorization": f"Basic {token}"})
    assert r.status_code == 200


def _upload(client, sld: str, filename: str, content: str):
    return client.post(
        "/api/projects",
        files={
            "layer_file": (filename, content, "application/octet-stream"),
            "sld_file": ("network.sld", sld, "application/xml"),
        },
    )


def test_nan_attributes_are_served_as_json(client, roads_sld):
    r = _upload(client, roads_sld, "wells.csv", "lat,lon,type,depth\n1,1,road,NaN\n2,2,lake,3\n")
    assert r.status_code == 201, r.text
    project_id = r.json()["id"]

    fc = client.get(f"/api/projects/{project_id}/features")
    assert fc.status_code == 200, fc.text
    assert [f["properties"]["depth"] for f in fc.json()["features"]] == ["NaN", 3]

    fid = fc.json()["features"][0]["id"]
    body = client.get(f"/api/projects/{project_id}/features/{fid}/inspect").json()
    assert body["other_properties"] == {"depth": "NaN"}


def test_colliding_feature_ids_are_all_counted(client, roads_sld):
    layer = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "id": 1, "geometry": None, "properties": {"type": "road"}},
            {"type": "Feature", "id": "1", "geometry": None, "properties": {"type": "lake"}},
        ],
    }
    r = _upload(client, roads_sld, "dupes.geojson", json.dumps(layer))
    assert r.status_code == 201, r.text
    assert r.json()["feature_count"] == 2

    legend = client.get(f"/api/projects/{r.json()['id']}/legend").json()
    assert legend["total_features"] == 2
    assert legend["unmatched_count"] == 1


def test_malformed_feature_rejects_the_upload(client, roads_sld):
    layer = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [0, 0]}, "properties": {"type": "road"}},
            {"type": "Feature", "geometry": {"type": "Circle", "coordinates": [0, 0]}, "properties": {"type": "road"}},
        ],
    }
    r = _upload(client, roads_sld, "broken.geojson", json.dumps(layer))
    assert r.status_code == 422
    assert r.json()["detail"].startswith("Failed to load layer file")
    assert client.get("/api/projects").json() == []


def test_storage_failure_rolls_back_project(client, roads_sld, network_geojson, monkeypatch):
    def fail(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    # Features are already inserted when the stats update fails
    monkeypatch.setattr(import_service, "_update_project_stats", fail)

    r = _upload(client, roads_sld, "network.geojson", network_geojson.read_text())
    assert r.status_code == 422
    assert "disk I/O error" in r.json()["detail"]
    assert client.get("/api/projects").json() == []

    db = connect()
    try:
        assert db.execute("SELECT COUNT(*) FROM features").fetchone()[0] == 0
    finally:
        db.close()
