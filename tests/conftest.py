import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from config import settings
from database import init_db


ROADS_SLD = """<?xml version="1.0" encoding="UTF-8"?>
<StyledLayerDescriptor version="1.0.0"
    xmlns="http://www.opengis.net/sld"
    xmlns:ogc="http://www.opengis.net/ogc">
  <NamedLayer>
    <Name>network</Name>
    <UserStyle>
      <Name>network_style</Name>
      <FeatureTypeStyle>
        <Rule>
          <Name>Roads</Name>
          <ogc:Filter>
            <ogc:PropertyIsEqualTo>
              <ogc:PropertyName>type</ogc:PropertyName>
              <ogc:Literal>road</ogc:Literal>
            </ogc:PropertyIsEqualTo>
          </ogc:Filter>
          <LineSymbolizer>
            <Stroke>
              <CssParameter name="stroke">#333333</CssParameter>
              <CssParameter name="stroke-width">2</CssParameter>
            </Stroke>
          </LineSymbolizer>
        </Rule>
        <Rule>
          <Name>Rivers</Name>
          <ogc:Filter>
            <ogc:PropertyIsEqualTo>
              <ogc:PropertyName>type</ogc:PropertyName>
              <ogc:Literal>river</ogc:Literal>
            </ogc:PropertyIsEqualTo>
          </ogc:Filter>
          <MinScaleDenominator>1000</MinScaleDenominator>
          <MaxScaleDenominator>5000</MaxScaleDenominator>
          <LineSymbolizer>
            <Stroke>
              <CssParameter name="stroke">#0000FF</CssParameter>
            </Stroke>
          </LineSymbolizer>
        </Rule>
      </FeatureTypeStyle>
    </UserStyle>
  </NamedLayer>
</StyledLayerDescriptor>
"""


def _line(x: float) -> dict:
    return {"type": "LineString", "coordinates": [[x, 0.0], [x + 1.0, 1.0]]}


NETWORK_GEOJSON = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "id": "f1", "geometry": _line(0), "properties": {"type": "road", "lanes": 2}},
        {"type": "Feature", "id": "f2", "geometry": _line(2), "properties": {"type": "river", "lanes": None}},
        {"type": "Feature", "id": "f3", "geometry": _line(4), "properties": {"type": "lake", "name": "Banyoles"}},
    ],
}


@pytest.fixture()
def roads_sld() -> str:
    return ROADS_SLD


@pytest.fixture()
def network_geojson(tmp_path: Path) -> Path:
    path = tmp_path / "network.geojson"
    path.write_text(json.dumps(NETWORK_GEOJSON), encoding="utf-8")
    return path


@pytest.fixture()
def client(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(settings, "db_path", str(tmp_path / "test.db"))
    monkeypatch.setattr(settings, "uploads_dir", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "auth_enabled", False)
    init_db()

    from main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def project_id(client, roads_sld) -> int:
    r = client.post(
        "/api/projects",
        files={
            "layer_file": ("network.geojson", json.dumps(NETWORK_GEOJSON), "application/geo+json"),
            "sld_file": ("network.sld", roads_sld, "application/xml"),
        },
    )
    assert r.status_code == 201, r.text
    return r.json()["id"]
