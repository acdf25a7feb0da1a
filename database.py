import sqlite3
from pathlib import Path
from typing import Iterator

from config import settings


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(settings.db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def get_db() -> Iterator[sqlite3.Connection]:
    conn = connect()
    try:
        yield conn
    finally:
        conn.close()


def init_db() -> None:
    Path(settings.db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = connect()
    with conn:
        conn.executescript("""
CREATE TABLE IF NOT EXISTS projects (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    name                TEXT    NOT NULL DEFAULT '',
    layer_filename      TEXT    NOT NULL DEFAULT '',
    style_filename      TEXT    NOT NULL DEFAULT '',
    style_name          TEXT    NOT NULL DEFAULT '',
    sld_content         TEXT    NOT NULL,
    geometry_type       TEXT    NOT NULL DEFAULT '',
    bbox_minx           REAL,
    bbox_miny           REAL,
    bbox_maxx           REAL,
    bbox_maxy           REAL,
    feature_count       INTEGER NOT NULL DEFAULT 0,
    attribute_schema    TEXT    NOT NULL DEFAULT '{}',
    active_rule_indices TEXT    NOT NULL DEFAULT '[]',
    show_unmatched      INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT    NOT NULL DEFAULT (datetime('now')),
    updated_at          TEXT    NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS features (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    fid        TEXT    NOT NULL,
    geometry   BLOB,
    properties TEXT    NOT NULL DEFAULT '{}',
    bbox_minx  REAL,
    bbox_miny  REAL,
    bbox_maxx  REAL,
    bbox_maxy  REAL,
    UNIQUE(project_id, fid)
);

CREATE INDEX IF NOT EXISTS idx_features_project
    ON features(project_id, id);
        """)
    conn.close()
