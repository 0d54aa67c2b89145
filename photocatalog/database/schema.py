"""Database schema definition."""

import sqlite3

SCHEMA_SQL = """
-- Configured storage backends
CREATE TABLE IF NOT EXISTS backends (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    protocol TEXT NOT NULL,
    connection_url TEXT NOT NULL,
    root_path TEXT NOT NULL DEFAULT '',
    encrypted_credentials TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    last_connected_at_unix REAL,
    last_connected_at INTEGER,
    last_crawled_at_unix REAL,
    last_crawled_at INTEGER,
    image_count INTEGER NOT NULL DEFAULT 0,
    auto_connect BOOLEAN NOT NULL DEFAULT FALSE,
    created_at_unix REAL NOT NULL,
    created_at INTEGER NOT NULL,
    UNIQUE(name)
);

-- Catalogued image files
CREATE TABLE IF NOT EXISTS images (
    id INTEGER PRIMARY KEY,
    backend_id INTEGER NOT NULL REFERENCES backends(id) ON DELETE CASCADE,
    file_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    file_hash TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    width INTEGER,
    height INTEGER,
    captured_at_unix REAL,
    captured_at INTEGER,
    deleted BOOLEAN NOT NULL DEFAULT FALSE,
    created_at_unix REAL,
    modified_at_unix REAL,
    modified_at INTEGER,
    indexed_at_unix REAL NOT NULL,
    indexed_at INTEGER NOT NULL,
    UNIQUE(backend_id, file_path)
);

CREATE INDEX IF NOT EXISTS idx_images_backend_live ON images(backend_id) WHERE deleted = FALSE;
CREATE INDEX IF NOT EXISTS idx_images_hash ON images(file_hash);

-- Key/value metadata per image (EXIF today)
CREATE TABLE IF NOT EXISTS image_metadata (
    id INTEGER PRIMARY KEY,
    image_id INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    source TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    UNIQUE(image_id, source, key)
);

CREATE INDEX IF NOT EXISTS idx_image_metadata_image ON image_metadata(image_id, source);

-- Crawl job tracking
CREATE TABLE IF NOT EXISTS crawl_jobs (
    id INTEGER PRIMARY KEY,
    backend_id INTEGER NOT NULL REFERENCES backends(id) ON DELETE CASCADE,
    root_path TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    started_at_unix REAL,
    started_at INTEGER,
    ended_at_unix REAL,
    ended_at INTEGER,
    files_processed INTEGER NOT NULL DEFAULT 0,
    files_added INTEGER NOT NULL DEFAULT 0,
    files_updated INTEGER NOT NULL DEFAULT 0,
    files_deleted INTEGER NOT NULL DEFAULT 0,
    current_path TEXT,
    incremental BOOLEAN NOT NULL DEFAULT FALSE,
    errors_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_crawl_jobs_backend ON crawl_jobs(backend_id, started_at_unix);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """Create schema (CREATE IF NOT EXISTS is safe on existing databases)."""
    conn.executescript(SCHEMA_SQL)
    conn.commit()
