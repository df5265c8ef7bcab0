"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the catalog schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Photos seen on the share
        # path is the natural key; rows are never updated or deleted by a rescan
        conn.execute("""
        CREATE TABLE IF NOT EXISTS source_photos (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            path            TEXT NOT NULL UNIQUE,   -- relative to the mount root
            file_name       TEXT NOT NULL,
            size_bytes      INTEGER,
            last_modified   TEXT,
            first_seen_at   TEXT NOT NULL
        );
        """)

        # 3. Resized copies in the serving directory
        # local_file_name is NULL only for source-missing tombstones
        conn.execute("""
        CREATE TABLE IF NOT EXISTS local_copies (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            source_photo_id     INTEGER NOT NULL,
            local_file_name     TEXT UNIQUE,
            downloaded_at       TEXT NOT NULL,
            last_displayed_at   TEXT,
            download_count      INTEGER NOT NULL DEFAULT 1,
            deleted_at          TEXT,
            FOREIGN KEY(source_photo_id) REFERENCES source_photos(id)
        );
        """)

        # 4. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_source_photos_file_name ON source_photos(file_name);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_local_copies_source ON local_copies(source_photo_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_local_copies_deleted ON local_copies(deleted_at);")

    logging.debug("Database schema initialized.")
