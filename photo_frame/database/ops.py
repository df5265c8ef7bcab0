import json
import os
import re
import sqlite3
import logging
import threading
from datetime import date, datetime, UTC
from pathlib import Path
from typing import Optional, List, Iterable, Set, Tuple, Any

from ..exceptions import DatabaseError
from ..models import (
    CatalogEntry,
    CatalogStats,
    LocalCopy,
    SameDayCandidate,
    ScannedFile,
    ScanResult,
    SourcePhoto,
)

_ENTRY_COLUMNS = """
    sp.id, sp.path, sp.file_name, sp.size_bytes, sp.last_modified, sp.first_seen_at,
    lc.id, lc.local_file_name, lc.downloaded_at, lc.last_displayed_at,
    lc.download_count, lc.deleted_at
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _regexp(pattern: str, value: Optional[str]) -> bool:
    # SQLite evaluates "value REGEXP pattern" as regexp(pattern, value)
    return value is not None and re.search(pattern, value) is not None


def same_day_pattern(day: date) -> str:
    """
    Regex matching a file name that encodes day's month/day in any year
    other than day's own: 20190419, 2019-04-19, 2019_04_19, IMG_20190419_1200.
    """
    return (rf"(?<!\d)(?!{day.year:04d})\d{{4}}[-_.]?"
            rf"{day.month:02d}[-_.]?{day.day:02d}(?!\d)")


class DBOperations:
    """
    The photo catalog: source_photos (what the share holds) and
    local_copies (what was materialized in the serving directory).

    Every write runs in its own transaction while holding write_lock, so
    a scan batch and a fetch sharing the connection never interleave.
    photos_dir is the serving directory used for the file-existence
    cross-check on listings.
    """

    def __init__(self,
                 conn: sqlite3.Connection,
                 photos_dir: Optional[Path] = None,
                 write_lock: Optional[threading.Lock] = None):
        self.conn = conn
        self.photos_dir = photos_dir
        self.write_lock = write_lock or threading.Lock()
        self.conn.create_function("REGEXP", 2, _regexp, deterministic=True)

    # --- Source Photos ---

    def insert_source_photos(self, photos: Iterable[ScannedFile]) -> ScanResult:
        """
        Batch insert in one transaction. Paths already in the catalog are
        left untouched (first write wins, size/mtime are never refreshed).
        """
        now_iso = _now()
        inserted = 0
        total = 0

        with self.write_lock, self.conn:
            cur = self.conn.cursor()
            for photo in photos:
                total += 1
                cur.execute("""
                    INSERT OR IGNORE INTO source_photos
                    (path, file_name, size_bytes, last_modified, first_seen_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (photo.path, photo.file_name, photo.size_bytes, photo.last_modified, now_iso))
                if cur.rowcount > 0:
                    inserted += 1

        return ScanResult(inserted=inserted, total=total, existing=total - inserted)

    def random_unacquired(self, count: int) -> List[SourcePhoto]:
        """Up to `count` source photos with no local_copies row, uniformly shuffled."""
        if count <= 0:
            return []
        cur = self.conn.cursor()
        cur.execute("""
            SELECT sp.id, sp.path, sp.file_name, sp.size_bytes, sp.last_modified, sp.first_seen_at
            FROM source_photos sp
            WHERE NOT EXISTS (
                SELECT 1 FROM local_copies lc WHERE lc.source_photo_id = sp.id
            )
            ORDER BY RANDOM()
            LIMIT ?
        """, (count,))
        return [SourcePhoto(*row) for row in cur.fetchall()]

    def get_source_photo(self, source_photo_id: int) -> Optional[SourcePhoto]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, path, file_name, size_bytes, last_modified, first_seen_at
            FROM source_photos WHERE id = ?
        """, (source_photo_id,))
        row = cur.fetchone()
        return SourcePhoto(*row) if row else None

    # --- Local Copies ---

    def record_local_copy(self, source_photo_id: int, local_file_name: str) -> LocalCopy:
        now_iso = _now()
        with self.write_lock, self.conn:
            cur = self.conn.execute("""
                INSERT INTO local_copies (source_photo_id, local_file_name, downloaded_at, download_count)
                VALUES (?, ?, ?, 1)
            """, (source_photo_id, local_file_name, now_iso))

        if cur.lastrowid is None:
            raise DatabaseError("Database INSERT failed to return a row ID.")
        return LocalCopy(
            id=cur.lastrowid,
            source_photo_id=source_photo_id,
            local_file_name=local_file_name,
            downloaded_at=now_iso,
        )

    def get_local_copy(self, local_copy_id: int) -> Optional[LocalCopy]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, source_photo_id, local_file_name, downloaded_at,
                   last_displayed_at, download_count, deleted_at
            FROM local_copies WHERE id = ?
        """, (local_copy_id,))
        row = cur.fetchone()
        return LocalCopy(*row) if row else None

    def get_local_copy_by_name(self, local_file_name: str) -> Optional[LocalCopy]:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT id, source_photo_id, local_file_name, downloaded_at,
                   last_displayed_at, download_count, deleted_at
            FROM local_copies WHERE local_file_name = ?
        """, (local_file_name,))
        row = cur.fetchone()
        return LocalCopy(*row) if row else None

    def refresh_local_copy(self, local_copy_id: int) -> bool:
        """Stamps a re-materialized copy with a new download time."""
        with self.write_lock, self.conn:
            cur = self.conn.execute(
                "UPDATE local_copies SET downloaded_at = ? WHERE id = ?",
                (_now(), local_copy_id),
            )
        return cur.rowcount > 0

    def record_view(self, local_copy_id: int) -> bool:
        """Returns False (not updated) when the id is unknown."""
        with self.write_lock, self.conn:
            cur = self.conn.execute(
                "UPDATE local_copies SET last_displayed_at = ? WHERE id = ?",
                (_now(), local_copy_id),
            )
        return cur.rowcount > 0

    def record_download_action(self, local_copy_id: int) -> bool:
        with self.write_lock, self.conn:
            cur = self.conn.execute(
                "UPDATE local_copies SET download_count = download_count + 1 WHERE id = ?",
                (local_copy_id,),
            )
        return cur.rowcount > 0

    def soft_delete(self, local_copy_id: int) -> bool:
        """
        Sets deleted_at if not already set. Repeat calls succeed but keep the
        first timestamp. Returns False only for an unknown id.
        """
        with self.write_lock, self.conn:
            cur = self.conn.execute(
                "UPDATE local_copies SET deleted_at = COALESCE(deleted_at, ?) WHERE id = ?",
                (_now(), local_copy_id),
            )
        return cur.rowcount > 0

    def mark_source_missing(self, source_photo_id: int) -> int:
        """
        The source file vanished from the share. Soft-deletes its active
        copies; if it has no local_copies row at all, records a tombstone so
        it is never selected for acquisition again. Returns rows affected.
        """
        now_iso = _now()
        with self.write_lock, self.conn:
            cur = self.conn.execute("""
                UPDATE local_copies SET deleted_at = ?
                WHERE source_photo_id = ? AND deleted_at IS NULL
            """, (now_iso, source_photo_id))
            affected = cur.rowcount

            has_rows = self.conn.execute(
                "SELECT 1 FROM local_copies WHERE source_photo_id = ? LIMIT 1",
                (source_photo_id,),
            ).fetchone()
            if not has_rows:
                self.conn.execute("""
                    INSERT INTO local_copies
                    (source_photo_id, local_file_name, downloaded_at, download_count, deleted_at)
                    VALUES (?, NULL, ?, 0, ?)
                """, (source_photo_id, now_iso, now_iso))
                affected = 1

        return affected

    # --- Combined Listing ---

    def present_files(self) -> Set[str]:
        """Names of the regular files currently in the serving directory."""
        if self.photos_dir is None:
            return set()
        try:
            with os.scandir(self.photos_dir) as it:
                return {e.name for e in it if e.is_file()}
        except FileNotFoundError:
            return set()

    def _combined_filter(self,
                         active_only: bool,
                         deleted_only: bool,
                         present: Set[str]) -> Tuple[str, List[Any]]:
        if active_only and deleted_only:
            raise ValueError("active_only and deleted_only are mutually exclusive")
        if active_only:
            return ("""
                WHERE lc.id IS NOT NULL AND lc.deleted_at IS NULL
                  AND lc.local_file_name IN (SELECT value FROM json_each(?))
            """, [json.dumps(sorted(present))])
        if deleted_only:
            return "WHERE lc.deleted_at IS NOT NULL", []
        return "", []

    def _to_entry(self, row: tuple, present: Set[str]) -> CatalogEntry:
        entry = CatalogEntry(*row)
        entry.file_exists_locally = entry.local_file_name is not None and entry.local_file_name in present
        return entry

    def list_combined(self,
                      limit: Optional[int] = None,
                      offset: int = 0,
                      active_only: bool = False,
                      deleted_only: bool = False) -> List[CatalogEntry]:
        """
        Source photos joined with their local copies, ordered by file name.
        active_only keeps rows that are not soft-deleted AND whose file is
        really in the serving directory right now.
        """
        present = self.present_files()
        where, params = self._combined_filter(active_only, deleted_only, present)

        cur = self.conn.cursor()
        cur.execute(f"""
            SELECT {_ENTRY_COLUMNS}
            FROM source_photos sp
            LEFT JOIN local_copies lc ON lc.source_photo_id = sp.id
            {where}
            ORDER BY sp.file_name, sp.id, lc.id
            LIMIT ? OFFSET ?
        """, (*params, -1 if limit is None else limit, offset))
        return [self._to_entry(row, present) for row in cur.fetchall()]

    def total_count(self, active_only: bool = False, deleted_only: bool = False) -> int:
        present = self.present_files()
        where, params = self._combined_filter(active_only, deleted_only, present)

        cur = self.conn.cursor()
        cur.execute(f"""
            SELECT COUNT(*)
            FROM source_photos sp
            LEFT JOIN local_copies lc ON lc.source_photo_id = sp.id
            {where}
        """, params)
        return cur.fetchone()[0]

    def get_entry(self, local_copy_id: int) -> Optional[CatalogEntry]:
        """Single-photo lookup by local copy id."""
        cur = self.conn.cursor()
        cur.execute(f"""
            SELECT {_ENTRY_COLUMNS}
            FROM local_copies lc
            JOIN source_photos sp ON sp.id = lc.source_photo_id
            WHERE lc.id = ?
        """, (local_copy_id,))
        row = cur.fetchone()
        return self._to_entry(row, self.present_files()) if row else None

    def entries_for_local_names(self, names: Iterable[str]) -> List[CatalogEntry]:
        """Catalog entries for the given serving-directory file names."""
        names = sorted(set(names))
        if not names:
            return []
        cur = self.conn.cursor()
        cur.execute(f"""
            SELECT {_ENTRY_COLUMNS}
            FROM local_copies lc
            JOIN source_photos sp ON sp.id = lc.source_photo_id
            WHERE lc.local_file_name IN (SELECT value FROM json_each(?))
        """, (json.dumps(names),))
        present = self.present_files()
        return [self._to_entry(row, present) for row in cur.fetchall()]

    # --- Same-Day Selection ---

    def same_day_across_years(self,
                              day: date,
                              count: int,
                              downloaded_before: Optional[str] = None) -> List[SameDayCandidate]:
        """
        Previously downloaded, non-deleted photos whose source file name
        encodes day's month/day in a different year. One row per source,
        random order, at most `count`.
        """
        if count <= 0:
            return []

        sql = """
            SELECT MIN(lc.id), sp.id, sp.path, sp.file_name
            FROM local_copies lc
            JOIN source_photos sp ON sp.id = lc.source_photo_id
            WHERE lc.deleted_at IS NULL
              AND lc.local_file_name IS NOT NULL
              AND sp.file_name REGEXP ?
        """
        params: List[Any] = [same_day_pattern(day)]
        if downloaded_before is not None:
            sql += " AND lc.downloaded_at < ?"
            params.append(downloaded_before)
        sql += " GROUP BY sp.id ORDER BY RANDOM() LIMIT ?"
        params.append(count)

        cur = self.conn.cursor()
        cur.execute(sql, params)
        return [SameDayCandidate(*row) for row in cur.fetchall()]

    # --- Aggregates & Maintenance ---

    def aggregate_stats(self) -> CatalogStats:
        cur = self.conn.cursor()
        cur.execute("""
            SELECT
                (SELECT COUNT(*) FROM source_photos),
                (SELECT COUNT(*) FROM local_copies
                  WHERE deleted_at IS NULL AND local_file_name IS NOT NULL),
                (SELECT COUNT(*) FROM local_copies WHERE deleted_at IS NOT NULL),
                (SELECT MAX(first_seen_at) FROM source_photos)
        """)
        return CatalogStats(*cur.fetchone())

    def flush(self):
        """Empties both catalog tables in one transaction."""
        with self.write_lock, self.conn:
            self.conn.execute("DELETE FROM local_copies")
            self.conn.execute("DELETE FROM source_photos")
        logging.info("Catalog tables flushed")
