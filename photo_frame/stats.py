"""
Read-only views over the catalog for the dashboard and the slideshow.
"""
import math
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from .database.ops import DBOperations
from .models import CatalogEntry

STATUS_FILTERS = ("all", "active", "deleted")


class StatsService:
    def __init__(self, db_ops: DBOperations, photos_dir: Path):
        self.db = db_ops
        self.photos_dir = Path(photos_dir)

    def summary(self) -> Dict[str, Any]:
        stats = self.db.aggregate_stats()
        return {
            "total_source_photos": stats.total_source_photos,
            "active_local_copies": stats.active_local_copies,
            "soft_deleted_local_copies": stats.soft_deleted_local_copies,
            "last_scan_at": stats.last_scan_at,
            "files_in_serving_dir": len(self._serving_files()),
        }

    def list_page(self, page: int = 1, per_page: int = 50, status: str = "all") -> Dict[str, Any]:
        if status not in STATUS_FILTERS:
            raise ValueError(f"status must be one of {', '.join(STATUS_FILTERS)}")
        page = max(1, page)
        per_page = max(1, per_page)
        flags = {"active_only": status == "active", "deleted_only": status == "deleted"}

        total = self.db.total_count(**flags)
        entries = self.db.list_combined(limit=per_page, offset=(page - 1) * per_page, **flags)
        return {
            "photos": entries,
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": math.ceil(total / per_page) if total else 0,
        }

    def photo(self, local_copy_id: int) -> Optional[CatalogEntry]:
        return self.db.get_entry(local_copy_id)

    def slideshow_photos(self) -> List[Dict[str, Any]]:
        """
        The images currently in the serving directory, matched to their
        catalog rows by file name. Files unknown to the catalog get id None.
        """
        files = self._serving_files()
        by_name = {e.local_file_name: e for e in self.db.entries_for_local_names(p.name for p in files)}

        photos = []
        for path in files:
            try:
                stat_result = path.stat()
            except FileNotFoundError:
                # Removed by a fetch clearing the directory after the listing
                continue
            entry = by_name.get(path.name)
            photos.append({
                "id": entry.local_copy_id if entry else None,
                "name": path.name,
                "date": (entry.last_modified if entry and entry.last_modified
                         else datetime.fromtimestamp(stat_result.st_mtime, UTC).isoformat()),
                "size": stat_result.st_size,
                "download_count": entry.download_count if entry else 0,
            })
        return photos

    def _serving_files(self) -> List[Path]:
        if not self.photos_dir.is_dir():
            return []
        return sorted(
            p for p in self.photos_dir.iterdir()
            if p.is_file()
            and p.suffix.lower() in config.SERVING_IMAGE_EXTS
            and not p.name.startswith(config.TEMP_PREFIX)
        )
