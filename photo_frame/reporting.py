import csv
import logging
from pathlib import Path

from .database.ops import DBOperations
from .models import CatalogEntry

HEADERS = [
    "Source Path",
    "File Name",
    "Size (bytes)",
    "Status",
    "Local File",
    "Downloaded At",
    "Last Displayed",
    "Download Count",
    "Deleted At",
]


class ReportGenerator:
    def __init__(self, db_ops: DBOperations):
        self.db = db_ops

    def generate_catalog_report(self, output_csv: Path) -> int:
        """
        Writes one row per catalog entry with its derived status.
        Returns the number of rows written.
        """
        logging.info(f"Generating catalog report -> {output_csv}")

        written = 0
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(HEADERS)

            for entry in self.db.list_combined():
                writer.writerow([
                    entry.path,
                    entry.file_name,
                    entry.size_bytes if entry.size_bytes is not None else "",
                    self.status_of(entry),
                    entry.local_file_name or "",
                    entry.downloaded_at or "",
                    entry.last_displayed_at or "",
                    entry.download_count if entry.download_count is not None else "",
                    entry.deleted_at or "",
                ])
                written += 1
                if written % 1000 == 0:
                    logging.info(f"Wrote {written} rows...")

        logging.info(f"Report complete. {written} rows.")
        return written

    @staticmethod
    def status_of(entry: CatalogEntry) -> str:
        if entry.local_copy_id is None:
            return "Not Downloaded"
        if entry.deleted_at is not None:
            # A tombstone never had a local file
            return "Source Missing" if entry.local_file_name is None else "Soft Deleted"
        if not entry.file_exists_locally:
            return "Missing Locally"
        return "Active"
