import logging
from pathlib import Path
from typing import Optional

from . import config
from .acquisition.pipeline import AcquisitionPipeline
from .config import AppConfig, load_scan_config
from .database.db import DBManager
from .database.ops import DBOperations
from .guards import OperationGuard, SCAN_GUARD, FETCH_GUARD
from .models import FetchResult, ScanResult
from .reporting import ReportGenerator
from .scanning.filesystem import DirectoryScanner
from .share.client import ShareClient
from .share.mount import ShareMountGuardian
from .stats import StatsService


class PhotoFrameApp:
    """
    Wires the catalog, the share and the pipelines together. This is the
    surface a web layer or scheduler calls; it owns one database connection
    for its lifetime.
    """

    def __init__(self,
                 app_config: AppConfig,
                 mounts_table: Optional[Path] = None,
                 scan_guard: OperationGuard = SCAN_GUARD,
                 fetch_guard: OperationGuard = FETCH_GUARD):
        self.config = app_config
        self.db_manager = DBManager(app_config.db_path)
        self.db_ops = DBOperations(
            self.db_manager.connect(), app_config.photos_dir, write_lock=self.db_manager.write_lock)

        share_root = Path(app_config.mount.mount_path)
        self.guardian = ShareMountGuardian(app_config.mount, mounts_table or config.MOUNTS_TABLE)

        self.scanner = DirectoryScanner(self.db_ops, share_root, guardian=self.guardian, guard=scan_guard)
        self.pipeline = AcquisitionPipeline(
            self.db_ops,
            app_config.photos_dir,
            ShareClient(share_root),
            guardian=self.guardian,
            settings_path=app_config.settings_path,
            guard=fetch_guard,
        )
        self.stats = StatsService(self.db_ops, app_config.photos_dir)

    # --- Long-running operations ---

    def scan(self) -> ScanResult:
        scan_config = load_scan_config(self.config.scan_config_path)
        return self.scanner.scan(scan_config)

    def fetch(self, count: Optional[int] = None) -> FetchResult:
        if count is None:
            count = self.config.photos_per_day_override
        return self.pipeline.fetch_photos(count)

    def is_scan_in_progress(self) -> bool:
        return self.scanner.is_scan_in_progress

    def is_fetch_in_progress(self) -> bool:
        return self.pipeline.is_fetch_in_progress

    # --- Mutators reported by the frontend ---

    def record_view(self, local_copy_id: int) -> bool:
        return self.db_ops.record_view(local_copy_id)

    def record_download(self, local_copy_id: int) -> bool:
        return self.db_ops.record_download_action(local_copy_id)

    def soft_delete(self, local_copy_id: int) -> bool:
        return self.db_ops.soft_delete(local_copy_id)

    # --- Maintenance ---

    def generate_report(self, output_csv: Path) -> int:
        return ReportGenerator(self.db_ops).generate_catalog_report(output_csv)

    def flush(self):
        """Removes every served image and empties the catalog."""
        logging.info("Starting data flush operation...")
        with self.pipeline.guard.hold(), self.scanner.guard.hold():
            self.pipeline.clear_serving_directory()
            self.db_ops.flush()
        logging.info("Data flush completed successfully")

    def close(self):
        self.db_manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
