import os
import logging
from datetime import datetime, UTC
from pathlib import Path
from typing import Iterator, List, Optional

from ..config import ScanConfig, ScanFolder
from ..database.ops import DBOperations
from ..guards import OperationGuard, SCAN_GUARD
from ..models import ScannedFile, ScanResult
from ..share.mount import ShareMountGuardian
from .exclusions import ExclusionMatcher


class DirectoryScanner:
    """
    Walks the configured subfolders of the mounted share and catalogues
    every image file it finds. Known paths are left alone, so rescanning
    an unchanged share inserts nothing.
    """

    def __init__(self,
                 db_ops: DBOperations,
                 share_root: Path,
                 guardian: Optional[ShareMountGuardian] = None,
                 guard: OperationGuard = SCAN_GUARD):
        self.db = db_ops
        self.share_root = Path(os.path.normpath(share_root))
        self.guardian = guardian
        self.guard = guard

    @property
    def is_scan_in_progress(self) -> bool:
        return self.guard.in_progress

    def scan(self, scan_config: ScanConfig) -> ScanResult:
        """
        Raises ConcurrentOperationError if another scan is running and
        MountError if the share is unavailable.
        """
        with self.guard.hold():
            logging.info("Starting share scan...")
            if self.guardian is not None:
                self.guardian.ensure_mounted_and_verified()

            files = list(self.collect(scan_config))
            logging.info(f"Found {len(files)} files on the share")

            extensions = {e.lower() for e in scan_config.image_extensions}
            logging.info(f"Filtering for image file extensions: {', '.join(sorted(extensions))}")
            images = [f for f in files if Path(f.file_name).suffix.lower() in extensions]
            logging.info(f"Found {len(images)} image files")

            result = self.db.insert_source_photos(images)
            logging.info(f"Scan complete. Saved {result.inserted} new photos ({result.existing} already known).")
            return result

    def collect(self, scan_config: ScanConfig) -> Iterator[ScannedFile]:
        """Yields every non-excluded file in the configured folders."""
        matcher = ExclusionMatcher(scan_config.exclusion_patterns)
        if matcher:
            logging.info(f"With exclusion patterns: {', '.join(matcher.patterns)}")

        folders: List[ScanFolder] = scan_config.subfolders
        if not folders:
            logging.info("No subfolders configured, scanning the share root")
            folders = [ScanFolder(path="", recursive=False)]

        for folder in folders:
            mode = "recursive" if folder.recursive else "non-recursive"
            start = Path(os.path.normpath(self.share_root / folder.path.strip("/")))
            logging.info(f"Processing subfolder: {folder.path or '/'} ({mode})")

            if not start.is_relative_to(self.share_root):
                logging.warning(f"Subfolder is outside the share, skipping: {folder.path}")
                continue

            if not start.is_dir():
                logging.warning(f"Subfolder does not exist: {start}")
                continue

            found = 0
            for scanned in self._iter_files(start, folder.recursive, matcher):
                found += 1
                yield scanned
            logging.info(f"Found {found} files in subfolder: {folder.path or '/'}")

    def _iter_files(self, start: Path, recursive: bool, matcher: ExclusionMatcher) -> Iterator[ScannedFile]:
        """Depth-first walker using os.scandir for speed."""
        stack = [start]
        while stack:
            current = stack.pop()
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logging.warning(f"Cannot read directory {current}: {e}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            for e in entries:
                relative = Path(e.path).relative_to(self.share_root).as_posix()
                if matcher.is_excluded(relative, e.name):
                    logging.debug(f"Skipping excluded path: {relative}")
                    continue

                try:
                    if e.is_dir(follow_symlinks=False):
                        if recursive:
                            dirs.append(Path(e.path))
                        continue
                    if not e.is_file(follow_symlinks=False):
                        continue
                    stat_result = e.stat(follow_symlinks=False)
                except OSError as err:
                    logging.error(f"Error getting stats for {relative}: {err}")
                    continue

                yield ScannedFile(
                    path=relative,
                    file_name=e.name,
                    size_bytes=stat_result.st_size,
                    last_modified=datetime.fromtimestamp(stat_result.st_mtime, UTC).isoformat(),
                )

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)
