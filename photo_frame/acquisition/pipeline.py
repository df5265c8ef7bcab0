import time
import logging
from datetime import date, datetime, UTC
from pathlib import Path
from typing import Callable, Optional

from tqdm import tqdm

from .. import config
from ..config import RuntimeSettings, load_settings
from ..database.ops import DBOperations
from ..exceptions import SourceMissingError
from ..guards import OperationGuard, FETCH_GUARD
from ..models import FetchResult, SourcePhoto
from ..share.client import ShareClient
from ..share.mount import ShareMountGuardian
from .transform import resize_image


class AcquisitionPipeline:
    """
    Fills the serving directory with a fresh selection of photos.

    Each run:
      A. clears the serving directory, picks `count` random photos that were
         never downloaded, copies and resizes them one at a time;
      B. adds up to `same_day_photos` earlier downloads taken on today's
         month/day in previous years.

    Candidates are processed strictly one after the other so a hung share
    read never fans out. Only one run may be active per process.
    """

    def __init__(self,
                 db_ops: DBOperations,
                 photos_dir: Path,
                 share: ShareClient,
                 guardian: Optional[ShareMountGuardian] = None,
                 settings_path: Optional[Path] = None,
                 guard: OperationGuard = FETCH_GUARD,
                 today: Callable[[], date] = date.today):
        self.db = db_ops
        self.photos_dir = Path(photos_dir)
        self.share = share
        self.guardian = guardian
        self.settings_path = settings_path
        self.guard = guard
        self.today = today
        self._last_stamp = 0

    @property
    def is_fetch_in_progress(self) -> bool:
        return self.guard.in_progress

    def fetch_photos(self, count: Optional[int] = None) -> FetchResult:
        """
        Runs one fetch cycle. count defaults to the configured photos per day.
        Raises ConcurrentOperationError if a fetch is already running and
        MountError if the share is unavailable; per-photo failures only
        lower the counts.
        """
        with self.guard.hold():
            settings = self._load_settings()
            if count is None:
                count = settings.photos_per_day
            return self._run(count, settings)

    def clear_serving_directory(self) -> int:
        """Deletes every image file in the serving directory. Returns the count."""
        if not self.photos_dir.is_dir():
            return 0

        removed = 0
        for path in self.photos_dir.iterdir():
            if path.is_file() and path.suffix.lower() in config.SERVING_IMAGE_EXTS:
                path.unlink()
                removed += 1
        logging.info(f"Cleared {removed} files from {self.photos_dir}")
        return removed

    def _load_settings(self) -> RuntimeSettings:
        if self.settings_path is None:
            return RuntimeSettings()
        return load_settings(self.settings_path)

    def _run(self, count: int, settings: RuntimeSettings) -> FetchResult:
        run_started = datetime.now(UTC).isoformat()
        logging.info(f"Fetching {count} random photos...")

        # The serving directory is a rotating window: start every cycle empty
        self.clear_serving_directory()
        self.photos_dir.mkdir(parents=True, exist_ok=True)

        candidates = self.db.random_unacquired(count)
        logging.info(f"Found {len(candidates)} photos to download")
        if not candidates:
            return FetchResult(fetched=0, same_day_fetched=0, total=0, message="No new photos to fetch")

        if self.guardian is not None:
            self.guardian.ensure_mounted_and_verified()

        # --- Phase A: regular selection ---
        fetched = 0
        for photo in tqdm(candidates, desc="Fetching photos"):
            try:
                self._acquire(photo)
                fetched += 1
            except SourceMissingError as e:
                logging.warning(f"Source missing, marking {photo.path} as deleted: {e}")
                self.db.mark_source_missing(photo.id)
            except Exception as e:
                logging.error(f"Error processing photo {photo.file_name}: {e}")

        # --- Phase B: same day in previous years ---
        same_day = self._fetch_same_day(settings.same_day_photos, run_started)

        message = f"Downloaded {fetched} photos"
        if same_day:
            message += f" and {same_day} same-day photos"
        logging.info(message)

        return FetchResult(
            fetched=fetched,
            same_day_fetched=same_day,
            total=len(candidates),
            message=message,
        )

    def _acquire(self, photo: SourcePhoto):
        local_name = self._local_name(photo.file_name)
        temp_path = self.photos_dir / f"{config.TEMP_PREFIX}{local_name}"
        final_path = self.photos_dir / local_name

        try:
            self.share.download(photo.path, temp_path)
            resize_image(temp_path, final_path)
        finally:
            temp_path.unlink(missing_ok=True)

        try:
            self.db.record_local_copy(photo.id, local_name)
        except Exception:
            final_path.unlink(missing_ok=True)
            raise
        logging.debug(f"Downloaded and processed: {photo.file_name}")

    def _local_name(self, file_name: str) -> str:
        """<ms timestamp>-<stem>.jpg, with the timestamp strictly increasing."""
        stamp = max(int(time.time() * 1000), self._last_stamp + 1)
        self._last_stamp = stamp
        return f"{stamp}-{Path(file_name).stem}{config.LOCAL_SUFFIX}"

    def _fetch_same_day(self, count: int, run_started: str) -> int:
        """Best effort: any failure ends this phase without touching phase A results."""
        if count <= 0:
            return 0

        fetched = 0
        try:
            matches = self.db.same_day_across_years(self.today(), count, downloaded_before=run_started)
            logging.info(f"Found {len(matches)} same-day photos from previous years")

            for match in matches:
                local_name = f"{config.SAME_DAY_PREFIX}{Path(match.file_name).stem}{config.LOCAL_SUFFIX}"
                dest = self.photos_dir / local_name
                if dest.exists():
                    logging.debug(f"Same-day photo already present: {local_name}")
                    continue

                try:
                    resize_image(self.share.resolve(match.path), dest)
                except SourceMissingError as e:
                    logging.warning(f"Source missing, marking {match.path} as deleted: {e}")
                    self.db.mark_source_missing(match.source_photo_id)
                    continue

                existing = self.db.get_local_copy_by_name(local_name)
                if existing is None:
                    self.db.record_local_copy(match.source_photo_id, local_name)
                else:
                    # Same photo resurfaced earlier (previous year or an earlier run today)
                    self.db.refresh_local_copy(existing.id)
                fetched += 1
        except Exception as e:
            logging.error(f"Same-day photo fetch failed: {e}")

        return fetched
