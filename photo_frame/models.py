from dataclasses import dataclass
from typing import Optional


@dataclass
class ScannedFile:
    """
    Represents a file found on the share during a scan.
    """
    path: str               # relative to the mount root, posix separators
    file_name: str
    size_bytes: int
    last_modified: str      # ISO-8601


@dataclass
class SourcePhoto:
    """A row of source_photos. Never updated after the first scan that saw it."""
    id: int
    path: str
    file_name: str
    size_bytes: Optional[int]
    last_modified: Optional[str]
    first_seen_at: str


@dataclass
class LocalCopy:
    """A row of local_copies: one resized copy in the serving directory."""
    id: int
    source_photo_id: int
    local_file_name: Optional[str]   # None for a source-missing tombstone
    downloaded_at: str
    last_displayed_at: Optional[str] = None
    download_count: int = 1
    deleted_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


@dataclass
class CatalogEntry:
    """
    A source photo joined with (at most) one of its local copies.
    The local_* fields are None when the photo was never acquired.
    """
    source_photo_id: int
    path: str
    file_name: str
    size_bytes: Optional[int]
    last_modified: Optional[str]
    first_seen_at: str

    local_copy_id: Optional[int] = None
    local_file_name: Optional[str] = None
    downloaded_at: Optional[str] = None
    last_displayed_at: Optional[str] = None
    download_count: Optional[int] = None
    deleted_at: Optional[str] = None

    # Checked against the serving directory at query time
    file_exists_locally: bool = False


@dataclass
class SameDayCandidate:
    local_copy_id: int
    source_photo_id: int
    path: str
    file_name: str


@dataclass
class ScanResult:
    inserted: int
    total: int
    existing: int


@dataclass
class FetchResult:
    fetched: int
    same_day_fetched: int
    total: int
    message: str


@dataclass
class CatalogStats:
    total_source_photos: int
    active_local_copies: int
    soft_deleted_local_copies: int
    last_scan_at: Optional[str]


@dataclass
class MountStatus:
    mounted: bool
    already_mounted: bool
    accessible: bool = False
    remounted: bool = False
