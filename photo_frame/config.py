"""
Configuration constants and loaders for the photo frame.
"""
import json
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .exceptions import ConfigurationReadError

# --- File Type Definitions ---
DEFAULT_IMAGE_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.gif']

# Anything with these extensions in the serving directory belongs to us
SERVING_IMAGE_EXTS = {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp'}

# --- Image Transform ---
MAX_WIDTH = 1920
JPEG_QUALITY = 85

# --- Local Naming ---
TEMP_PREFIX = "temp-"
SAME_DAY_PREFIX = "sameday-"
LOCAL_SUFFIX = ".jpg"

# --- Runtime Defaults ---
DEFAULT_PHOTOS_PER_DAY = 10
DEFAULT_SAME_DAY_PHOTOS = 0
DEFAULT_SLIDESHOW_INTERVAL = 300  # seconds
MIN_SLIDESHOW_INTERVAL = 5
MAX_PHOTOS_PER_DAY = 100

# --- Share Mount ---
DEFAULT_MOUNT_PATH = Path("/mnt/photos")
DEFAULT_SMB_VERSION = "3.0"
CIFS_OPTIONS = [
    'sec=ntlmssp',
    'iocharset=utf8',
    'file_mode=0777',
    'dir_mode=0777',
    'noperm',
]
MOUNTS_TABLE = Path("/proc/mounts")

# --- Local Storage ---
DEFAULT_DB_PATH = Path("data/photos.db")
DEFAULT_PHOTOS_DIR = Path("data/photos")
DEFAULT_SCAN_CONFIG_PATH = Path("config.json")
DEFAULT_SETTINGS_PATH = Path("settings.json")


@dataclass
class ScanFolder:
    """A share subfolder to scan. Path is relative to the mount root."""
    path: str
    recursive: bool = True


@dataclass
class ScanConfig:
    subfolders: List[ScanFolder] = field(default_factory=list)
    exclusion_patterns: List[str] = field(default_factory=list)
    image_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_IMAGE_EXTENSIONS))


@dataclass
class RuntimeSettings:
    photos_per_day: int = DEFAULT_PHOTOS_PER_DAY
    same_day_photos: int = DEFAULT_SAME_DAY_PHOTOS
    slideshow_interval: int = DEFAULT_SLIDESHOW_INTERVAL

    def to_json(self) -> Dict[str, int]:
        return {
            'photosPerDay': self.photos_per_day,
            'sameDayPhotos': self.same_day_photos,
            'slideshowInterval': self.slideshow_interval,
        }


@dataclass
class MountConfig:
    mount_path: Path = DEFAULT_MOUNT_PATH
    host: Optional[str] = None
    share: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    version: str = DEFAULT_SMB_VERSION

    @property
    def managed(self) -> bool:
        """True when we are responsible for mounting the share ourselves."""
        return bool(self.host and self.share)

    @property
    def remote(self) -> str:
        return f"//{self.host}/{self.share}"

    def mount_options(self) -> str:
        """Comma-separated -o options. Credentials are never part of it, see credentials_env()."""
        opts = [f"vers={self.version}"]
        opts.extend(CIFS_OPTIONS)
        return ",".join(opts)

    def credentials_env(self) -> Dict[str, str]:
        """
        Credentials for mount.cifs, which reads USER and PASSWD from its
        environment. They must stay out of the -o string, where a comma
        would split them.
        """
        env = {}
        if self.username:
            env["USER"] = self.username
        if self.password:
            env["PASSWD"] = self.password
        return env

    def __repr__(self) -> str:
        # Keep the password out of log lines
        return (f"MountConfig(mount_path={self.mount_path!r}, remote={self.remote!r}, "
                f"username={self.username!r}, version={self.version!r})")


@dataclass
class AppConfig:
    db_path: Path = DEFAULT_DB_PATH
    photos_dir: Path = DEFAULT_PHOTOS_DIR
    scan_config_path: Path = DEFAULT_SCAN_CONFIG_PATH
    settings_path: Path = DEFAULT_SETTINGS_PATH
    mount: MountConfig = field(default_factory=MountConfig)
    photos_per_day_override: Optional[int] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        env = os.environ if environ is None else environ

        override = None
        if env.get("PHOTOS_PER_DAY"):
            try:
                override = int(env["PHOTOS_PER_DAY"])
            except ValueError:
                logging.warning(f"Ignoring invalid PHOTOS_PER_DAY={env['PHOTOS_PER_DAY']!r}")

        return cls(
            db_path=Path(env.get("LOCAL_DB_PATH") or DEFAULT_DB_PATH),
            photos_dir=Path(env.get("LOCAL_PHOTOS_PATH") or DEFAULT_PHOTOS_DIR),
            scan_config_path=Path(env.get("PHOTO_FRAME_CONFIG") or DEFAULT_SCAN_CONFIG_PATH),
            settings_path=Path(env.get("PHOTO_FRAME_SETTINGS") or DEFAULT_SETTINGS_PATH),
            mount=MountConfig(
                mount_path=Path(env.get("MOUNTED_PHOTOS_PATH") or DEFAULT_MOUNT_PATH),
                host=env.get("NAS_HOST") or None,
                share=env.get("NAS_SHARE") or None,
                username=env.get("NAS_USERNAME") or None,
                password=env.get("NAS_PASSWORD") or None,
                version=env.get("NAS_SMB_VERSION") or DEFAULT_SMB_VERSION,
            ),
            photos_per_day_override=override,
        )


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Returns the parsed object, or None if the file does not exist."""
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationReadError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationReadError(f"{path} does not contain a JSON object")
    return data


def normalize_subfolder(entry: Any) -> ScanFolder:
    """
    Subfolder entries come either as a bare string (legacy format, always
    recursive) or as an object with 'path' and optional 'recursive'.
    """
    if isinstance(entry, str):
        return ScanFolder(path=entry, recursive=True)
    if isinstance(entry, dict) and isinstance(entry.get('path'), str):
        return ScanFolder(path=entry['path'], recursive=entry.get('recursive') is not False)
    raise ConfigurationReadError(f"Invalid subfolder entry: {entry!r}")


def normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith('.') else f".{ext}"


def load_scan_config(path: Path) -> ScanConfig:
    try:
        data = _read_json(path)
        if data is None:
            logging.info(f"Scan config {path} not found, using defaults")
            return ScanConfig()

        section = data.get('photoScanConfig') or {}
        subfolders = [normalize_subfolder(s) for s in section.get('subfolders') or []]
        patterns = [str(p) for p in section.get('exclusionPatterns') or []]
        extensions = section.get('imageFileExtensions') or DEFAULT_IMAGE_EXTENSIONS
        return ScanConfig(
            subfolders=subfolders,
            exclusion_patterns=patterns,
            image_extensions=[normalize_extension(e) for e in extensions],
        )
    except ConfigurationReadError as e:
        logging.error(f"Error loading scan config: {e}")
        return ScanConfig()


def load_settings(path: Path) -> RuntimeSettings:
    try:
        data = _read_json(path)
    except ConfigurationReadError as e:
        logging.error(f"Error reading settings: {e}")
        return RuntimeSettings()

    if data is None:
        return RuntimeSettings()

    defaults = RuntimeSettings()
    try:
        return RuntimeSettings(
            photos_per_day=int(data.get('photosPerDay', defaults.photos_per_day)),
            same_day_photos=int(data.get('sameDayPhotos', defaults.same_day_photos)),
            slideshow_interval=int(data.get('slideshowInterval', defaults.slideshow_interval)),
        )
    except (TypeError, ValueError) as e:
        logging.error(f"Error reading settings: invalid value in {path}: {e}")
        return defaults


def update_settings(path: Path,
                    photos_per_day: Optional[int] = None,
                    same_day_photos: Optional[int] = None,
                    slideshow_interval: Optional[int] = None) -> RuntimeSettings:
    """
    Validates the given changes, merges them into the settings file and
    returns the resulting settings. Raises ValueError on invalid input.
    """
    if slideshow_interval is not None and slideshow_interval < MIN_SLIDESHOW_INTERVAL:
        raise ValueError(f"Slideshow interval must be at least {MIN_SLIDESHOW_INTERVAL} seconds")
    if photos_per_day is not None and not 1 <= photos_per_day <= MAX_PHOTOS_PER_DAY:
        raise ValueError(f"Photos per day must be between 1 and {MAX_PHOTOS_PER_DAY}")
    if same_day_photos is not None and same_day_photos < 0:
        raise ValueError("Same-day photo count cannot be negative")

    current = load_settings(path)
    if photos_per_day is not None:
        current.photos_per_day = photos_per_day
    if same_day_photos is not None:
        current.same_day_photos = same_day_photos
    if slideshow_interval is not None:
        current.slideshow_interval = slideshow_interval

    # Preserve keys we don't know about
    try:
        existing = _read_json(path) or {}
    except ConfigurationReadError:
        existing = {}
    existing.update(current.to_json())

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(existing, f, indent=2)

    logging.info(f"Settings updated: {asdict(current)}")
    return current
