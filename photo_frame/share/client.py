import os
import shutil
import logging
from pathlib import Path

from ..exceptions import SourceMissingError, TransientIOError


class ShareClient:
    """Reads catalogued files from the mounted share."""

    def __init__(self, mount_root: Path):
        self.mount_root = Path(mount_root)

    def resolve(self, stored_path: str) -> Path:
        """
        Maps a catalogued path to its location on the share. Paths are
        stored relative to the mount root, but older rows may hold an
        absolute path under the root or a root-relative path with a
        leading slash.
        """
        candidate = Path(stored_path)
        if candidate.is_absolute():
            try:
                candidate.relative_to(self.mount_root)
                return candidate
            except ValueError:
                pass
        return self.mount_root / str(stored_path).lstrip("/" + os.sep)

    def download(self, stored_path: str, local_path: Path) -> Path:
        source = self.resolve(stored_path)
        logging.debug(f"Copying {source} to {local_path}")
        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, local_path)
        except FileNotFoundError as e:
            if not source.exists():
                raise SourceMissingError(f"{source} no longer exists on the share") from e
            raise TransientIOError(f"Failed to copy {source}: {e}") from e
        except OSError as e:
            raise TransientIOError(f"Failed to copy {source}: {e}") from e
        return local_path
