import os
import logging
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from .. import config
from ..config import MountConfig
from ..exceptions import MountError
from ..models import MountStatus


def _unescape_mount_field(value: str) -> str:
    """/proc/mounts escapes space, tab, newline and backslash as octal (\\040)."""
    for code, char in (('\\040', ' '), ('\\011', '\t'), ('\\012', '\n'), ('\\134', '\\')):
        value = value.replace(code, char)
    return value


class ShareMountGuardian:
    """
    Makes sure the share is mounted and actually readable before a scan or
    fetch touches it. A mount that is listed but unreadable (stale SMB
    session, hung server) gets one forced unmount and one remount.

    When the config names no remote host the mount path is a plain local
    directory: nothing is mounted, access is only verified.
    """

    def __init__(self, mount_config: MountConfig, mounts_table: Path = config.MOUNTS_TABLE):
        self.config = mount_config
        self.mount_path = Path(mount_config.mount_path)
        self.mounts_table = mounts_table

    def is_mounted(self) -> bool:
        """Looks for the mount path in the live mount table."""
        target = os.path.normpath(str(self.mount_path))
        try:
            with self.mounts_table.open("r", encoding="utf-8") as f:
                for line in f:
                    fields = line.split()
                    if len(fields) >= 2 and os.path.normpath(_unescape_mount_field(fields[1])) == target:
                        return True
        except OSError as e:
            raise MountError(f"Cannot read mount table {self.mounts_table}: {e}") from e
        return False

    def ensure_mounted(self) -> MountStatus:
        if not self.config.managed:
            return MountStatus(mounted=True, already_mounted=True)

        if self.is_mounted():
            logging.info(f"Mount point {self.mount_path} is already mounted.")
            return MountStatus(mounted=True, already_mounted=True)

        self.mount_path.mkdir(parents=True, exist_ok=True)
        self._run(self._mount_command(), "mount", env={**os.environ, **self.config.credentials_env()})
        logging.info(f"Mounted NAS share {self.config.remote} to {self.mount_path}")
        return MountStatus(mounted=True, already_mounted=False)

    def verify_access(self) -> bool:
        """Soft probe: never raises, returns False on any failure."""
        try:
            if not os.access(self.mount_path, os.R_OK):
                logging.error(f"Mount verification failed: {self.mount_path} is not readable")
                return False
            entries = os.listdir(self.mount_path)
        except OSError as e:
            logging.error(f"Mount verification failed: {e}")
            return False

        logging.info(f"Mount verification successful. Found {len(entries)} items in root directory.")
        return True

    def ensure_mounted_and_verified(self) -> MountStatus:
        status = self.ensure_mounted()
        if self.verify_access():
            status.accessible = True
            return status

        if not self.config.managed:
            raise MountError(f"Share path {self.mount_path} is not accessible")

        if not status.already_mounted:
            raise MountError("Mount succeeded but access verification failed")

        logging.warning("Mount point exists but is not accessible. Attempting to remount...")
        self._force_unmount()
        try:
            self.ensure_mounted()
        except MountError as e:
            raise MountError(f"Remount failed: {e}") from e

        if not self.verify_access():
            raise MountError("Remount succeeded but access verification still failed")

        return MountStatus(mounted=True, already_mounted=False, accessible=True, remounted=True)

    def _mount_command(self) -> List[str]:
        return [
            "mount", "-t", "cifs",
            self.config.remote, str(self.mount_path),
            "-o", self.config.mount_options(),
        ]

    def _force_unmount(self):
        try:
            self._run(["umount", "-f", str(self.mount_path)], "umount")
        except MountError as e:
            # The remount attempt below decides the outcome
            logging.warning(f"Could not force unmount: {e}")

    def _run(self, cmd: List[str], label: str, env: Optional[Dict[str, str]] = None):
        try:
            subprocess.run(cmd, check=True, capture_output=True, text=True, env=env)
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise MountError(f"{label} exited with {e.returncode}: {stderr}") from e
        except OSError as e:
            raise MountError(f"{label} could not be run: {e}") from e
