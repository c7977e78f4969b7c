"""Local directory scanning and remote archive reading for sync operations."""

import io
import logging
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..exceptions import OverleafInvalidResponseError
from ..utils import mtime_to_datetime, normalize_relative_path

logger = logging.getLogger(__name__)


@dataclass
class LocalFile:
    """Represents a local file with metadata."""

    path: Path
    """Absolute path to the file"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    size: int
    """File size in bytes"""

    mtime: float
    """Last modification time (Unix timestamp)"""

    content: Optional[bytes] = None
    """File content, captured at scan time when requested"""

    @classmethod
    def from_path(
        cls, file_path: Path, base_path: Path, read_content: bool = False
    ) -> "LocalFile":
        """Create LocalFile from a path.

        Args:
            file_path: Absolute path to the file
            base_path: Base path for calculating relative paths
            read_content: Capture the file bytes now

        Returns:
            LocalFile instance
        """
        stat = file_path.stat()
        # Use as_posix() to ensure forward slashes on all platforms
        relative_path = file_path.relative_to(base_path).as_posix()

        return cls(
            path=file_path,
            relative_path=relative_path,
            size=stat.st_size,
            mtime=stat.st_mtime,
            content=file_path.read_bytes() if read_content else None,
        )

    @property
    def modified_at(self):
        """Modification time as an aware UTC datetime."""
        return mtime_to_datetime(self.mtime)

    def read(self) -> bytes:
        """Return the captured content, reading the file if it was not captured."""
        if self.content is None:
            self.content = self.path.read_bytes()
        return self.content


@dataclass
class RemoteFile:
    """Represents a remote file extracted from the project archive."""

    relative_path: str
    """Path relative to the project root, forward slashes, no leading slash"""

    content: bytes
    """File content"""

    @property
    def size(self) -> int:
        return len(self.content)


def _is_safe_relative_path(relative_path: str) -> bool:
    parts = relative_path.split("/")
    return (
        bool(relative_path)
        and ".." not in parts
        and not relative_path.startswith("/")
    )


def read_remote_archive(archive: bytes) -> list[RemoteFile]:
    """Build the remote file set from a project zip archive.

    Directory entries are dropped. Entries that would escape the project
    root are skipped with a warning.

    Raises:
        OverleafInvalidResponseError: If the archive is not a valid zip file
    """
    remote_files: list[RemoteFile] = []

    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                relative_path = normalize_relative_path(info.filename)
                if not _is_safe_relative_path(relative_path):
                    logger.warning(f"Skipping unsafe archive entry: {info.filename}")
                    continue
                remote_files.append(
                    RemoteFile(relative_path=relative_path, content=zf.read(info))
                )
    except zipfile.BadZipFile as e:
        raise OverleafInvalidResponseError(
            f"Project archive is not a valid zip file: {e}"
        ) from e

    logger.debug(f"Read {len(remote_files)} file(s) from project archive")
    return remote_files


class DirectoryScanner:
    """Scans directories and builds file lists.

    Entries whose name starts with a dot are skipped, which also keeps the
    sync state file and credentials out of every scan.

    Examples:
        >>> scanner = DirectoryScanner()
        >>> files = scanner.scan_local(Path("/papers/thesis"))
    """

    def __init__(self, exclude_dot_files: bool = True, read_content: bool = False):
        """Initialize directory scanner.

        Args:
            exclude_dot_files: Whether to exclude files/folders starting with dot
            read_content: Capture file bytes during the scan
        """
        self.exclude_dot_files = exclude_dot_files
        self.read_content = read_content

    def should_ignore(self, path: Path) -> bool:
        """Check if a path should be skipped."""
        return self.exclude_dot_files and path.name.startswith(".")

    def scan_local(
        self, directory: Path, base_path: Optional[Path] = None
    ) -> list[LocalFile]:
        """Recursively scan a local directory.

        Args:
            directory: Directory to scan
            base_path: Base path for calculating relative paths (defaults to directory)

        Returns:
            List of LocalFile objects in directory listing order (sorted by name)
        """
        if base_path is None:
            base_path = directory
            if not directory.is_dir():
                return []

        files: list[LocalFile] = []

        try:
            items = sorted(directory.iterdir(), key=lambda p: p.name)
        except PermissionError as e:
            logger.warning(f"Permission denied: {e}")
            return files

        for item in items:
            if self.should_ignore(item):
                continue

            if item.is_dir():
                files.extend(self.scan_local(item, base_path))
            elif item.is_file():
                try:
                    files.append(
                        LocalFile.from_path(
                            item, base_path, read_content=self.read_content
                        )
                    )
                except OSError as e:
                    logger.warning(f"Skipping unreadable file {item}: {e}")

        return files
