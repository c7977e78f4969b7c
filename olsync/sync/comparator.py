"""File comparison logic for sync operations.

Decisions are driven by local modification times compared against the
``last_pull`` watermark. Remote files carry no usable timestamps, so the
archive contents are only compared byte for byte where that decides
between keeping a local edit and taking the remote version.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .scanner import LocalFile, RemoteFile

REASON_LOCAL_NEWER = "local file modified since last pull"
REASON_UNCHANGED = "content unchanged"
REASON_REMOTE = "remote version"
REASON_NEW_REMOTE = "new remote file"
REASON_LOCAL_EDIT = "local edit preserved"
REASON_NEW_LOCAL = "new local file"
REASON_ALL_FILES = "all files requested"
REASON_NEVER_PULLED = "no previous pull"
REASON_NOT_MODIFIED = "not modified since last pull"


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    WRITE_LOCAL = "write_local"
    """Write remote content to the local path"""

    UPLOAD = "upload"
    """Upload local content to the project"""

    SKIP = "skip"
    """Skip file (no action needed)"""


@dataclass
class SyncDecision:
    """Represents a decision about how to sync a file."""

    action: SyncAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    relative_path: str
    """Relative path of the file"""

    local_file: Optional[LocalFile] = None
    """Local file (if exists)"""

    remote_file: Optional[RemoteFile] = None
    """Remote file (if exists)"""

    @property
    def unchanged(self) -> bool:
        """True when local and remote bytes were found identical."""
        return self.action == SyncAction.SKIP and self.reason == REASON_UNCHANGED


def is_modified_since(local_file: LocalFile, watermark: Optional[datetime]) -> bool:
    """Check whether a local file was modified strictly after the watermark."""
    return watermark is not None and local_file.modified_at > watermark


def index_by_path(local_files: list[LocalFile]) -> dict[str, LocalFile]:
    """Map relative paths to local files (first occurrence wins)."""
    local_map: dict[str, LocalFile] = {}
    for local_file in local_files:
        local_map.setdefault(local_file.relative_path, local_file)
    return local_map


class FileComparator:
    """Compares local and remote files to determine sync actions."""

    def plan_pull(
        self,
        remote_files: list[RemoteFile],
        local_files: dict[str, LocalFile],
        last_pull: Optional[datetime],
        force: bool = False,
    ) -> list[SyncDecision]:
        """Decide, per remote file, whether a pull writes it locally.

        Args:
            remote_files: Files from the project archive
            local_files: Dictionary mapping relative_path to LocalFile
            last_pull: Watermark of the previous pull
            force: Overwrite local files even if modified since last pull

        Returns:
            One SyncDecision per remote file, in archive order
        """
        decisions: list[SyncDecision] = []

        for remote_file in remote_files:
            path = remote_file.relative_path
            local_file = local_files.get(path)

            if local_file is None:
                action, reason = SyncAction.WRITE_LOCAL, REASON_NEW_REMOTE
            elif is_modified_since(local_file, last_pull) and not force:
                action, reason = SyncAction.SKIP, REASON_LOCAL_NEWER
            elif local_file.read() == remote_file.content:
                action, reason = SyncAction.SKIP, REASON_UNCHANGED
            else:
                action, reason = SyncAction.WRITE_LOCAL, REASON_REMOTE

            decisions.append(
                SyncDecision(
                    action=action,
                    reason=reason,
                    relative_path=path,
                    local_file=local_file,
                    remote_file=remote_file,
                )
            )

        return decisions

    def plan_push(
        self,
        local_files: list[LocalFile],
        last_pull: Optional[datetime],
        all_files: bool = False,
    ) -> list[SyncDecision]:
        """Decide which local files are push candidates.

        A file is a candidate if ``all_files`` is set, if the directory was
        never pulled, or if it was modified strictly after the last pull.
        """
        decisions: list[SyncDecision] = []

        for local_file in local_files:
            if all_files:
                action, reason = SyncAction.UPLOAD, REASON_ALL_FILES
            elif last_pull is None:
                action, reason = SyncAction.UPLOAD, REASON_NEVER_PULLED
            elif is_modified_since(local_file, last_pull):
                action, reason = SyncAction.UPLOAD, REASON_LOCAL_NEWER
            else:
                action, reason = SyncAction.SKIP, REASON_NOT_MODIFIED

            decisions.append(
                SyncDecision(
                    action=action,
                    reason=reason,
                    relative_path=local_file.relative_path,
                    local_file=local_file,
                )
            )

        return decisions

    def plan_sync(
        self,
        remote_files: list[RemoteFile],
        local_files: list[LocalFile],
        last_pull: Optional[datetime],
    ) -> list[SyncDecision]:
        """Plan a two-way sync that keeps local edits over remote versions.

        A local file modified since the last pull whose bytes differ from
        the remote copy is uploaded and never overwritten. Local files
        without a remote counterpart are uploaded once. Every other remote
        file is written locally unless the bytes are already identical.

        Args:
            remote_files: Files from the project archive
            local_files: Local files captured before any write
            last_pull: Watermark of the previous pull

        Returns:
            Decisions for the remote files in archive order, followed by
            the new local files in scan order
        """
        local_map = index_by_path(local_files)
        decisions: list[SyncDecision] = []
        remote_paths: set[str] = set()

        for remote_file in remote_files:
            path = remote_file.relative_path
            remote_paths.add(path)
            local_file = local_map.get(path)

            if local_file is None:
                action, reason = SyncAction.WRITE_LOCAL, REASON_NEW_REMOTE
            elif local_file.read() == remote_file.content:
                action, reason = SyncAction.SKIP, REASON_UNCHANGED
            elif is_modified_since(local_file, last_pull):
                action, reason = SyncAction.UPLOAD, REASON_LOCAL_EDIT
            else:
                action, reason = SyncAction.WRITE_LOCAL, REASON_REMOTE

            decisions.append(
                SyncDecision(
                    action=action,
                    reason=reason,
                    relative_path=path,
                    local_file=local_file,
                    remote_file=remote_file,
                )
            )

        for path, local_file in local_map.items():
            if path in remote_paths:
                continue
            decisions.append(
                SyncDecision(
                    action=SyncAction.UPLOAD,
                    reason=REASON_NEW_LOCAL,
                    relative_path=path,
                    local_file=local_file,
                )
            )

        return decisions
