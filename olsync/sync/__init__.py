"""Sync engine for olsync - pull, push and two-way sync of Overleaf projects."""

from .comparator import FileComparator, SyncAction, SyncDecision
from .engine import PullResult, PushResult, SyncEngine, SyncResult
from .operations import SyncOperations
from .resolver import (
    FolderResolver,
    compute_root_folder_id,
    probe_candidates,
    probe_offsets,
)
from .scanner import DirectoryScanner, LocalFile, RemoteFile, read_remote_archive
from .state import ProjectIdentity, SyncState, SyncStateManager

__all__ = [
    "SyncEngine",
    "PullResult",
    "PushResult",
    "SyncResult",
    "SyncOperations",
    "FolderResolver",
    "compute_root_folder_id",
    "probe_candidates",
    "probe_offsets",
    "DirectoryScanner",
    "FileComparator",
    "SyncAction",
    "SyncDecision",
    "LocalFile",
    "RemoteFile",
    "read_remote_archive",
    "ProjectIdentity",
    "SyncState",
    "SyncStateManager",
]
