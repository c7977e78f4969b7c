"""Core sync engine for pulling, pushing and syncing a project directory."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
)

from ..api import OverleafClient
from ..exceptions import FolderResolutionError, OverleafAPIError
from ..output import OutputFormatter
from ..utils import SKIPPED_PREVIEW_COUNT, utc_now
from .comparator import (
    REASON_LOCAL_EDIT,
    REASON_NEW_LOCAL,
    FileComparator,
    SyncAction,
    SyncDecision,
    index_by_path,
)
from .operations import SyncOperations
from .resolver import FolderResolver
from .scanner import DirectoryScanner, RemoteFile, read_remote_archive
from .state import SyncState

logger = logging.getLogger(__name__)


@dataclass
class PullResult:
    """Outcome of a pull."""

    state: SyncState
    written: int = 0
    skipped: int = 0
    unchanged: int = 0
    skipped_paths: list[str] = field(default_factory=list)

    @property
    def skipped_preview(self) -> list[str]:
        """First few skipped paths, for display."""
        return self.skipped_paths[:SKIPPED_PREVIEW_COUNT]

    def to_dict(self) -> dict:
        return {
            "written": self.written,
            "skipped": self.skipped,
            "unchanged": self.unchanged,
            "skippedPaths": self.skipped_paths,
        }


@dataclass
class PushResult:
    """Outcome of a push (or of a dry run)."""

    state: SyncState
    candidates: list[str] = field(default_factory=list)
    uploaded: int = 0
    failed: int = 0
    failed_paths: list[str] = field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            "candidates": self.candidates,
            "uploaded": self.uploaded,
            "failed": self.failed,
            "failedPaths": self.failed_paths,
            "dryRun": self.dry_run,
        }


@dataclass
class SyncResult:
    """Outcome of a two-way sync.

    ``kept_local`` and ``new_local`` list the files queued for upload by
    reason; ``pushed`` lists the uploads that succeeded.
    """

    state: SyncState
    pulled: list[str] = field(default_factory=list)
    pushed: list[str] = field(default_factory=list)
    kept_local: list[str] = field(default_factory=list)
    new_local: list[str] = field(default_factory=list)
    failed_paths: list[str] = field(default_factory=list)

    @property
    def pulled_from_remote(self) -> int:
        return len(self.pulled)

    @property
    def pushed_to_remote(self) -> int:
        return len(self.pushed)

    def to_dict(self) -> dict:
        return {
            "pulledFromRemote": self.pulled_from_remote,
            "pushedToRemote": self.pushed_to_remote,
            "pulled": self.pulled,
            "pushed": self.pushed,
            "keptLocal": self.kept_local,
            "newLocal": self.new_local,
            "failedPaths": self.failed_paths,
        }


class SyncEngine:
    """Core sync engine that reconciles a local directory with a project.

    The engine never touches the sync state file. Each operation takes the
    current :class:`SyncState` and returns a result carrying the updated
    state, which the caller persists on success.

    Examples:
        >>> engine = SyncEngine(client)
        >>> result = engine.pull(state, Path("thesis"))
        >>> SyncStateManager(Path("thesis")).save(result.state)
    """

    def __init__(
        self,
        client: OverleafClient,
        output: Optional[OutputFormatter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize sync engine.

        Args:
            client: Overleaf API client
            output: Output formatter for displaying progress/status
            clock: Returns the current time as an aware UTC datetime
        """
        self.client = client
        self.output = output or OutputFormatter()
        self.clock = clock
        self.comparator = FileComparator()

    @property
    def _show_progress(self) -> bool:
        return not (self.output.quiet or self.output.json_output)

    def _new_operations(self) -> SyncOperations:
        # Resolved folder handles are cached for one engine call only
        return SyncOperations(self.client, FolderResolver(self.client))

    def _fetch_remote(self, project_id: str) -> list[RemoteFile]:
        """Download the project archive and unpack it into remote files."""
        start_time = time.time()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=not self._show_progress,
        ) as progress:
            progress.add_task("Downloading project archive...", total=None)
            archive = self.client.download_project(project_id)

        remote_files = read_remote_archive(archive)
        logger.debug(
            f"Fetched {len(remote_files)} remote file(s) in "
            f"{time.time() - start_time:.2f}s"
        )
        return remote_files

    def _upload_all(
        self,
        operations: SyncOperations,
        project_id: str,
        decisions: list[SyncDecision],
    ) -> tuple[list[str], list[str]]:
        """Upload local content for each decision, one file at a time.

        Per-file failures are reported and counted; the batch continues.

        Returns:
            Tuple of (uploaded paths, failed paths)

        Raises:
            FolderResolutionError: If no folder handle can be found
        """
        uploaded: list[str] = []
        failed: list[str] = []
        if not decisions:
            return uploaded, failed

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            disable=not self._show_progress,
        ) as progress:
            task = progress.add_task("Uploading files...", total=len(decisions))

            for decision in decisions:
                path = decision.relative_path
                local_file = decision.local_file
                action_start = time.time()
                try:
                    if local_file is None:
                        raise OverleafAPIError(f"No local content for {path}")
                    operations.upload(project_id, path, local_file.read())
                    uploaded.append(path)
                    logger.debug(
                        f"Upload of {path} took {time.time() - action_start:.2f}s"
                    )
                except FolderResolutionError:
                    raise
                except (OverleafAPIError, OSError) as e:
                    logger.warning(f"Failed to upload {path}: {e}")
                    failed.append(path)
                progress.update(task, advance=1)

        return uploaded, failed

    def pull(
        self, state: SyncState, local_dir: Path, force: bool = False
    ) -> PullResult:
        """Write the project's files into a local directory.

        Local files modified after the last pull are left alone unless
        ``force`` is set. Files whose bytes already match are not
        rewritten.

        Args:
            state: Current sync state of the directory
            local_dir: Directory to pull into (created if missing)
            force: Overwrite local files modified since the last pull

        Returns:
            PullResult with counts and the updated state
        """
        remote_files = self._fetch_remote(state.project.id)

        local_dir.mkdir(parents=True, exist_ok=True)
        local_files = index_by_path(DirectoryScanner().scan_local(local_dir))
        decisions = self.comparator.plan_pull(
            remote_files, local_files, state.last_pull, force=force
        )

        operations = self._new_operations()
        result = PullResult(state=state)

        for decision in decisions:
            if decision.action == SyncAction.WRITE_LOCAL and decision.remote_file:
                operations.write_local(
                    local_dir, decision.relative_path, decision.remote_file.content
                )
                logger.debug(f"Wrote {decision.relative_path} ({decision.reason})")
                result.written += 1
            elif decision.unchanged:
                result.unchanged += 1
            else:
                logger.debug(f"Skipped {decision.relative_path} ({decision.reason})")
                result.skipped += 1
                result.skipped_paths.append(decision.relative_path)

        result.state = state.with_pull(self.clock())
        logger.debug(
            f"Pull complete: {result.written} written, {result.skipped} skipped, "
            f"{result.unchanged} unchanged"
        )
        return result

    def push(
        self,
        state: SyncState,
        local_dir: Path,
        all_files: bool = False,
        dry_run: bool = False,
    ) -> PushResult:
        """Upload local changes to the project.

        Args:
            state: Current sync state of the directory
            local_dir: Directory to push from
            all_files: Upload every file, not only those changed since last pull
            dry_run: Only report the candidates

        Returns:
            PushResult with candidates, counts and the updated state

        Raises:
            FolderResolutionError: If no folder handle can be found
        """
        local_files = DirectoryScanner().scan_local(local_dir)
        decisions = self.comparator.plan_push(
            local_files, state.last_pull, all_files=all_files
        )
        to_upload = [d for d in decisions if d.action == SyncAction.UPLOAD]
        result = PushResult(
            state=state,
            candidates=[d.relative_path for d in to_upload],
            dry_run=dry_run,
        )

        if dry_run:
            logger.debug(f"Dry run: {len(to_upload)} push candidate(s)")
            return result

        uploaded, failed = self._upload_all(
            self._new_operations(), state.project.id, to_upload
        )
        result.uploaded = len(uploaded)
        result.failed = len(failed)
        result.failed_paths = failed
        result.state = state.with_push(self.clock())
        return result

    def sync(self, state: SyncState, local_dir: Path) -> SyncResult:
        """Reconcile both directions, preserving local edits.

        Local files are captured before any remote content is written. A
        file is never both written locally and uploaded in one call.

        Args:
            state: Current sync state of the directory
            local_dir: Directory to sync

        Returns:
            SyncResult with the per-file breakdown and the updated state

        Raises:
            FolderResolutionError: If no folder handle can be found
        """
        remote_files = self._fetch_remote(state.project.id)
        local_files = DirectoryScanner(read_content=True).scan_local(local_dir)
        decisions = self.comparator.plan_sync(
            remote_files, local_files, state.last_pull
        )

        operations = self._new_operations()
        result = SyncResult(state=state)
        to_upload: list[SyncDecision] = []

        for decision in decisions:
            if decision.action == SyncAction.WRITE_LOCAL and decision.remote_file:
                operations.write_local(
                    local_dir, decision.relative_path, decision.remote_file.content
                )
                result.pulled.append(decision.relative_path)
            elif decision.action == SyncAction.UPLOAD:
                to_upload.append(decision)
                if decision.reason == REASON_LOCAL_EDIT:
                    result.kept_local.append(decision.relative_path)
                elif decision.reason == REASON_NEW_LOCAL:
                    result.new_local.append(decision.relative_path)

        uploaded, failed = self._upload_all(
            operations, state.project.id, to_upload
        )
        result.pushed = uploaded
        result.failed_paths = failed
        result.state = state.with_sync(self.clock())
        logger.debug(
            f"Sync complete: {result.pulled_from_remote} pulled, "
            f"{result.pushed_to_remote} pushed, {len(failed)} failed"
        )
        return result
