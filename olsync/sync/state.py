"""State management for tracking sync history.

Each synced directory holds a small JSON record binding it to a project
and remembering when it was last pulled, pushed and synced. The engine
compares local modification times against these watermarks to decide
which files changed since the last operation.
"""

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..exceptions import SyncStateError
from ..utils import STATE_FILE_NAME, format_iso_timestamp, parse_iso_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectIdentity:
    """The remote project a directory is bound to."""

    id: str
    name: str


@dataclass(frozen=True)
class SyncState:
    """Watermarks of a directory's previous sync operations.

    Instances are immutable; the engine returns an updated copy after each
    successful operation and callers persist it.
    """

    project: ProjectIdentity

    last_pull: Optional[datetime] = None
    """Time of the last successful pull or sync (aware UTC)"""

    last_push: Optional[datetime] = None
    """Time of the last successful push"""

    last_sync: Optional[datetime] = None
    """Time of the last successful sync"""

    def with_pull(self, now: datetime) -> "SyncState":
        return replace(self, last_pull=now)

    def with_push(self, now: datetime) -> "SyncState":
        return replace(self, last_push=now)

    def with_sync(self, now: datetime) -> "SyncState":
        return replace(self, last_pull=now, last_sync=now)

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        data = {
            "projectId": self.project.id,
            "projectName": self.project.name,
            "lastPull": format_iso_timestamp(self.last_pull),
            "lastPush": format_iso_timestamp(self.last_push),
            "lastSync": format_iso_timestamp(self.last_sync),
        }
        return {key: value for key, value in data.items() if value is not None}

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        """Create SyncState from dictionary.

        Raises:
            SyncStateError: If the project identity is missing
        """
        project_id = data.get("projectId")
        if not project_id:
            raise SyncStateError("Sync state has no projectId")
        return cls(
            project=ProjectIdentity(
                id=project_id, name=data.get("projectName") or project_id
            ),
            last_pull=parse_iso_timestamp(data.get("lastPull")),
            last_push=parse_iso_timestamp(data.get("lastPush")),
            last_sync=parse_iso_timestamp(data.get("lastSync")),
        )


class SyncStateManager:
    """Reads and writes the sync state file of one local directory.

    The file is always rewritten as a whole; there are no partial updates.
    """

    def __init__(self, local_dir: Path):
        """Initialize state manager.

        Args:
            local_dir: Synced directory holding the state file
        """
        self.local_dir = local_dir

    @property
    def state_file(self) -> Path:
        return self.local_dir / STATE_FILE_NAME

    def exists(self) -> bool:
        return self.state_file.exists()

    def load(self) -> Optional[SyncState]:
        """Load the sync state.

        Returns:
            SyncState if the directory is bound to a project, None otherwise

        Raises:
            SyncStateError: If the state file exists but is unreadable
        """
        if not self.state_file.exists():
            logger.debug(f"No sync state found at {self.state_file}")
            return None

        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SyncStateError(
                f"Failed to read sync state {self.state_file}: {e}"
            ) from e

        if not isinstance(data, dict):
            raise SyncStateError(f"Malformed sync state in {self.state_file}")

        state = SyncState.from_dict(data)
        logger.debug(
            f"Loaded sync state for {state.project.id} "
            f"(last pull: {data.get('lastPull')})"
        )
        return state

    def save(self, state: SyncState) -> None:
        """Write the sync state, creating the directory if needed."""
        self.local_dir.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w", encoding="utf-8") as f:
            json.dump(state.to_dict(), f, indent=2)
        logger.debug(f"Saved sync state to {self.state_file}")

    def clear(self) -> bool:
        """Remove the state file.

        Returns:
            True if state was cleared, False if no state existed
        """
        if self.state_file.exists():
            self.state_file.unlink()
            logger.debug(f"Cleared sync state at {self.state_file}")
            return True
        return False
