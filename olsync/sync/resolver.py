"""Root folder resolution for uploads.

The upload endpoint needs the ID of the folder a file goes into, but
Overleaf has no call that reliably returns a project's root folder. The
resolver tries, in order:

1. the ``rootFolder`` entry embedded in the editor page metadata;
2. the project ID with its trailing counter decremented by one, which is
   usually the ID the root folder was created with;
3. probing: throwaway uploads into neighbouring IDs until one is accepted.

Probing only runs when an upload with a handle from 1 or 2 is rejected
with ``folder_not_found``.
"""

import logging
import time
from collections.abc import Iterable, Iterator
from typing import Callable, Optional, cast

from ..api import OverleafClient
from ..exceptions import FolderResolutionError, OverleafAPIError
from ..models import EntityType
from ..utils import is_project_id

logger = logging.getLogger(__name__)

PROBE_WINDOW = 50
PROBE_CONTENT = b"probe"
MAX_COUNTER = 0xFFFFFFFF

FolderStrategy = Callable[[str], Optional[str]]


def _split_identifier(project_id: str) -> Optional[tuple[str, int]]:
    """Split an ID into its 16-char prefix and 8-hex-digit counter."""
    if not is_project_id(project_id):
        return None
    return project_id[:16], int(project_id[16:], 16)


def offset_identifier(project_id: str, offset: int) -> Optional[str]:
    """Shift the counter part of an ID by ``offset``.

    Returns:
        The shifted ID in lowercase hex, or None if the ID is malformed or
        the counter would leave the 8-digit range

    Examples:
        >>> offset_identifier("5f1a2b3c4d5e6f7a00000010", -1)
        '5f1a2b3c4d5e6f7a0000000f'
    """
    parts = _split_identifier(project_id)
    if parts is None:
        return None
    prefix, counter = parts
    shifted = counter + offset
    if shifted < 0 or shifted > MAX_COUNTER:
        return None
    return f"{prefix.lower()}{shifted:08x}"


def compute_root_folder_id(project_id: str) -> Optional[str]:
    """Derive the likely root folder ID from a project ID."""
    return offset_identifier(project_id, -1)


def probe_offsets(window: int = PROBE_WINDOW) -> Iterator[int]:
    """Yield counter offsets in probing order: -1 .. -window, then +1 .. +window."""
    yield from range(-1, -window - 1, -1)
    yield from range(1, window + 1)


def probe_candidates(project_id: str, window: int = PROBE_WINDOW) -> Iterator[str]:
    """Yield candidate folder IDs around a project ID in probing order.

    Offsets whose counter would be negative or overflow are skipped.
    """
    for offset in probe_offsets(window):
        candidate = offset_identifier(project_id, offset)
        if candidate is not None:
            yield candidate


class FolderResolver:
    """Finds the folder handle used to upload into a project's top level.

    Resolved handles are cached per project for the lifetime of the
    resolver. Create one resolver per engine operation.

    Examples:
        >>> resolver = FolderResolver(client)
        >>> folder_id = resolver.resolve(project_id)
    """

    def __init__(self, client: OverleafClient, window: int = PROBE_WINDOW):
        """Initialize folder resolver.

        Args:
            client: Overleaf API client
            window: Number of counter steps probed in each direction
        """
        self.client = client
        self.window = window
        self._cache: dict[str, str] = {}
        self.strategies: list[FolderStrategy] = [
            self._from_metadata,
            self._from_arithmetic,
        ]

    def _from_metadata(self, project_id: str) -> Optional[str]:
        return self.client.get_root_folder_metadata(project_id)

    def _from_arithmetic(self, project_id: str) -> Optional[str]:
        return compute_root_folder_id(project_id)

    def cached(self, project_id: str) -> Optional[str]:
        return self._cache.get(project_id)

    def remember(self, project_id: str, folder_id: str) -> None:
        self._cache[project_id] = folder_id

    def resolve(self, project_id: str) -> str:
        """Return the folder handle to try first for uploads.

        Raises:
            FolderResolutionError: If no strategy yields a handle and
                probing finds none either
        """
        cached = self._cache.get(project_id)
        if cached:
            return cached

        for strategy in self.strategies:
            folder_id = strategy(project_id)
            if folder_id:
                logger.debug(
                    f"Root folder for {project_id} from {strategy.__name__}: "
                    f"{folder_id}"
                )
                self.remember(project_id, folder_id)
                return folder_id

        logger.debug(f"No folder strategy matched for {project_id}, probing")
        folder_id = self.probe(project_id)
        self.remember(project_id, folder_id)
        return folder_id

    def probe(self, project_id: str, exclude: Iterable[str] = ()) -> str:
        """Find a working folder handle by uploading a throwaway file.

        Candidates are tried in :func:`probe_candidates` order; handles in
        ``exclude`` are skipped. The probe file is deleted again on
        success, best-effort.

        Raises:
            FolderResolutionError: If no candidate accepts the upload
        """
        rejected = set(exclude)
        tried = 0
        started = time.monotonic()

        for candidate in probe_candidates(project_id, self.window):
            if candidate in rejected:
                continue
            tried += 1
            probe_name = f".olsync-probe-{int(time.time() * 1000)}.tmp"
            try:
                result = self.client.upload_file(
                    project_id, candidate, probe_name, PROBE_CONTENT
                )
            except OverleafAPIError as e:
                logger.debug(f"Probe upload to {candidate} failed: {e}")
                continue

            if not (result.ok and result.entity_id):
                logger.debug(f"Probe rejected by {candidate}: {result.reason}")
                continue

            logger.debug(
                f"Found root folder {candidate} for {project_id} after "
                f"{tried} probe(s) in {time.monotonic() - started:.2f}s"
            )
            self._delete_probe(project_id, result.entity_id, result.entity_type)
            self.remember(project_id, candidate)
            return candidate

        raise FolderResolutionError(project_id, tried)

    def _delete_probe(
        self, project_id: str, entity_id: str, entity_type: Optional[str]
    ) -> None:
        try:
            self.client.delete_entity(
                project_id, entity_id, cast(EntityType, entity_type or "doc")
            )
        except OverleafAPIError as e:
            logger.warning(f"Could not delete probe file {entity_id}: {e}")
