"""Sync operations wrapper for local writes and project uploads."""

import logging
from pathlib import Path

from ..api import OverleafClient
from ..exceptions import OverleafUploadError
from ..models import UploadResult
from .resolver import FolderResolver

logger = logging.getLogger(__name__)


class SyncOperations:
    """Executes the file-level actions decided by the comparator."""

    def __init__(self, client: OverleafClient, resolver: FolderResolver):
        """Initialize sync operations.

        Args:
            client: Overleaf API client
            resolver: Folder resolver providing upload handles
        """
        self.client = client
        self.resolver = resolver

    def write_local(self, local_dir: Path, relative_path: str, content: bytes) -> Path:
        """Write remote content to a local file.

        Args:
            local_dir: Root of the synced directory
            relative_path: Path relative to the project root
            content: File content

        Returns:
            Path where file was saved
        """
        local_path = local_dir / relative_path
        # Ensure parent directory exists
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(content)
        return local_path

    def upload(
        self, project_id: str, relative_path: str, content: bytes
    ) -> UploadResult:
        """Upload local content into the project's root folder.

        A ``folder_not_found`` rejection triggers one probe for a new
        handle and exactly one retry with it.

        Returns:
            The successful UploadResult

        Raises:
            OverleafUploadError: If the upload (or its retry) is rejected
            FolderResolutionError: If no folder handle can be found
            OverleafNetworkError: If the request cannot be sent
        """
        folder_id = self.resolver.resolve(project_id)
        result = self.client.upload_file(project_id, folder_id, relative_path, content)

        if result.folder_not_found:
            logger.debug(
                f"Folder {folder_id} rejected for {relative_path}, probing for root"
            )
            folder_id = self.resolver.probe(project_id, exclude={folder_id})
            result = self.client.upload_file(
                project_id, folder_id, relative_path, content
            )

        if not result.ok:
            raise OverleafUploadError(
                f"Upload of {relative_path} failed: {result.reason}",
                reason=result.reason,
            )

        logger.debug(f"Uploaded {relative_path} to folder {folder_id}")
        return result
