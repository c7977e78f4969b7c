"""olsync - CLI tool for syncing Overleaf projects with local directories."""

from .api import OverleafClient
from .exceptions import (
    CsrfTokenNotFoundError,
    FolderResolutionError,
    OverleafAPIError,
    OverleafAuthenticationError,
    OverleafConfigError,
    OverleafError,
    OverleafInvalidResponseError,
    OverleafNetworkError,
    OverleafNotFoundError,
    OverleafPermissionError,
    OverleafRateLimitError,
    OverleafUploadError,
    ProjectNotFoundError,
    SyncStateError,
)
from .utils import is_project_id, sanitize_name

__all__ = [
    "OverleafClient",
    "OverleafError",
    "OverleafAPIError",
    "OverleafAuthenticationError",
    "OverleafConfigError",
    "OverleafInvalidResponseError",
    "OverleafNetworkError",
    "OverleafNotFoundError",
    "OverleafPermissionError",
    "OverleafRateLimitError",
    "OverleafUploadError",
    "CsrfTokenNotFoundError",
    "FolderResolutionError",
    "ProjectNotFoundError",
    "SyncStateError",
    "is_project_id",
    "sanitize_name",
]
