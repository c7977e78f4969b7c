"""Exception hierarchy for olsync."""

from typing import Optional


class OverleafError(Exception):
    """Base exception for all olsync errors."""


class OverleafConfigError(OverleafError):
    """Raised when configuration is missing or invalid (e.g. no session cookie)."""


class OverleafAPIError(OverleafError):
    """Base exception for errors talking to the Overleaf web service."""


class OverleafAuthenticationError(OverleafAPIError):
    """Raised when the session cookie is invalid or expired."""


class OverleafPermissionError(OverleafAPIError):
    """Raised when the session has no access to the requested resource."""


class OverleafNotFoundError(OverleafAPIError):
    """Raised when a remote resource does not exist."""


class ProjectNotFoundError(OverleafNotFoundError):
    """Raised when a project cannot be found by name or ID."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Project not found: {identifier}")


class OverleafRateLimitError(OverleafAPIError):
    """Raised when the service reports too many requests."""


class OverleafNetworkError(OverleafAPIError):
    """Raised on connection failures and timeouts."""


class OverleafInvalidResponseError(OverleafAPIError):
    """Raised when a response cannot be parsed."""


class CsrfTokenNotFoundError(OverleafAPIError):
    """Raised when no CSRF token can be scraped from the project page."""


class OverleafUploadError(OverleafAPIError):
    """Raised when a file upload is rejected."""

    def __init__(self, message: str, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class FolderResolutionError(OverleafAPIError):
    """Raised when no usable root folder handle can be found for a project."""

    def __init__(self, project_id: str, tried: int = 0):
        self.project_id = project_id
        self.tried = tried
        super().__init__(
            f"Could not resolve root folder for project {project_id} "
            f"(probed {tried} candidate(s))"
        )


class SyncStateError(OverleafError):
    """Raised when the per-directory sync state file cannot be read."""
