"""API client for Overleaf.

Overleaf has no public REST API for project files. This client drives the
same endpoints the web editor uses, authenticated with the browser session
cookie and the CSRF token scraped from the dashboard page.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import random
import time
import zipfile
from importlib.metadata import PackageNotFoundError, version
from typing import Any

import httpx

from .config import config
from .exceptions import (
    CsrfTokenNotFoundError,
    OverleafAPIError,
    OverleafAuthenticationError,
    OverleafConfigError,
    OverleafInvalidResponseError,
    OverleafNetworkError,
    OverleafNotFoundError,
    OverleafPermissionError,
    OverleafRateLimitError,
)
from .metadata import extract_csrf_token, extract_project_info, extract_projects
from .models import (
    FOLDER_NOT_FOUND,
    CompileResult,
    Entity,
    EntityRef,
    EntityType,
    FolderEntry,
    OutputFile,
    Project,
    ProjectInfo,
    UploadResult,
)
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    SESSION_COOKIE_NAME,
    normalize_relative_path,
)

logger = logging.getLogger(__name__)

try:
    __version__ = version("olsync")
except PackageNotFoundError:
    __version__ = "0.0.0"

USER_AGENT = f"olsync/{__version__}"

# MIME types for LaTeX sources that mimetypes does not know about
LATEX_MIME_TYPES: dict[str, str] = {
    "tex": "text/x-tex",
    "bib": "text/x-bibtex",
    "cls": "text/x-tex",
    "sty": "text/x-tex",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "pdf": "application/pdf",
    "svg": "image/svg+xml",
    "eps": "application/postscript",
}


def detect_mime_type(file_name: str) -> str:
    """Detect the MIME type sent with an upload.

    Examples:
        >>> detect_mime_type("main.tex")
        'text/x-tex'
        >>> detect_mime_type("data.unknownext")
        'application/octet-stream'
    """
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    if ext in LATEX_MIME_TYPES:
        return LATEX_MIME_TYPES[ext]
    mime_type, _ = mimetypes.guess_type(file_name)
    return mime_type or "application/octet-stream"


def find_in_tree(root: FolderEntry, target_path: str) -> EntityRef | None:
    """Find a doc, file or folder in a project tree by path or bare name.

    Walks the tree with an explicit stack; the first match in depth-first
    order wins.
    """
    target = normalize_relative_path(target_path)
    stack: list[tuple[FolderEntry, str]] = [(root, "")]

    while stack:
        folder, current = stack.pop()

        for doc in folder.docs:
            doc_path = f"{current}/{doc.name}" if current else doc.name
            if target in (doc_path, doc.name):
                return EntityRef(id=doc.id, type="doc", name=doc.name)

        for file_ref in folder.file_refs:
            file_path = f"{current}/{file_ref.name}" if current else file_ref.name
            if target in (file_path, file_ref.name):
                return EntityRef(id=file_ref.id, type="file", name=file_ref.name)

        # Reversed so subfolders are visited in listing order
        for subfolder in reversed(folder.folders):
            sub_path = f"{current}/{subfolder.name}" if current else subfolder.name
            if target in (sub_path, subfolder.name):
                return EntityRef(id=subfolder.id, type="folder", name=subfolder.name)
            stack.append((subfolder, sub_path))

    return None


class OverleafClient:
    """Client for interacting with an Overleaf instance."""

    def __init__(
        self,
        session_cookie: str | None = None,
        csrf: str | None = None,
        base_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the Overleaf client.

        Args:
            session_cookie: Value of the ``overleaf_session2`` cookie
                (uses config if not provided)
            csrf: CSRF token; required for write operations
            base_url: Overleaf base URL (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        self.session_cookie = session_cookie or config.session_cookie
        self.base_url = (base_url or config.base_url).rstrip("/")
        self.csrf = csrf
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport

        if not self.session_cookie:
            raise OverleafConfigError(
                "No session cookie found. Run 'olsync auth --cookie <value>' "
                "or set the OVERLEAF_SESSION environment variable."
            )

        self._client: httpx.Client | None = None

    @classmethod
    def from_session_cookie(
        cls,
        session_cookie: str,
        base_url: str | None = None,
        **kwargs: Any,
    ) -> OverleafClient:
        """Create a client and fetch the CSRF token from the dashboard.

        Raises:
            OverleafAuthenticationError: If the session is not logged in
            CsrfTokenNotFoundError: If no CSRF token is present on the page
        """
        client = cls(session_cookie=session_cookie, base_url=base_url, **kwargs)
        client.csrf = client.fetch_csrf_token()
        return client

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={"User-Agent": USER_AGENT},
                cookies={SESSION_COOKIE_NAME: self.session_cookie or ""},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> OverleafClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        if self.csrf:
            return {"X-Csrf-Token": self.csrf}
        return {}

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[Exception, bool]:
        """Map an HTTP error to an exception and decide whether to retry.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code

        if status_code == 401:
            raise OverleafAuthenticationError(
                "Session expired or invalid - log in again"
            ) from e
        elif status_code == 403:
            raise OverleafPermissionError(
                "Access forbidden - check your permissions on this project"
            ) from e
        elif status_code == 404:
            raise OverleafNotFoundError(f"Resource not found: {e.request.url}") from e
        elif status_code == 429:
            error = OverleafRateLimitError(
                "Rate limit exceeded - please try again later"
            )
            return (error, attempt < self.max_retries)

        error_msg = f"Request failed with status {status_code}"
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    msg = error_data.get("message") or error_data.get("error")
                    if msg:
                        error_msg = f"{error_msg}: {msg}"
        except ValueError:
            pass

        error = OverleafAPIError(error_msg)
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (error, should_retry)

    def _request(
        self,
        method: str,
        endpoint: str,
        raise_for_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make a request with retry logic.

        Args:
            method: HTTP method
            endpoint: Path relative to the base URL
            raise_for_status: Map non-2xx responses to exceptions
            **kwargs: Additional arguments passed to httpx

        Returns:
            The httpx response

        Raises:
            OverleafAPIError: If the request fails after all retries
        """
        url = f"/{endpoint.lstrip('/')}"
        last_exception: Exception | None = None
        client = self._get_client()
        headers = self._headers()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, headers=headers, **kwargs)
                if raise_for_status:
                    response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error

                if should_retry:
                    delay = self._calculate_retry_delay(attempt)
                    if isinstance(error, OverleafRateLimitError):
                        retry_after = e.response.headers.get("Retry-After")
                        if retry_after and retry_after.isdigit():
                            delay = float(retry_after)
                    logger.debug(
                        "%s %s failed (%s), retrying in %.1fs",
                        method,
                        url,
                        error,
                        delay,
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = OverleafNetworkError(f"Network error: {e}")
                last_exception = error
                if attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug("Network error on %s, retrying in %.1fs", url, delay)
                    time.sleep(delay)
                    continue
                raise error from e

        if last_exception:
            raise last_exception
        raise OverleafAPIError("Request failed after all retry attempts")

    def _request_json(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        response = self._request(method, endpoint, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise OverleafInvalidResponseError(
                f"Invalid JSON response from {endpoint}"
            ) from e

    def _get_page(self, endpoint: str) -> str:
        """Fetch an HTML page, detecting redirects to the login form."""
        response = self._request("GET", endpoint)
        if response.url.path.startswith("/login"):
            raise OverleafAuthenticationError(
                "Session expired - Overleaf redirected to the login page"
            )
        return response.text

    # =========================
    # Session
    # =========================

    def fetch_csrf_token(self) -> str:
        """Scrape the CSRF token from the project dashboard."""
        page = self._get_page("/project")
        csrf = extract_csrf_token(page)
        if not csrf:
            raise CsrfTokenNotFoundError(
                "Could not find CSRF token. Session may have expired."
            )
        return csrf

    # =========================
    # Projects
    # =========================

    def list_projects(self) -> list[Project]:
        """Get all projects that are neither archived nor trashed."""
        page = self._get_page("/project")
        projects = [Project.from_dict(p) for p in extract_projects(page)]
        return [p for p in projects if not p.archived and not p.trashed]

    def get_project(self, name: str) -> Project | None:
        """Get a project by exact name."""
        for project in self.list_projects():
            if project.name == name:
                return project
        return None

    def get_project_by_id(self, project_id: str) -> Project | None:
        """Get a project by ID."""
        for project in self.list_projects():
            if project.id == project_id:
                return project
        return None

    def get_project_info(self, project_id: str) -> ProjectInfo:
        """Get detailed project metadata including the folder tree.

        Raises:
            OverleafInvalidResponseError: If the editor page has no metadata
        """
        page = self._get_page(f"/project/{project_id}")
        data = extract_project_info(page)
        if data is None:
            raise OverleafInvalidResponseError("Could not parse project info")
        return ProjectInfo.from_dict(data)

    def get_root_folder_metadata(self, project_id: str) -> str | None:
        """Return the root folder ID from project metadata, if available."""
        try:
            return self.get_project_info(project_id).root_folder_id
        except OverleafAPIError as e:
            logger.debug("Root folder metadata unavailable for %s: %s", project_id, e)
            return None

    def get_entities(self, project_id: str) -> list[Entity]:
        """List remote files (docs and binary files) with their paths."""
        data = self._request_json("GET", f"/project/{project_id}/entities")
        entities = data.get("entities", []) if isinstance(data, dict) else []
        return [Entity.from_dict(e) for e in entities if isinstance(e, dict)]

    def download_project(self, project_id: str) -> bytes:
        """Download the whole project as a zip archive."""
        response = self._request("GET", f"/project/{project_id}/download/zip")
        return response.content

    # =========================
    # Upload Operations
    # =========================

    def upload_file(
        self,
        project_id: str,
        folder_id: str,
        relative_path: str,
        content: bytes,
    ) -> UploadResult:
        """Upload one file into a project folder.

        Only the base name of ``relative_path`` is sent; the file lands in
        the folder identified by ``folder_id``.

        Returns:
            UploadResult; a wrong folder handle is reported as
            ``reason="folder_not_found"`` rather than raised.

        Raises:
            OverleafNetworkError: If the request cannot be sent
        """
        base_name = relative_path.rsplit("/", 1)[-1] or relative_path
        if base_name != relative_path:
            logger.warning(
                "Uploading %s as %s into folder %s; the remote copy will not "
                "keep its subfolder",
                relative_path,
                base_name,
                folder_id,
            )
        response = self._request(
            "POST",
            f"/project/{project_id}/upload",
            raise_for_status=False,
            params={"folder_id": folder_id},
            data={
                "targetFolderId": folder_id,
                "name": base_name,
                "type": detect_mime_type(base_name),
            },
            files={"qqfile": (base_name, content, detect_mime_type(base_name))},
        )

        data: Any = None
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if isinstance(data, dict) and data.get("success") is False:
            if data.get("error") == FOLDER_NOT_FOUND:
                return UploadResult(ok=False, reason=FOLDER_NOT_FOUND)
            if response.is_success:
                return UploadResult(
                    ok=False, reason=str(data.get("error") or "upload rejected")
                )

        if not response.is_success:
            return UploadResult(
                ok=False, reason=f"{response.status_code} - {response.text[:200]}"
            )

        data = data if isinstance(data, dict) else {}
        return UploadResult(
            ok=True,
            entity_id=data.get("entity_id"),
            entity_type=data.get("entity_type"),
        )

    def create_folder(self, project_id: str, parent_folder_id: str, name: str) -> str:
        """Create a folder and return its ID.

        Raises:
            OverleafAPIError: If the folder already exists or creation fails
        """
        response = self._request(
            "POST",
            f"/project/{project_id}/folder",
            raise_for_status=False,
            json={"parent_folder_id": parent_folder_id, "name": name},
        )
        if response.status_code == 400:
            raise OverleafAPIError("Folder already exists")
        if not response.is_success:
            raise OverleafAPIError(
                f"Failed to create folder: {response.status_code}"
            )
        return str(response.json().get("_id", ""))

    # =========================
    # Entity Operations
    # =========================

    def delete_entity(
        self, project_id: str, entity_id: str, entity_type: EntityType
    ) -> None:
        """Delete a doc, file or folder."""
        self._request("DELETE", f"/project/{project_id}/{entity_type}/{entity_id}")

    def rename_entity(
        self,
        project_id: str,
        entity_id: str,
        entity_type: EntityType,
        new_name: str,
    ) -> None:
        """Rename a doc, file or folder."""
        self._request(
            "POST",
            f"/project/{project_id}/{entity_type}/{entity_id}/rename",
            json={"name": new_name},
        )

    def find_entity_by_path(self, project_id: str, path: str) -> EntityRef | None:
        """Find an entity ID by path using the project folder tree."""
        info = self.get_project_info(project_id)
        if not info.root_folder:
            return None
        return find_in_tree(info.root_folder[0], path)

    # =========================
    # Download Operations
    # =========================

    def download_file(
        self, project_id: str, file_id: str, file_type: EntityType
    ) -> bytes:
        """Download a single doc or file by ID.

        Docs are returned by the editor as JSON lines and joined here.
        """
        if file_type == "doc":
            data = self._request_json("GET", f"/project/{project_id}/doc/{file_id}")
            lines = data.get("lines", []) if isinstance(data, dict) else []
            return "\n".join(lines).encode("utf-8")
        response = self._request("GET", f"/project/{project_id}/file/{file_id}")
        return response.content

    def download_by_path(self, project_id: str, path: str) -> bytes:
        """Download a single file by path, falling back to the zip archive.

        Raises:
            OverleafNotFoundError: If the path is not part of the project
        """
        normalized = normalize_relative_path(path)
        entities = self.get_entities(project_id)
        if not any(normalize_relative_path(e.path) == normalized for e in entities):
            raise OverleafNotFoundError(f"File not found: {path}")

        try:
            entity = self.find_entity_by_path(project_id, path)
            if entity and entity.type != "folder":
                return self.download_file(project_id, entity.id, entity.type)
        except OverleafAPIError as e:
            logger.debug("Direct download failed, using archive: %s", e)

        archive = self.download_project(project_id)
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for name in zf.namelist():
                if normalize_relative_path(name) == normalized:
                    return zf.read(name)

        raise OverleafNotFoundError(f"File not found in archive: {path}")

    # =========================
    # Compile Operations
    # =========================

    def compile_with_outputs(self, project_id: str) -> CompileResult:
        """Compile a project and list its output files."""
        data = self._request_json(
            "POST",
            f"/project/{project_id}/compile",
            params={"enable_pdf_caching": "true"},
            json={
                "rootDoc_id": None,
                "draft": False,
                "check": "silent",
                "incrementalCompilesEnabled": True,
            },
        )
        output_files = [
            OutputFile(
                path=f.get("path", ""),
                type=f.get("type", ""),
                url=f"{self.base_url}{f.get('url', '')}",
            )
            for f in data.get("outputFiles") or []
        ]
        return CompileResult(
            status=data.get("status", "error"), output_files=output_files
        )

    def compile_project(self, project_id: str) -> CompileResult:
        """Compile a project, raising unless a PDF was produced."""
        result = self.compile_with_outputs(project_id)
        if result.status != "success":
            raise OverleafAPIError(f"Compilation failed: {result.status}")
        if not result.pdf_url:
            raise OverleafAPIError("No PDF output found")
        return result

    def download_output_file(self, url: str) -> bytes:
        """Download a compile output file (pdf, log, bbl, ...)."""
        if url.startswith(self.base_url):
            url = url[len(self.base_url) :]
        return self._request("GET", url).content

    def download_pdf(self, project_id: str) -> bytes:
        """Compile a project and download the resulting PDF."""
        result = self.compile_project(project_id)
        return self.download_output_file(result.pdf_url or "")
