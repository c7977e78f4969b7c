"""Unit tests for the Overleaf API client."""

import html
import io
import json
import logging
import zipfile
from unittest.mock import patch

import httpx
import pytest

from olsync.api import OverleafClient, detect_mime_type, find_in_tree
from olsync.exceptions import (
    CsrfTokenNotFoundError,
    OverleafAPIError,
    OverleafAuthenticationError,
    OverleafConfigError,
    OverleafNetworkError,
    OverleafNotFoundError,
    OverleafPermissionError,
    OverleafRateLimitError,
)
from olsync.models import FolderEntry

BASE_URL = "https://overleaf.test"
PROJECT_ID = "5f1a2b3c4d5e6f7a8b9c0d1e"
ROOT_FOLDER_ID = "5f1a2b3c4d5e6f7a8b9c0d1d"


def meta(name: str, value) -> str:
    """Render a meta tag; strings are emitted raw, other values as JSON."""
    content = value if isinstance(value, str) else json.dumps(value)
    return f'<meta name="{name}" content="{html.escape(content, quote=True)}">'


def meta_page(**metas) -> str:
    tags = "".join(meta(name, value) for name, value in metas.items())
    return f"<html><head>{tags}</head><body></body></html>"


def make_client(handler, **kwargs) -> OverleafClient:
    """Create a client whose requests are answered by ``handler``."""
    kwargs.setdefault("retry_delay", 0.01)
    return OverleafClient(
        session_cookie="session-abc",
        csrf="csrf-token",
        base_url=BASE_URL,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def make_zip(files: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture(autouse=True)
def no_sleep():
    """Skip retry delays."""
    with patch("olsync.api.time.sleep") as mock_sleep:
        yield mock_sleep


class TestOverleafClient:
    """Tests for client initialization."""

    def test_init_without_cookie_raises(self):
        """Test that a missing session cookie raises a config error."""
        with patch("olsync.api.config") as mock_config:
            mock_config.session_cookie = None
            mock_config.base_url = BASE_URL
            with pytest.raises(OverleafConfigError, match="No session cookie"):
                OverleafClient()

    def test_base_url_trailing_slash_stripped(self):
        client = OverleafClient(session_cookie="abc", base_url=BASE_URL + "/")
        assert client.base_url == BASE_URL

    def test_sends_cookie_csrf_and_user_agent(self):
        """Test the authentication headers sent with every request."""
        seen = {}

        def handler(request):
            seen["cookie"] = request.headers.get("cookie")
            seen["csrf"] = request.headers.get("x-csrf-token")
            seen["ua"] = request.headers.get("user-agent")
            return httpx.Response(200, json={"entities": []})

        with make_client(handler) as client:
            client.get_entities(PROJECT_ID)

        assert "overleaf_session2=session-abc" in seen["cookie"]
        assert seen["csrf"] == "csrf-token"
        assert seen["ua"].startswith("olsync/")

    def test_from_session_cookie_fetches_csrf(self):
        """Test that the CSRF token is scraped from the dashboard."""

        def handler(request):
            assert request.url.path == "/project"
            return httpx.Response(200, text=meta_page(**{"ol-csrfToken": "tok"}))

        client = OverleafClient.from_session_cookie(
            "abc", base_url=BASE_URL, transport=httpx.MockTransport(handler)
        )
        assert client.csrf == "tok"

    def test_missing_csrf_raises(self):
        def handler(request):
            return httpx.Response(200, text="<html><body>nothing</body></html>")

        with pytest.raises(CsrfTokenNotFoundError):
            make_client(handler).fetch_csrf_token()

    def test_login_redirect_raises_authentication_error(self):
        """Test that a redirect to /login is reported as an expired session."""

        def handler(request):
            if request.url.path == "/project":
                return httpx.Response(302, headers={"Location": f"{BASE_URL}/login"})
            return httpx.Response(200, text="<html><body>login</body></html>")

        with pytest.raises(OverleafAuthenticationError):
            make_client(handler).list_projects()


class TestRequestHandling:
    """Tests for status mapping and retries in _request."""

    @pytest.mark.parametrize(
        "status,error",
        [
            (401, OverleafAuthenticationError),
            (403, OverleafPermissionError),
            (404, OverleafNotFoundError),
        ],
    )
    def test_status_mapping(self, status, error):
        def handler(request):
            return httpx.Response(status)

        with pytest.raises(error):
            make_client(handler).download_project(PROJECT_ID)

    def test_server_error_is_retried(self, no_sleep):
        """Test that a 5xx response is retried with backoff."""
        responses = [httpx.Response(503), httpx.Response(200, content=b"zip")]

        def handler(request):
            return responses.pop(0)

        assert make_client(handler).download_project(PROJECT_ID) == b"zip"
        assert no_sleep.call_count == 1

    def test_server_error_gives_up_after_max_retries(self, no_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"message": "boom"})

        with pytest.raises(OverleafAPIError, match="boom"):
            make_client(handler, max_retries=2).download_project(PROJECT_ID)
        assert len(calls) == 3

    def test_rate_limit_honors_retry_after(self, no_sleep):
        responses = [
            httpx.Response(429, headers={"Retry-After": "2"}),
            httpx.Response(200, content=b"ok"),
        ]

        def handler(request):
            return responses.pop(0)

        assert make_client(handler).download_project(PROJECT_ID) == b"ok"
        no_sleep.assert_called_once_with(2.0)

    def test_rate_limit_exhausted(self):
        def handler(request):
            return httpx.Response(429)

        with pytest.raises(OverleafRateLimitError):
            make_client(handler, max_retries=1).download_project(PROJECT_ID)

    def test_network_error_is_retried_then_raised(self, no_sleep):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(OverleafNetworkError):
            make_client(handler, max_retries=2).download_project(PROJECT_ID)
        assert no_sleep.call_count == 2


class TestProjects:
    """Tests for project listing and metadata."""

    PROJECTS = [
        {"id": PROJECT_ID, "name": "Thesis", "lastUpdated": "2025-01-15T10:00:00Z"},
        {"id": "5f1a2b3c4d5e6f7a8b9c0d2f", "name": "Old", "archived": True},
        {"id": "5f1a2b3c4d5e6f7a8b9c0d3a", "name": "Gone", "trashed": True},
    ]

    def test_list_projects_filters_archived_and_trashed(self):
        """Test that only active projects are listed."""

        def handler(request):
            return httpx.Response(
                200,
                text=meta_page(
                    **{"ol-prefetchedProjectsBlob": {"projects": self.PROJECTS}}
                ),
            )

        projects = make_client(handler).list_projects()
        assert [p.name for p in projects] == ["Thesis"]
        assert projects[0].last_updated == "2025-01-15T10:00:00Z"

    def test_get_project_by_name_and_id(self):
        def handler(request):
            return httpx.Response(
                200,
                text=meta_page(
                    **{"ol-prefetchedProjectsBlob": {"projects": self.PROJECTS}}
                ),
            )

        client = make_client(handler)
        assert client.get_project("Thesis").id == PROJECT_ID
        assert client.get_project_by_id(PROJECT_ID).name == "Thesis"
        assert client.get_project("Old") is None

    def test_get_project_info_and_root_folder(self):
        info = {
            "_id": PROJECT_ID,
            "name": "Thesis",
            "rootFolder": [
                {
                    "_id": ROOT_FOLDER_ID,
                    "name": "rootFolder",
                    "docs": [{"_id": "d1", "name": "main.tex"}],
                    "fileRefs": [],
                    "folders": [],
                }
            ],
        }

        def handler(request):
            assert request.url.path == f"/project/{PROJECT_ID}"
            return httpx.Response(200, text=meta_page(**{"ol-project": info}))

        client = make_client(handler)
        project_info = client.get_project_info(PROJECT_ID)
        assert project_info.root_folder[0].docs[0].name == "main.tex"
        assert client.get_root_folder_metadata(PROJECT_ID) == ROOT_FOLDER_ID

    def test_root_folder_metadata_absent(self):
        """Test that missing or failing metadata resolves to None."""

        def handler(request):
            return httpx.Response(200, text="<html><body>editor</body></html>")

        assert make_client(handler).get_root_folder_metadata(PROJECT_ID) is None

    def test_get_entities(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "entities": [
                        {"path": "/main.tex", "type": "doc"},
                        {"path": "/figures/plot.png", "type": "file"},
                    ]
                },
            )

        entities = make_client(handler).get_entities(PROJECT_ID)
        assert [(e.path, e.type) for e in entities] == [
            ("/main.tex", "doc"),
            ("/figures/plot.png", "file"),
        ]


class TestUploadFile:
    """Tests for upload_file."""

    def test_upload_sends_basename_and_folder(self):
        """Test the multipart form and folder query parameter."""
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["folder_id"] = request.url.params.get("folder_id")
            seen["body"] = request.content
            return httpx.Response(
                200,
                json={"success": True, "entity_id": "e1", "entity_type": "doc"},
            )

        result = make_client(handler).upload_file(
            PROJECT_ID, ROOT_FOLDER_ID, "chapters/intro.tex", b"\\section{Intro}"
        )

        assert result.ok
        assert result.entity_id == "e1"
        assert result.entity_type == "doc"
        assert seen["path"] == f"/project/{PROJECT_ID}/upload"
        assert seen["folder_id"] == ROOT_FOLDER_ID
        assert b'name="targetFolderId"' in seen["body"]
        assert ROOT_FOLDER_ID.encode() in seen["body"]
        assert b'filename="intro.tex"' in seen["body"]
        assert b"chapters/" not in seen["body"]
        assert b"\\section{Intro}" in seen["body"]

    def test_nested_path_is_flattened_with_warning(self, caplog):
        """Test that uploading a file from a subfolder logs a warning."""

        def handler(request):
            return httpx.Response(200, json={"success": True, "entity_id": "e1"})

        with caplog.at_level(logging.WARNING, logger="olsync.api"):
            make_client(handler).upload_file(
                PROJECT_ID, ROOT_FOLDER_ID, "figures/plot.png", b"PNG"
            )

        assert "figures/plot.png as plot.png" in caplog.text

    def test_top_level_path_does_not_warn(self, caplog):
        def handler(request):
            return httpx.Response(200, json={"success": True, "entity_id": "e1"})

        with caplog.at_level(logging.WARNING, logger="olsync.api"):
            make_client(handler).upload_file(
                PROJECT_ID, ROOT_FOLDER_ID, "main.tex", b"A"
            )

        assert caplog.text == ""

    def test_folder_not_found_is_reported_not_raised(self):
        def handler(request):
            return httpx.Response(
                422, json={"success": False, "error": "folder_not_found"}
            )

        result = make_client(handler).upload_file(
            PROJECT_ID, "bad", "main.tex", b"x"
        )
        assert not result.ok
        assert result.folder_not_found

    def test_other_rejection(self):
        def handler(request):
            return httpx.Response(400, text="bad request")

        result = make_client(handler).upload_file(
            PROJECT_ID, ROOT_FOLDER_ID, "main.tex", b"x"
        )
        assert not result.ok
        assert not result.folder_not_found
        assert "400" in result.reason

    def test_mime_types(self):
        assert detect_mime_type("main.tex") == "text/x-tex"
        assert detect_mime_type("refs.bib") == "text/x-bibtex"
        assert detect_mime_type("plot.png") == "image/png"
        assert detect_mime_type("blob.unknownext") == "application/octet-stream"


class TestDownloads:
    """Tests for download helpers."""

    def test_download_doc_joins_lines(self):
        def handler(request):
            return httpx.Response(200, json={"lines": ["a", "b"]})

        content = make_client(handler).download_file(PROJECT_ID, "d1", "doc")
        assert content == b"a\nb"

    def test_download_by_path_unknown_file(self):
        def handler(request):
            return httpx.Response(200, json={"entities": []})

        with pytest.raises(OverleafNotFoundError):
            make_client(handler).download_by_path(PROJECT_ID, "missing.tex")

    def test_download_by_path_falls_back_to_archive(self):
        """Test that the zip archive is used when direct download fails."""
        archive = make_zip({"main.tex": "hello"})

        def handler(request):
            path = request.url.path
            if path.endswith("/entities"):
                return httpx.Response(
                    200, json={"entities": [{"path": "/main.tex", "type": "doc"}]}
                )
            if path.endswith("/download/zip"):
                return httpx.Response(200, content=archive)
            # Editor page without metadata
            return httpx.Response(200, text="<html><body></body></html>")

        content = make_client(handler).download_by_path(PROJECT_ID, "/main.tex")
        assert content == b"hello"

    def test_compile_project(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "status": "success",
                    "outputFiles": [
                        {"path": "output.log", "type": "log", "url": "/build/log"},
                        {"path": "output.pdf", "type": "pdf", "url": "/build/pdf"},
                    ],
                },
            )

        result = make_client(handler).compile_project(PROJECT_ID)
        assert result.pdf_url == f"{BASE_URL}/build/pdf"

    def test_compile_failure(self):
        def handler(request):
            return httpx.Response(200, json={"status": "failure", "outputFiles": []})

        with pytest.raises(OverleafAPIError, match="Compilation failed"):
            make_client(handler).compile_project(PROJECT_ID)


class TestFindInTree:
    """Tests for project tree search."""

    TREE = FolderEntry.from_dict(
        {
            "_id": "root",
            "name": "rootFolder",
            "docs": [{"_id": "d-main", "name": "main.tex"}],
            "folders": [
                {
                    "_id": "f-fig",
                    "name": "figures",
                    "fileRefs": [{"_id": "r-plot", "name": "plot.png"}],
                }
            ],
        }
    )

    def test_find_by_path(self):
        ref = find_in_tree(self.TREE, "/figures/plot.png")
        assert (ref.id, ref.type) == ("r-plot", "file")

    def test_find_folder(self):
        ref = find_in_tree(self.TREE, "figures")
        assert (ref.id, ref.type) == ("f-fig", "folder")

    def test_find_doc(self):
        assert find_in_tree(self.TREE, "main.tex").id == "d-main"

    def test_not_found(self):
        assert find_in_tree(self.TREE, "missing.tex") is None
