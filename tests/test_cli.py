"""Unit tests for the olsync CLI commands."""

import io
import json
import os
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from olsync.api import OverleafClient
from olsync.cli import bind_state, main, resolve_project
from olsync.exceptions import (
    OverleafAuthenticationError,
    OverleafError,
    ProjectNotFoundError,
)
from olsync.models import FOLDER_NOT_FOUND, Project, UploadResult
from olsync.sync import ProjectIdentity, SyncState, SyncStateManager

PROJECT_ID = "5f1a2b3c4d5e6f7a00000010"
ROOT_ID = "5f1a2b3c4d5e6f7a0000000f"
PROJECT = Project(id=PROJECT_ID, name="Thesis")
IDENTITY = ProjectIdentity(id=PROJECT_ID, name="Thesis")
LAST_PULL = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def make_zip(files: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def write(path: Path, content: bytes, modified: datetime):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    os.utime(path, (modified.timestamp(), modified.timestamp()))


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Run commands from an empty temporary directory."""
    monkeypatch.delenv("OVERLEAF_SESSION", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def mock_config():
    """Mock the config module."""
    with patch("olsync.cli.config") as mock:
        mock.session_cookie = "cookie"
        mock.base_url = "https://www.overleaf.com"
        mock.get_config_path.return_value = Path("/mock/config.json")
        yield mock


@pytest.fixture
def client():
    """Provide a mock client returned by get_client."""
    mock = MagicMock(spec=OverleafClient)
    mock.__enter__.return_value = mock
    mock.list_projects.return_value = [PROJECT]
    mock.get_project_by_id.side_effect = lambda pid: (
        PROJECT if pid == PROJECT_ID else None
    )
    mock.get_project.side_effect = lambda name: PROJECT if name == "Thesis" else None
    mock.get_root_folder_metadata.return_value = None
    mock.download_project.return_value = make_zip({"main.tex": "A"})
    mock.upload_file.return_value = UploadResult(
        ok=True, entity_id="e1", entity_type="doc"
    )
    with patch("olsync.cli.get_client", return_value=mock):
        yield mock


def bind(directory: Path, last_pull=LAST_PULL) -> SyncStateManager:
    manager = SyncStateManager(directory)
    manager.save(SyncState(project=IDENTITY, last_pull=last_pull))
    return manager


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "--cookie" in result.output
        for command in ("auth", "list", "ls", "pull", "push", "sync", "zip"):
            assert command in result.output


class TestAuthCommands:
    """Tests for auth, whoami and logout."""

    def test_auth_without_cookie_shows_instructions(self, runner, workdir):
        result = runner.invoke(main, ["auth"])
        assert result.exit_code == 0
        assert "overleaf_session2" in result.output

    @patch("olsync.cli.OverleafClient")
    def test_auth_saves_cookie(self, mock_client_class, runner, mock_config, workdir):
        """Test that a verified cookie and its CSRF token are stored."""
        mock_client = MagicMock()
        mock_client.__enter__.return_value = mock_client
        mock_client.list_projects.return_value = [PROJECT]
        mock_client.csrf = "tok"
        mock_client_class.from_session_cookie.return_value = mock_client

        result = runner.invoke(main, ["auth", "--cookie", "abc"])

        assert result.exit_code == 0
        assert "Authenticated" in result.output
        mock_config.save_session_cookie.assert_called_once_with("abc")
        mock_config.save_csrf.assert_called_once_with("tok")
        mock_config.save_olauth.assert_not_called()

    @patch("olsync.cli.OverleafClient")
    def test_auth_rejected(self, mock_client_class, runner, mock_config, workdir):
        mock_client = MagicMock()
        mock_client.__enter__.return_value = mock_client
        mock_client.list_projects.side_effect = OverleafAuthenticationError(
            "expired"
        )
        mock_client_class.from_session_cookie.return_value = mock_client

        result = runner.invoke(main, ["auth", "--cookie", "abc"])

        assert result.exit_code == 1
        assert "Authentication failed" in result.output
        mock_config.save_session_cookie.assert_not_called()

    def test_whoami_not_authenticated(self, runner, mock_config, workdir):
        mock_config.session_cookie = None
        result = runner.invoke(main, ["whoami"])
        assert "Not authenticated" in result.output

    def test_logout(self, runner, mock_config):
        result = runner.invoke(main, ["logout"])
        assert result.exit_code == 0
        mock_config.clear.assert_called_once()


class TestProjectCommands:
    """Tests for listing and inspecting projects."""

    def test_list_json(self, runner, mock_config, client):
        result = runner.invoke(main, ["--json", "list"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data[0]["id"] == PROJECT_ID
        assert data[0]["name"] == "Thesis"

    def test_ls_alias(self, runner, mock_config, client):
        result = runner.invoke(main, ["ls"])
        assert result.exit_code == 0
        assert "Thesis" in result.output

    def test_unknown_project(self, runner, mock_config, client, workdir):
        result = runner.invoke(main, ["info", "Missing"])
        assert result.exit_code == 1
        assert "Project not found: Missing" in result.output

    def test_zip_writes_archive(self, runner, mock_config, client, workdir):
        result = runner.invoke(main, ["zip", "Thesis"])
        assert result.exit_code == 0
        assert (workdir / "Thesis.zip").read_bytes() == make_zip({"main.tex": "A"})
        mock_config.set_last_project.assert_called_once_with(PROJECT_ID)


class TestUploadCommand:
    """Tests for single-file upload."""

    def test_upload_to_root_folder(self, runner, mock_config, client, workdir):
        (workdir / "refs.bib").write_text("@book{}")
        result = runner.invoke(main, ["upload", "refs.bib", "Thesis"])
        assert result.exit_code == 0
        client.upload_file.assert_called_once_with(
            PROJECT_ID, ROOT_ID, "refs.bib", b"@book{}"
        )

    def test_upload_to_explicit_folder(self, runner, mock_config, client, workdir):
        (workdir / "refs.bib").write_text("@book{}")
        result = runner.invoke(
            main, ["upload", "refs.bib", "Thesis", "--folder", "folder-1"]
        )
        assert result.exit_code == 0
        client.upload_file.assert_called_once_with(
            PROJECT_ID, "folder-1", "refs.bib", b"@book{}"
        )


class TestPullCommand:
    """Tests for the pull command."""

    def test_pull_into_project_directory(self, runner, mock_config, client, workdir):
        """Test that pulling a named project creates a directory after it."""
        result = runner.invoke(main, ["-q", "pull", "Thesis"])

        assert result.exit_code == 0
        assert (workdir / "Thesis" / "main.tex").read_bytes() == b"A"
        state = SyncStateManager(workdir / "Thesis").load()
        assert state.project == IDENTITY
        assert state.last_pull is not None
        mock_config.set_last_project.assert_called_once_with(PROJECT_ID)

    def test_pull_from_synced_directory(self, runner, mock_config, client, workdir):
        bind(workdir)
        result = runner.invoke(main, ["pull"])
        assert result.exit_code == 0
        assert (workdir / "main.tex").read_bytes() == b"A"
        assert "Downloaded 1 files" in result.output

    def test_pull_reports_skipped(self, runner, mock_config, client, workdir):
        bind(workdir)
        write(workdir / "main.tex", b"B", LAST_PULL + timedelta(hours=1))

        result = runner.invoke(main, ["pull"])

        assert result.exit_code == 0
        assert "skipped 1" in result.output
        assert "--force" in result.output
        assert (workdir / "main.tex").read_bytes() == b"B"

    def test_pull_without_project(self, runner, mock_config, client, workdir):
        result = runner.invoke(main, ["pull"])
        assert result.exit_code == 1
        assert "No project specified" in result.output
        client.download_project.assert_not_called()

    def test_pull_unlisted_id_is_trusted(self, runner, mock_config, client, workdir):
        other_id = "5f1a2b3c4d5e6f7a000000aa"
        result = runner.invoke(main, ["-q", "pull", other_id, "out"])
        assert result.exit_code == 0
        client.download_project.assert_called_once_with(other_id)
        assert SyncStateManager(workdir / "out").load().project.id == other_id


class TestPushCommand:
    """Tests for the push command."""

    def setup_files(self, workdir):
        bind(workdir)
        write(workdir / "main.tex", b"A", LAST_PULL - timedelta(hours=1))
        write(workdir / "figures" / "plot.png", b"PNG", LAST_PULL + timedelta(hours=1))

    def test_dry_run(self, runner, mock_config, client, workdir):
        self.setup_files(workdir)

        result = runner.invoke(main, ["push", "--dry-run"])

        assert result.exit_code == 0
        assert "Would upload 1 file(s)" in result.output
        assert "figures/plot.png" in result.output
        client.upload_file.assert_not_called()
        assert SyncStateManager(workdir).load().last_push is None

    def test_push(self, runner, mock_config, client, workdir):
        self.setup_files(workdir)

        result = runner.invoke(main, ["push"])

        assert result.exit_code == 0
        assert "Uploaded 1 file(s)" in result.output
        client.upload_file.assert_called_once_with(
            PROJECT_ID, ROOT_ID, "figures/plot.png", b"PNG"
        )
        state = SyncStateManager(workdir).load()
        assert state.last_push is not None
        assert state.last_pull == LAST_PULL

    def test_push_with_project_binds_directory(
        self, runner, mock_config, client, workdir
    ):
        (workdir / "main.tex").write_text("A")

        result = runner.invoke(main, ["--json", "push", "--project", "Thesis"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["uploaded"] == 1
        assert SyncStateManager(workdir).load().project == IDENTITY

    def test_push_json_remembers_project(self, runner, mock_config, client, workdir):
        self.setup_files(workdir)

        result = runner.invoke(main, ["--json", "push"])

        assert result.exit_code == 0
        mock_config.set_last_project.assert_called_once_with(PROJECT_ID)

    def test_push_json_dry_run_leaves_config(
        self, runner, mock_config, client, workdir
    ):
        self.setup_files(workdir)
        result = runner.invoke(main, ["--json", "push", "--dry-run"])
        assert result.exit_code == 0
        mock_config.set_last_project.assert_not_called()

    def test_push_with_unlisted_project_id(
        self, runner, mock_config, client, workdir
    ):
        """Test that an ID missing from the dashboard list is used as given."""
        other_id = "5f1a2b3c4d5e6f7a000000aa"
        (workdir / "main.tex").write_text("A")

        result = runner.invoke(main, ["-q", "push", "--project", other_id])

        assert result.exit_code == 0
        assert client.upload_file.call_args.args[0] == other_id
        assert SyncStateManager(workdir).load().project.id == other_id

    def test_push_with_unknown_project_name(
        self, runner, mock_config, client, workdir
    ):
        result = runner.invoke(main, ["push", "--project", "Missing"])
        assert result.exit_code == 1
        assert "Project not found: Missing" in result.output
        client.upload_file.assert_not_called()

    def test_unresolvable_folder_fails(self, runner, mock_config, client, workdir):
        self.setup_files(workdir)
        client.upload_file.return_value = UploadResult(
            ok=False, reason=FOLDER_NOT_FOUND
        )

        result = runner.invoke(main, ["push"])

        assert result.exit_code == 1
        assert "Could not resolve" in result.output
        assert SyncStateManager(workdir).load().last_push is None

    def test_push_without_project(self, runner, mock_config, client, workdir):
        result = runner.invoke(main, ["push"])
        assert result.exit_code == 1
        assert "No project specified" in result.output


class TestSyncCommand:
    """Tests for the sync command."""

    def test_sync_details(self, runner, mock_config, client, workdir):
        bind(workdir)
        write(workdir / "main.tex", b"B", LAST_PULL + timedelta(hours=1))
        write(workdir / "notes.tex", b"N", LAST_PULL - timedelta(hours=1))

        result = runner.invoke(main, ["sync", "--details"])

        assert result.exit_code == 0
        assert "2 pushed to remote" in result.output
        assert "local was newer" in result.output
        assert "New local files pushed" in result.output
        assert (workdir / "main.tex").read_bytes() == b"B"
        assert SyncStateManager(workdir).load().last_sync is not None

    def test_sync_with_unlisted_project_id(
        self, runner, mock_config, client, workdir
    ):
        other_id = "5f1a2b3c4d5e6f7a000000aa"

        result = runner.invoke(main, ["-q", "sync", "--project", other_id])

        assert result.exit_code == 0
        client.download_project.assert_called_once_with(other_id)
        assert (workdir / "main.tex").read_bytes() == b"A"

    def test_sync_json(self, runner, mock_config, client, workdir):
        bind(workdir)

        result = runner.invoke(main, ["--json", "sync"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["pulledFromRemote"] == 1
        assert data["pushedToRemote"] == 0


class TestResolveProject:
    """Tests for project resolution helpers."""

    def test_hex_id_is_trusted(self, tmp_path):
        client = MagicMock(spec=OverleafClient)
        identity = resolve_project(client, PROJECT_ID, tmp_path)
        assert identity.id == PROJECT_ID
        client.list_projects.assert_not_called()

    def test_name_lookup(self, client, tmp_path):
        assert resolve_project(client, "Thesis", tmp_path) == IDENTITY

    def test_name_not_found(self, client, tmp_path):
        with pytest.raises(ProjectNotFoundError):
            resolve_project(client, "Missing", tmp_path)

    def test_state_fallback(self, client, tmp_path):
        bind(tmp_path)
        assert resolve_project(client, None, tmp_path) == IDENTITY

    def test_nothing_to_resolve(self, client, tmp_path):
        with pytest.raises(OverleafError):
            resolve_project(client, None, tmp_path)

    def test_bind_state_keeps_watermarks(self):
        """Test that rebinding a directory keeps its sync history."""
        other = ProjectIdentity(id="5f1a2b3c4d5e6f7a000000aa", name="Other")
        state = SyncState(project=IDENTITY, last_pull=LAST_PULL)

        rebound = bind_state(state, other)

        assert rebound.project == other
        assert rebound.last_pull == LAST_PULL
        assert bind_state(None, other) == SyncState(project=other)
