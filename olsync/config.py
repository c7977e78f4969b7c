"""Configuration management for olsync.

Credentials are looked up in this order:

1. ``OVERLEAF_SESSION`` environment variable
2. ``.olauth`` file in the current directory
3. the global config file (``~/.config/olsync/config.json``)
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .utils import DEFAULT_BASE_URL, OLAUTH_FILE_NAME, SESSION_COOKIE_NAME

logger = logging.getLogger(__name__)

SESSION_ENV_VAR = "OVERLEAF_SESSION"
BASE_URL_ENV_VAR = "OVERLEAF_URL"
CONFIG_DIR_ENV_VAR = "OLSYNC_CONFIG_DIR"
CONFIG_FILE_NAME = "config.json"


def parse_olauth(content: str) -> Optional[str]:
    """Extract the session cookie value from ``.olauth`` content.

    The file holds either the bare cookie value or a cookie header string
    such as ``overleaf_session2=abc; other=1``.

    Examples:
        >>> parse_olauth("overleaf_session2=abc; gke-route=xyz")
        'abc'
        >>> parse_olauth("abc")
        'abc'
    """
    content = content.strip()
    if not content:
        return None
    if "=" in content:
        for part in content.split(";"):
            part = part.strip()
            if part.startswith(f"{SESSION_COOKIE_NAME}="):
                return part.split("=", 1)[1]
    return content


class Config:
    """Persistent olsync settings backed by a JSON file."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_dir: Directory holding config.json. Defaults to
                ``$OLSYNC_CONFIG_DIR`` or ``~/.config/olsync``.
        """
        if config_dir is None:
            env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
            if env_dir:
                config_dir = Path(env_dir)
            else:
                config_dir = Path.home() / ".config" / "olsync"
        self.config_dir = config_dir

    def get_config_path(self) -> Path:
        """Return the path of the global config file."""
        return self.config_dir / CONFIG_FILE_NAME

    def _load(self) -> dict[str, Any]:
        path = self.get_config_path()
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read config file {path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        path = self.get_config_path()
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        # The file holds a session credential
        try:
            path.chmod(0o600)
        except OSError:
            pass

    def _set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    @property
    def session_cookie(self) -> Optional[str]:
        """Session cookie from env var, local ``.olauth`` or config file."""
        env_cookie = os.environ.get(SESSION_ENV_VAR)
        if env_cookie:
            return env_cookie

        olauth_path = Path.cwd() / OLAUTH_FILE_NAME
        if olauth_path.exists():
            try:
                cookie = parse_olauth(olauth_path.read_text(encoding="utf-8"))
                if cookie:
                    return cookie
            except OSError as e:
                logger.debug(f"Could not read {olauth_path}: {e}")

        value = self._load().get("sessionCookie")
        return value if isinstance(value, str) and value else None

    @property
    def base_url(self) -> str:
        """Overleaf base URL (supports self-hosted instances)."""
        env_url = os.environ.get(BASE_URL_ENV_VAR)
        if env_url:
            return env_url.rstrip("/")
        value = self._load().get("baseUrl")
        if isinstance(value, str) and value:
            return value.rstrip("/")
        return DEFAULT_BASE_URL

    @property
    def csrf(self) -> Optional[str]:
        """CSRF token cached from the last login."""
        return self._load().get("csrf")

    @property
    def last_project(self) -> Optional[str]:
        """ID of the project used by the last successful command."""
        return self._load().get("lastProject")

    def is_configured(self) -> bool:
        """Return True if a session cookie is available from any source."""
        return self.session_cookie is not None

    def save_session_cookie(self, cookie: str) -> None:
        """Store the session cookie in the global config file."""
        self._set("sessionCookie", cookie)

    def save_csrf(self, csrf: str) -> None:
        """Store the CSRF token in the global config file."""
        self._set("csrf", csrf)

    def save_base_url(self, base_url: str) -> None:
        """Store a custom Overleaf base URL."""
        self._set("baseUrl", base_url.rstrip("/"))

    def set_last_project(self, project_id: str) -> None:
        """Remember the project used by the last successful command."""
        self._set("lastProject", project_id)

    def clear(self) -> None:
        """Remove all stored settings."""
        path = self.get_config_path()
        if path.exists():
            path.unlink()

    def save_olauth(self, cookie: str, path: Optional[Path] = None) -> Path:
        """Write the cookie in ``.olauth`` format.

        Args:
            cookie: Session cookie value
            path: Target file (defaults to ``.olauth`` in the current directory)

        Returns:
            Path of the written file
        """
        auth_path = path or Path.cwd() / OLAUTH_FILE_NAME
        auth_path.write_text(f"{SESSION_COOKIE_NAME}={cookie}", encoding="utf-8")
        return auth_path


config = Config()
