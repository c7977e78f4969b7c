"""Session helpers shared by CLI commands."""

from typing import Any

from .api import OverleafClient
from .config import config
from .output import OutputFormatter


def require_session_cookie(ctx: Any, out: OutputFormatter) -> str:
    """Return the session cookie or exit with instructions.

    Args:
        ctx: Click context (``ctx.obj["cookie"]`` holds the --cookie override)
        out: Output formatter

    Returns:
        Session cookie value
    """
    cookie = ctx.obj.get("cookie") or config.session_cookie
    if not cookie:
        out.error("No session cookie found.")
        out.error("Set one with: olsync auth --cookie <session_cookie>")
        out.error("Or set the OVERLEAF_SESSION environment variable")
        out.error("Or create a .olauth file in the current directory")
        ctx.exit(1)
    return cookie


def get_client(ctx: Any, out: OutputFormatter) -> OverleafClient:
    """Create an authenticated client for the current command."""
    cookie = require_session_cookie(ctx, out)
    return OverleafClient.from_session_cookie(cookie, base_url=config.base_url)
