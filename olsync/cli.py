"""CLI interface for syncing Overleaf projects."""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import click
from rich.progress import Progress, SpinnerColumn, TextColumn

from .api import OverleafClient
from .auth import get_client
from .config import config
from .exceptions import OverleafError, ProjectNotFoundError
from .output import OutputFormatter
from .sync import (
    FolderResolver,
    ProjectIdentity,
    SyncEngine,
    SyncOperations,
    SyncState,
    SyncStateManager,
)
from .utils import SKIPPED_PREVIEW_COUNT, format_size, is_project_id, sanitize_name

logger = logging.getLogger(__name__)

# Output file types a compile can produce; anything else passed as TYPE is
# tried as a project name
KNOWN_OUTPUT_TYPES = (
    "bbl",
    "log",
    "aux",
    "blg",
    "pdf",
    "out",
    "fls",
    "fdb_latexmk",
    "stderr",
    "pdfxref",
    "chktex",
)


def _spinner(out: OutputFormatter, description: str) -> Progress:
    """Create a transient spinner that stays silent in quiet and JSON modes."""
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        disable=out.quiet or out.json_output,
    )
    progress.add_task(description, total=None)
    return progress


def lookup_project(client: OverleafClient, identifier: str) -> ProjectIdentity:
    """Find a project by ID first, then by exact name.

    Raises:
        ProjectNotFoundError: If neither matches
    """
    project = client.get_project_by_id(identifier) or client.get_project(identifier)
    if project is None:
        raise ProjectNotFoundError(identifier)
    return ProjectIdentity(id=project.id, name=project.name)


def find_project(client: OverleafClient, identifier: str) -> ProjectIdentity:
    """Look a project up, trusting an unlisted 24-hex ID as is.

    Archived, trashed and shared-by-link projects are missing from the
    dashboard list but can still be addressed by ID.

    Raises:
        ProjectNotFoundError: If a name (not an ID) matches no project
    """
    try:
        return lookup_project(client, identifier)
    except ProjectNotFoundError:
        if not is_project_id(identifier):
            raise
        return ProjectIdentity(id=identifier, name=identifier)


def resolve_project(
    client: OverleafClient,
    project_arg: Optional[str],
    directory: Path = Path("."),
) -> ProjectIdentity:
    """Resolve a project from an argument or a synced directory's state.

    A 24-hex-digit argument is trusted as a project ID without a lookup.

    Raises:
        ProjectNotFoundError: If the named project does not exist
        OverleafError: If no project is given and the directory is not synced
    """
    if project_arg:
        if is_project_id(project_arg):
            return ProjectIdentity(id=project_arg, name=project_arg)
        return lookup_project(client, project_arg)

    state = SyncStateManager(directory).load()
    if state is not None:
        return state.project

    raise OverleafError(
        "No project specified. Provide a project name/ID "
        "or run from a synced directory."
    )


def bind_state(existing: Optional[SyncState], project: ProjectIdentity) -> SyncState:
    """Bind a directory's state to a project, keeping its watermarks."""
    if existing is None:
        return SyncState(project=project)
    return replace(existing, project=project)


@click.group()
@click.option(
    "--cookie",
    envvar="OVERLEAF_SESSION",
    help="Overleaf session cookie (overleaf_session2 value)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="olsync")
@click.pass_context
def main(
    ctx: Any,
    cookie: Optional[str],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """olsync - Sync Overleaf projects with local directories."""
    # Store settings in context for subcommands to access
    ctx.ensure_object(dict)
    ctx.obj["cookie"] = cookie
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    # Configure logging based on verbose flag
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        # Enable debug logging for olsync modules
        logging.getLogger("olsync").setLevel(logging.DEBUG)
    else:
        # Set default logging level to WARNING to suppress debug/info messages
        logging.basicConfig(level=logging.WARNING)


# =============================================================================
# Authentication
# =============================================================================


@main.command()
@click.option("--cookie", "session", help="Session cookie (overleaf_session2 value)")
@click.option(
    "--save-local", is_flag=True, help="Also save the cookie to .olauth here"
)
@click.pass_context
def auth(ctx: Any, session: Optional[str], save_local: bool) -> None:
    """Authenticate with Overleaf using a browser session cookie.

    The cookie is verified by listing your projects and then stored in
    the global config file.
    """
    out: OutputFormatter = ctx.obj["out"]

    if not session:
        out.warning("To authenticate, provide your session cookie:")
        out.print()
        out.print("1. Log into overleaf.com in your browser")
        out.print("2. Open Developer Tools (F12) → Application → Cookies")
        out.print('3. Find the cookie named "overleaf_session2"')
        out.print("4. Copy its value and run:")
        out.print()
        out.print('[cyan]  olsync auth --cookie "your_session_cookie_value"[/cyan]')
        out.print()
        out.print("Or set the OVERLEAF_SESSION environment variable")
        return

    try:
        with _spinner(out, "Verifying session..."):
            with OverleafClient.from_session_cookie(
                session, base_url=config.base_url
            ) as client:
                projects = client.list_projects()

        config.save_session_cookie(session)
        if client.csrf:
            config.save_csrf(client.csrf)

        if save_local:
            auth_path = config.save_olauth(session)
            out.success(
                f"✓ Authenticated! Found {len(projects)} projects. "
                f"Saved to {auth_path.name}"
            )
        else:
            out.success(f"✓ Authenticated! Found {len(projects)} projects.")

        out.dim(f"Config saved to: {config.get_config_path()}")

    except OverleafError as e:
        out.error(f"Authentication failed: {e}")
        ctx.exit(1)


@main.command()
@click.pass_context
def whoami(ctx: Any) -> None:
    """Show current authentication status."""
    out: OutputFormatter = ctx.obj["out"]
    cookie = ctx.obj.get("cookie") or config.session_cookie

    if not cookie:
        out.warning("Not authenticated")
        return

    try:
        with _spinner(out, "Checking session..."):
            with OverleafClient.from_session_cookie(
                cookie, base_url=config.base_url
            ) as client:
                projects = client.list_projects()

        if out.json_output:
            out.output_json({"authenticated": True, "projects": len(projects)})
        else:
            out.success(f"✓ Authenticated with access to {len(projects)} projects")

    except OverleafError as e:
        out.error(f"Session invalid: {e}")
        ctx.exit(1)


@main.command()
@click.pass_context
def logout(ctx: Any) -> None:
    """Clear stored credentials."""
    out: OutputFormatter = ctx.obj["out"]
    config.clear()
    out.success("Credentials cleared")


@main.command()
@click.pass_context
def check(ctx: Any) -> None:
    """Show credential sources and config path."""
    out: OutputFormatter = ctx.obj["out"]
    cookie = ctx.obj.get("cookie") or config.session_cookie

    if out.json_output:
        out.output_json(
            {
                "configFile": str(config.get_config_path()),
                "baseUrl": config.base_url,
                "sessionCookie": bool(cookie),
            }
        )
        return

    out.print("[bold]Configuration:[/bold]")
    out.print(f"  Config file: {config.get_config_path()}")
    out.print(f"  Overleaf URL: {config.base_url}")
    out.print()
    out.print("[bold]Credential sources (in order):[/bold]")
    out.print("  1. OVERLEAF_SESSION environment variable")
    out.print("  2. .olauth file in current directory")
    out.print("  3. Global config file")
    out.print()

    if cookie:
        out.success("✓ Session cookie found")
        out.dim(f"  Value: {cookie[:20]}...")
    else:
        out.warning("✗ No session cookie found")


# =============================================================================
# Projects
# =============================================================================


@main.command("list")
@click.option("--limit", "-n", type=int, default=None, help="Limit number of results")
@click.pass_context
def ls(ctx: Any, limit: Optional[int]) -> None:
    """List all projects (alias: ls)."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _spinner(out, "Fetching projects..."):
            with get_client(ctx, out) as client:
                projects = client.list_projects()

        if limit:
            projects = projects[:limit]

        if out.json_output:
            out.output_json([p.to_dict() for p in projects])
            return

        if not projects:
            out.warning("No projects found")
            return

        out.print_table(
            f"Found {len(projects)} project(s)",
            ["ID", "Name", "Last updated"],
            [[p.id, p.name, (p.last_updated or "")[:10]] for p in projects],
        )

    except OverleafError as e:
        out.error(str(e))
        ctx.exit(1)


main.add_command(ls, name="ls")


@main.command()
@click.argument("project", required=False)
@click.pass_context
def info(ctx: Any, project: Optional[str]) -> None:
    """Show project details and files (by name or ID)."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _spinner(out, "Fetching project info..."):
            with get_client(ctx, out) as client:
                proj = resolve_project(client, project)
                entities = sorted(
                    client.get_entities(proj.id), key=lambda e: e.path
                )

        if out.json_output:
            out.output_json(
                {
                    "project": {"id": proj.id, "name": proj.name},
                    "entities": [{"path": e.path, "type": e.type} for e in entities],
                }
            )
        else:
            out.print(f"[bold]Project: {proj.name}[/bold]")
            out.print(f"  ID: [cyan]{proj.id}[/cyan]")
            out.print()
            out.print("[bold]Files:[/bold]")
            for entity in entities:
                icon = "📄" if entity.type == "doc" else "📎"
                out.print(f"  {icon} {entity.path}")

        config.set_last_project(proj.id)

    except OverleafError as e:
        out.error(str(e))
        ctx.exit(1)


# =============================================================================
# Downloads
# =============================================================================


@main.command()
@click.argument("file")
@click.argument("project", required=False)
@click.option("--output", "-o", help="Output path (default: same as file name)")
@click.pass_context
def download(
    ctx: Any, file: str, project: Optional[str], output: Optional[str]
) -> None:
    """Download a single file from a project."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _spinner(out, "Downloading file..."):
            with get_client(ctx, out) as client:
                proj = resolve_project(client, project)
                content = client.download_by_path(proj.id, file)

        output_path = Path(output or Path(file).name)
        output_path.write_bytes(content)
        out.success(f"✓ Downloaded: {output_path} ({format_size(len(content))})")
        config.set_last_project(proj.id)

    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


@main.command("zip")
@click.argument("project", required=False)
@click.option("--output", "-o", help="Output path (default: <project-name>.zip)")
@click.pass_context
def zip_project(ctx: Any, project: Optional[str], output: Optional[str]) -> None:
    """Download a project as a zip archive."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _spinner(out, "Downloading project..."):
            with get_client(ctx, out) as client:
                proj = resolve_project(client, project)
                archive = client.download_project(proj.id)

        output_path = Path(output or f"{sanitize_name(proj.name)}.zip")
        output_path.write_bytes(archive)
        out.success(f"✓ Downloaded: {output_path} ({format_size(len(archive))})")
        config.set_last_project(proj.id)

    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


@main.command()
@click.argument("project", required=False)
@click.option("--output", "-o", help="Output path (default: <project-name>.pdf)")
@click.pass_context
def pdf(ctx: Any, project: Optional[str], output: Optional[str]) -> None:
    """Compile a project and download the PDF."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _spinner(out, "Compiling project..."):
            with get_client(ctx, out) as client:
                proj = resolve_project(client, project)
                content = client.download_pdf(proj.id)

        output_path = Path(output or f"{sanitize_name(proj.name)}.pdf")
        output_path.write_bytes(content)
        out.success(f"✓ Downloaded PDF: {output_path} ({format_size(len(content))})")
        config.set_last_project(proj.id)

    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


@main.command()
@click.argument("output_type", metavar="[TYPE]", required=False)
@click.option("--output", "-o", help="Output path")
@click.option("--list", "list_files", is_flag=True, help="List available output files")
@click.option("--project", help="Project name or ID")
@click.pass_context
def output(
    ctx: Any,
    output_type: Optional[str],
    output: Optional[str],
    list_files: bool,
    project: Optional[str],
) -> None:
    """Download compile output files (bbl, log, aux, ...).

    Examples:
        olsync output --list
        olsync output bbl
        olsync output log --project "My Thesis"
    """
    out: OutputFormatter = ctx.obj["out"]

    try:
        with get_client(ctx, out) as client:
            # An unknown TYPE may actually be a project name
            if output_type and not project and output_type not in KNOWN_OUTPUT_TYPES:
                if any(
                    p.name == output_type or p.id == output_type
                    for p in client.list_projects()
                ):
                    project, output_type = output_type, None

            proj = resolve_project(client, project)
            with _spinner(out, "Compiling project..."):
                result = client.compile_with_outputs(proj.id)

            if result.status != "success":
                out.warning(
                    f"Compilation {result.status}, "
                    "but output files may still be available"
                )

            if list_files or not output_type:
                if out.json_output:
                    out.output_json(
                        [{"type": f.type, "path": f.path} for f in result.output_files]
                    )
                    return
                out.print("[bold]Available output files:[/bold]")
                for output_file in result.output_files:
                    out.print(
                        f"  [cyan]{output_file.type:<12}[/cyan] {output_file.path}"
                    )
                out.print()
                out.dim("Usage: olsync output <type>")
                out.dim("Example: olsync output bbl")
                return

            match = next(
                (
                    f
                    for f in result.output_files
                    if f.type == output_type or f.path.endswith(f".{output_type}")
                ),
                None,
            )
            if match is None:
                out.error(f"Output file not found: {output_type}")
                out.dim("Use --list to see available files")
                ctx.exit(1)
                return

            content = client.download_output_file(match.url)

        output_path = Path(output or match.path.replace("output.", ""))
        output_path.write_bytes(content)
        out.success(f"✓ Downloaded: {output_path} ({format_size(len(content))})")
        config.set_last_project(proj.id)

    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


# =============================================================================
# Uploads and compile
# =============================================================================


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("project", required=False)
@click.option("--folder", help="Target folder ID (default: project root)")
@click.pass_context
def upload(ctx: Any, file: str, project: Optional[str], folder: Optional[str]) -> None:
    """Upload a file to a project."""
    out: OutputFormatter = ctx.obj["out"]
    file_path = Path(file)

    try:
        with _spinner(out, "Uploading file..."):
            with get_client(ctx, out) as client:
                proj = resolve_project(client, project)
                content = file_path.read_bytes()

                if folder:
                    result = client.upload_file(
                        proj.id, folder, file_path.name, content
                    )
                    if not result.ok:
                        out.error(
                            f"Upload failed for {file_path.name}: {result.reason}"
                        )
                        ctx.exit(1)
                else:
                    operations = SyncOperations(client, FolderResolver(client))
                    operations.upload(proj.id, file_path.name, content)

        out.success(f'✓ Uploaded: {file_path.name} → "{proj.name}"')
        config.set_last_project(proj.id)

    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


@main.command()
@click.argument("project", required=False)
@click.pass_context
def compile(ctx: Any, project: Optional[str]) -> None:
    """Compile a project (trigger PDF generation)."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        with _spinner(out, "Compiling..."):
            with get_client(ctx, out) as client:
                proj = resolve_project(client, project)
                result = client.compile_project(proj.id)

        if out.json_output:
            out.output_json({"status": result.status, "pdfUrl": result.pdf_url})
        else:
            out.success(f'✓ Compiled "{proj.name}"')
            out.dim(f"PDF URL: {result.pdf_url}")
        config.set_last_project(proj.id)

    except OverleafError as e:
        out.error(f"Compilation failed: {e}")
        ctx.exit(1)


# =============================================================================
# Sync
# =============================================================================


@main.command()
@click.argument("project", required=False)
@click.argument("directory", metavar="[DIR]", required=False)
@click.option("--force", is_flag=True, help="Overwrite local files even if newer")
@click.pass_context
def pull(
    ctx: Any, project: Optional[str], directory: Optional[str], force: bool
) -> None:
    """Download project files into a local directory.

    Without PROJECT, the directory's .olsync.json supplies the project.
    Pulling a named project without DIR creates a directory named after
    the project.

    Examples:
        olsync pull "My Thesis"           # Into ./My_Thesis
        olsync pull "My Thesis" thesis    # Into ./thesis
        olsync pull                       # Refresh the synced directory here
        olsync pull --force               # Also overwrite local edits
    """
    out: OutputFormatter = ctx.obj["out"]
    target_dir = Path(directory or ".")

    if not project and not SyncStateManager(target_dir).exists():
        out.error("No project specified.")
        out.error("Usage: olsync pull <project> [dir]")
        out.error("Or run from a directory with .olsync.json")
        ctx.exit(1)

    try:
        with get_client(ctx, out) as client:
            if project:
                identity = find_project(client, project)
                if not directory:
                    target_dir = Path(sanitize_name(identity.name))
                manager = SyncStateManager(target_dir)
                state = bind_state(manager.load(), identity)
            else:
                manager = SyncStateManager(target_dir)
                loaded = manager.load()
                if loaded is None:
                    raise OverleafError(f"{target_dir} is not a synced directory")
                state = loaded

            engine = SyncEngine(client, out)
            result = engine.pull(state, target_dir, force=force)

        manager.save(result.state)
        config.set_last_project(state.project.id)

        if out.json_output:
            out.output_json({"directory": str(target_dir), **result.to_dict()})
            return

        if result.skipped:
            out.warning(
                f"Downloaded {result.written} files, skipped {result.skipped} "
                "locally modified files"
            )
            out.warning("  Skipped (local is newer):")
            for path in result.skipped_preview:
                out.dim(f"    {path}")
            if result.skipped > SKIPPED_PREVIEW_COUNT:
                out.dim(f"    ... and {result.skipped - SKIPPED_PREVIEW_COUNT} more")
            out.dim("  Use --force to overwrite")
        else:
            out.success(f"✓ Downloaded {result.written} files to {target_dir}/")
        if result.unchanged:
            out.dim(f"  {result.unchanged} file(s) already up to date")

    except KeyboardInterrupt:
        out.warning("\nPull cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


def _load_bound_state(
    client: OverleafClient, manager: SyncStateManager, project: Optional[str]
) -> SyncState:
    """Load the directory's state, rebinding it when --project is given."""
    existing = manager.load()
    if project:
        return bind_state(existing, find_project(client, project))
    if existing is None:
        raise OverleafError(f"{manager.local_dir} is not a synced directory")
    return existing


@main.command()
@click.argument("directory", metavar="[DIR]", required=False)
@click.option("--project", help="Project name or ID (overrides .olsync.json)")
@click.option("--all", "all_files", is_flag=True, help="Upload all files")
@click.option(
    "--dry-run", is_flag=True, help="Show what would be uploaded without uploading"
)
@click.pass_context
def push(
    ctx: Any,
    directory: Optional[str],
    project: Optional[str],
    all_files: bool,
    dry_run: bool,
) -> None:
    """Upload local changes to the project.

    Files modified since the last pull are uploaded, or every file with
    --all or when the directory was never pulled.
    """
    out: OutputFormatter = ctx.obj["out"]
    target_dir = Path(directory or ".")
    manager = SyncStateManager(target_dir)

    if not project and not manager.exists():
        out.error("No project specified.")
        out.error("Either run from a directory with .olsync.json or use --project")
        ctx.exit(1)

    try:
        with get_client(ctx, out) as client:
            state = _load_bound_state(client, manager, project)
            engine = SyncEngine(client, out)
            result = engine.push(
                state, target_dir, all_files=all_files, dry_run=dry_run
            )

        if out.json_output:
            if not dry_run:
                manager.save(result.state)
                config.set_last_project(state.project.id)
            out.output_json(result.to_dict())
            return

        if dry_run:
            if not result.candidates:
                out.info("No files to upload")
                return
            out.print(
                f"[bold]Would upload {len(result.candidates)} file(s) "
                f'to "{state.project.name}":[/bold]'
            )
            for path in result.candidates:
                out.print(f"  [cyan]{path}[/cyan]")
            return

        manager.save(result.state)
        config.set_last_project(state.project.id)

        if not result.candidates:
            out.info("No files to upload")
        elif result.failed:
            out.warning(f"Uploaded {result.uploaded} files, {result.failed} failed")
        else:
            out.success(
                f'✓ Uploaded {result.uploaded} file(s) to "{state.project.name}"'
            )

    except KeyboardInterrupt:
        out.warning("\nPush cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


@main.command()
@click.argument("directory", metavar="[DIR]", required=False)
@click.option("--project", help="Project name or ID (overrides .olsync.json)")
@click.option("--details", is_flag=True, help="Show which local files were pushed")
@click.pass_context
def sync(
    ctx: Any, directory: Optional[str], project: Optional[str], details: bool
) -> None:
    """Pull remote changes and push local ones in a single pass.

    Local files edited since the last pull are kept and uploaded instead
    of being overwritten. New local files are uploaded.
    """
    out: OutputFormatter = ctx.obj["out"]
    target_dir = Path(directory or ".")
    manager = SyncStateManager(target_dir)

    if not project and not manager.exists():
        out.error("No project specified.")
        out.error("Either run from a directory with .olsync.json or use --project")
        ctx.exit(1)

    try:
        with get_client(ctx, out) as client:
            state = _load_bound_state(client, manager, project)
            engine = SyncEngine(client, out)
            result = engine.sync(state, target_dir)

        manager.save(result.state)
        config.set_last_project(state.project.id)

        if out.json_output:
            out.output_json(result.to_dict())
            return

        out.success(f'✓ Synced "{state.project.name}"')
        out.dim(f"  ↓ {result.pulled_from_remote} pulled from remote")
        out.dim(f"  ↑ {result.pushed_to_remote} pushed to remote")
        if result.failed_paths:
            out.warning(f"  {len(result.failed_paths)} upload(s) failed")

        if details:
            if result.kept_local:
                out.print(
                    "\n[yellow]  Local changes pushed (local was newer):[/yellow]"
                )
                for path in result.kept_local:
                    out.dim(f"    {path}")
            if result.new_local:
                out.print("\n[green]  New local files pushed:[/green]")
                for path in result.new_local:
                    out.dim(f"    {path}")

    except KeyboardInterrupt:
        out.warning("\nSync cancelled by user")
        ctx.exit(130)  # Standard exit code for SIGINT
    except OverleafError as e:
        out.error(f"Failed: {e}")
        ctx.exit(1)


if __name__ == "__main__":
    main()
