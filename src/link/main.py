"""
Link - CLI Entry Point.

Usage:
    link score profile.json     Score a profile document
    link fields                 Show the field catalog
    link stages                 Show signup stages and UI steps
    link status [USER_ID]       Resolve app state and score a user
    link health                 Check configuration
"""

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from link.profile.catalog import DEFAULT_CATALOG
from link.profile.completion import CompletionSnapshot, score
from link.profile.progress import STAGE_ORDER, stage_to_step

app = typer.Typer(
    name="link",
    help="Link - profile completion and signup progress tools.",
    add_completion=False,
)
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    """Configure logging for every command."""
    from link.config import get_core_settings

    level = "DEBUG" if verbose else get_core_settings().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _print_snapshot(snapshot: CompletionSnapshot) -> None:
    colour = "green" if snapshot.is_complete else "yellow"
    console.print(f"\n[bold {colour}]Profile {snapshot.percent}% complete[/bold {colour}]")

    if not snapshot.incomplete_fields:
        return

    table = Table(title="Incomplete fields")
    table.add_column("Field")
    table.add_column("Progress", justify="right")
    table.add_column("Message")
    for report in snapshot.incomplete_fields:
        table.add_row(
            report.display_name,
            f"{report.current_weight}/{report.required_weight}",
            report.message,
        )
    console.print(table)


@app.command("score")
def score_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON profile document"),
    as_json: bool = typer.Option(False, "--json", help="Print the snapshot as JSON"),
) -> None:
    """Score a profile document against the default catalog."""
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {path}: {e}[/red]")
        raise typer.Exit(code=1)

    if not isinstance(document, dict):
        console.print("[red]Profile document must be a JSON object[/red]")
        raise typer.Exit(code=1)

    snapshot = score(document)
    if as_json:
        typer.echo(json.dumps(snapshot.to_dict(), indent=2))
    else:
        _print_snapshot(snapshot)


@app.command()
def fields() -> None:
    """Show the field catalog."""
    table = Table(title=f"Profile fields (total weight {DEFAULT_CATALOG.total_required_weight()})")
    table.add_column("Field")
    table.add_column("Kind")
    table.add_column("Weight", justify="right")
    for definition in DEFAULT_CATALOG:
        kind = definition.kind.value
        if definition.list_policy is not None:
            kind = f"{kind} ({definition.list_policy.value})"
        table.add_row(definition.name, kind, str(definition.required_weight))
    console.print(table)


@app.command()
def stages() -> None:
    """Show signup stages and the UI step each resumes on."""
    table = Table(title="Signup stages")
    table.add_column("Step", justify="right")
    table.add_column("Stage")
    for stage in STAGE_ORDER:
        table.add_row(str(stage_to_step(stage)), stage.value)
    console.print(table)


@app.command()
def status(
    user_id: str = typer.Argument(None, help="User ID (defaults to DEV_USER_ID)"),
) -> None:
    """Resolve a user's app state against Supabase and score their profile."""
    from link.cache import JsonFileStore, ProfileCache
    from link.config import get_settings
    from link.db.client import SupabaseDocumentStore
    from link.profile.errors import ProfileSyncError
    from link.profile.session import AppState, resolve_app_state
    from link.profile.sync import SyncCoordinator

    settings = get_settings()
    user_id = user_id or settings.dev_user_id

    async def _resolve():
        store = await SupabaseDocumentStore.connect()
        coordinator = SyncCoordinator(store, ProfileCache(JsonFileStore(settings.local_cache_path)))
        app_state = await resolve_app_state(coordinator, user_id)
        return coordinator, app_state

    try:
        coordinator, app_state = asyncio.run(_resolve())
    except ProfileSyncError as e:
        console.print(f"[red]Could not load profile: {e}[/red]")
        raise typer.Exit(code=1)

    if app_state == AppState.UNAUTHENTICATED:
        console.print(f"[red]No active profile for {user_id}[/red]")
        raise typer.Exit(code=1)

    stage = coordinator.current_stage()
    console.print(f"User: {user_id}")
    console.print(f"App state: {app_state.value}")
    console.print(f"Signup stage: {stage.value} (step {stage_to_step(stage)})")
    _print_snapshot(coordinator.current_snapshot())


@app.command()
def health() -> None:
    """Check configuration."""
    from pydantic import ValidationError

    from link.config import get_core_settings, get_settings

    console.print("\n[bold]Link Health Check[/bold]\n")

    core = get_core_settings()
    console.print("✅ Configuration loaded")
    console.print(f"   Environment: {core.link_env}")
    console.print(f"   Log level: {core.log_level}")
    console.print(f"   Staleness window: {core.staleness_window_seconds:g}s")
    console.print(f"   Remote timeout: {core.remote_timeout_seconds:g}s")

    try:
        settings = get_settings()
        console.print(f"✅ Supabase configured: {settings.supabase_url}")
    except ValidationError as e:
        console.print(f"❌ Supabase not configured: {e}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
