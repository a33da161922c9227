"""CLI module for administering license keys via Typer.

Provides commands for the whole key lifecycle using the service layer.
Uses Rich for terminal output.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Coroutine, List, Optional

from fastapi_license_key._types import ServiceFactory
from fastapi_license_key.domain.entities import AuditEvent
from fastapi_license_key.domain.errors import GenerationIncomplete, LicenseKeyError
from fastapi_license_key.domain.results import CheckResult, CheckStatus, KeyInfo, KeyStats, KeySummary
from fastapi_license_key.utils import datetime_factory, days_until

# Domain errors that should result in exit code 1
DomainErrors = (LicenseKeyError,)

ADMIN_TOKEN_ENVVAR = "LICENSE_ADMIN_TOKEN"


def create_license_keys_cli(
    service_factory: ServiceFactory,
    app: Optional[Any] = None,
) -> Any:
    """Build a Typer CLI bound to a LicenseKeyService.

    Args:
        service_factory: Async context manager factory returning the service.
        app: Optional pre-configured Typer instance to extend.

    Returns:
        A configured Typer application with license key commands.
    """
    typer = _import_typer()
    console = _import_console()

    cli = app or typer.Typer(
        help="Manage license keys.",
        no_args_is_help=True,
        pretty_exceptions_enable=False,
    )

    # --- Helpers ---

    def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
        """Run an async coroutine synchronously.

        Inside a running event loop (notebooks, async callers) the coroutine
        runs on a fresh loop in a worker thread.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(coro)

        with ThreadPoolExecutor(max_workers=1) as executor:
            return executor.submit(asyncio.run, coro).result()

    def handle_errors(func: Callable[[], Coroutine[Any, Any, Any]]) -> Any:
        """Execute async function with domain error handling."""
        try:
            return run_async(func())
        except GenerationIncomplete as exc:
            console.print(f"[red]Error:[/red] {exc}")
            for key in exc.persisted:
                console.print(key)
            raise typer.Exit(1) from exc
        except DomainErrors as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(1) from exc

    # --- Commands ---

    @cli.command("generate")
    def generate_keys(
        count: int = typer.Option(1, "--count", "-c", min=1, help="Number of keys to generate."),
        days: Optional[int] = typer.Option(None, "--days", "-d", min=1, help="Validity window in days."),
        notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Annotation stored with each key."),
        max_resets: Optional[int] = typer.Option(None, "--max-resets", min=0, help="HWID resets allowed per key."),
        admin_token: Optional[str] = _admin_token_option(typer),
    ) -> None:
        """Generate a batch of license keys."""

        async def _run() -> None:
            async with service_factory() as service:
                result = await service.generate(
                    count=count,
                    validity_days=days,
                    notes=notes,
                    max_resets=max_resets,
                    admin_credential=admin_token,
                )

                console.print(f"[green]Generated {len(result.keys)} key(s).[/green]")
                console.print(f"Expires: {format_datetime(result.expires_at)}\n")
                for key in result.keys:
                    console.print(f"[bold cyan]{key}[/bold cyan]")

        handle_errors(_run)

    @cli.command("check")
    def check_key(
        ctx: typer.Context,
        key: Optional[str] = typer.Argument(None, help="License key."),
        hwid: Optional[str] = typer.Argument(None, help="Hardware identifier."),
    ) -> None:
        """Check a license key for a device. Exits with 1 unless access is granted."""
        if key is None or hwid is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> CheckResult:
            async with service_factory() as service:
                return await service.check(key, hwid)

        result = handle_errors(_run)
        print_check_result(console, result)
        if not result.valid:
            raise typer.Exit(1)

    @cli.command("activate")
    def activate_key(
        ctx: typer.Context,
        key: Optional[str] = typer.Argument(None, help="License key to activate."),
        hwid: str = typer.Option(..., "--hwid", help="Hardware identifier to bind."),
        discord_id: str = typer.Option(..., "--discord-id", help="Discord ID of the owner."),
    ) -> None:
        """Bind a license key to a Discord user and a device."""
        if key is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> None:
            async with service_factory() as service:
                result = await service.activate(key, hwid=hwid, discord_id=discord_id)
                console.print(f"[green]License key '{result.key}' activated for {result.discord_id}.[/green]")
                console.print(f"Expires: {format_datetime(result.expires_at)}")

        handle_errors(_run)

    @cli.command("info")
    def key_info(
        ctx: typer.Context,
        key: Optional[str] = typer.Argument(None, help="License key."),
    ) -> None:
        """Show details of a license key."""
        if key is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> None:
            async with service_factory() as service:
                info = await service.info(key)
                print_key_detail(console, info)

        handle_errors(_run)

    @cli.command("reset")
    def reset_hwid(
        ctx: typer.Context,
        key: Optional[str] = typer.Argument(None, help="License key to reset."),
        discord_id: Optional[str] = typer.Option(None, "--discord-id", help="Reset as the key owner."),
        admin_token: Optional[str] = _admin_token_option(typer),
    ) -> None:
        """Clear the HWID binding of a license key."""
        if key is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> None:
            async with service_factory() as service:
                result = await service.reset(key, admin_credential=admin_token, discord_id=discord_id)
                console.print(f"[green]HWID reset for '{result.key}'.[/green]")
                console.print(
                    f"Resets used: {result.used_resets}/{result.max_resets} "
                    f"({result.remaining_resets} remaining)"
                )

        handle_errors(_run)

    @cli.command("stats")
    def key_stats(admin_token: Optional[str] = _admin_token_option(typer)) -> None:
        """Show key counters, recent audit events and every key."""

        async def _run() -> None:
            async with service_factory() as service:
                stats = await service.stats(admin_credential=admin_token)
                print_stats(console, stats)

        handle_errors(_run)

    @cli.command("delete")
    def delete_key(
        ctx: typer.Context,
        key: Optional[str] = typer.Argument(None, help="License key to delete."),
        reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Why the key is deleted."),
        admin_token: Optional[str] = _admin_token_option(typer),
    ) -> None:
        """Permanently delete a license key."""
        if key is None:
            typer.echo(ctx.get_help())
            raise typer.Exit(0)

        async def _run() -> None:
            async with service_factory() as service:
                await service.delete(key, admin_credential=admin_token, reason=reason)
                console.print(f"[green]Deleted license key '{key}'.[/green]")

        handle_errors(_run)

    return cli


# --- Utility Functions ---

_STATUS_STYLES = {
    CheckStatus.GRANTED: "green",
    CheckStatus.NEEDS_ACTIVATION: "yellow",
    CheckStatus.HWID_MISMATCH: "yellow",
    CheckStatus.EXPIRED: "red",
    CheckStatus.NOT_FOUND: "red",
}


def format_activated(activated: bool) -> str:
    """Format activation state with color."""
    return "[green]Activated[/green]" if activated else "[yellow]Inactive[/yellow]"


def format_days_left(days_left: int) -> str:
    """Format remaining validity with color."""
    if days_left <= 0:
        return "[red]Expired[/red]"
    if days_left <= 7:
        return f"[yellow]{days_left}d[/yellow]"
    if days_left <= 30:
        return f"[blue]{days_left}d[/blue]"
    return f"[green]{days_left}d[/green]"


def format_datetime(dt: Optional[datetime]) -> str:
    """Format datetime for display."""
    if dt is None:
        return "[dim]-[/dim]"
    return dt.strftime("%Y-%m-%d %H:%M")


def print_check_result(console: Any, result: CheckResult) -> None:
    """Print the outcome of a key check."""
    style = _STATUS_STYLES[result.status]
    console.print(f"[{style}]{result.status.value}[/{style}] {result.key}")

    if result.days_left is not None:
        console.print(f"Days left: {result.days_left}")
    if result.reset_available is not None:
        console.print(f"Reset available: {'yes' if result.reset_available else 'no'}")


def print_key_detail(console: Any, info: KeyInfo) -> None:
    """Print detailed view of a license key."""
    Panel = _import_panel()

    lines = [
        f"[bold]Key:[/bold]        {info.key}",
        f"[bold]Status:[/bold]     {format_activated(info.activated)}",
        f"[bold]Discord ID:[/bold] {info.discord_id or '[dim]-[/dim]'}",
        f"[bold]Created:[/bold]    {format_datetime(info.created_at)}",
        f"[bold]Expires:[/bold]    {format_datetime(info.expires_at)} ({format_days_left(info.days_left)})",
        f"[bold]Resets:[/bold]     {info.hwid_resets}/{info.max_resets}",
        f"[bold]Can reset:[/bold]  {'yes' if info.can_reset else 'no'}",
        f"[bold]Notes:[/bold]      {info.notes or '[dim]-[/dim]'}",
    ]

    panel = Panel("\n".join(lines), title="License Key Details", border_style="blue")
    console.print(panel)


def print_keys_table(console: Any, keys: List[KeySummary], now: datetime) -> None:
    """Print a table of license keys."""
    Table = _import_table()
    table = Table(title=f"License Keys ({len(keys)})", show_header=True, header_style="bold")

    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Discord ID", no_wrap=True)
    table.add_column("Expires", justify="center")
    table.add_column("Resets", justify="right")

    for summary in keys:
        table.add_row(
            summary.key,
            format_activated(summary.activated),
            summary.discord_id or "[dim]-[/dim]",
            format_days_left(days_until(summary.expires_at, now)),
            str(summary.hwid_resets),
        )

    console.print(table)


def print_events_table(console: Any, events: List[AuditEvent]) -> None:
    """Print the most recent audit events."""
    Table = _import_table()
    table = Table(title="Recent Activity", show_header=True, header_style="bold")

    table.add_column("When", no_wrap=True)
    table.add_column("Action", style="magenta", no_wrap=True)
    table.add_column("Key", style="cyan")
    table.add_column("Actor", no_wrap=True)

    for event in events:
        table.add_row(
            format_datetime(event.timestamp),
            event.action.value,
            event.key,
            event.actor_id or "[dim]-[/dim]",
        )

    console.print(table)


def print_stats(console: Any, stats: KeyStats) -> None:
    """Print aggregate counters, recent events and every key."""
    console.print(f"[bold]Total keys:[/bold]       {stats.total}")
    console.print(f"[bold]Activated:[/bold]        {stats.activated}")
    console.print(f"[bold]Inactive:[/bold]         {stats.inactive}")
    console.print(f"[bold]Expired:[/bold]          {stats.expired}")
    console.print(f"[bold]Total HWID resets:[/bold] {stats.total_hwid_resets}\n")

    if stats.recent_events:
        print_events_table(console, stats.recent_events)
    if stats.keys:
        print_keys_table(console, stats.keys, datetime_factory())
    else:
        console.print("[yellow]No license keys found.[/yellow]")


def _import_typer() -> Any:
    """Import typer with helpful error message."""
    try:
        import typer
    except ImportError as exc:
        raise RuntimeError("Typer is required. Install with: pip install fastapi-license-key[cli]") from exc
    return typer


def _import_console() -> Any:
    """Import Rich Console."""
    try:
        from rich.console import Console
    except ImportError as exc:
        raise RuntimeError("Rich is required. Install with: pip install fastapi-license-key[cli]") from exc
    return Console()


def _import_table() -> Any:
    """Import Rich Table."""
    from rich.table import Table

    return Table


def _import_panel() -> Any:
    """Import Rich Panel."""
    from rich.panel import Panel

    return Panel


def _admin_token_option(typer: Any) -> Any:
    """Build the ``--admin-token`` option, read from the environment when omitted."""
    return typer.Option(
        None,
        "--admin-token",
        "-t",
        envvar=ADMIN_TOKEN_ENVVAR,
        help="Administrative credential.",
        show_default=False,
    )
