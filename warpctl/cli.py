"""CLI commands for Cloudflare WARP control."""

import asyncio
import logging
import shutil
from contextlib import asynccontextmanager
from typing import Annotated

import typer
from rich.console import Console, Group
from rich.live import Live
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from .config import AppConfig, ConfigError
from .controller import ConnectionController, ControllerState
from .storage import KeyStore, KeyStoreError
from .utils import setup_logging
from .warp import AccountSnapshot, ConnectionState, Mode, get_trace

app = typer.Typer(
    name="warpctl",
    help="Control Cloudflare WARP through warp-cli",
    no_args_is_help=True,
)
keys_app = typer.Typer(help="Manage saved WARP+ license keys", no_args_is_help=True)
app.add_typer(keys_app, name="keys")

console = Console()
logger = logging.getLogger(__name__)

STATE_STYLES = {
    ConnectionState.CONNECTED: "green",
    ConnectionState.CONNECTING: "cyan",
    ConnectionState.DISCONNECTED: "yellow",
}


@app.callback()
def main(
    ctx: typer.Context,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging on the console")
    ] = False,
):
    """Load configuration and set up logging for every command."""
    try:
        config = AppConfig.load()
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    setup_logging(config, verbose=verbose)
    logger.debug("App directory: %s", config.app_dir)
    ctx.obj = config


def _run_async(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


def _ensure_warp_cli(config: AppConfig) -> None:
    """Ensure warp-cli is installed."""
    if shutil.which(config.warp_cli) is None:
        console.print(
            f"[red]warp-cli not found:[/red] {config.warp_cli}\n"
            "Install the Cloudflare WARP client: "
            "https://developers.cloudflare.com/warp-client/get-started/linux/"
        )
        raise typer.Exit(1)


@asynccontextmanager
async def _session(config: AppConfig):
    """Running controller whose connection state reflects warp-cli status."""
    async with ConnectionController.from_config(config) as controller:
        await controller.refresh_status()
        yield controller


def _spinner(description: str) -> Progress:
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )
    progress.add_task(description, total=None)
    return progress


def _state_text(state: ConnectionState) -> Text:
    return Text(str(state), style=STATE_STYLES[state])


def _account_table(account: AccountSnapshot) -> Table:
    table = Table(title="Account", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="bold")
    table.add_row("Account type", account.account_type or "-")
    table.add_row("Quota", account.quota)
    table.add_row("Premium data", account.premium_data)
    return table


def _render(state: ControllerState) -> Group:
    if state.mode is None:
        mode_ui_label, mode_label = "WARP", "mode unknown"
    else:
        mode_ui_label, mode_label = state.mode.ui_label, state.mode.label
    header = Text.assemble(
        (f"{mode_ui_label} ", "bold"),
        _state_text(state.connection),
        (f"  ({mode_label})", "dim"),
    )
    return Group(header, _account_table(state.account))


def _print_advisory(advisory: str | None) -> None:
    if advisory:
        console.print(f"[yellow]{advisory}[/yellow]")


@app.command()
def status(
    ctx: typer.Context,
    trace: Annotated[
        bool,
        typer.Option("--trace/--no-trace", help="Check the exit IP with Cloudflare's trace endpoint")
    ] = True,
):
    """Show current WARP connection status."""
    config = ctx.obj
    _ensure_warp_cli(config)

    async def check():
        async with _session(config) as controller:
            await controller.refresh_account()
            state, advisory = controller.state, controller.take_advisory()
        info = await get_trace() if trace else None
        return state, advisory, info

    with _spinner("Checking connection status..."):
        state, advisory, info = _run_async(check())

    console.print(_state_text(state.connection))
    if state.account.account_type:
        console.print(f"  Account: {state.account.account_type}")
        console.print(f"  Quota: {state.account.quota}")
        console.print(f"  Premium data: {state.account.premium_data}")
    if info is not None:
        console.print(f"  {info}")
    _print_advisory(advisory)


def _toggle(config: AppConfig, want: ConnectionState | None) -> tuple[ControllerState, bool]:
    """Toggle the connection unless it is already in the wanted state.

    Returns the resulting state and whether a toggle was issued.
    """
    async def do_toggle():
        async with _session(config) as controller:
            if want is not None and controller.state.connection is want:
                return controller.state, None, False
            await controller.toggle_connection()
            return controller.state, controller.take_advisory(), True

    with _spinner("Updating connection..."):
        state, advisory, changed = _run_async(do_toggle())

    if not changed:
        console.print(f"[yellow]Already {str(want).lower()}[/yellow]")
    _print_advisory(advisory)
    return state, changed


@app.command()
def toggle(ctx: typer.Context):
    """Connect if disconnected, disconnect if connected."""
    config = ctx.obj
    _ensure_warp_cli(config)

    state, _ = _toggle(config, None)
    console.print(_state_text(state.connection))


@app.command()
def connect(ctx: typer.Context):
    """Connect to WARP, retrying until the connection is confirmed."""
    config = ctx.obj
    _ensure_warp_cli(config)

    state, changed = _toggle(config, ConnectionState.CONNECTED)
    if not changed:
        return
    if not state.connected:
        console.print(
            f"[red]Connection not confirmed after {config.connect_attempts} attempts[/red]"
        )
        raise typer.Exit(1)
    console.print("[green]Connected[/green]")


@app.command()
def disconnect(ctx: typer.Context):
    """Disconnect from WARP."""
    config = ctx.obj
    _ensure_warp_cli(config)

    _, changed = _toggle(config, ConnectionState.DISCONNECTED)
    if changed:
        console.print("[green]Disconnected[/green]")


@app.command()
def mode(
    ctx: typer.Context,
    selection: Annotated[Mode, typer.Argument(help="direct (1.1.1.1) or warp (1.1.1.1 with Warp)")],
):
    """Switch the WARP routing mode."""
    config = ctx.obj
    _ensure_warp_cli(config)

    async def switch():
        async with _session(config) as controller:
            await controller.set_mode(selection)
            return controller.state, controller.take_advisory()

    with _spinner(f"Switching to {selection.label}..."):
        state, advisory = _run_async(switch())

    console.print(_render(state))
    _print_advisory(advisory)


@app.command()
def account(ctx: typer.Context):
    """Show account type and data quota."""
    config = ctx.obj
    _ensure_warp_cli(config)

    async def fetch():
        async with ConnectionController.from_config(config) as controller:
            ok = await controller.refresh_account()
            return ok, controller.state.account, controller.take_advisory()

    with _spinner("Fetching account information..."):
        ok, snapshot, advisory = _run_async(fetch())

    if not ok:
        console.print("[red]Account information unavailable[/red]")
        _print_advisory(advisory)
        raise typer.Exit(1)
    console.print(_account_table(snapshot))


@app.command()
def watch(
    ctx: typer.Context,
    interval: Annotated[
        float,
        typer.Option("--interval", "-i", min=0.5, help="Seconds between status polls")
    ] = 5.0,
):
    """Show a live view of the connection, refreshed periodically."""
    config = ctx.obj
    _ensure_warp_cli(config)

    async def run():
        async with _session(config) as controller:
            with Live(_render(controller.state), console=console, refresh_per_second=4) as live:
                unsubscribe = controller.subscribe(lambda state: live.update(_render(state)))
                try:
                    while True:
                        await controller.refresh()
                        advisory = controller.take_advisory()
                        if advisory:
                            live.console.print(f"[yellow]{advisory}[/yellow]")
                        await asyncio.sleep(interval)
                finally:
                    unsubscribe()

    try:
        _run_async(run())
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


def _key_store(config: AppConfig) -> KeyStore:
    store = KeyStore(config.db_file)
    try:
        store.initialize()
    except KeyStoreError as e:
        console.print(f"[red]{e}. Check {config.log_file} for details.[/red]")
        raise typer.Exit(1)
    return store


@keys_app.command("add")
def keys_add(
    ctx: typer.Context,
    key: Annotated[str, typer.Argument(help="WARP+ license key")],
):
    """Save a license key."""
    store = _key_store(ctx.obj)
    if not store.add_key(key):
        console.print("[red]Failed to add key. Check logs for details.[/red]")
        raise typer.Exit(1)
    console.print("[green]✓[/green] Key saved")


@keys_app.command("list")
def keys_list(ctx: typer.Context):
    """List saved license keys."""
    store = _key_store(ctx.obj)
    keys = store.list_keys()

    if not keys:
        console.print("[yellow]No keys saved[/yellow]")
        return

    table = Table(title="Saved Keys")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Key", style="green")
    for record in keys:
        table.add_row(str(record.id), record.key_id)
    console.print(table)


@keys_app.command("delete")
def keys_delete(
    ctx: typer.Context,
    key_id: Annotated[int, typer.Argument(help="ID shown by 'keys list'")],
):
    """Delete a saved license key."""
    store = _key_store(ctx.obj)
    if not store.delete_key(key_id):
        console.print("[red]Failed to delete key. Check logs for details.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Deleted key {key_id}")


@keys_app.command("use")
def keys_use(
    ctx: typer.Context,
    key_id: Annotated[int, typer.Argument(help="ID shown by 'keys list'")],
):
    """Register a saved license key with warp-cli."""
    config = ctx.obj
    store = _key_store(config)
    record = store.get_key(key_id)
    if record is None:
        console.print(f"[red]No saved key with ID {key_id}[/red]")
        raise typer.Exit(1)

    _ensure_warp_cli(config)

    async def register():
        async with ConnectionController.from_config(config) as controller:
            accepted = await controller.register_license(record.key_id)
            return accepted, controller.state.account, controller.take_advisory()

    with _spinner("Registering license key..."):
        accepted, snapshot, advisory = _run_async(register())

    if not accepted:
        _print_advisory(advisory)
        raise typer.Exit(1)
    console.print("[green]✓[/green] License key registered")
    if snapshot.account_type:
        console.print(f"  Account: {snapshot.account_type}")
