"""
Command-line interface for SwitchCal.
"""

import logging
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from switchcal.accounts import create_caldav_account
from switchcal.accounts import ensure_default_calendar
from switchcal.db import CalendarStore
from switchcal.models import DEFAULT_CONFIG
from switchcal.models import DEFAULT_DB_PATH
from switchcal.models import Account
from switchcal.models import AccountType
from switchcal.models import CalendarSyncError
from switchcal.models import NotFoundError
from switchcal.models import SyncConfig
from switchcal.models import SyncStats
from switchcal.oauth import OAuthClientConfig
from switchcal.oauth import TokenManager
from switchcal.sync import CalendarSynchronizer

CONFIG_SECTION = "switchcal"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Sync Google, iCloud and CalDAV calendars into one local store.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    db_path: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    db: Annotated[
        Path | None,
        typer.Option("--db", help=f"Database path (default: {DEFAULT_DB_PATH})"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.db_path = db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "yes", "true", "on")


def _parse_backend(value: str) -> str:
    value = value.strip().lower()
    if value not in ("rest", "caldav"):
        raise ValueError(f"google_backend must be 'rest' or 'caldav', not {value!r}")
    return value


def _build_config() -> SyncConfig:
    config_file = _load_config_file(state.config_path)
    db_path = state.db_path or Path(config_file.get("db_path") or DEFAULT_DB_PATH).expanduser()
    try:
        return SyncConfig(
            db_path=db_path,
            past_days=int(config_file.get("past_days", 30)),
            future_days=int(config_file.get("future_days", 90)),
            prune_missing=_parse_bool(config_file.get("prune_missing"), True),
            google_backend=_parse_backend(config_file.get("google_backend", "rest")),
            max_workers=int(config_file.get("max_workers", 4)),
            verbose=state.verbose,
        )
    except ValueError as e:
        console.print(f"[bold red]Error:[/] Invalid value in {state.config_path}: {e}")
        raise typer.Exit(1) from None


def _build_oauth_config() -> OAuthClientConfig:
    try:
        return OAuthClientConfig.from_sources(_load_config_file(state.config_path))
    except ValueError as e:
        console.print(f"[bold red]Error:[/] Invalid value in {state.config_path}: {e}")
        raise typer.Exit(1) from None


def _open_store(cfg: SyncConfig) -> CalendarStore:
    store = CalendarStore(cfg.db_path)
    try:
        store.connect()
    except CalendarSyncError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    return store


def _fmt_time(value: datetime | None) -> str:
    if value is None:
        return "—"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_results(accounts: dict[str, Account], results: dict[str, SyncStats]) -> bool:
    """Print per-account results; return True when everything succeeded."""
    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Account")
    table.add_column("Calendars", justify="right")
    table.add_column("Added", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Cancelled", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Status")

    ok = True
    for account_id, stats in results.items():
        account = accounts.get(account_id)
        name = account.name if account else account_id
        if stats.error:
            status_text = Text(stats.error, style="bold red")
            ok = False
        elif stats.errors:
            status_text = Text("partial", style="yellow")
            ok = False
        else:
            status_text = Text("✓", style="green")
        table.add_row(
            name,
            str(stats.calendars),
            str(stats.added),
            str(stats.modified),
            str(stats.cancelled),
            str(stats.deleted),
            str(stats.errors),
            status_text,
        )

    console.print(Panel(table, title="[bold]Results[/bold]", expand=False))
    return ok


def _sync_new_account(synchronizer: CalendarSynchronizer, account: Account) -> None:
    with console.status(f"Syncing {account.name}..."):
        stats = synchronizer.sync_account_in_background(account).result()
    _print_results({account.id: account}, {account.id: stats})


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------


@app.command()
def sync(
    account_id: Annotated[
        str | None,
        typer.Argument(help="Sync only this account (default: all enabled accounts)"),
    ] = None,
) -> None:
    """Fetch remote calendars and events into the local store."""
    cfg = _build_config()
    store = _open_store(cfg)
    try:
        ensure_default_calendar(store)
        tokens = TokenManager(store, _build_oauth_config())
        synchronizer = CalendarSynchronizer(store, cfg, token_manager=tokens)

        accounts = {a.id: a for a in store.get_all_accounts()}
        if account_id:
            if account_id not in accounts:
                console.print(f"[bold red]Error:[/] No account with id {account_id!r}")
                raise typer.Exit(1)
            results = {account_id: synchronizer.sync_account(accounts[account_id])}
        else:
            results = synchronizer.sync_all()
    except CalendarSyncError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    finally:
        store.close()

    if not results:
        console.print("[yellow]No accounts with credentials to sync.[/]")
        return
    if not _print_results(accounts, results):
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Listing subcommands
# ---------------------------------------------------------------------------


@app.command()
def accounts() -> None:
    """List configured accounts."""
    cfg = _build_config()
    with _open_store(cfg) as store:
        rows = store.get_all_accounts()

    if not rows:
        console.print("[yellow]No accounts configured.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Email")
    table.add_column("Enabled")
    table.add_column("Last sync")
    for account in rows:
        table.add_row(
            account.id,
            account.name,
            account.type.value,
            account.email or "—",
            Text("yes", style="green") if account.enabled else Text("no", style="yellow"),
            _fmt_time(account.last_sync),
        )
    console.print(table)


@app.command()
def calendars() -> None:
    """List calendars of all accounts."""
    cfg = _build_config()
    with _open_store(cfg) as store:
        account_names = {a.id: a.name for a in store.get_all_accounts()}
        rows = store.get_all_calendars()

    if not rows:
        console.print("[yellow]No calendars yet.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Name")
    table.add_column("Account")
    table.add_column("Mode")
    table.add_column("Visible")
    table.add_column("ID", style="dim")
    for cal in rows:
        table.add_row(
            Text("■ ", style=cal.color).append(cal.name, style="default"),
            account_names.get(cal.account_id, cal.account_id),
            Text("Read-only", style="yellow") if cal.read_only else Text("Read-write", style="green"),
            "yes" if cal.visible else "no",
            cal.id,
        )
    console.print(table)


@app.command()
def events(
    day: Annotated[
        str | None,
        typer.Argument(help="Date YYYY-MM-DD (default: today)"),
    ] = None,
) -> None:
    """Show the events of one day from visible calendars."""
    if day:
        try:
            target = date.fromisoformat(day)
        except ValueError:
            console.print(f"[bold red]Error:[/] Invalid date: {day!r}")
            raise typer.Exit(1) from None
    else:
        target = date.today()

    cfg = _build_config()
    with _open_store(cfg) as store:
        calendar_names = {c.id: c.name for c in store.get_all_calendars()}
        rows = store.get_events_for_date(target)

    if not rows:
        console.print(f"[dim]No events on {target.isoformat()}.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("When")
    table.add_column("Title")
    table.add_column("Calendar")
    table.add_column("Location")
    for event in rows:
        if event.all_day:
            when = "all day"
        else:
            when = f"{event.start.astimezone():%H:%M}–{event.end.astimezone():%H:%M}"
        table.add_row(
            when,
            event.title or "(untitled)",
            calendar_names.get(event.calendar_id, event.calendar_id),
            event.location,
        )
    console.print(Panel(table, title=f"[bold]{target:%A %d %B %Y}[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Account management
# ---------------------------------------------------------------------------

_NO_SYNC = Annotated[bool, typer.Option("--no-sync", help="Do not sync the new account right away")]


@app.command("add-google")
def add_google(
    no_sync: _NO_SYNC = False,
    timeout: Annotated[
        int, typer.Option("--timeout", help="Seconds to wait for the browser sign-in")
    ] = 300,
) -> None:
    """Add a Google account through the browser sign-in flow."""
    cfg = _build_config()
    oauth_config = _build_oauth_config()
    store = _open_store(cfg)
    try:
        tokens = TokenManager(store, oauth_config)
        console.print("Complete the sign-in in your browser...")
        account = tokens.authorize_google_account(timeout=timeout)
        console.print(f"[green]Added[/] {account.name}")
        if not no_sync:
            with CalendarSynchronizer(store, cfg, token_manager=tokens) as synchronizer:
                _sync_new_account(synchronizer, account)
    except CalendarSyncError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        store.close()


_CALDAV_TYPES = [t.value for t in AccountType if t not in (AccountType.LOCAL, AccountType.GOOGLE)]


@app.command("add-caldav")
def add_caldav(
    username: Annotated[str, typer.Option("--username", "-u", prompt=True, help="Account user name")],
    password: Annotated[
        str,
        typer.Option("--password", prompt=True, hide_input=True, help="App-specific password"),
    ],
    account_type: Annotated[
        str,
        typer.Option("--type", "-t", help=f"One of: {', '.join(_CALDAV_TYPES)}"),
    ] = AccountType.APPLE.value,
    name: Annotated[str | None, typer.Option("--name", help="Display name")] = None,
    server_url: Annotated[
        str | None,
        typer.Option("--server-url", help="CalDAV URL (required for --type caldav)"),
    ] = None,
    no_sync: _NO_SYNC = False,
) -> None:
    """Add an iCloud, Outlook, Samsung or generic CalDAV account."""
    if account_type not in _CALDAV_TYPES:
        raise typer.BadParameter(f"--type must be one of: {', '.join(_CALDAV_TYPES)}")

    cfg = _build_config()
    store = _open_store(cfg)
    try:
        account = create_caldav_account(
            store,
            AccountType(account_type),
            name or f"{account_type.capitalize()} - {username}",
            username,
            password,
            server_url=server_url,
        )
        console.print(f"[green]Added[/] {account.name}")
        if not no_sync:
            with CalendarSynchronizer(store, cfg) as synchronizer:
                _sync_new_account(synchronizer, account)
    except CalendarSyncError as e:
        console.print(f"[bold red]Error:[/] {e}")
        raise typer.Exit(1) from None
    finally:
        store.close()


@app.command("remove-account")
def remove_account(
    account_id: Annotated[str, typer.Argument(help="Account ID (see `switchcal accounts`)")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Delete an account together with its calendars and events."""
    cfg = _build_config()
    with _open_store(cfg) as store:
        try:
            account = store.get_account(account_id)
        except NotFoundError:
            console.print(f"[bold red]Error:[/] No account with id {account_id!r}")
            raise typer.Exit(1) from None

        n_calendars = len(store.get_calendars_by_account(account_id))
        if not yes:
            typer.confirm(
                f"Remove {account.name} and its {n_calendars} calendar(s)?",
                abort=True,
            )
        store.delete_account(account_id)
    console.print(f"[green]Removed[/] {account.name}")


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status() -> None:
    """Show configuration and store summary."""
    cfg = _build_config()
    oauth_config = _build_oauth_config()
    config_exists = state.config_path.exists()
    db_exists = cfg.db_path.exists()

    info = Text()
    info.append("  Config:   ", style="bold")
    info.append(str(state.config_path) + " ")
    info.append("✓" if config_exists else "(not found)", style="green" if config_exists else "yellow")
    info.append("\n  Database: ", style="bold")
    info.append(str(cfg.db_path) + " ")
    info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")
    info.append("\n  Google:   ", style="bold")
    if oauth_config.configured:
        info.append("client configured", style="green")
    else:
        info.append("client id/secret not set", style="yellow")
    info.append("\n  Window:   ", style="bold")
    info.append(f"-{cfg.past_days} / +{cfg.future_days} days")
    console.print(Panel(info, title="[bold]SwitchCal Status[/bold]"))

    if not db_exists:
        console.print("[yellow]No database yet. Run[/] [cyan]switchcal sync[/] [yellow]to create it.[/]")
        return

    with _open_store(cfg) as store:
        rows = store.get_all_accounts()
        counts = {a.id: len(store.get_calendars_by_account(a.id)) for a in rows}

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Account")
    table.add_column("Type")
    table.add_column("Calendars", justify="right")
    table.add_column("Credentials")
    table.add_column("Last sync")
    for account in rows:
        table.add_row(
            account.name,
            account.type.value,
            str(counts[account.id]),
            "yes" if account.has_credentials else "—",
            _fmt_time(account.last_sync),
        )
    console.print(Panel(table, title="[bold]Accounts[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
