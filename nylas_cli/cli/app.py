"""Typer application for the ``nylas`` command.

Command groups:
- auth: credentials, browser login, grant listing and switching

All commands share one Services bundle per invocation, stored on the click
context. Tests inject their own bundle with ``CliRunner().invoke(app, args,
obj=services)``.
"""

import functools
import json
import logging
import threading
from collections.abc import Callable
from typing import Annotated, Any, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from nylas_cli import __version__
from nylas_cli.auth.service import DEFAULT_LOGIN_TIMEOUT
from nylas_cli.cli.services import Services, build_services
from nylas_cli.domain.models import Grant, Provider
from nylas_cli.store.grant_store import dump_grants
from nylas_cli.utils.errors import NylasCLIError

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="nylas",
    help="Command-line access to Nylas: credentials, login and grants.",
    no_args_is_help=True,
)
auth_app = typer.Typer(
    help="Configure credentials and manage authenticated accounts.",
    no_args_is_help=True,
)
app.add_typer(auth_app, name="auth")

console = Console()
err_console = Console(stderr=True)

F = TypeVar("F", bound=Callable[..., Any])


def mask_secret(value: str) -> str:
    """Show at most the first 8 characters of a secret."""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:8]}..."


def output_json(data: Any) -> None:
    """Print data as JSON on stdout."""
    print(json.dumps(data, default=str, indent=2))


def print_error(error: NylasCLIError) -> None:
    """Print a failure line, plus the remediation hint if there is one."""
    logger.debug("Command failed: %s", error)
    err_console.print(f"[red]✗[/red] {escape(error.message)}")
    if error.hint:
        err_console.print(f"  [dim]Hint: {escape(error.hint)}[/dim]")


def handle_errors(func: F) -> F:
    """Render NylasCLIError as a one-line failure and exit 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except NylasCLIError as e:
            print_error(e)
            raise typer.Exit(1) from e

    return wrapper  # type: ignore[return-value]


def run_cancellable(
    func: Callable[[], Any],
    cancel_event: threading.Event,
    poll_interval: float = 0.1,
) -> Any:
    """Run ``func`` on a worker thread, turning Ctrl+C into ``cancel_event``.

    The main thread only polls the worker, so the interrupt lands here
    while ``func`` is still blocked. After setting the event it waits for
    the worker to unwind, then re-raises KeyboardInterrupt.
    """
    outcome: dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["result"] = func()
        except BaseException as e:
            outcome["error"] = e

    worker = threading.Thread(target=target, name="nylas-login", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(poll_interval)
    except KeyboardInterrupt:
        cancel_event.set()
        worker.join()
        raise

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def _services(ctx: typer.Context) -> Services:
    services: Services = ctx.obj
    return services


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"nylas {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    debug: Annotated[bool, typer.Option("--debug", help="Enable debug logging")] = False,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version", callback=_version_callback, is_eager=True, help="Show version"
        ),
    ] = None,
) -> None:
    """Nylas command-line interface."""
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    if ctx.obj is None:
        try:
            ctx.obj = build_services()
        except NylasCLIError as e:
            print_error(e)
            raise typer.Exit(1) from e


# ============================================================================
# Credentials
# ============================================================================


@auth_app.command("config")
@handle_errors
def auth_config(
    ctx: typer.Context,
    api_key: Annotated[
        str,
        typer.Option(
            "--api-key", prompt="Nylas API key", hide_input=True, help="Nylas API key"
        ),
    ],
    client_id: Annotated[
        Optional[str], typer.Option("--client-id", help="Application (client) ID")
    ] = None,
    client_secret: Annotated[
        Optional[str], typer.Option("--client-secret", help="OAuth client secret")
    ] = None,
    region: Annotated[
        Optional[str], typer.Option("--region", help="Data region: us or eu")
    ] = None,
) -> None:
    """Store API credentials."""
    services = _services(ctx)
    services.config.save_credentials(
        api_key, client_id=client_id, client_secret=client_secret, region=region
    )
    console.print(
        f"[green]✓[/green] Credentials saved to {services.config.secret_store.name}"
    )


@auth_app.command("token")
@handle_errors
def auth_token(ctx: typer.Context) -> None:
    """Print the configured API key."""
    print(_services(ctx).config.get_api_key())


@auth_app.command("reset")
@handle_errors
def auth_reset(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Remove stored credentials and all local grants."""
    if not yes:
        typer.confirm("Remove stored credentials and all grants?", abort=True)

    services = _services(ctx)
    services.config.reset()
    services.grants.clear_grants()
    console.print("[green]✓[/green] Credentials and grants removed")


@auth_app.command("status")
@handle_errors
def auth_status(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show configuration and the current account."""
    services = _services(ctx)
    status = services.auth.status(services.config)

    if as_json:
        output_json(status.model_dump(mode="json"))
        return

    if status.configured:
        api_key = services.config.get_api_key()
        console.print(
            f"[green]✓[/green] Configured (API key {mask_secret(api_key)} "
            f"from {status.api_key_source})"
        )
    else:
        console.print("[yellow]![/yellow] Not configured. Run 'nylas auth config'.")

    console.print(f"  Secret store: {status.secret_store}")
    console.print(f"  Config file:  {status.config_path}")
    console.print(f"  Region:       {status.region}")
    console.print(f"  Grants:       {status.grant_count}")
    if status.default_grant is not None:
        grant = status.default_grant
        console.print(f"  Default:      {grant.email or '-'} ({grant.id})")
    else:
        console.print("  Default:      [dim]none[/dim]")


# ============================================================================
# Login / logout
# ============================================================================


@auth_app.command("login")
@handle_errors
def auth_login(
    ctx: typer.Context,
    provider: Annotated[
        str, typer.Option("--provider", "-p", help="Mailbox provider")
    ] = Provider.GOOGLE.value,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Seconds to wait for the browser")
    ] = DEFAULT_LOGIN_TIMEOUT,
) -> None:
    """Log in through the browser and store the new grant."""
    services = _services(ctx)
    cancel = threading.Event()

    def show_url(url: str, opened: bool) -> None:
        if opened:
            err_console.print("Opening browser for authentication...")
        else:
            err_console.print("Could not open a browser. Visit this URL to continue:")
        err_console.print(url, markup=False, soft_wrap=True)
        err_console.print("[dim]Waiting for authentication...[/dim]")

    try:
        grant = run_cancellable(
            lambda: services.auth.login(
                provider, timeout=timeout, cancel_event=cancel, on_auth_url=show_url
            ),
            cancel,
        )
    except KeyboardInterrupt:
        err_console.print("[red]✗[/red] Login cancelled")
        raise typer.Exit(1) from None

    console.print(
        f"[green]✓[/green] Logged in as {escape(grant.email or grant.id)} "
        f"({grant.provider.display_name})"
    )


@auth_app.command("logout")
@handle_errors
def auth_logout(ctx: typer.Context) -> None:
    """Revoke the current account's grant."""
    grant_id = _services(ctx).auth.logout()
    console.print(f"[green]✓[/green] Logged out (revoked {grant_id})")


@auth_app.command("revoke")
@handle_errors
def auth_revoke(
    ctx: typer.Context,
    grant_id: Annotated[str, typer.Argument(help="Grant to revoke")],
) -> None:
    """Revoke a grant on Nylas and forget it locally."""
    _services(ctx).auth.revoke_grant(grant_id)
    console.print(f"[green]✓[/green] Revoked {grant_id}")


@auth_app.command("remove")
@handle_errors
def auth_remove(
    ctx: typer.Context,
    grant_id: Annotated[str, typer.Argument(help="Grant to forget")],
) -> None:
    """Forget a grant locally without revoking it."""
    grant = _services(ctx).auth.remove_grant(grant_id)
    console.print(f"[green]✓[/green] Removed {grant.email or grant.id}")


# ============================================================================
# Grants
# ============================================================================


def _grant_table(grants: list[Grant]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", no_wrap=True)
    table.add_column("Email")
    table.add_column("Provider")
    table.add_column("Status")
    for grant in grants:
        table.add_row(
            grant.id,
            grant.email,
            grant.provider.display_name,
            grant.grant_status,
        )
    return table


@auth_app.command("list")
@handle_errors
def auth_list(
    ctx: typer.Context,
    remote: Annotated[
        bool, typer.Option("--remote", help="List every grant of the application")
    ] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List authenticated accounts."""
    services = _services(ctx)

    if remote:
        grants = services.auth.list_grants()
        if as_json:
            print(dump_grants(grants))
        elif not grants:
            console.print("[dim]No grants found.[/dim]")
        else:
            console.print(_grant_table(grants))
        return

    rows = services.auth.grant_statuses()
    if as_json:
        output_json([row.model_dump(mode="json") for row in rows])
        return
    if not rows:
        console.print("[dim]No accounts. Run 'nylas auth login'.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=1)
    table.add_column("ID", no_wrap=True)
    table.add_column("Email")
    table.add_column("Provider")
    table.add_column("Status")
    for row in rows:
        status = row.status if row.error is None else f"{row.status} ({row.error})"
        table.add_row(
            "*" if row.is_default else "",
            row.id,
            row.email,
            row.provider.display_name,
            escape(status),
        )
    console.print(table)


@auth_app.command("show")
@handle_errors
def auth_show(
    ctx: typer.Context,
    grant_id: Annotated[
        Optional[str], typer.Argument(help="Grant ID (default grant if omitted)")
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show grant details from Nylas."""
    grant = _services(ctx).auth.show_grant(grant_id)
    if as_json:
        output_json(grant.model_dump(mode="json"))
        return

    console.print(f"ID:       {grant.id}")
    console.print(f"Email:    {escape(grant.email)}")
    console.print(f"Provider: {grant.provider.display_name}")
    console.print(f"Status:   {grant.grant_status}")
    if grant.scope:
        console.print(f"Scopes:   {', '.join(grant.scope)}")
    if grant.created_at:
        console.print(f"Created:  {grant.created_at:%Y-%m-%d %H:%M}")


@auth_app.command("switch")
@handle_errors
def auth_switch(
    ctx: typer.Context,
    identifier: Annotated[str, typer.Argument(help="Grant ID or email")],
) -> None:
    """Make another stored account the default."""
    grant = _services(ctx).auth.switch_grant(identifier)
    console.print(f"[green]✓[/green] Switched to {escape(grant.email or grant.id)}")


@auth_app.command("add")
@handle_errors
def auth_add(
    ctx: typer.Context,
    grant_id: Annotated[str, typer.Argument(help="Existing grant ID")],
    email: Annotated[Optional[str], typer.Option("--email", help="Email override")] = None,
    provider: Annotated[
        Optional[str], typer.Option("--provider", help="Provider override")
    ] = None,
    default: Annotated[
        bool, typer.Option("--default", help="Make it the default account")
    ] = False,
) -> None:
    """Register a grant created outside the CLI."""
    grant = _services(ctx).auth.add_grant(
        grant_id, email=email, provider=provider, set_default=default
    )
    console.print(f"[green]✓[/green] Added {escape(grant.email or grant.id)}")


@auth_app.command("whoami")
@handle_errors
def auth_whoami(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show the default account."""
    grant = _services(ctx).auth.whoami()
    if as_json:
        output_json(grant.model_dump(mode="json"))
        return
    console.print(f"{escape(grant.email or '-')} ({grant.provider.display_name})")
    console.print(f"[dim]Grant ID: {grant.id}[/dim]")


@auth_app.command("providers")
def auth_providers() -> None:
    """List supported providers."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Provider")
    table.add_column("Name")
    for provider in Provider:
        table.add_row(provider.value, provider.display_name)
    console.print(table)


__all__ = ["app", "auth_app", "handle_errors", "mask_secret"]
