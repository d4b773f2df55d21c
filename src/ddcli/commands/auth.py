"""Auth commands -- log in to Datadog with OAuth and manage stored tokens.

Provides the ``ddcli auth`` sub-command group. Every command resolves the
site from ``--site`` or ``DD_SITE``, builds one
:class:`~ddcli.auth.context.AuthContext` for the invocation, and runs the
matching :class:`~ddcli.auth.orchestrator.AuthOrchestrator` operation.

Typical workflow::

    ddcli auth login               # browser-based OAuth login
    ddcli auth status              # inspect client and token state
    ddcli auth refresh             # force a token refresh
    ddcli auth logout --delete-client
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

import typer

from ddcli.auth.context import AuthContext
from ddcli.auth.oauth_client import DEFAULT_OAUTH_TIMEOUT
from ddcli.auth.orchestrator import AuthOrchestrator
from ddcli.exceptions import DDCliError
from ddcli.models import AuthStatusReport
from ddcli.output import error, info, print_record, print_table, success, suggest

T = TypeVar("T")

auth_app = typer.Typer(no_args_is_help=True)

_SITE_OPTION_HELP = "Datadog site, e.g. datadoghq.eu. Defaults to $DD_SITE or datadoghq.com."


def _build_context(site: Optional[str]) -> AuthContext:
    return AuthContext.from_environment(site)


def _build_orchestrator(context: AuthContext) -> AuthOrchestrator:
    return AuthOrchestrator(context)


def _run(site: Optional[str], operation: Callable[[AuthOrchestrator], Awaitable[T]]) -> T:
    """Run *operation* inside a fresh context; map DDCliError to an exit code."""

    async def _main() -> T:
        async with _build_context(site) as context:
            return await operation(_build_orchestrator(context))

    try:
        return asyncio.run(_main())
    except DDCliError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


@auth_app.command("login")
def auth_login(
    site: Optional[str] = typer.Option(None, "--site", help=_SITE_OPTION_HELP),
    scopes: Optional[list[str]] = typer.Option(
        None,
        "--scope",
        "-s",
        help="OAuth scope to request. Repeat for several. Defaults to the standard set.",
    ),
    timeout: float = typer.Option(
        DEFAULT_OAUTH_TIMEOUT,
        "--timeout",
        min=1,
        help="Seconds to wait for the browser authorization.",
    ),
) -> None:
    """Log in through the browser with OAuth2 + PKCE.

    Registers this installation as an OAuth client on first use, opens the
    Datadog authorization page, and stores the resulting tokens in the OS
    keychain (or ``~/.datadog/oauth_tokens.json`` when no keychain exists).

    Example::

        ddcli auth login --site datadoghq.eu
    """

    async def _login(orchestrator: AuthOrchestrator):
        info(f"Logging in to Datadog ({orchestrator.context.site})...")
        return await orchestrator.perform_login(scopes=scopes or (), timeout=timeout)

    tokens = _run(site, _login)
    success("Login successful!")
    info(f"Access token expires {_format_timestamp(tokens.expires_at)}.")
    suggest('Run "ddcli auth status" to see your authentication status.')


@auth_app.command("logout")
def auth_logout(
    site: Optional[str] = typer.Option(None, "--site", help=_SITE_OPTION_HELP),
    delete_client: bool = typer.Option(
        False,
        "--delete-client",
        help="Also forget the registered OAuth client. The next login registers a new one.",
    ),
) -> None:
    """Revoke and delete the stored tokens for a site.

    Revocation is best-effort: local tokens are deleted even when the
    server cannot be reached.
    """

    async def _logout(orchestrator: AuthOrchestrator):
        return await orchestrator.perform_logout(delete_client=delete_client)

    result = _run(site, _logout)
    success(f"Logged out from {result.site}.")


@auth_app.command("status")
def auth_status(
    site: Optional[str] = typer.Option(None, "--site", help=_SITE_OPTION_HELP),
) -> None:
    """Show the registered client and token state for a site.

    Writes a record to stdout (``--json`` for machine-readable output).
    Never refreshes or otherwise modifies stored credentials.
    """

    async def _status(orchestrator: AuthOrchestrator) -> AuthStatusReport:
        return orchestrator.show_auth_status()

    report = _run(site, _status)
    print_record(_status_record(report), title=f"Authentication status for {report.site}")
    if not report.token_status.has_tokens:
        suggest('Run "ddcli auth login" to authenticate with OAuth.')


@auth_app.command("refresh")
def auth_refresh(
    site: Optional[str] = typer.Option(None, "--site", help=_SITE_OPTION_HELP),
) -> None:
    """Refresh the access token now, regardless of its expiry."""

    async def _refresh(orchestrator: AuthOrchestrator):
        return await orchestrator.force_refresh_token()

    tokens = _run(site, _refresh)
    success("Token refreshed successfully.")
    info(f"New token expires {_format_timestamp(tokens.expires_at)}.")


@auth_app.command("migrate")
def auth_migrate(
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="List the sites that would migrate without changing anything."
    ),
) -> None:
    """Move tokens from the legacy ``oauth_tokens.json`` into the OS keychain.

    The legacy file is deleted only when every site was copied and
    verified.
    """

    async def _migrate(orchestrator: AuthOrchestrator):
        return orchestrator.migrate(dry_run=dry_run)

    result = _run(None, _migrate)

    if not result.attempted and not result.success:
        error(f"{result.error}. Tokens stay in the file store.")
        raise typer.Exit(code=1)

    if dry_run:
        if not result.sites and not result.failed_sites:
            info("No legacy tokens to migrate.")
            return
        rows = [[site, "migrate"] for site in result.sites]
        rows += [[site, "unreadable"] for site in result.failed_sites]
        print_table(["site", "action"], rows, title="Dry run")
        return

    if not result.attempted:
        info("No legacy tokens to migrate.")
        return

    if result.success:
        success(f"Migrated {result.sites_migrated} site(s) to the OS keychain.")
        if result.legacy_file_deleted:
            info("Deleted the legacy token file.")
        return

    error(
        f"Migration incomplete: {result.error}. "
        f"Failed sites: {', '.join(result.failed_sites)}. The legacy file was kept."
    )
    raise typer.Exit(code=1)


# --- Formatting helpers ---


def _status_record(report: AuthStatusReport) -> dict[str, object]:
    client = report.client
    status = report.token_status
    record: dict[str, object] = {
        "site": report.site,
        "client_registered": client is not None,
        "client_id": f"{client.client_id[:8]}..." if client else None,
        "client_registered_at": _format_timestamp(client.registered_at) if client else None,
        "client_storage": _describe_storage(report.client_storage, report.client_storage_secure),
        "authenticated": status.has_tokens,
        "token_storage": _describe_storage(report.token_storage, report.token_storage_secure),
    }
    if status.has_tokens:
        expired = status.expires_in_seconds == 0
        record["access_token_expires"] = (
            status.expires_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
            if status.expires_at
            else None
        )
        record["expires_in"] = (
            "expired (refreshes on next use)"
            if expired
            else format_duration(status.expires_in_seconds or 0)
        )
        record["needs_refresh"] = status.needs_refresh
        record["scopes_granted"] = report.scope_count
    return record


def _describe_storage(location: str, secure: bool) -> str:
    return f"{location} (secure)" if secure else location


def _format_timestamp(epoch_seconds: int) -> str:
    return datetime.fromtimestamp(epoch_seconds).strftime("%Y-%m-%d %H:%M:%S")


def format_duration(seconds: int) -> str:
    """``3720`` -> ``"1h 2m"``, ``125`` -> ``"2m 5s"``, ``9`` -> ``"9s"``."""
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
