"""High-level login, logout, status, and refresh operations.

Each ``ddcli auth`` command maps to one method of :class:`AuthOrchestrator`.
Methods raise :class:`~ddcli.exceptions.DDCliError` subclasses on failure
and report progress on stderr through :mod:`ddcli.output`; the command
layer turns exceptions into messages and exit codes.

Login runs strictly in this order: legacy-token migration, client
registration, PKCE and state generation, callback server start (which
fixes the redirect URI), authorization URL, browser, callback wait, code
exchange, persistence. The callback server is always stopped.
"""

from __future__ import annotations

import asyncio
import logging
import time
import webbrowser
from typing import Callable, Optional, Sequence

from ddcli import output
from ddcli.auth.callback_server import CallbackServer
from ddcli.auth.context import AuthContext
from ddcli.auth.migration import migrate_tokens_to_keychain, perform_migration_if_needed
from ddcli.auth.oauth_client import (
    DEFAULT_OAUTH_TIMEOUT,
    build_authorization_url,
    exchange_code_for_tokens,
    revoke_token,
)
from ddcli.auth.pkce import generate_pkce_challenge, generate_state
from ddcli.exceptions import LoginError, NoClientIdError, TokenExchangeError
from ddcli.models import (
    AuthState,
    AuthStatusReport,
    LogoutResult,
    MigrationResult,
    OAuthConfig,
    OAuthTokens,
)

logger = logging.getLogger(__name__)

BrowserOpener = Callable[[str], bool]
CallbackServerFactory = Callable[[float], CallbackServer]


def _default_callback_server(timeout: float) -> CallbackServer:
    return CallbackServer(timeout=timeout)


class AuthOrchestrator:
    """Composes registration, callback server, storage, and refresh.

    Args:
        context: The per-process :class:`~ddcli.auth.context.AuthContext`.
        open_browser: Opens a URL, returning False when no browser could be
            launched. Defaults to :func:`webbrowser.open`.
        callback_server_factory: Builds the callback server for a given
            timeout.
    """

    def __init__(
        self,
        context: AuthContext,
        open_browser: BrowserOpener = webbrowser.open,
        callback_server_factory: CallbackServerFactory = _default_callback_server,
    ) -> None:
        self.context = context
        self._open_browser = open_browser
        self._callback_server_factory = callback_server_factory

    async def perform_login(
        self,
        site: Optional[str] = None,
        scopes: Sequence[str] = (),
        timeout: float = DEFAULT_OAUTH_TIMEOUT,
    ) -> OAuthTokens:
        """Run the browser-based Authorization Code + PKCE flow.

        Args:
            site: Datadog site (default: the configured one).
            scopes: Requested scopes; empty requests the default set.
            timeout: Seconds to wait for the browser redirect.

        Returns:
            The persisted tokens, stamped with the registered ``client_id``.

        Raises:
            DCRError: Client registration failed.
            CallbackError: No port, timeout, or state mismatch.
            LoginError: The authorization server reported an error.
            TokenExchangeError: The code could not be exchanged.
        """
        site = site or self.context.site
        storage = self.context.storage

        migration_message = perform_migration_if_needed(storage)
        if migration_message:
            output.info(migration_message)

        client = await self.context.registrar.get_or_register_client(site)
        pkce = generate_pkce_challenge()
        state = generate_state()

        server = self._callback_server_factory(timeout)
        try:
            output.info("Starting local authentication server...")
            server.start(state)
            attempt = AuthState(
                state=state,
                pkce=pkce,
                redirect_uri=server.get_redirect_uri(),
                started_at=int(time.time()),
            )

            config = OAuthConfig(
                site=site, client_id=client.client_id, scopes=list(scopes), timeout_seconds=timeout
            )
            auth_url = build_authorization_url(
                config, attempt.pkce, attempt.state, attempt.redirect_uri
            )

            output.info("Opening browser for authentication...")
            if not await self._launch_browser(auth_url):
                output.warning("Could not open a browser automatically.")
                output.info("Open the following URL in your browser:")
                output.info(auth_url)

            output.info("Waiting for authorization...")
            result = await server.wait_for_callback()
            logger.debug(
                "Callback received %ds after the login started",
                int(time.time()) - attempt.started_at,
            )

            if result.error:
                raise LoginError(
                    f"Authorization failed: {result.error_description or result.error}. "
                    'Run "ddcli auth login" to try again.'
                )
            if not result.code:
                raise LoginError(
                    'No authorization code received. Run "ddcli auth login" to try again.'
                )

            output.info("Exchanging authorization code for tokens...")
            tokens = await exchange_code_for_tokens(
                site,
                result.code,
                attempt.pkce.code_verifier,
                attempt.redirect_uri,
                client.client_id,
                http_client=self.context.http,
            )
        finally:
            server.stop()

        tokens = tokens.model_copy(update={"client_id": client.client_id})
        storage.token_storage().save_tokens(site, tokens)
        self.context.forget_refresher(site)
        logger.debug("Stored tokens for %s in %s", site, storage.token_storage().storage_location)
        return tokens

    async def perform_logout(self, site: Optional[str] = None, delete_client: bool = False) -> LogoutResult:
        """Revoke (best-effort) and delete the local tokens of *site*.

        Revocation failures are logged and never stop local cleanup. The
        remote client registration is never deregistered; ``delete_client``
        only forgets the local record.
        """
        site = site or self.context.site
        token_storage = self.context.storage.token_storage()
        registrar = self.context.registrar
        tokens = token_storage.get_tokens(site)

        result = LogoutResult(site=site, had_tokens=tokens is not None)
        if tokens is not None:
            stored_client = registrar.get_stored_client_credentials(site)
            client_id = tokens.client_id or (stored_client.client_id if stored_client else None)
            output.info("Revoking tokens...")
            result.revoked = await self._revoke_all(site, tokens, client_id)
            if not result.revoked:
                output.info(
                    "Token revocation may not have completed, but local tokens will be deleted."
                )
            token_storage.delete_tokens(site)
            output.info("Local tokens deleted.")
        else:
            output.info(f'No tokens found for site "{site}".')

        if delete_client:
            result.client_deleted = registrar.delete_client_credentials(site)
            if result.client_deleted:
                output.info("Client credentials deleted.")

        self.context.forget_refresher(site)
        return result

    def show_auth_status(self, site: Optional[str] = None) -> AuthStatusReport:
        """Collect what ``ddcli auth status`` displays. No side effects."""
        site = site or self.context.site
        storage = self.context.storage
        token_storage = storage.token_storage()
        client_storage = storage.client_storage()

        tokens = token_storage.get_tokens(site)
        scope_count = len(tokens.scope.split()) if tokens and tokens.scope else 0

        return AuthStatusReport(
            site=site,
            client=client_storage.get_credentials(site),
            client_storage=client_storage.storage_location,
            client_storage_secure=client_storage.is_secure,
            token_status=self.context.refresher(site).get_status(),
            token_storage=token_storage.storage_location,
            token_storage_secure=token_storage.is_secure,
            scope_count=scope_count,
        )

    async def force_refresh_token(self, site: Optional[str] = None) -> OAuthTokens:
        """Refresh the access token now, regardless of its expiry.

        Raises:
            NoClientIdError: Neither the tokens nor the client store know a
                client id.
            NoTokensError: Nothing is stored for the site.
            RefreshTokenExpiredError: The refresh token was rejected.
        """
        site = site or self.context.site
        tokens = self.context.storage.token_storage().get_tokens(site)
        stored_client = self.context.registrar.get_stored_client_credentials(site)
        client_id = (tokens.client_id if tokens else None) or (
            stored_client.client_id if stored_client else None
        )
        if not client_id:
            raise NoClientIdError(site)

        output.info("Refreshing access token...")
        return await self.context.refresher(site).force_refresh()

    def migrate(self, dry_run: bool = False) -> MigrationResult:
        """Move legacy file tokens into the keychain on demand."""
        return migrate_tokens_to_keychain(self.context.storage, dry_run=dry_run)

    async def _launch_browser(self, url: str) -> bool:
        try:
            return bool(await asyncio.to_thread(self._open_browser, url))
        except webbrowser.Error as exc:
            logger.debug("Browser launch failed: %s", exc)
            return False

    async def _revoke_all(self, site: str, tokens: OAuthTokens, client_id: Optional[str]) -> bool:
        revoked = True
        pairs = [(tokens.refresh_token, "refresh_token"), (tokens.access_token, "access_token")]
        for token, hint in pairs:
            if not token:
                continue
            try:
                await revoke_token(
                    site,
                    token,
                    token_type_hint=hint,
                    client_id=client_id,
                    http_client=self.context.http,
                )
            except TokenExchangeError as exc:
                logger.info("Revoking %s for %s failed: %s", hint, site, exc)
                revoked = False
        return revoked
