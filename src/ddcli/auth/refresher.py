"""Hands out valid access tokens, refreshing them transparently.

The common path reads the stored tokens and returns the access token
without any network call. Inside the refresh buffer (five minutes by
default) the token is refreshed, and concurrent callers share a single
in-flight refresh: one :class:`asyncio.Task` performs the POST and every
caller awaits it, receiving the same tokens or the same exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from ddcli.auth.oauth_client import (
    TOKEN_REFRESH_BUFFER_SECONDS,
    is_token_expired,
    refresh_access_token,
)
from ddcli.auth.token_store import TokenStorage
from ddcli.exceptions import (
    NoClientIdError,
    NoTokensError,
    RefreshTokenExpiredError,
    TokenExchangeError,
)
from ddcli.models import OAuthTokens, TokenStatus

logger = logging.getLogger(__name__)

_EXPIRED_REFRESH_STATUSES = (400, 401)


class TokenRefresher:
    """Token access for one site.

    Args:
        site: The Datadog site.
        storage: The active token store.
        client_id: The registered client id. When omitted the ``client_id``
            stamped on the stored tokens is used.
        http_client: Shared async client for refresh requests.
        buffer_seconds: Refresh this long before the access token expires.
    """

    def __init__(
        self,
        site: str,
        storage: TokenStorage,
        client_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        buffer_seconds: int = TOKEN_REFRESH_BUFFER_SECONDS,
    ) -> None:
        self.site = site
        self._storage = storage
        self._client_id = client_id
        self._http = http_client
        self._buffer = buffer_seconds
        self._inflight: Optional[asyncio.Task[OAuthTokens]] = None

    async def get_valid_access_token(self) -> str:
        """Return an access token that is valid beyond the refresh buffer.

        Raises:
            NoTokensError: Nothing is stored for the site.
            RefreshTokenExpiredError: The refresh token was rejected.
            NoClientIdError: A refresh is needed but no client id is known.
        """
        tokens = self._require_tokens()
        if not is_token_expired(tokens, self._buffer):
            return tokens.access_token
        refreshed = await self._refresh_once()
        return refreshed.access_token

    async def force_refresh(self) -> OAuthTokens:
        """Refresh regardless of expiry and persist the new tokens."""
        self._require_tokens()
        return await self._refresh_once()

    def get_current_tokens(self) -> Optional[OAuthTokens]:
        return self._storage.get_tokens(self.site)

    def has_tokens(self) -> bool:
        return self._storage.get_tokens(self.site) is not None

    def needs_refresh(self) -> bool:
        tokens = self._storage.get_tokens(self.site)
        if tokens is None:
            return False
        return is_token_expired(tokens, self._buffer)

    def get_status(self) -> TokenStatus:
        """Read-only snapshot of the stored tokens."""
        tokens = self._storage.get_tokens(self.site)
        if tokens is None:
            return TokenStatus(has_tokens=False, needs_refresh=False)
        expires_at = tokens.expires_at
        return TokenStatus(
            has_tokens=True,
            needs_refresh=is_token_expired(tokens, self._buffer),
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
            expires_in_seconds=max(0, expires_at - int(time.time())),
        )

    def _require_tokens(self) -> OAuthTokens:
        tokens = self._storage.get_tokens(self.site)
        if tokens is None:
            raise NoTokensError(self.site)
        return tokens

    def _resolve_client_id(self, tokens: OAuthTokens) -> str:
        if self._client_id:
            return self._client_id
        if tokens.client_id:
            return tokens.client_id
        raise NoClientIdError(self.site)

    async def _refresh_once(self) -> OAuthTokens:
        if self._inflight is None:
            task = asyncio.ensure_future(self._perform_refresh())
            task.add_done_callback(self._settle)
            self._inflight = task
        else:
            logger.debug("Joining in-flight token refresh for %s", self.site)
        # A cancelled caller must not cancel the refresh the others await.
        return await asyncio.shield(self._inflight)

    def _settle(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Mark the exception retrieved even if every awaiter was cancelled.
            task.exception()

    async def _perform_refresh(self) -> OAuthTokens:
        tokens = self._require_tokens()
        client_id = self._resolve_client_id(tokens)
        if not tokens.refresh_token:
            raise RefreshTokenExpiredError()

        logger.debug("Refreshing access token for %s", self.site)
        try:
            refreshed = await refresh_access_token(
                self.site, tokens.refresh_token, client_id, http_client=self._http
            )
        except TokenExchangeError as exc:
            if (
                exc.status_code in _EXPIRED_REFRESH_STATUSES
                or exc.error_code == "invalid_grant"
            ):
                raise RefreshTokenExpiredError() from exc
            raise

        refreshed = refreshed.model_copy(update={"client_id": client_id})
        self._storage.save_tokens(self.site, refreshed)
        return refreshed
