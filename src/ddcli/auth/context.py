"""Per-process authentication context.

An :class:`AuthContext` is built once per CLI invocation from the resolved
:class:`~ddcli.models.AuthSettings` and passed to whatever needs storage,
registration, or token refresh. It owns:

* the :class:`~ddcli.auth.storage_factory.StorageFactory` (backend
  selection is probed once and cached there),
* the shared :class:`httpx.AsyncClient`,
* the :class:`~ddcli.auth.dcr.ClientRegistrar`,
* one :class:`~ddcli.auth.refresher.TokenRefresher` per site, so that
  concurrent requests for a site share its single in-flight refresh.

It also decides, for an outgoing API call, whether to authenticate with
OAuth or with the static ``DD_API_KEY``/``DD_APP_KEY`` pair.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

import httpx

from ddcli.auth.dcr import ClientRegistrar
from ddcli.auth.keychain import keychain_available
from ddcli.auth.oauth_client import HTTP_TIMEOUT
from ddcli.auth.refresher import TokenRefresher
from ddcli.auth.storage_factory import StorageFactory
from ddcli.config import load_settings
from ddcli.exceptions import ConfigurationError
from ddcli.models import AuthSettings

logger = logging.getLogger(__name__)


class AuthResult:
    """Headers to inject into an outgoing Datadog API request.

    Args:
        headers: HTTP headers, either ``Authorization: Bearer ...`` or the
            ``DD-API-KEY``/``DD-APPLICATION-KEY`` pair.
        method: ``"oauth"`` or ``"api_key"``.

    Example::

        result = AuthResult(headers={"Authorization": "Bearer tok"}, method="oauth")
        assert result.headers["Authorization"] == "Bearer tok"
    """

    def __init__(self, headers: dict[str, str] | None = None, method: str = "oauth"):
        self.headers = headers or {}
        self.method = method


class AuthContext:
    """Storage, HTTP client, registrar, and refreshers for one process.

    Args:
        settings: Resolved configuration.
        http_client: Shared async client. One is created (and closed by
            :meth:`aclose`) when omitted.
        keychain_probe: Reports whether the OS keychain works.
    """

    def __init__(
        self,
        settings: AuthSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        keychain_probe: Callable[[], bool] = keychain_available,
    ) -> None:
        self.settings = settings
        self.storage = StorageFactory(settings, keychain_probe=keychain_probe)
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self._registrar: Optional[ClientRegistrar] = None
        self._refreshers: dict[str, TokenRefresher] = {}

    @classmethod
    def from_environment(cls, site: Optional[str] = None) -> "AuthContext":
        """Build a context from the ``DD_*`` environment variables."""
        return cls(load_settings(site))

    @property
    def site(self) -> str:
        return self.settings.site

    @property
    def registrar(self) -> ClientRegistrar:
        if self._registrar is None:
            self._registrar = ClientRegistrar(self.storage.client_storage(), self.http)
        return self._registrar

    def refresher(self, site: Optional[str] = None) -> TokenRefresher:
        """The refresher for *site* (default: the configured site)."""
        site = site or self.site
        refresher = self._refreshers.get(site)
        if refresher is None:
            client = self.registrar.get_stored_client_credentials(site)
            refresher = TokenRefresher(
                site,
                self.storage.token_storage(),
                client_id=client.client_id if client else None,
                http_client=self.http,
            )
            self._refreshers[site] = refresher
        return refresher

    def forget_refresher(self, site: str) -> None:
        """Drop the cached refresher, e.g. after logout or a new login."""
        self._refreshers.pop(site, None)

    def should_use_oauth(self, site: Optional[str] = None) -> bool:
        """Decide whether API calls should authenticate with OAuth.

        ``DD_USE_OAUTH=true`` always selects OAuth. Otherwise OAuth is used
        only when no API/application key pair is configured and tokens are
        stored for the site.
        """
        if self.settings.use_oauth:
            return True
        if self.settings.api_key and self.settings.app_key:
            return False
        return self.storage.token_storage().has_valid_tokens(site or self.site)

    async def resolve_auth(self, site: Optional[str] = None) -> AuthResult:
        """Headers for the next API request, refreshing the token if needed.

        Raises:
            ConfigurationError: Neither OAuth tokens nor API keys are available.
            NoTokensError: OAuth was requested but nothing is stored.
            RefreshTokenExpiredError: The stored refresh token was rejected.
        """
        site = site or self.site
        if self.should_use_oauth(site):
            token = await self.refresher(site).get_valid_access_token()
            return AuthResult(headers={"Authorization": f"Bearer {token}"}, method="oauth")

        if self.settings.api_key and self.settings.app_key:
            return AuthResult(
                headers={
                    "DD-API-KEY": self.settings.api_key,
                    "DD-APPLICATION-KEY": self.settings.app_key,
                },
                method="api_key",
            )

        raise ConfigurationError(
            f"No credentials configured for {site}. Set DD_API_KEY and DD_APP_KEY, "
            'or run "ddcli auth login" to use OAuth.'
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> "AuthContext":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
