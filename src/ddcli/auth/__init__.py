"""OAuth2 authentication core for ddcli.

The package is layered bottom-up:

- :mod:`~ddcli.auth.pkce` and :mod:`~ddcli.auth.oauth_client` -- PKCE,
  state, endpoints, and the token/refresh/revoke requests.
- :mod:`~ddcli.auth.token_store`, :mod:`~ddcli.auth.client_store` --
  keychain and file persistence, selected by
  :mod:`~ddcli.auth.storage_factory`; :mod:`~ddcli.auth.migration` moves
  legacy file tokens into the keychain.
- :mod:`~ddcli.auth.dcr` -- Dynamic Client Registration.
- :mod:`~ddcli.auth.callback_server` -- the loopback redirect receiver.
- :mod:`~ddcli.auth.refresher` -- valid access tokens with single-flight
  refresh.
- :mod:`~ddcli.auth.context` and :mod:`~ddcli.auth.orchestrator` -- the
  per-process context and the login/logout/status/refresh flows.

Typical usage::

    from ddcli.auth import AuthContext

    async with AuthContext.from_environment() as context:
        auth = await context.resolve_auth()
        # auth.headers is ready to inject into an API request.
"""

from ddcli.auth.context import AuthContext, AuthResult
from ddcli.auth.orchestrator import AuthOrchestrator
from ddcli.auth.refresher import TokenRefresher
from ddcli.auth.storage_factory import StorageFactory

__all__ = [
    "AuthContext",
    "AuthOrchestrator",
    "AuthResult",
    "StorageFactory",
    "TokenRefresher",
]
