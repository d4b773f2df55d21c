"""OAuth2 protocol functions for Datadog sites.

Everything here is stateless: endpoint derivation, the authorization URL,
and the three form-encoded POSTs against the token and revocation endpoints
(authorization-code exchange, refresh, revoke). Persisting or caching the
result is the caller's job (see :mod:`ddcli.auth.refresher` and
:mod:`ddcli.auth.orchestrator`).

The HTTP functions accept an optional :class:`httpx.AsyncClient`. When none
is given a short-lived client is created for the single request.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel

from ddcli.exceptions import InvalidArgumentError, TokenExchangeError
from ddcli.models import OAuthConfig, OAuthTokens, PKCEChallenge

logger = logging.getLogger(__name__)

DEFAULT_OAUTH_SCOPES: tuple[str, ...] = (
    # Dashboards
    "dashboards_read",
    "dashboards_write",
    # Monitors
    "monitors_read",
    "monitors_write",
    "monitors_downtime",
    # APM
    "apm_read",
    # SLOs
    "slos_read",
    "slos_write",
    "slos_corrections",
    # Incidents
    "incident_read",
    "incident_write",
    # Synthetics
    "synthetics_read",
    "synthetics_write",
    "synthetics_global_variable_read",
    "synthetics_global_variable_write",
    "synthetics_private_location_read",
    "synthetics_private_location_write",
    # Security monitoring
    "security_monitoring_signals_read",
    "security_monitoring_rules_read",
    "security_monitoring_findings_read",
    "security_monitoring_suppressions_read",
    "security_monitoring_filters_read",
    # RUM
    "rum_apps_read",
    "rum_apps_write",
    "rum_retention_filters_read",
    "rum_retention_filters_write",
    # Infrastructure and users
    "hosts_read",
    "user_access_read",
    "user_self_profile_read",
    # Cases
    "cases_read",
    "cases_write",
    # Events, logs, metrics
    "events_read",
    "logs_read_data",
    "logs_read_index_data",
    "metrics_read",
    "timeseries_query",
    # Usage
    "usage_read",
)

DEFAULT_OAUTH_TIMEOUT = 300.0
"""Seconds the login flow waits for the browser redirect."""

TOKEN_REFRESH_BUFFER_SECONDS = 300
"""Access tokens are treated as expired this many seconds early."""

HTTP_TIMEOUT = 30.0

_DEFAULT_EXPIRES_IN = 3600


class OAuthEndpoints(BaseModel):
    """The three OAuth endpoints of one Datadog site."""

    authorize_url: str
    token_url: str
    revoke_url: str


def get_oauth_endpoints(site: str) -> OAuthEndpoints:
    """Derive the authorize, token, and revoke URLs for *site*.

    The authorize page is served from the ``app.`` host; the token and
    revocation endpoints from the ``api.`` host.
    """
    return OAuthEndpoints(
        authorize_url=f"https://app.{site}/oauth2/v1/authorize",
        token_url=f"https://api.{site}/oauth2/v1/token",
        revoke_url=f"https://api.{site}/oauth2/v1/revoke",
    )


def build_authorization_url(
    config: OAuthConfig,
    pkce: PKCEChallenge,
    state: str,
    redirect_uri: str,
) -> str:
    """Build the URL the user opens in the browser to approve access.

    Args:
        config: Site, client id, and requested scopes. An empty scope list
            requests :data:`DEFAULT_OAUTH_SCOPES`.
        pkce: The challenge for this attempt.
        state: The CSRF token for this attempt.
        redirect_uri: The loopback URI the callback server listens on.

    Returns:
        The authorization URL with exactly the ``response_type``,
        ``client_id``, ``redirect_uri``, ``scope``, ``state``,
        ``code_challenge`` and ``code_challenge_method`` query parameters.

    Raises:
        InvalidArgumentError: If ``config.client_id`` is empty.
    """
    if not config.client_id:
        raise InvalidArgumentError(
            "Cannot build an authorization URL without a client ID. "
            "Client registration must complete before login."
        )

    scopes = config.scopes or list(DEFAULT_OAUTH_SCOPES)
    params = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": state,
        "code_challenge": pkce.code_challenge,
        "code_challenge_method": pkce.code_challenge_method,
    }
    endpoints = get_oauth_endpoints(config.site)
    return f"{endpoints.authorize_url}?{urlencode(params)}"


async def exchange_code_for_tokens(
    site: str,
    code: str,
    code_verifier: str,
    redirect_uri: str,
    client_id: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> OAuthTokens:
    """Exchange an authorization code for tokens.

    Raises:
        TokenExchangeError: On a non-2xx response, a transport failure, or
            an unparseable body.
    """
    data = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "code": code,
        "redirect_uri": redirect_uri,
        "code_verifier": code_verifier,
    }
    payload = await _post_form(get_oauth_endpoints(site).token_url, data, http_client)
    return _parse_token_response(payload)


async def refresh_access_token(
    site: str,
    refresh_token: str,
    client_id: str,
    http_client: Optional[httpx.AsyncClient] = None,
) -> OAuthTokens:
    """Trade a refresh token for a new token set.

    If the server omits ``refresh_token`` in its response the previous
    refresh token is carried over, since the old one remains valid.
    """
    data = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "refresh_token": refresh_token,
    }
    payload = await _post_form(get_oauth_endpoints(site).token_url, data, http_client)
    tokens = _parse_token_response(payload)
    if tokens.refresh_token is None:
        tokens = tokens.model_copy(update={"refresh_token": refresh_token})
    return tokens


async def revoke_token(
    site: str,
    token: str,
    token_type_hint: Optional[str] = None,
    client_id: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """Revoke *token* at the site's revocation endpoint (:rfc:`7009`).

    Returns:
        ``True`` once the server accepts the request.

    Raises:
        TokenExchangeError: If the server rejects the request or cannot be
            reached. Callers that treat revocation as best-effort should
            catch this.
    """
    data = {"token": token}
    if client_id:
        data["client_id"] = client_id
    if token_type_hint:
        data["token_type_hint"] = token_type_hint

    await _post_form(
        get_oauth_endpoints(site).revoke_url, data, http_client, allow_empty=True
    )
    return True


def is_token_expired(
    tokens: OAuthTokens, buffer_seconds: int = TOKEN_REFRESH_BUFFER_SECONDS
) -> bool:
    """True when ``now >= issued_at + expires_in - buffer_seconds``."""
    return _now() >= tokens.expires_at - buffer_seconds


def _now() -> int:
    return int(time.time())


# --- HTTP plumbing ---


async def _post_form(
    url: str,
    data: dict[str, str],
    http_client: Optional[httpx.AsyncClient],
    allow_empty: bool = False,
) -> dict[str, Any]:
    if http_client is None:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
            return await _send_form(client, url, data, allow_empty)
    return await _send_form(http_client, url, data, allow_empty)


async def _send_form(
    client: httpx.AsyncClient,
    url: str,
    data: dict[str, str],
    allow_empty: bool,
) -> dict[str, Any]:
    logger.debug("POST %s (grant_type=%s)", url, data.get("grant_type", "-"))
    try:
        response = await client.post(
            url,
            data=data,
            headers={"Accept": "application/json"},
            timeout=HTTP_TIMEOUT,
        )
    except httpx.HTTPError as exc:
        raise TokenExchangeError(f"Token request to {url} failed: {exc}") from exc

    body: Any = None
    if response.content:
        try:
            body = response.json()
        except ValueError:
            body = None

    if response.status_code >= 400:
        error_code = body.get("error") if isinstance(body, dict) else None
        error_description = (
            body.get("error_description") if isinstance(body, dict) else None
        )
        message = error_description or error_code or f"HTTP {response.status_code}"
        raise TokenExchangeError(
            f"Token request failed: {message}",
            status_code=response.status_code,
            error_code=error_code,
            error_description=error_description,
        )

    if body is None:
        if allow_empty:
            return {}
        raise TokenExchangeError(
            f"Failed to parse token response: {response.text[:200]!r}"
        )
    if not isinstance(body, dict):
        raise TokenExchangeError("Token response is not a JSON object.")
    return body


def _parse_token_response(payload: dict[str, Any]) -> OAuthTokens:
    access_token = payload.get("access_token")
    if not access_token:
        raise TokenExchangeError("Token response missing 'access_token' field.")

    expires_in = payload.get("expires_in", _DEFAULT_EXPIRES_IN)
    try:
        expires_in = int(expires_in)
    except (TypeError, ValueError) as exc:
        raise TokenExchangeError(
            f"Token response has an invalid 'expires_in': {expires_in!r}"
        ) from exc

    return OAuthTokens(
        access_token=access_token,
        refresh_token=payload.get("refresh_token"),
        token_type=payload.get("token_type") or "Bearer",
        expires_in=expires_in,
        issued_at=_now(),
        scope=payload.get("scope"),
    )
