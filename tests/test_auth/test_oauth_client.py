"""Tests for the OAuth protocol functions."""

from __future__ import annotations

import asyncio
from typing import Any, Callable
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from ddcli.auth import oauth_client
from ddcli.auth.oauth_client import (
    DEFAULT_OAUTH_SCOPES,
    build_authorization_url,
    exchange_code_for_tokens,
    get_oauth_endpoints,
    is_token_expired,
    refresh_access_token,
    revoke_token,
)
from ddcli.auth.pkce import generate_pkce_challenge
from ddcli.config import KNOWN_SITES
from ddcli.exceptions import InvalidArgumentError, TokenExchangeError
from ddcli.models import OAuthConfig, OAuthTokens

Handler = Callable[[httpx.Request], httpx.Response]


def _call(handler: Handler, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run an async protocol function against a mock transport."""

    async def _main() -> Any:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await func(*args, http_client=client, **kwargs)

    return asyncio.run(_main())


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestEndpoints:
    @pytest.mark.parametrize("site", KNOWN_SITES)
    def test_known_sites(self, site: str) -> None:
        endpoints = get_oauth_endpoints(site)
        assert endpoints.authorize_url == f"https://app.{site}/oauth2/v1/authorize"
        assert endpoints.token_url == f"https://api.{site}/oauth2/v1/token"
        assert endpoints.revoke_url == f"https://api.{site}/oauth2/v1/revoke"


class TestBuildAuthorizationUrl:
    def _build(self, scopes: list[str]) -> tuple[str, dict[str, list[str]]]:
        pkce = generate_pkce_challenge()
        url = build_authorization_url(
            OAuthConfig(site="datadoghq.eu", client_id="cid", scopes=scopes),
            pkce,
            "state-1",
            "http://127.0.0.1:8000/oauth/callback",
        )
        return url, parse_qs(urlparse(url).query)

    def test_exact_parameters(self) -> None:
        url, params = self._build(["metrics_read"])
        assert url.startswith("https://app.datadoghq.eu/oauth2/v1/authorize?")
        assert set(params) == {
            "response_type",
            "client_id",
            "redirect_uri",
            "scope",
            "state",
            "code_challenge",
            "code_challenge_method",
        }
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["cid"]
        assert params["redirect_uri"] == ["http://127.0.0.1:8000/oauth/callback"]
        assert params["state"] == ["state-1"]
        assert params["code_challenge_method"] == ["S256"]
        assert params["scope"] == ["metrics_read"]

    def test_scopes_space_joined(self) -> None:
        _, params = self._build(["a_read", "b_write"])
        assert params["scope"] == ["a_read b_write"]

    def test_empty_scopes_use_defaults(self) -> None:
        _, params = self._build([])
        assert params["scope"][0].split(" ") == list(DEFAULT_OAUTH_SCOPES)

    def test_empty_client_id_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            build_authorization_url(
                OAuthConfig(site="datadoghq.com", client_id=""),
                generate_pkce_challenge(),
                "s",
                "http://127.0.0.1:8000/oauth/callback",
            )


class TestIsTokenExpired:
    NOW = 1_700_000_000

    @pytest.fixture(autouse=True)
    def _freeze(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(oauth_client, "_now", lambda: self.NOW)

    def _tokens(self, issued_at: int, expires_in: int = 3600) -> OAuthTokens:
        return OAuthTokens(access_token="a", expires_in=expires_in, issued_at=issued_at)

    def test_inside_buffer_is_expired(self) -> None:
        assert is_token_expired(self._tokens(self.NOW - 3400), 300) is True

    def test_fresh_token_not_expired(self) -> None:
        assert is_token_expired(self._tokens(self.NOW), 300) is False

    def test_exact_boundary_is_expired(self) -> None:
        # now == issued_at + expires_in - buffer
        assert is_token_expired(self._tokens(self.NOW - 3300), 300) is True

    def test_one_second_before_boundary(self) -> None:
        assert is_token_expired(self._tokens(self.NOW - 3299), 300) is False

    def test_default_buffer_is_five_minutes(self) -> None:
        assert is_token_expired(self._tokens(self.NOW - 3300)) is True


class TestExchangeCode:
    def test_posts_form_and_parses_tokens(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "access_token": "at",
                    "refresh_token": "rt",
                    "token_type": "Bearer",
                    "expires_in": 3600,
                    "scope": "metrics_read",
                },
            )

        tokens = _call(
            handler,
            exchange_code_for_tokens,
            "datadoghq.com",
            "the-code",
            "verifier",
            "http://127.0.0.1:8080/oauth/callback",
            "cid",
        )

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://api.datadoghq.com/oauth2/v1/token"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert request.headers["accept"] == "application/json"
        assert _form(request) == {
            "grant_type": "authorization_code",
            "client_id": "cid",
            "code": "the-code",
            "redirect_uri": "http://127.0.0.1:8080/oauth/callback",
            "code_verifier": "verifier",
        }
        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"
        assert tokens.expires_in == 3600
        assert tokens.scope == "metrics_read"
        assert tokens.issued_at > 0

    def test_error_response_carries_server_fields(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"error": "invalid_grant", "error_description": "code expired"}
            )

        with pytest.raises(TokenExchangeError) as excinfo:
            _call(handler, exchange_code_for_tokens, "datadoghq.com", "c", "v", "r", "cid")

        assert excinfo.value.status_code == 400
        assert excinfo.value.error_code == "invalid_grant"
        assert excinfo.value.error_description == "code expired"
        assert "code expired" in str(excinfo.value)

    def test_unparseable_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(TokenExchangeError) as excinfo:
            _call(handler, exchange_code_for_tokens, "datadoghq.com", "c", "v", "r", "cid")
        assert excinfo.value.status_code is None

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TokenExchangeError) as excinfo:
            _call(handler, exchange_code_for_tokens, "datadoghq.com", "c", "v", "r", "cid")
        assert excinfo.value.status_code is None

    def test_missing_access_token(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"token_type": "Bearer"})

        with pytest.raises(TokenExchangeError, match="access_token"):
            _call(handler, exchange_code_for_tokens, "datadoghq.com", "c", "v", "r", "cid")


class TestRefresh:
    def test_refresh_request(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"access_token": "new-at", "refresh_token": "new-rt", "expires_in": 60}
            )

        tokens = _call(handler, refresh_access_token, "datadoghq.eu", "old-rt", "cid")

        assert str(seen[0].url) == "https://api.datadoghq.eu/oauth2/v1/token"
        assert _form(seen[0]) == {
            "grant_type": "refresh_token",
            "client_id": "cid",
            "refresh_token": "old-rt",
        }
        assert tokens.access_token == "new-at"
        assert tokens.refresh_token == "new-rt"

    def test_keeps_previous_refresh_token_when_omitted(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "new-at", "expires_in": 60})

        tokens = _call(handler, refresh_access_token, "datadoghq.com", "old-rt", "cid")
        assert tokens.refresh_token == "old-rt"


class TestRevoke:
    def test_revoke_request(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        assert _call(handler, revoke_token, "datadoghq.com", "tok", "refresh_token", "cid") is True
        assert str(seen[0].url) == "https://api.datadoghq.com/oauth2/v1/revoke"
        assert _form(seen[0]) == {
            "token": "tok",
            "client_id": "cid",
            "token_type_hint": "refresh_token",
        }

    def test_optional_fields_omitted(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        _call(handler, revoke_token, "datadoghq.com", "tok")
        assert _form(seen[0]) == {"token": "tok"}

    def test_revoke_failure_surfaces(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "temporarily_unavailable"})

        with pytest.raises(TokenExchangeError) as excinfo:
            _call(handler, revoke_token, "datadoghq.com", "tok")
        assert excinfo.value.status_code == 503
