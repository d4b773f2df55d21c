"""Canonical Pydantic models shared across all ddcli modules.

This is the single source of truth for data shapes in the project. The models
fall into three groups:

**Persisted models** -- serialised as JSON into the OS keychain or the
``~/.datadog`` files, using camelCase keys so that token files written by
earlier releases remain readable:
    :class:`OAuthTokens` and :class:`StoredClientCredentials`.

**Flow models** -- live only for the duration of one login attempt:
    :class:`PKCEChallenge`, :class:`AuthState`, :class:`OAuthConfig`,
    and :class:`CallbackResult`.

**Reporting and configuration models**:
    :class:`TokenStatus`, :class:`TokenExpiration`, :class:`MigrationResult`,
    :class:`LogoutResult`, :class:`AuthStatusReport`, and
    :class:`AuthSettings`.

All models use Pydantic v2.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StorageBackend = Literal["keychain", "file"]
"""The two interchangeable credential storage backends."""


class _CamelModel(BaseModel):
    """Base for models persisted with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_storage_json(self) -> str:
        """Serialise with camelCase keys, omitting unset optional fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_storage_dict(self) -> dict:
        """Return the camelCase ``dict`` written into JSON files."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Flow models ---


class PKCEChallenge(BaseModel):
    """A PKCE verifier/challenge pair (:rfc:`7636`). Never persisted."""

    code_verifier: str = Field(min_length=43, max_length=128)
    code_challenge: str
    code_challenge_method: Literal["S256"] = "S256"


class AuthState(BaseModel):
    """Ephemeral state of one authorization attempt.

    ``state`` is compared against the callback's ``state`` query parameter
    for CSRF protection and must never be reused.
    """

    state: str = Field(pattern=r"^[0-9a-f]{64}$")
    pkce: PKCEChallenge
    redirect_uri: str
    started_at: int


class OAuthConfig(BaseModel):
    """Parameters used to build an authorization URL."""

    site: str
    client_id: str
    scopes: list[str] = Field(default_factory=list)
    timeout_seconds: Optional[float] = None


class CallbackResult(BaseModel):
    """Query parameters captured from the authorization redirect."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None


# --- Persisted models ---


class OAuthTokens(_CamelModel):
    """OAuth token set for one site.

    Expiry is always derived from ``issued_at + expires_in``; no absolute
    expiry timestamp is stored.

    Example::

        tokens = OAuthTokens(
            access_token="at",
            refresh_token="rt",
            token_type="Bearer",
            expires_in=3600,
            issued_at=1700000000,
        )
        assert tokens.expires_at == 1700003600
    """

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int
    issued_at: int
    scope: Optional[str] = None
    client_id: Optional[str] = None

    @property
    def expires_at(self) -> int:
        """Unix timestamp (seconds) at which the access token expires."""
        return self.issued_at + self.expires_in


class StoredClientCredentials(_CamelModel):
    """A client registered through Dynamic Client Registration.

    One record per site. Created on the first successful registration and
    never mutated afterwards.
    """

    client_id: str
    client_name: str
    redirect_uris: list[str] = Field(default_factory=list)
    registered_at: int
    site: str


# --- Reporting models ---


class TokenStatus(BaseModel):
    """Side-effect-free projection of the stored tokens for diagnostics."""

    has_tokens: bool
    needs_refresh: bool
    expires_at: Optional[datetime] = None
    expires_in_seconds: Optional[int] = None


class TokenExpiration(BaseModel):
    """Absolute expiry of a stored access token, ignoring the refresh buffer."""

    expires_at: datetime
    is_expired: bool
    expires_in_seconds: int


class MigrationResult(BaseModel):
    """Outcome of moving legacy file tokens into the OS keychain."""

    attempted: bool
    success: bool
    sites_migrated: int = 0
    sites: list[str] = Field(default_factory=list)
    failed_sites: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    legacy_file_deleted: bool = False


class LogoutResult(BaseModel):
    """What ``ddcli auth logout`` did for one site."""

    site: str
    had_tokens: bool
    revoked: bool = False
    client_deleted: bool = False


class AuthStatusReport(BaseModel):
    """Everything ``ddcli auth status`` displays for one site."""

    site: str
    client: Optional[StoredClientCredentials] = None
    client_storage: str
    client_storage_secure: bool
    token_status: TokenStatus
    token_storage: str
    token_storage_secure: bool
    scope_count: int = 0


# --- Configuration ---


class AuthSettings(BaseModel):
    """Effective configuration, resolved from the environment.

    See :func:`ddcli.config.load_settings` for the variables consulted.
    """

    site: str = "datadoghq.com"
    use_oauth: bool = False
    token_storage: Optional[StorageBackend] = None
    client_storage: Optional[StorageBackend] = None
    api_key: Optional[str] = None
    app_key: Optional[str] = None
    storage_dir: Path = Field(default_factory=lambda: Path.home() / ".datadog")
