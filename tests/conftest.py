"""Shared test fixtures for ddcli.

Every test runs with ``HOME`` pointed at a temporary directory, all
``DD_*`` variables cleared, and a keyring backend that reports "no
keychain", so nothing ever touches the developer's real credentials.
Tests that need a working keychain request :func:`memory_keyring`.
"""

from __future__ import annotations

import socket
import time
from pathlib import Path
from typing import Any, Callable, Optional

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.backends import fail
from keyring.errors import PasswordDeleteError

from ddcli.models import AuthSettings, OAuthTokens, StoredClientCredentials
from ddcli.output import OutputFormat, OutputManager, reset_output, set_output


DD_ENV_VARS = (
    "DD_SITE",
    "DD_USE_OAUTH",
    "DD_TOKEN_STORAGE",
    "DD_CLIENT_STORAGE",
    "DD_API_KEY",
    "DD_APP_KEY",
)


class MemoryKeyring(KeyringBackend):
    """In-memory keyring backend keyed by ``(service, account)``."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        try:
            del self.entries[(service, username)]
        except KeyError:
            raise PasswordDeleteError("Password not found") from None


# ---------------------------------------------------------------------------
# Isolation (autouse)
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches sys.stdout/sys.stderr at creation time; after
    CliRunner swaps those streams the cached references go stale.
    """
    yield
    reset_output()


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ``HOME`` at tmp_path and clear every ``DD_*`` variable.

    Returns:
        The ``~/.datadog`` directory inside the temporary home (not created).
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    for var in DD_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return home / ".datadog"


@pytest.fixture(autouse=True)
def _no_system_keyring() -> None:
    """Default to an unavailable keychain so the real one is never used."""
    previous = keyring.get_keyring()
    keyring.set_keyring(fail.Keyring())
    yield
    keyring.set_keyring(previous)


# ---------------------------------------------------------------------------
# Keychain
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    """Install a working in-memory keychain for the duration of the test."""
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    return backend


# ---------------------------------------------------------------------------
# Settings and models
# ---------------------------------------------------------------------------


@pytest.fixture
def storage_dir(isolated_home: Path) -> Path:
    return isolated_home


@pytest.fixture
def settings(storage_dir: Path) -> AuthSettings:
    """Default settings with file storage under the temporary home."""
    return AuthSettings(site="datadoghq.com", storage_dir=storage_dir)


@pytest.fixture
def make_tokens() -> Callable[..., OAuthTokens]:
    """Factory for OAuthTokens issued now and valid for an hour."""

    def _make(**overrides: Any) -> OAuthTokens:
        values: dict[str, Any] = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "issued_at": int(time.time()),
            "scope": "dashboards_read monitors_read",
            "client_id": "client-abc",
        }
        values.update(overrides)
        return OAuthTokens(**values)

    return _make


@pytest.fixture
def make_client() -> Callable[..., StoredClientCredentials]:
    def _make(site: str = "datadoghq.com", **overrides: Any) -> StoredClientCredentials:
        values: dict[str, Any] = {
            "client_id": "client-abc123456",
            "client_name": "datadog-api-claude-plugin",
            "redirect_uris": ["http://127.0.0.1:8000/oauth/callback"],
            "registered_at": 1700000000,
            "site": site,
        }
        values.update(overrides)
        return StoredClientCredentials(**values)

    return _make


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


@pytest.fixture
def free_port() -> int:
    """A TCP port on 127.0.0.1 that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a quiet PLAIN-format OutputManager."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
