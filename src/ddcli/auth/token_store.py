"""Per-site OAuth token persistence.

:class:`TokenStorage` is the interface; there are exactly two
implementations, selected once per process by
:class:`~ddcli.auth.storage_factory.StorageFactory`:

* :class:`KeychainTokenStorage` -- one OS keychain secret per site
  (service ``datadog-cli``, account ``oauth:{site}``) holding the
  JSON-serialised :class:`~ddcli.models.OAuthTokens`.
* :class:`FileTokenStorage` -- ``~/.datadog/oauth_tokens.json``, a JSON
  object keyed by site, written atomically with ``0o600`` permissions.

Records use camelCase keys on both backends so files written by earlier
releases stay readable.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from ddcli.auth.keychain import Keychain, keychain_location
from ddcli.auth.oauth_client import is_token_expired
from ddcli.auth.site_file import SiteRecordFile
from ddcli.config import KNOWN_SITES, get_storage_dir
from ddcli.exceptions import StorageError
from ddcli.models import OAuthTokens, StorageBackend, TokenExpiration

logger = logging.getLogger(__name__)

TOKEN_KEYCHAIN_SERVICE = "datadog-cli"
TOKEN_ACCOUNT_PREFIX = "oauth:"
TOKEN_FILE_NAME = "oauth_tokens.json"


class TokenStorage(ABC):
    """Interface shared by the keychain and file token backends.

    "Not found" is never an error: :meth:`get_tokens` returns ``None`` and
    :meth:`delete_tokens` returns ``False``. Genuine I/O failures raise
    :class:`~ddcli.exceptions.StorageError`.
    """

    @property
    @abstractmethod
    def backend_type(self) -> StorageBackend: ...

    @property
    @abstractmethod
    def storage_location(self) -> str: ...

    @abstractmethod
    def save_tokens(self, site: str, tokens: OAuthTokens) -> None: ...

    @abstractmethod
    def get_tokens(self, site: str) -> Optional[OAuthTokens]: ...

    @abstractmethod
    def delete_tokens(self, site: str) -> bool: ...

    @abstractmethod
    def delete_all_tokens(self) -> None: ...

    @abstractmethod
    def list_sites(self) -> list[str]: ...

    @property
    def is_secure(self) -> bool:
        return self.backend_type == "keychain"

    def has_valid_tokens(self, site: str, include_refreshable: bool = True) -> bool:
        """True if the access token is unexpired, or it can be refreshed.

        With *include_refreshable* the mere presence of a refresh token
        counts; whether the server still honours it is only learned by
        refreshing.
        """
        tokens = self.get_tokens(site)
        if tokens is None:
            return False
        if not is_token_expired(tokens):
            return True
        return include_refreshable and bool(tokens.refresh_token)

    def get_token_expiration(self, site: str) -> Optional[TokenExpiration]:
        """Absolute expiry of the stored access token, or None if no tokens."""
        tokens = self.get_tokens(site)
        if tokens is None:
            return None
        now = int(time.time())
        expires_at = tokens.expires_at
        return TokenExpiration(
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
            is_expired=now >= expires_at,
            expires_in_seconds=max(0, expires_at - now),
        )


class KeychainTokenStorage(TokenStorage):
    """Tokens kept in the OS keychain, one secret per site."""

    def __init__(
        self,
        service: str = TOKEN_KEYCHAIN_SERVICE,
        known_sites: Iterable[str] = KNOWN_SITES,
    ) -> None:
        self._keychain = Keychain(service)
        self._known_sites = tuple(known_sites)

    @property
    def backend_type(self) -> StorageBackend:
        return "keychain"

    @property
    def storage_location(self) -> str:
        return keychain_location()

    def save_tokens(self, site: str, tokens: OAuthTokens) -> None:
        self._keychain.set(_account(site), tokens.to_storage_json())

    def get_tokens(self, site: str) -> Optional[OAuthTokens]:
        secret = self._keychain.get(_account(site))
        if not secret:
            return None
        try:
            return OAuthTokens.model_validate_json(secret)
        except ValidationError:
            logger.warning("Ignoring malformed keychain tokens for site %s", site)
            return None

    def delete_tokens(self, site: str) -> bool:
        return self._keychain.delete(_account(site))

    def delete_all_tokens(self) -> None:
        for site in self._known_sites:
            try:
                self.delete_tokens(site)
            except StorageError as exc:
                logger.warning("Could not delete keychain tokens for %s: %s", site, exc)

    def list_sites(self) -> list[str]:
        sites = []
        for site in self._known_sites:
            try:
                if self.get_tokens(site) is not None:
                    sites.append(site)
            except StorageError as exc:
                logger.debug("Skipping %s while listing keychain tokens: %s", site, exc)
        return sites


class FileTokenStorage(TokenStorage):
    """Tokens kept in ``oauth_tokens.json`` under the storage directory."""

    def __init__(self, storage_dir: Optional[Path] = None) -> None:
        directory = storage_dir if storage_dir is not None else get_storage_dir()
        self._file = SiteRecordFile(directory / TOKEN_FILE_NAME)

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def backend_type(self) -> StorageBackend:
        return "file"

    @property
    def storage_location(self) -> str:
        return str(self._file.path)

    def exists(self) -> bool:
        return self._file.exists()

    def get_all_tokens(self) -> dict[str, OAuthTokens]:
        """Every parseable record in the file, keyed by site."""
        result: dict[str, OAuthTokens] = {}
        for site, record in self._file.read_all().items():
            try:
                result[site] = OAuthTokens.model_validate(record)
            except ValidationError:
                logger.warning("Ignoring malformed tokens for site %s in %s", site, self.path)
        return result

    def save_tokens(self, site: str, tokens: OAuthTokens) -> None:
        records = self._file.read_all()
        records[site] = tokens.to_storage_dict()
        self._file.write_all(records)

    def get_tokens(self, site: str) -> Optional[OAuthTokens]:
        return self.get_all_tokens().get(site)

    def delete_tokens(self, site: str) -> bool:
        records = self._file.read_all()
        if site not in records:
            return False
        del records[site]
        self._file.write_all(records)
        return True

    def delete_all_tokens(self) -> None:
        self._file.remove()

    def list_sites(self) -> list[str]:
        return list(self.get_all_tokens())

    def record_sites(self) -> list[str]:
        """Every site key in the file, including records that fail to parse."""
        return list(self._file.read_all())


def _account(site: str) -> str:
    return f"{TOKEN_ACCOUNT_PREFIX}{site}"
