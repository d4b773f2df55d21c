"""Selection of the token and client storage backends.

``DD_TOKEN_STORAGE`` and ``DD_CLIENT_STORAGE`` (parsed into
:class:`~ddcli.models.AuthSettings`) force ``file`` or ``keychain``. Without
an override the keychain is preferred and the file backend is the fallback.

The two stores react differently to a forced keychain that is unavailable:
tokens fail with :class:`~ddcli.exceptions.ConfigurationError`, client
records warn and fall back to the file.

Probing the keychain is not free, so the probe result and both selected
stores are cached on the factory until :meth:`StorageFactory.reset`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from ddcli import output
from ddcli.auth.client_store import (
    ClientCredentialStorage,
    FileClientStorage,
    KeychainClientStorage,
)
from ddcli.auth.keychain import keychain_available
from ddcli.auth.token_store import FileTokenStorage, KeychainTokenStorage, TokenStorage
from ddcli.exceptions import ConfigurationError
from ddcli.models import AuthSettings

logger = logging.getLogger(__name__)


class StorageFactory:
    """Builds and caches the storage backends for one process.

    Args:
        settings: Resolved configuration (overrides and storage directory).
        keychain_probe: Callable reporting whether the OS keychain works.
    """

    def __init__(
        self,
        settings: AuthSettings,
        keychain_probe: Callable[[], bool] = keychain_available,
    ) -> None:
        self._settings = settings
        self._probe = keychain_probe
        self._keychain_ok: Optional[bool] = None
        self._token_storage: Optional[TokenStorage] = None
        self._client_storage: Optional[ClientCredentialStorage] = None
        self._fallback_warned = False

    @property
    def storage_dir(self) -> Path:
        return self._settings.storage_dir

    def is_keychain_available(self) -> bool:
        if self._keychain_ok is None:
            self._keychain_ok = self._probe()
            logger.debug("OS keychain available: %s", self._keychain_ok)
        return self._keychain_ok

    def token_storage(self) -> TokenStorage:
        """The active token store.

        Raises:
            ConfigurationError: If ``DD_TOKEN_STORAGE=keychain`` is set but
                no keychain is available.
        """
        if self._token_storage is None:
            self._token_storage = self._select_token_storage()
        return self._token_storage

    def client_storage(self) -> ClientCredentialStorage:
        if self._client_storage is None:
            self._client_storage = self._select_client_storage()
        return self._client_storage

    def file_token_storage(self) -> FileTokenStorage:
        """The file token store, regardless of the active backend."""
        return FileTokenStorage(self.storage_dir)

    def keychain_token_storage(self) -> KeychainTokenStorage:
        return KeychainTokenStorage()

    def reset(self) -> None:
        """Forget the cached probe, the selected stores, and the warning."""
        self._keychain_ok = None
        self._token_storage = None
        self._client_storage = None
        self._fallback_warned = False

    def _select_token_storage(self) -> TokenStorage:
        forced = self._settings.token_storage
        if forced == "file":
            return self.file_token_storage()
        if forced == "keychain":
            if not self.is_keychain_available():
                raise ConfigurationError(
                    "DD_TOKEN_STORAGE=keychain is set but the OS keychain is not "
                    "available. This happens in headless environments, CI/CD, and "
                    "containers. Unset DD_TOKEN_STORAGE or set it to 'file'."
                )
            return self.keychain_token_storage()

        if self.is_keychain_available():
            return self.keychain_token_storage()

        if not self._fallback_warned:
            output.warning(
                "OS keychain not available, falling back to file-based token storage. "
                f"Tokens will be stored in {self.storage_dir / 'oauth_tokens.json'} "
                "with file permissions 0600. "
                "Set DD_TOKEN_STORAGE=file to suppress this warning."
            )
            self._fallback_warned = True
        return self.file_token_storage()

    def _select_client_storage(self) -> ClientCredentialStorage:
        forced = self._settings.client_storage
        if forced == "file":
            return FileClientStorage(self.storage_dir)
        if forced == "keychain" and not self.is_keychain_available():
            output.warning(
                "DD_CLIENT_STORAGE=keychain but the OS keychain is unavailable; "
                "using file storage."
            )
            return FileClientStorage(self.storage_dir)
        if self.is_keychain_available():
            return KeychainClientStorage()
        return FileClientStorage(self.storage_dir)
