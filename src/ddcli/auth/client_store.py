"""Persistence of Dynamic Client Registration results.

Mirrors :mod:`ddcli.auth.token_store`: one
:class:`~ddcli.models.StoredClientCredentials` record per site, kept either
in the OS keychain (service ``datadog-cli-dcr``, account ``client:{site}``)
or in ``~/.datadog/oauth_clients.json``. A record is written once after a
successful registration and only removed by ``ddcli auth logout
--delete-client``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from ddcli.auth.keychain import Keychain, keychain_location
from ddcli.auth.site_file import SiteRecordFile
from ddcli.config import KNOWN_SITES, get_storage_dir
from ddcli.exceptions import StorageError
from ddcli.models import StorageBackend, StoredClientCredentials

logger = logging.getLogger(__name__)

CLIENT_KEYCHAIN_SERVICE = "datadog-cli-dcr"
CLIENT_ACCOUNT_PREFIX = "client:"
CLIENT_FILE_NAME = "oauth_clients.json"


class ClientCredentialStorage(ABC):
    """Interface shared by the keychain and file client stores."""

    @property
    @abstractmethod
    def backend_type(self) -> StorageBackend: ...

    @property
    @abstractmethod
    def storage_location(self) -> str: ...

    @abstractmethod
    def save_credentials(self, site: str, credentials: StoredClientCredentials) -> None: ...

    @abstractmethod
    def get_credentials(self, site: str) -> Optional[StoredClientCredentials]: ...

    @abstractmethod
    def delete_credentials(self, site: str) -> bool: ...

    @abstractmethod
    def list_sites(self) -> list[str]: ...

    @property
    def is_secure(self) -> bool:
        return self.backend_type == "keychain"


class KeychainClientStorage(ClientCredentialStorage):
    def __init__(
        self,
        service: str = CLIENT_KEYCHAIN_SERVICE,
        known_sites: Iterable[str] = KNOWN_SITES,
    ) -> None:
        self._keychain = Keychain(service)
        self._known_sites = tuple(known_sites)

    @property
    def backend_type(self) -> StorageBackend:
        return "keychain"

    @property
    def storage_location(self) -> str:
        return f"{keychain_location()} ({self._keychain.service})"

    def save_credentials(self, site: str, credentials: StoredClientCredentials) -> None:
        self._keychain.set(_account(site), credentials.to_storage_json())

    def get_credentials(self, site: str) -> Optional[StoredClientCredentials]:
        secret = self._keychain.get(_account(site))
        if not secret:
            return None
        try:
            return StoredClientCredentials.model_validate_json(secret)
        except ValidationError:
            logger.warning("Ignoring malformed keychain client record for site %s", site)
            return None

    def delete_credentials(self, site: str) -> bool:
        return self._keychain.delete(_account(site))

    def list_sites(self) -> list[str]:
        sites = []
        for site in self._known_sites:
            try:
                if self.get_credentials(site) is not None:
                    sites.append(site)
            except StorageError as exc:
                logger.debug("Skipping %s while listing keychain clients: %s", site, exc)
        return sites


class FileClientStorage(ClientCredentialStorage):
    def __init__(self, storage_dir: Optional[Path] = None) -> None:
        directory = storage_dir if storage_dir is not None else get_storage_dir()
        self._file = SiteRecordFile(directory / CLIENT_FILE_NAME)

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def backend_type(self) -> StorageBackend:
        return "file"

    @property
    def storage_location(self) -> str:
        return str(self._file.path)

    def save_credentials(self, site: str, credentials: StoredClientCredentials) -> None:
        records = self._file.read_all()
        records[site] = credentials.to_storage_dict()
        self._file.write_all(records)

    def get_credentials(self, site: str) -> Optional[StoredClientCredentials]:
        record = self._file.read_all().get(site)
        if record is None:
            return None
        try:
            return StoredClientCredentials.model_validate(record)
        except ValidationError:
            logger.warning("Ignoring malformed client record for site %s in %s", site, self.path)
            return None

    def delete_credentials(self, site: str) -> bool:
        records = self._file.read_all()
        if site not in records:
            return False
        del records[site]
        self._file.write_all(records)
        return True

    def list_sites(self) -> list[str]:
        return list(self._file.read_all())


def _account(site: str) -> str:
    return f"{CLIENT_ACCOUNT_PREFIX}{site}"
