"""Thin wrapper around :mod:`keyring` for one keychain service.

The OS keychain (macOS Keychain, Windows Credential Manager, Secret Service
on Linux) stores one secret per ``(service, account)`` pair. This module
normalises the two outcomes callers care about:

* "not found" is a normal result: ``None`` from :meth:`Keychain.get` and
  ``False`` from :meth:`Keychain.delete`;
* every other keyring failure becomes a :class:`~ddcli.exceptions.StorageError`.

Keychains cannot enumerate entries by service, so stores built on top of
this probe :data:`~ddcli.config.KNOWN_SITES` instead.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import keyring
from keyring.backends import fail
from keyring.errors import KeyringError, PasswordDeleteError

from ddcli.exceptions import StorageError

logger = logging.getLogger(__name__)

_PROBE_SERVICE = "datadog-cli-test"
_PROBE_ACCOUNT = "availability-check"


def keychain_available() -> bool:
    """Return True when a usable OS keychain backend is installed.

    Looks up a non-existent probe entry: a working keychain answers
    ``None``, an unusable one raises.
    """
    backend = keyring.get_keyring()
    if isinstance(backend, fail.Keyring):
        logger.debug("No keyring backend available (%s)", type(backend).__name__)
        return False
    try:
        keyring.get_password(_PROBE_SERVICE, _PROBE_ACCOUNT)
    except (KeyringError, RuntimeError, OSError) as exc:
        logger.debug("Keychain probe failed: %s", exc)
        return False
    return True


def keychain_location() -> str:
    """Human-readable name of the platform keychain."""
    if sys.platform == "darwin":
        return "macOS Keychain"
    if sys.platform == "win32":
        return "Windows Credential Manager"
    return "System Keychain (Secret Service)"


class Keychain:
    """Secrets stored under a single keychain *service* name."""

    def __init__(self, service: str) -> None:
        self.service = service

    def get(self, account: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service, account)
        except KeyringError as exc:
            raise StorageError(
                f'Failed to read "{account}" from the OS keychain: {exc}', operation="get"
            ) from exc

    def set(self, account: str, secret: str) -> None:
        try:
            keyring.set_password(self.service, account, secret)
        except KeyringError as exc:
            raise StorageError(
                f'Failed to save "{account}" to the OS keychain: {exc}', operation="save"
            ) from exc

    def delete(self, account: str) -> bool:
        """Delete *account*. Returns False when no such entry exists."""
        if self.get(account) is None:
            return False
        try:
            keyring.delete_password(self.service, account)
        except PasswordDeleteError:
            return False
        except KeyringError as exc:
            raise StorageError(
                f'Failed to delete "{account}" from the OS keychain: {exc}',
                operation="delete",
            ) from exc
        return True
