"""Configuration management: environment resolution, storage paths, atomic writes.

This module handles all configuration for the authentication core:

* **Environment** -- :func:`load_settings` reads ``DD_SITE``,
  ``DD_USE_OAUTH``, ``DD_TOKEN_STORAGE``, ``DD_CLIENT_STORAGE``,
  ``DD_API_KEY`` and ``DD_APP_KEY`` into an
  :class:`~ddcli.models.AuthSettings`.
* **Sites** -- :data:`KNOWN_SITES` is the fixed list of Datadog sites. The
  OS keychain cannot enumerate entries by service, so keychain-backed
  stores probe this list to answer "which sites have credentials".
* **Directory layout** -- credentials live under ``~/.datadog/``
  (:func:`get_storage_dir`), created with ``0o700``.
* **Atomic writes** -- :func:`_atomic_write` writes via a temp file and
  ``os.replace`` with ``0o600`` permissions so that secrets are never
  world-readable, even momentarily.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from ddcli.exceptions import ConfigurationError
from ddcli.models import AuthSettings, StorageBackend

logger = logging.getLogger(__name__)

DEFAULT_SITE = "datadoghq.com"

KNOWN_SITES: tuple[str, ...] = (
    "datadoghq.com",
    "us3.datadoghq.com",
    "us5.datadoghq.com",
    "datadoghq.eu",
    "ap1.datadoghq.com",
    "ddog-gov.com",
    "datad0g.com",  # staging
)

SECURE_FILE_MODE = 0o600
SECURE_DIR_MODE = 0o700

_STORAGE_DIR_NAME = ".datadog"
_STORAGE_CHOICES: tuple[StorageBackend, ...] = ("file", "keychain")


# --- Paths ---


def get_storage_dir() -> Path:
    """Return ``~/.datadog``, the directory holding file-backed credentials.

    The directory is not created here; writers create it on demand with
    :data:`SECURE_DIR_MODE`.
    """
    return Path.home() / _STORAGE_DIR_NAME


def ensure_secure_dir(path: Path) -> None:
    """Create *path* with owner-only permissions, tightening an existing one."""
    if not path.is_dir():
        path.mkdir(parents=True, exist_ok=True, mode=SECURE_DIR_MODE)
    try:
        os.chmod(path, SECURE_DIR_MODE)
    except OSError:
        # Some filesystems (e.g. mounted volumes) refuse chmod.
        logger.debug("Could not set permissions on %s", path)


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: int = SECURE_FILE_MODE) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    Permissions are restricted to *mode* before any content is written.
    On any failure the temp file is cleaned up.
    """
    ensure_secure_dir(path.parent)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in the error path
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Site resolution ---


def validate_site(site: str) -> str:
    """Normalise and validate a Datadog site identifier.

    Args:
        site: A bare host suffix such as ``datadoghq.eu``.

    Returns:
        The stripped, lower-cased site.

    Raises:
        ConfigurationError: If the site is empty or looks like a URL or path
            rather than a bare domain.
    """
    normalised = site.strip().lower()
    if not normalised:
        raise ConfigurationError(
            "DD_SITE is empty. Set it to your Datadog site, e.g. "
            f'export DD_SITE="{DEFAULT_SITE}".'
        )
    if "://" in normalised or "/" in normalised or any(c.isspace() for c in normalised):
        raise ConfigurationError(
            f'DD_SITE "{site}" is not a valid site. Use a bare domain such as '
            f'"{DEFAULT_SITE}" or "datadoghq.eu", without scheme or path.'
        )
    if normalised not in KNOWN_SITES:
        logger.warning(
            'DD_SITE "%s" is not a standard Datadog site. Known sites are: %s',
            normalised,
            ", ".join(KNOWN_SITES),
        )
    return normalised


def _parse_storage_override(var_name: str) -> Optional[StorageBackend]:
    """Read a ``file``/``keychain`` override from *var_name*."""
    raw = os.environ.get(var_name, "").strip().lower()
    if not raw:
        return None
    if raw not in _STORAGE_CHOICES:
        raise ConfigurationError(
            f'{var_name}="{raw}" is not a valid storage backend. '
            f"Use one of: {', '.join(_STORAGE_CHOICES)}, or unset it to auto-detect."
        )
    return raw  # type: ignore[return-value]


def _env_flag(var_name: str) -> bool:
    """Return True when *var_name* is set to a truthy value."""
    return os.environ.get(var_name, "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(site: Optional[str] = None) -> AuthSettings:
    """Resolve the effective configuration.

    Precedence for the site (high to low):
        1. The *site* argument (the ``--site`` CLI flag)
        2. ``DD_SITE``
        3. :data:`DEFAULT_SITE`

    Args:
        site: Optional explicit site override.

    Returns:
        The resolved :class:`~ddcli.models.AuthSettings`.

    Raises:
        ConfigurationError: If the site or a storage override is invalid.
    """
    resolved_site = site if site is not None else os.environ.get("DD_SITE", DEFAULT_SITE)

    return AuthSettings(
        site=validate_site(resolved_site),
        use_oauth=_env_flag("DD_USE_OAUTH"),
        token_storage=_parse_storage_override("DD_TOKEN_STORAGE"),
        client_storage=_parse_storage_override("DD_CLIENT_STORAGE"),
        api_key=os.environ.get("DD_API_KEY") or None,
        app_key=os.environ.get("DD_APP_KEY") or None,
        storage_dir=get_storage_dir(),
    )
