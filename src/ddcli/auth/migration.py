"""Migration of legacy file-backed tokens into the OS keychain.

Earlier releases kept every token in ``~/.datadog/oauth_tokens.json``. When
the keychain is the active token backend and that file still exists, each
site's tokens are copied into the keychain and read back to verify them.
The file is deleted only when every site verified; otherwise it stays in
place and the sites that failed are reported, so no token is lost.
"""

from __future__ import annotations

import logging
from typing import Optional

from ddcli.auth.storage_factory import StorageFactory
from ddcli.exceptions import StorageError
from ddcli.models import MigrationResult

logger = logging.getLogger(__name__)


def has_legacy_token_file(factory: StorageFactory) -> bool:
    return factory.file_token_storage().exists()


def migrate_tokens_to_keychain(
    factory: StorageFactory, dry_run: bool = False
) -> MigrationResult:
    """Copy every legacy file token into the keychain.

    Args:
        factory: Supplies the legacy file store, the keychain store, and
            keychain availability.
        dry_run: Report the sites that would migrate without writing.

    Returns:
        A :class:`~ddcli.models.MigrationResult`. ``success`` is True only
        when every site verified; ``legacy_file_deleted`` is never True
        otherwise.
    """
    if not factory.is_keychain_available():
        return MigrationResult(
            attempted=False, success=False, error="OS keychain is not available"
        )

    legacy = factory.file_token_storage()
    if not legacy.exists():
        return MigrationResult(attempted=False, success=True)

    all_sites = legacy.record_sites()
    tokens_by_site = legacy.get_all_tokens()
    if not all_sites:
        return MigrationResult(attempted=True, success=True)

    logger.info(
        "Found %d site(s) with tokens to migrate: %s", len(all_sites), ", ".join(all_sites)
    )

    if dry_run:
        return MigrationResult(
            attempted=False,
            success=True,
            sites_migrated=len(tokens_by_site),
            sites=list(tokens_by_site),
            failed_sites=[s for s in all_sites if s not in tokens_by_site],
        )

    keychain = factory.keychain_token_storage()
    migrated: list[str] = []
    failed: list[str] = []
    errors: list[str] = []

    for site in all_sites:
        tokens = tokens_by_site.get(site)
        if tokens is None:
            failed.append(site)
            errors.append(f"Unreadable tokens for {site}")
            continue
        try:
            keychain.save_tokens(site, tokens)
            stored = keychain.get_tokens(site)
        except StorageError as exc:
            failed.append(site)
            errors.append(f"Failed to migrate {site}: {exc}")
            continue
        if stored is None or stored.access_token != tokens.access_token:
            failed.append(site)
            errors.append(f"Verification failed for {site}")
            continue
        migrated.append(site)
        logger.info("Migrated tokens for %s", site)

    success = not failed
    legacy_deleted = False
    if success:
        try:
            legacy.delete_all_tokens()
            legacy_deleted = not legacy.exists()
        except StorageError as exc:
            logger.warning("Tokens migrated but the legacy file could not be deleted: %s", exc)

    return MigrationResult(
        attempted=True,
        success=success,
        sites_migrated=len(migrated),
        sites=migrated,
        failed_sites=failed,
        error="; ".join(errors) if errors else None,
        legacy_file_deleted=legacy_deleted,
    )


def perform_migration_if_needed(factory: StorageFactory) -> Optional[str]:
    """Migrate when the keychain is the active backend and a legacy file exists.

    Returns:
        A user-facing message describing what happened, or ``None`` when
        there was nothing to do.
    """
    if factory.token_storage().backend_type != "keychain":
        return None
    if not has_legacy_token_file(factory):
        return None

    result = migrate_tokens_to_keychain(factory)
    if not result.attempted:
        return None

    if result.success and result.sites_migrated > 0:
        location = factory.keychain_token_storage().storage_location
        return (
            f"Migrated {result.sites_migrated} OAuth token(s) to {location}. "
            "Your tokens are now stored securely in the OS keychain."
        )
    if result.error:
        return (
            f"Failed to migrate some tokens to the keychain: {result.error}. "
            "Tokens will continue to be stored in the legacy file."
        )
    return None
