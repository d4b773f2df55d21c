"""A JSON file holding one record per Datadog site.

Both file-backed stores (tokens and registered clients) persist a single
``{site: record}`` object under ``~/.datadog``. Reads are forgiving: a
missing, unreadable, or corrupted file is treated as empty. Writes go
through :func:`~ddcli.config._atomic_write` with ``0o600`` permissions.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ddcli.config import _atomic_write
from ddcli.exceptions import StorageError

logger = logging.getLogger(__name__)


class SiteRecordFile:
    """Read/write the ``{site: record}`` map stored at *path*."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.is_file()

    def read_all(self) -> dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable credential file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring credential file %s: not a JSON object", self.path)
            return {}
        return data

    def write_all(self, records: dict[str, Any]) -> None:
        try:
            _atomic_write(self.path, json.dumps(records, indent=2) + "\n")
        except OSError as exc:
            raise StorageError(
                f"Failed to write {self.path}: {exc}", operation="save"
            ) from exc

    def remove(self) -> bool:
        """Delete the file. Returns False if it did not exist."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(
                f"Failed to delete {self.path}: {exc}", operation="delete_all"
            ) from exc
        return True
