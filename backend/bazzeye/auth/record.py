"""
Persisted credential record.

The file holds the two password hashes and the remembered elevation
preference. Two shapes exist on disk:

- version 2 (current): ``dashboardPasswordHash``, ``elevationPasswordHash``,
  ``elevationPreference`` plus ``version: 2``
- legacy: ``passwordHash`` and ``sudoEnabled`` from the single-password era

The decoder turns the legacy shape into a distinct variant that upgrades
itself once. There is no downgrade path.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import PersistenceError

SCHEMA_VERSION = 2

TWO_TIER_KEYS = {"dashboardPasswordHash", "elevationPasswordHash", "elevationPreference"}
LEGACY_KEYS = {"passwordHash", "sudoEnabled"}


class CredentialRecord(BaseModel):
    """Two-tier credential record (schema version 2)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: Literal[2] = SCHEMA_VERSION
    dashboard_password_hash: Optional[str] = Field(default=None, alias="dashboardPasswordHash")
    elevation_password_hash: Optional[str] = Field(default=None, alias="elevationPasswordHash")
    elevation_preference: bool = Field(default=False, alias="elevationPreference")


class LegacyRecord(BaseModel):
    """Single shared password record written before the two-tier split."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    password_hash: Optional[str] = Field(default=None, alias="passwordHash")
    sudo_enabled: bool = Field(default=False, alias="sudoEnabled")

    def upgrade(self) -> CredentialRecord:
        """Both tiers start out protected by the old shared password."""
        return CredentialRecord(
            dashboard_password_hash=self.password_hash or None,
            elevation_password_hash=self.password_hash or None,
            elevation_preference=self.sudo_enabled,
        )


def decode_record(document: Any) -> Union[CredentialRecord, LegacyRecord]:
    """
    Recognize which schema a loaded JSON document uses.

    Raises:
        PersistenceError: the document matches neither shape
    """
    if not isinstance(document, dict):
        raise PersistenceError("Credential file is not a JSON object")

    try:
        if "version" in document or document.keys() & TWO_TIER_KEYS:
            return CredentialRecord.model_validate(document)
        if document.keys() & LEGACY_KEYS:
            return LegacyRecord.model_validate(document)
    except ValidationError as e:
        raise PersistenceError(f"Credential file has an unsupported layout: {e.error_count()} invalid field(s)") from e

    if not document:
        return CredentialRecord()

    raise PersistenceError(f"Credential file has unknown fields: {sorted(document)}")


def load_record(path: Path) -> tuple[CredentialRecord, bool]:
    """
    Load the credential record from disk.

    Returns:
        (record, migrated) where ``migrated`` is True when a legacy record was
        upgraded and still needs to be written back in the current format.
        A missing file is an empty record with both tiers open.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return CredentialRecord(), False
    except OSError as e:
        raise PersistenceError(f"Cannot read credential file {path}: {e}") from e

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Credential file {path} is not valid JSON: {e}") from e

    decoded = decode_record(document)
    if isinstance(decoded, LegacyRecord):
        return decoded.upgrade(), True
    return decoded, False


def save_record(path: Path, record: CredentialRecord) -> None:
    """
    Atomically write the record (temp file, fsync, rename), mode 0600.

    Raises:
        PersistenceError: on any I/O failure; the previous file is left intact
    """
    payload = json.dumps(record.model_dump(by_alias=True), indent=2)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            os.fchmod(f.fileno(), 0o600)
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise PersistenceError(f"Failed to save credentials to {path}: {e}") from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
