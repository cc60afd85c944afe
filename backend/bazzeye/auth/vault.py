"""
Credential vault - the two password tiers and their persistence.

Dashboard tier: needed to view the dashboard at all.
Elevation tier: needed to run destructive host actions.

A tier without a hash is open: verification succeeds for any input.
"""

import enum
from pathlib import Path
from typing import Optional

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from ..errors import PersistenceError, WrongOldPassword
from ..logging import get_logger
from .record import CredentialRecord, load_record, save_record

logger = get_logger("auth.vault")

# Hash prefixes written by the bcrypt-based single-password releases
BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
# bcrypt only reads this many bytes; older writers truncated silently
BCRYPT_MAX_BYTES = 72


class Tier(str, enum.Enum):
    DASHBOARD = "dashboard"
    ELEVATION = "elevation"

    @property
    def field(self) -> str:
        return f"{self.value}_password_hash"


class CredentialVault:
    """Holds the password hashes in memory and mirrors every change to disk."""

    def __init__(
        self,
        path: Path,
        record: Optional[CredentialRecord] = None,
        hasher: Optional[PasswordHasher] = None,
        migrated: bool = False,
    ):
        self._path = Path(path)
        self._record = record or CredentialRecord()
        self._hasher = hasher or PasswordHasher()
        self._migrated = migrated

    @classmethod
    def load(cls, path: Path, hasher: Optional[PasswordHasher] = None) -> "CredentialVault":
        """Load the vault from ``path``, upgrading a legacy record in memory."""
        record, migrated = load_record(Path(path))
        if migrated:
            logger.info(f"Upgraded legacy single-password record from {path}; it will be rewritten on next save")
        return cls(path, record=record, hasher=hasher, migrated=migrated)

    # --- State ---

    @property
    def path(self) -> Path:
        return self._path

    @property
    def record(self) -> CredentialRecord:
        return self._record

    @property
    def migrated(self) -> bool:
        """True while a legacy record has been upgraded in memory but not yet saved."""
        return self._migrated

    @property
    def dashboard_password_set(self) -> bool:
        return self._record.dashboard_password_hash is not None

    @property
    def elevation_password_set(self) -> bool:
        return self._record.elevation_password_hash is not None

    @property
    def elevation_preference(self) -> bool:
        return self._record.elevation_preference

    def has_password(self, tier: Tier) -> bool:
        return getattr(self._record, tier.field) is not None

    # --- Password changes ---

    def set_dashboard_password(self, new_password: str, old_password: Optional[str] = None) -> None:
        self.set_password(Tier.DASHBOARD, new_password, old_password)

    def set_elevation_password(self, new_password: str, old_password: Optional[str] = None) -> None:
        self.set_password(Tier.ELEVATION, new_password, old_password)

    def set_password(self, tier: Tier, new_password: str, old_password: Optional[str] = None) -> None:
        """
        Replace the password of one tier.

        If the tier already has a password, ``old_password`` must verify
        against it. An empty ``new_password`` removes protection from the tier.

        Raises:
            WrongOldPassword: the current password did not verify
            PersistenceError: the change could not be written; nothing changed
        """
        current = getattr(self._record, tier.field)
        if current is not None and not self._check(current, old_password or ""):
            logger.warning(f"Rejected {tier.value} password change: old password did not verify")
            raise WrongOldPassword()

        new_hash = self._hasher.hash(new_password) if new_password else None
        self._commit(self._record.model_copy(update={tier.field: new_hash}))

        if new_hash is None:
            logger.warning(f"{tier.value.capitalize()} password removed; tier is now open")
        else:
            logger.info(f"{tier.value.capitalize()} password updated")

    def set_elevation_preference(self, enabled: bool) -> None:
        """Remember whether elevation should be offered on the next visit."""
        if self._record.elevation_preference == enabled and not self._migrated:
            return
        self._commit(self._record.model_copy(update={"elevation_preference": enabled}))

    # --- Verification ---

    def verify_dashboard(self, password: str) -> bool:
        return self.verify(Tier.DASHBOARD, password)

    def verify_elevation(self, password: str) -> bool:
        return self.verify(Tier.ELEVATION, password)

    def verify(self, tier: Tier, password: str) -> bool:
        """Check ``password`` against a tier. An open tier accepts anything."""
        stored = getattr(self._record, tier.field)
        if stored is None:
            return True
        if not self._check(stored, password):
            return False

        if self._needs_rehash(stored):
            self._rehash(tier, password)
        return True

    def _check(self, stored: str, password: str) -> bool:
        if stored.startswith(BCRYPT_PREFIXES):
            try:
                return bcrypt.checkpw(password.encode("utf-8")[:BCRYPT_MAX_BYTES], stored.encode("utf-8"))
            except ValueError:
                logger.error("Stored bcrypt hash could not be checked")
                return False
        try:
            return self._hasher.verify(stored, password)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError):
            logger.error("Stored password hash could not be verified")
            return False

    def _needs_rehash(self, stored: str) -> bool:
        if stored.startswith(BCRYPT_PREFIXES):
            return True
        return self._hasher.check_needs_rehash(stored)

    def _rehash(self, tier: Tier, password: str) -> None:
        # Same password, stronger hash: failing to persist leaves the old hash in place
        upgraded = self._record.model_copy(update={tier.field: self._hasher.hash(password)})
        try:
            self._commit(upgraded)
            logger.info(f"Rehashed {tier.value} password with updated parameters")
        except PersistenceError as e:
            logger.warning(f"Could not persist rehashed {tier.value} password: {e}")

    # --- Persistence ---

    def save(self) -> None:
        """Write the current record to disk (also completes a pending migration)."""
        self._commit(self._record)

    def _commit(self, record: CredentialRecord) -> None:
        save_record(self._path, record)
        self._record = record
        if self._migrated:
            logger.info(f"Credential record rewritten in schema version {record.version}")
            self._migrated = False
