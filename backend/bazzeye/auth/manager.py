"""
Session lifecycle - login, elevation, logout and expiry.

Every privileged call site asks this manager whether a connection is
authenticated or elevated before touching the escalator. Expiry is a sliding
window: each successful gate check pushes ``expires_at`` forward by the
session TTL. Sessions past their expiry count as locked even before the
periodic sweep removes them.
"""

import asyncio
import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidCredential, NotAuthenticated, NotElevated, PersistenceError
from ..logging import get_logger
from .session import Clock, Session, SessionStore
from .vault import CredentialVault, Tier

logger = get_logger("auth.sessions")

DEFAULT_SESSION_TTL = 30 * 60


class ElevationResult(str, enum.Enum):
    GRANTED = "granted"
    PASSWORD_REQUIRED = "password_required"


class SessionStatus(BaseModel):
    """What a client needs on connect to decide whether to show a lock screen."""

    model_config = ConfigDict(populate_by_name=True)

    authenticated: bool
    elevated: bool
    dashboard_password_set: bool = Field(alias="dashboardPasswordSet")
    elevation_password_set: bool = Field(alias="elevationPasswordSet")
    elevation_offered: bool = Field(default=False, alias="elevationOffered")


class SessionLifecycleManager:
    """Drives the locked / unlocked / elevated state machine per connection."""

    def __init__(
        self,
        vault: CredentialVault,
        store: Optional[SessionStore] = None,
        session_ttl: float = DEFAULT_SESSION_TTL,
        clock: Optional[Clock] = None,
    ):
        self._vault = vault
        if store is None:
            store = SessionStore(clock=clock) if clock else SessionStore()
        elif clock is not None:
            store.clock = clock
        self._store = store
        self.session_ttl = session_ttl

    @property
    def vault(self) -> CredentialVault:
        return self._vault

    @property
    def store(self) -> SessionStore:
        return self._store

    def _now(self) -> float:
        return self._store.clock()

    def _expiry(self) -> float:
        return self._now() + self.session_ttl

    def _current(self, connection_id: str) -> Session:
        """Fetch the session, resetting it if its expiry has already passed."""
        session = self._store.get(connection_id)
        if session.is_expired(self._now()):
            logger.info(f"Session for {connection_id} expired")
            session.lock()
        return session

    def _unlocked(self, session: Session) -> bool:
        return session.authenticated or not self._vault.dashboard_password_set

    # --- Connection lifecycle ---

    def connect(self, connection_id: str) -> Session:
        session = self._store.get(connection_id)
        logger.debug(f"Connection {connection_id} registered")
        return session

    def disconnect(self, connection_id: str) -> None:
        if self._store.remove(connection_id):
            logger.debug(f"Connection {connection_id} removed")

    # --- Queries ---

    def is_authenticated(self, connection_id: str) -> bool:
        """True if the connection may view the dashboard (always, in open mode)."""
        return self._unlocked(self._current(connection_id))

    def is_elevated(self, connection_id: str) -> bool:
        return self._current(connection_id).elevated

    def status(self, connection_id: str) -> SessionStatus:
        elevated = self.is_elevated(connection_id)
        return SessionStatus(
            authenticated=self.is_authenticated(connection_id),
            elevated=elevated,
            dashboard_password_set=self._vault.dashboard_password_set,
            elevation_password_set=self._vault.elevation_password_set,
            elevation_offered=(
                self._vault.elevation_preference
                and self._vault.elevation_password_set
                and not elevated
            ),
        )

    # --- Gates ---

    def require_authenticated(self, connection_id: str) -> None:
        """
        Gate for dashboard actions.

        Raises:
            NotAuthenticated: the connection is locked
        """
        session = self._current(connection_id)
        if not self._unlocked(session):
            raise NotAuthenticated()
        session.touch(self._expiry())

    def require_elevated(self, connection_id: str) -> None:
        """
        Gate for destructive host actions.

        Raises:
            NotAuthenticated: the connection is locked
            NotElevated: the connection is unlocked but not elevated
        """
        session = self._current(connection_id)
        if not self._unlocked(session):
            raise NotAuthenticated()
        if not session.elevated:
            raise NotElevated()
        session.touch(self._expiry())

    # --- Transitions ---

    def login(self, connection_id: str, password: str) -> None:
        """
        Locked -> unlocked.

        Raises:
            InvalidCredential: wrong dashboard password; state is unchanged
        """
        session = self._current(connection_id)
        if not self._vault.verify_dashboard(password):
            logger.warning(f"Failed dashboard login from {connection_id}")
            raise InvalidCredential()

        if session.authenticated:
            session.touch(self._expiry())
        else:
            session.unlock(self._expiry())
        logger.info(f"Connection {connection_id} unlocked")

    def logout(self, connection_id: str) -> None:
        """Any state -> locked."""
        session = self._current(connection_id)
        session.lock()
        logger.info(f"Connection {connection_id} logged out")

    def request_elevate(self, connection_id: str) -> ElevationResult:
        """
        Ask for elevation. Granted at once if the elevation tier is open.

        Raises:
            NotAuthenticated: the connection is locked
        """
        session = self._current(connection_id)
        if not self._unlocked(session):
            raise NotAuthenticated()

        if session.elevated:
            session.touch(self._expiry())
            return ElevationResult.GRANTED

        if self._vault.elevation_password_set:
            return ElevationResult.PASSWORD_REQUIRED

        logger.warning(f"Elevation tier is open; granting elevation to {connection_id} without a password")
        self._grant(session)
        return ElevationResult.GRANTED

    def verify_elevate(self, connection_id: str, password: str) -> None:
        """
        Unlocked -> elevated, given the elevation password.

        Raises:
            NotAuthenticated: the connection is locked
            InvalidCredential: wrong elevation password; state is unchanged
        """
        session = self._current(connection_id)
        if not self._unlocked(session):
            raise NotAuthenticated()
        if not self._vault.verify_elevation(password):
            logger.warning(f"Failed elevation attempt from {connection_id}")
            raise InvalidCredential()
        self._grant(session)

    def revoke_elevate(self, connection_id: str) -> None:
        """Elevated -> unlocked. Always allowed."""
        session = self._current(connection_id)
        if not session.elevated:
            return
        session.drop_elevation()
        logger.info(f"Elevation revoked for {connection_id}")
        self._remember_preference(False)

    def change_password(
        self,
        connection_id: str,
        tier: Tier,
        new_password: str,
        old_password: Optional[str] = None,
    ) -> None:
        """
        Change the password of one tier on behalf of a connection.

        Protecting an open dashboard keeps the calling connection unlocked;
        every other connection that never logged in is locked from then on.

        Raises:
            NotAuthenticated: the connection is locked
            WrongOldPassword: current password of that tier did not verify
            PersistenceError: the vault could not be written
        """
        tier = Tier(tier)
        self.require_authenticated(connection_id)
        was_open = not self._vault.dashboard_password_set
        self._vault.set_password(tier, new_password, old_password)

        if tier is Tier.DASHBOARD and was_open and self._vault.dashboard_password_set:
            session = self._current(connection_id)
            if not session.authenticated:
                session.unlock(self._expiry())
                logger.info(f"Connection {connection_id} unlocked by protecting the dashboard")

    def _grant(self, session: Session) -> None:
        session.elevate(self._expiry())
        logger.info(f"Connection {session.connection_id} elevated")
        self._remember_preference(True)

    def _remember_preference(self, enabled: bool) -> None:
        try:
            self._vault.set_elevation_preference(enabled)
        except PersistenceError as e:
            logger.warning(f"Could not remember elevation preference: {e}")

    # --- Expiry ---

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop every authenticated session whose expiry has passed. Returns the count."""
        if now is None:
            now = self._now()
        expired = [s.connection_id for s in self._store if s.is_expired(now)]
        for connection_id in expired:
            self._store.remove(connection_id)
        return len(expired)


async def expiry_sweep_loop(
    manager: SessionLifecycleManager,
    interval: float,
    shutdown_event: asyncio.Event,
):
    """Sweep expired sessions every ``interval`` seconds until shutdown."""
    while not shutdown_event.is_set():
        try:
            expired = manager.sweep()
            if expired:
                logger.info(f"Expired {expired} session(s)")
        except Exception:
            logger.exception("Session sweep failed")

        # Wait for the interval, but exit immediately on shutdown
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass
