"""Service container built once at startup and handed to every handler."""

from dataclasses import dataclass
from typing import Optional

from .auth import CredentialVault, SessionLifecycleManager, SessionStore
from .auth.session import Clock
from .config import DashboardConfig
from .privilege import PrivilegeEscalator


@dataclass
class Services:
    config: DashboardConfig
    vault: CredentialVault
    sessions: SessionLifecycleManager
    escalator: PrivilegeEscalator


def build_services(config: DashboardConfig, clock: Optional[Clock] = None) -> Services:
    """
    Load the credential vault and wire up the auth core.

    Raises:
        PersistenceError: the credential file exists but cannot be read
    """
    vault = CredentialVault.load(config.credentials_file)
    store = SessionStore(clock=clock) if clock else SessionStore()
    sessions = SessionLifecycleManager(vault, store=store, session_ttl=config.session_ttl)
    escalator = PrivilegeEscalator(
        sessions,
        root_commands=config.root_commands,
        owner=config.owner,
        sudo_path=config.sudo_path,
        timeout=config.escalation_timeout,
    )
    return Services(config=config, vault=vault, sessions=sessions, escalator=escalator)
