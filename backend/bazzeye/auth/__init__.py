"""Session authentication and the two password tiers."""

from .manager import ElevationResult, SessionLifecycleManager, SessionStatus, expiry_sweep_loop
from .record import CredentialRecord, LegacyRecord, decode_record, load_record, save_record
from .session import Session, SessionStore
from .vault import CredentialVault, Tier

__all__ = [
    'CredentialRecord',
    'CredentialVault',
    'ElevationResult',
    'LegacyRecord',
    'Session',
    'SessionLifecycleManager',
    'SessionStatus',
    'SessionStore',
    'Tier',
    'decode_record',
    'expiry_sweep_loop',
    'load_record',
    'save_record',
]
