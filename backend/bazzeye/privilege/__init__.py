"""Running host commands under another OS identity."""

from .escalator import Identity, PrivilegeEscalator, render_command

__all__ = [
    'Identity',
    'PrivilegeEscalator',
    'render_command',
]
