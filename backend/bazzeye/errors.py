"""
Error taxonomy shared by the auth core, the escalator and the API layer.

Every error carries a stable ``code`` that is sent to clients, so a bad
password can always be told apart from broken infrastructure.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for authentication and credential errors."""

    code = "auth_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return "Authentication error"

    @property
    def message(self) -> str:
        return str(self)


class WrongOldPassword(AuthError):
    """Set-password attempted without the correct current password."""

    code = "wrong_old_password"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid old password"


class InvalidCredential(AuthError):
    """Login or elevation password did not verify."""

    code = "invalid_credential"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid password"


class NotAuthenticated(AuthError):
    code = "not_authenticated"

    @classmethod
    def default_message(cls) -> str:
        return "Dashboard is locked for this connection"


class NotElevated(AuthError):
    code = "not_elevated"

    @classmethod
    def default_message(cls) -> str:
        return "This action requires elevated (sudo) mode"


class PersistenceError(AuthError):
    """The credential record could not be read or written."""

    code = "persistence_failed"

    @classmethod
    def default_message(cls) -> str:
        return "Failed to persist credentials"


class EscalationError(Exception):
    """Base class for privileged command failures."""

    code = "escalation_error"

    @property
    def message(self) -> str:
        return str(self)


class EscalationMisconfigured(EscalationError):
    """The escalation mechanism itself refused the request (deployment problem)."""

    code = "escalation_misconfigured"


class CommandFailed(EscalationError):
    """The target command ran and exited non-zero."""

    code = "command_failed"

    def __init__(self, argv: list[str], returncode: int, stderr: str):
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no output"
        super().__init__(f"{argv[0]} exited with code {returncode}: {detail}")


class TimedOut(EscalationError):
    code = "timed_out"

    def __init__(self, argv: list[str], timeout: float):
        self.argv = argv
        self.timeout = timeout
        super().__init__(f"{argv[0]} timed out after {timeout:g} seconds")
