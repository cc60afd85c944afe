"""
Privilege escalation - run a command as root or as the host owner.

Commands are always argument vectors handed to ``sudo -n`` without a shell,
so a path like ``foo'; rm -rf /`` stays a single literal argument. Root mode
only runs programs on the deployment allow-list and only for elevated
connections.
"""

import asyncio
import enum
import os
import shlex
import shutil
from collections.abc import Sequence
from typing import Optional

from ..auth.manager import SessionLifecycleManager
from ..errors import CommandFailed, EscalationMisconfigured, TimedOut
from ..logging import get_logger

logger = get_logger("privilege")

DEFAULT_TIMEOUT = 30.0
# Seconds a timed-out command gets to exit after SIGTERM before SIGKILL
TERMINATE_GRACE = 5.0

# Diagnostics printed by sudo itself rather than by the target command
SUDO_REFUSALS = (
    "a password is required",
    "a terminal is required",
    "is not in the sudoers file",
    "is not allowed to execute",
    "may not run sudo",
    "unknown user",
    "sorry, you must have a tty",
    "command not found",
)


class Identity(str, enum.Enum):
    ROOT = "root"
    OWNER = "owner"


def render_command(argv: Sequence[str]) -> str:
    """Shell-safe rendering of an argument vector, for logs only."""
    return " ".join(shlex.quote(part) for part in argv)


class PrivilegeEscalator:
    """Runs argument vectors through passwordless sudo."""

    def __init__(
        self,
        sessions: SessionLifecycleManager,
        root_commands: Sequence[str],
        owner: str,
        sudo_path: str = "sudo",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._sessions = sessions
        self._root_commands = frozenset(os.path.normpath(path) for path in root_commands)
        self.owner = owner
        self.sudo_path = sudo_path
        self.timeout = timeout

    @property
    def root_commands(self) -> frozenset[str]:
        return self._root_commands

    def resolve(self, program: str) -> str:
        """Absolute path of ``program``; bare names are looked up on PATH."""
        if os.path.isabs(program):
            return os.path.normpath(program)
        found = shutil.which(program)
        if found is None:
            raise EscalationMisconfigured(
                f"Command '{program}' was not found on PATH; install it or list its absolute path "
                f"in BAZZEYE_ROOT_COMMANDS"
            )
        return os.path.normpath(found)

    async def run(
        self,
        argv: Sequence[str],
        identity: Identity = Identity.ROOT,
        connection_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Run ``argv`` as root (needs ``connection_id``) or as the host owner."""
        if not argv:
            raise ValueError("argv must name a program")
        program, *args = argv
        if Identity(identity) is Identity.ROOT:
            if connection_id is None:
                raise ValueError("root commands need the requesting connection")
            return await self.run_as_root(connection_id, program, *args, timeout=timeout)
        return await self.run_as_owner(program, *args, timeout=timeout)

    async def run_as_root(
        self,
        connection_id: str,
        program: str,
        *args: str,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Run ``program args...`` as root for an elevated connection.

        Raises:
            NotAuthenticated / NotElevated: the connection may not do this
            EscalationMisconfigured: program not allow-listed, or sudo refused
            CommandFailed: the program ran and exited non-zero
            TimedOut: the program exceeded its time bound and was terminated
        """
        self._sessions.require_elevated(connection_id)

        path = self.resolve(program)
        if path not in self._root_commands:
            logger.error(f"Refusing root command outside allow-list: {path}")
            raise EscalationMisconfigured(
                f"'{path}' is not on the root command allow-list. Add it to BAZZEYE_ROOT_COMMANDS "
                f"in /etc/bazzeye.conf and grant it NOPASSWD in sudoers"
            )

        return await self._execute([self.sudo_path, "-n", "--", path, *args], timeout)

    async def run_as_owner(
        self,
        program: str,
        *args: str,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Run ``program args...`` as the host owner so created files belong to them.

        Callers apply their own authorization checks first.
        """
        path = self.resolve(program)
        return await self._execute([self.sudo_path, "-n", "-u", self.owner, "--", path, *args], timeout)

    async def _execute(self, argv: list[str], timeout: Optional[float]) -> str:
        limit = self.timeout if timeout is None else timeout
        command = argv[argv.index("--") + 1:]
        rendered = render_command(argv)
        logger.info(f"Escalating: {rendered}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # sudo ignores signals sent from the command's own process group
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise EscalationMisconfigured(
                f"Escalation program '{argv[0]}' is not installed; set BAZZEYE_SUDO to its path"
            ) from e
        except PermissionError as e:
            raise EscalationMisconfigured(f"Escalation program '{argv[0]}' is not executable") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            await self._terminate(proc, rendered)
            logger.warning(f"Timed out after {limit:g}s: {rendered}")
            raise TimedOut(command, limit)

        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            if self._refused_by_sudo(err):
                logger.error(f"sudo refused: {rendered}: {err.strip()}")
                raise EscalationMisconfigured(
                    f"sudo refused to run {command[0]}: {err.strip()} "
                    f"(ensure this command is allowed NOPASSWD in sudoers for the service account)"
                )
            logger.warning(f"Command failed with exit code {proc.returncode}: {rendered}")
            raise CommandFailed(command, proc.returncode, err)

        return out

    @staticmethod
    def _refused_by_sudo(stderr: str) -> bool:
        for line in stderr.splitlines():
            line = line.strip().lower()
            if line.startswith("sudo:") and any(reason in line for reason in SUDO_REFUSALS):
                return True
        return False

    @staticmethod
    async def _terminate(proc: asyncio.subprocess.Process, rendered: str) -> None:
        # sudo relays SIGTERM to the command it runs; SIGKILL would only end sudo
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE)
        except asyncio.TimeoutError:
            logger.error(f"Command ignored SIGTERM, killing sudo: {rendered}")
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
