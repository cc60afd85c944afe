from __future__ import annotations

import getpass
import shutil

import pytest
from argon2 import PasswordHasher

from bazzeye.auth import CredentialVault, SessionLifecycleManager
from bazzeye.config import DashboardConfig
from bazzeye.privilege import PrivilegeEscalator
from bazzeye.services import Services

# Cheap argon2 parameters so tests do not spend seconds hashing
FAST_HASHER = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)

SESSION_TTL = 60.0

# Stands in for sudo: drops the sudo options and execs the target directly.
# When FAKE_SUDO_LOG is set, the received arguments are written there first.
FAKE_SUDO = """#!/bin/sh
if [ -n "$FAKE_SUDO_LOG" ]; then
  printf '%s\\n' "$@" > "$FAKE_SUDO_LOG"
fi
while [ $# -gt 0 ]; do
  case "$1" in
    -n) shift ;;
    -u) shift 2 ;;
    --) shift; break ;;
    *) break ;;
  esac
done
exec "$@"
"""

REFUSING_SUDO = """#!/bin/sh
echo "sudo: a password is required" >&2
exit 1
"""

# Behaves like real sudo: the command runs as a child and SIGTERM is relayed
# to it, so killing this wrapper with SIGKILL would orphan the command.
RELAYING_SUDO = """#!/bin/sh
while [ $# -gt 0 ]; do
  case "$1" in
    -n) shift ;;
    -u) shift 2 ;;
    --) shift; break ;;
    *) break ;;
  esac
done
"$@" &
child=$!
trap 'kill -TERM "$child" 2>/dev/null' TERM
wait "$child"
status=$?
while kill -0 "$child" 2>/dev/null; do
  wait "$child"
  status=$?
done
exit $status
"""


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _script(path, body):
    path.write_text(body)
    path.chmod(0o755)
    return str(path)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vault_path(tmp_path):
    return tmp_path / "auth.json"


@pytest.fixture
def vault(vault_path):
    return CredentialVault(vault_path, hasher=FAST_HASHER)


@pytest.fixture
def sessions(vault, clock):
    return SessionLifecycleManager(vault, session_ttl=SESSION_TTL, clock=clock)


@pytest.fixture
def fake_sudo(tmp_path):
    return _script(tmp_path / "fake-sudo", FAKE_SUDO)


@pytest.fixture
def refusing_sudo(tmp_path):
    return _script(tmp_path / "refusing-sudo", REFUSING_SUDO)


@pytest.fixture
def relaying_sudo(tmp_path):
    return _script(tmp_path / "relaying-sudo", RELAYING_SUDO)


@pytest.fixture
def root_commands():
    return [shutil.which("rm"), shutil.which("echo")]


@pytest.fixture
def escalator(sessions, fake_sudo, root_commands):
    return PrivilegeEscalator(
        sessions,
        root_commands=root_commands,
        owner=getpass.getuser(),
        sudo_path=fake_sudo,
        timeout=5,
    )


@pytest.fixture
def services(tmp_path, vault, sessions, escalator, fake_sudo, root_commands):
    config = DashboardConfig(
        data_dir=tmp_path,
        owner=escalator.owner,
        sudo_path=fake_sudo,
        root_commands=root_commands,
        session_ttl=SESSION_TTL,
        deployment_config=tmp_path / "bazzeye.conf",
    )
    return Services(config=config, vault=vault, sessions=sessions, escalator=escalator)
