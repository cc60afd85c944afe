from __future__ import annotations

import asyncio
import getpass
import shutil
import time

import pytest

from bazzeye.errors import (
    CommandFailed,
    EscalationMisconfigured,
    NotAuthenticated,
    NotElevated,
    TimedOut,
)
from bazzeye.privilege import Identity, PrivilegeEscalator, render_command

from conftest import SESSION_TTL


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def elevated(sessions):
    sessions.request_elevate("c1")
    return "c1"


def test_root_mode_refuses_unelevated_connections(sessions, vault, escalator):
    vault.set_dashboard_password("pw")
    with pytest.raises(NotAuthenticated):
        run(escalator.run_as_root("c1", "echo", "hi"))

    sessions.login("c1", "pw")
    with pytest.raises(NotElevated):
        run(escalator.run_as_root("c1", "echo", "hi"))


def test_root_mode_refuses_commands_outside_allow_list(escalator, elevated):
    with pytest.raises(EscalationMisconfigured) as excinfo:
        run(escalator.run_as_root(elevated, "ls", "/"))
    assert "BAZZEYE_ROOT_COMMANDS" in str(excinfo.value)


def test_root_mode_returns_stdout(escalator, elevated):
    assert run(escalator.run_as_root(elevated, "echo", "hello")) == "hello\n"


def test_shell_metacharacters_stay_literal(escalator, elevated, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    victim = tmp_path / "victim; touch pwned"
    victim.write_text("data")

    run(escalator.run_as_root(elevated, "rm", "-rf", "--", str(victim)))

    assert not victim.exists()
    assert not (tmp_path / "pwned").exists()


def test_owner_mode_targets_the_owner_identity(escalator, tmp_path, monkeypatch):
    log = tmp_path / "sudo-args"
    monkeypatch.setenv("FAKE_SUDO_LOG", str(log))

    output = run(escalator.run_as_owner("echo", "a; id", "$(whoami)"))

    assert output == "a; id $(whoami)\n"
    assert log.read_text().splitlines() == [
        "-n", "-u", escalator.owner, "--", shutil.which("echo"), "a; id", "$(whoami)",
    ]


def test_owner_mode_does_not_need_elevation(sessions, vault, escalator):
    vault.set_dashboard_password("pw")
    assert run(escalator.run_as_owner("echo", "ok")) == "ok\n"


def test_failing_command_is_not_a_configuration_error(escalator, tmp_path):
    with pytest.raises(CommandFailed) as excinfo:
        run(escalator.run_as_owner("ls", str(tmp_path / "missing")))
    assert excinfo.value.returncode != 0
    assert excinfo.value.argv[0] == shutil.which("ls")


def test_sudo_refusal_is_reported_as_misconfiguration(sessions, refusing_sudo, root_commands, elevated):
    escalator = PrivilegeEscalator(sessions, root_commands, owner="nobody", sudo_path=refusing_sudo)
    with pytest.raises(EscalationMisconfigured) as excinfo:
        run(escalator.run_as_root(elevated, "echo", "hi"))
    assert "NOPASSWD" in str(excinfo.value)


def test_missing_escalation_binary_is_misconfiguration(sessions, root_commands, tmp_path, elevated):
    escalator = PrivilegeEscalator(
        sessions, root_commands, owner="nobody", sudo_path=str(tmp_path / "no-sudo")
    )
    with pytest.raises(EscalationMisconfigured):
        run(escalator.run_as_root(elevated, "echo", "hi"))


def test_slow_command_times_out(escalator):
    started = time.monotonic()
    with pytest.raises(TimedOut):
        run(escalator.run_as_owner("sleep", "5", timeout=0.2))
    assert time.monotonic() - started < 4


def test_timeout_terminates_the_command_behind_sudo(sessions, relaying_sudo, root_commands, tmp_path):
    marker = tmp_path / "finished"
    task = tmp_path / "slow-task"
    task.write_text(f"#!/bin/sh\nsleep 1.5\ntouch '{marker}'\n")
    task.chmod(0o755)
    escalator = PrivilegeEscalator(
        sessions, root_commands=root_commands, owner=getpass.getuser(), sudo_path=relaying_sudo
    )

    with pytest.raises(TimedOut):
        run(escalator.run_as_owner(str(task), timeout=0.3))

    time.sleep(2)
    assert not marker.exists()


def test_escalated_call_refreshes_the_session(sessions, vault, escalator, clock):
    vault.set_dashboard_password("pw")
    sessions.login("c1", "pw")
    sessions.request_elevate("c1")

    clock.advance(SESSION_TTL - 5)
    run(escalator.run_as_root("c1", "echo", "hi"))
    clock.advance(SESSION_TTL - 5)

    assert sessions.is_elevated("c1") is True


def test_render_command_quotes_for_logs():
    assert render_command(["rm", "-rf", "--", "a'; rm -rf /"]) == "rm -rf -- 'a'\"'\"'; rm -rf /'"


def test_run_dispatches_on_identity(escalator, elevated, tmp_path, monkeypatch):
    log = tmp_path / "sudo-args"
    monkeypatch.setenv("FAKE_SUDO_LOG", str(log))

    assert run(escalator.run(["echo", "as root"], Identity.ROOT, connection_id=elevated)) == "as root\n"
    assert log.read_text().splitlines()[:2] == ["-n", "--"]

    assert run(escalator.run(["echo", "as owner"], "owner")) == "as owner\n"

    with pytest.raises(ValueError):
        run(escalator.run(["echo"], Identity.ROOT))
    with pytest.raises(ValueError):
        run(escalator.run([], Identity.OWNER))
