"""Dashboard configuration with CLI > env var > /etc/bazzeye.conf > defaults precedence."""

import os
import pwd
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values


DEPLOYMENT_CONFIG_FILE = Path("/etc/bazzeye.conf")
DEFAULT_DATA_DIR = Path.home() / ".bazzeye-data"

DEFAULT_ROOT_COMMANDS = [
    "/usr/bin/systemctl",
    "/usr/bin/rm",
    "/usr/bin/mkdir",
    "/usr/bin/touch",
    "/usr/bin/chown",
    "/usr/bin/rpm-ostree",
    "/usr/sbin/smartctl",
]


def read_deployment_config(path: Path = DEPLOYMENT_CONFIG_FILE) -> dict[str, str]:
    """Settings the installer writes in dotenv syntax. Missing file yields {}."""
    if not path.is_file():
        return {}
    try:
        values = dotenv_values(path, encoding="utf-8")
    except OSError:
        return {}
    # Bare keys without "=" carry no value
    return {key: value for key, value in values.items() if value is not None}


def resolve_owner(configured: Optional[str] = None) -> str:
    """
    Work out the human account that installed the dashboard.

    Order: explicit setting, non-root owner of the working directory,
    SUDO_USER / USER, and finally root.
    """
    if configured:
        return configured

    try:
        uid = Path.cwd().stat().st_uid
        name = pwd.getpwuid(uid).pw_name
        if name and name != "root":
            return name
    except (OSError, KeyError):
        pass

    return os.getenv("SUDO_USER") or os.getenv("USER") or "root"


def resolve_home(owner: str) -> Path:
    """Home directory of ``owner`` from the passwd database."""
    try:
        return Path(pwd.getpwnam(owner).pw_dir)
    except KeyError:
        return Path("/home") / owner


def _split_commands(value: str) -> list[str]:
    return [part.strip() for part in re.split(r"[:,]", value) if part.strip()]


@dataclass
class DashboardConfig:
    """Configuration for the dashboard server."""
    host: str = ""
    port: int = 0
    data_dir: Optional[Path] = None
    log_dir: Optional[Path] = None

    # Session lifetime (sliding window) and sweep period, in seconds
    session_ttl: float = 0
    sweep_interval: float = 0

    # Privilege escalation
    escalation_timeout: float = 0
    sudo_path: str = ""
    root_commands: list[str] = field(default_factory=list)
    owner: str = ""

    deployment_config: Path = DEPLOYMENT_CONFIG_FILE

    def __post_init__(self):
        deployed = read_deployment_config(self.deployment_config)

        # Apply env var defaults before CLI overrides
        if not self.host:
            self.host = os.getenv("BAZZEYE_HOST", "0.0.0.0")
        if not self.port:
            self.port = int(os.getenv("BAZZEYE_PORT") or os.getenv("PORT") or 3000)
        if self.data_dir is None:
            env_dir = os.getenv("BAZZEYE_DATA_DIR")
            self.data_dir = Path(env_dir) if env_dir else DEFAULT_DATA_DIR
        self.data_dir = Path(self.data_dir)
        if self.log_dir is None:
            env_log = os.getenv("BAZZEYE_LOG_DIR")
            self.log_dir = Path(env_log) if env_log else self.data_dir / "logs"

        if not self.session_ttl:
            self.session_ttl = float(os.getenv("BAZZEYE_SESSION_TTL", "1800"))
        if not self.sweep_interval:
            self.sweep_interval = float(os.getenv("BAZZEYE_SWEEP_INTERVAL", "60"))
        if not self.escalation_timeout:
            self.escalation_timeout = float(os.getenv("BAZZEYE_ESCALATION_TIMEOUT", "30"))
        if not self.sudo_path:
            self.sudo_path = os.getenv("BAZZEYE_SUDO", "sudo")

        if not self.root_commands:
            commands = os.getenv("BAZZEYE_ROOT_COMMANDS") or deployed.get("BAZZEYE_ROOT_COMMANDS")
            self.root_commands = _split_commands(commands) if commands else list(DEFAULT_ROOT_COMMANDS)

        if not self.owner:
            self.owner = resolve_owner(os.getenv("BAZZEYE_OWNER") or deployed.get("BAZZEYE_OWNER"))

    @property
    def credentials_file(self) -> Path:
        """Where the two-tier credential record is persisted."""
        return self.data_dir / "auth.json"

    @property
    def owner_home(self) -> Path:
        return resolve_home(self.owner)
