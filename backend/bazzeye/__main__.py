"""Entry point for the Bazzeye dashboard server.

Usage:
    python -m bazzeye [options]

Options:
    --host HOST                 Bind address (default: BAZZEYE_HOST or 0.0.0.0)
    --port PORT                 Listen port (default: BAZZEYE_PORT or 3000)
    --data-dir DIR              Credential/data directory (default: ~/.bazzeye-data)
    --session-ttl SECS          Idle lifetime of an unlocked session (default: 1800)
    --sweep-interval SECS       How often expired sessions are dropped (default: 60)
    --escalation-timeout SECS   Time bound for privileged commands (default: 30)
    --owner USER                Host owner for files created through the dashboard
"""

import argparse
import sys
from pathlib import Path

import uvicorn

from .config import DashboardConfig
from .errors import PersistenceError
from .logging import get_logger, setup_logging
from .main import create_app
from .services import build_services

logger = get_logger("main")


def parse_args() -> DashboardConfig:
    parser = argparse.ArgumentParser(description="Bazzeye host dashboard")
    parser.add_argument("--host", default="", help="Bind address")
    parser.add_argument("--port", type=int, default=0, help="Listen port")
    parser.add_argument("--data-dir", default=None, help="Credential/data directory")
    parser.add_argument("--session-ttl", type=float, default=0, help="Session idle lifetime (seconds)")
    parser.add_argument("--sweep-interval", type=float, default=0, help="Expiry sweep period (seconds)")
    parser.add_argument(
        "--escalation-timeout", type=float, default=0, help="Privileged command timeout (seconds)"
    )
    parser.add_argument("--owner", default="", help="Host owner account")

    args = parser.parse_args()

    return DashboardConfig(
        host=args.host,
        port=args.port,
        data_dir=Path(args.data_dir) if args.data_dir else None,
        session_ttl=args.session_ttl,
        sweep_interval=args.sweep_interval,
        escalation_timeout=args.escalation_timeout,
        owner=args.owner,
    )


def main():
    config = parse_args()
    setup_logging(config.log_dir)

    logger.info("Bazzeye starting")
    logger.info(f"  Data dir:   {config.data_dir}")
    logger.info(f"  Owner:      {config.owner} ({config.owner_home})")
    logger.info(f"  Session:    {config.session_ttl:g}s idle, sweep every {config.sweep_interval:g}s")
    logger.info(f"  Root cmds:  {', '.join(config.root_commands)}")

    try:
        services = build_services(config)
    except PersistenceError as e:
        logger.critical(f"Cannot load credentials: {e}")
        sys.exit(1)

    app = create_app(services=services)
    try:
        uvicorn.run(app, host=config.host, port=config.port, log_level="warning")
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
