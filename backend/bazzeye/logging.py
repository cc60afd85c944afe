"""
Logging for the Bazzeye backend.

Every component logs through an area logger (``get_logger("auth.vault")``)
that prints ``[BAZZEYE.<area>]`` prefixed lines to the console. After
``setup_logging`` the same records also go to a rotating file in the log
directory, which is what you read after something went wrong on the host.
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAMESPACE = "bazzeye"
LOG_FILENAME = "bazzeye.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5

RESET = "\033[0m"
DIM = "\033[2m"

# Console color per application area; unknown areas print uncolored
AREA_COLORS = {
    "main": "\033[96m",
    "auth": "\033[93m",
    "auth.vault": "\033[33m",
    "auth.sessions": "\033[33m",
    "privilege": "\033[95m",
    "api.auth": "\033[32m",
    "api.host": "\033[32m",
    "websocket": "\033[36m",
}

LEVEL_COLORS = {
    logging.DEBUG: DIM,
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1m\033[91m",
}


def area_of(record: logging.LogRecord) -> str:
    """``bazzeye.auth.vault`` -> ``auth.vault``; foreign loggers keep their name."""
    prefix = LOGGER_NAMESPACE + "."
    if record.name.startswith(prefix):
        return record.name[len(prefix):]
    return "main" if record.name == "root" else record.name


class AreaFormatter(logging.Formatter):
    """
    Formats ``[BAZZEYE.area] time LEVEL message``.

    Console output uses a short clock time and, when ``colored``, ANSI colors.
    File output uses full timestamps and appends the ``connection_id`` extra
    when a record carries one.
    """

    def __init__(self, colored: bool = False, full_timestamp: bool = False):
        super().__init__()
        self.colored = colored
        self.full_timestamp = full_timestamp

    def format(self, record: logging.LogRecord) -> str:
        area = area_of(record)
        created = datetime.fromtimestamp(record.created)
        if self.full_timestamp:
            timestamp = created.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        else:
            timestamp = created.strftime("%H:%M:%S")

        prefix = f"[BAZZEYE.{area}]"
        level = f"{record.levelname:<8}"
        if self.colored:
            prefix = f"{AREA_COLORS.get(area, '')}{prefix}{RESET}"
            timestamp = f"{DIM}{timestamp}{RESET}"
            level = f"{LEVEL_COLORS.get(record.levelno, '')}{level}{RESET}"

        line = f"{prefix} {timestamp} {level} {record.getMessage()}"
        connection_id = getattr(record, "connection_id", None)
        if connection_id is not None and self.full_timestamp:
            line += f" connection_id={connection_id}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


_log_dir: Optional[Path] = None
_file_handler: Optional[logging.Handler] = None
_console_level = logging.INFO


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_console_level)
    # journald captures stdout under systemd; keep escape codes out of it
    handler.setFormatter(AreaFormatter(colored=sys.stdout.isatty()))
    return handler


def setup_logging(
    log_dir: Optional[Path] = None,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Start writing every area logger to ``<log_dir>/bazzeye.log``.

    Safe to call after loggers were created at import time; they are given
    the file handler and the new console level.

    Returns:
        The log directory
    """
    global _log_dir, _file_handler, _console_level

    _log_dir = Path(log_dir) if log_dir else Path.cwd() / "logs"
    _log_dir.mkdir(parents=True, exist_ok=True)
    _console_level = console_level

    if _file_handler is not None:
        _file_handler.close()
    _file_handler = RotatingFileHandler(
        _log_dir / LOG_FILENAME,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    _file_handler.setLevel(file_level)
    _file_handler.setFormatter(AreaFormatter(full_timestamp=True))

    # Third-party libraries (uvicorn, asyncio) log through the root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers.clear()
    root_logger.addHandler(_file_handler)

    for name, logger in list(logging.Logger.manager.loggerDict.items()):
        if isinstance(logger, logging.Logger) and name.startswith(LOGGER_NAMESPACE + "."):
            _install_handlers(logger)

    get_logger("main").info(f"Logging to {_log_dir / LOG_FILENAME}")
    return _log_dir


def _install_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.addHandler(_console_handler())
    if _file_handler is not None:
        logger.addHandler(_file_handler)


def get_logger(area: str = "main") -> logging.Logger:
    """
    Logger for one application area.

    Example:
        logger = get_logger("auth.sessions")
        logger.info("Connection unlocked")
        # Output: [BAZZEYE.auth.sessions] 14:32:15 INFO     Connection unlocked
    """
    logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{area}")
    if not logger.handlers:
        logger.setLevel(logging.DEBUG)
        _install_handlers(logger)
        # Area loggers own their handlers; the root logger only serves libraries
        logger.propagate = False
    return logger


def get_log_dir() -> Optional[Path]:
    """Directory passed to the last ``setup_logging`` call."""
    return _log_dir
