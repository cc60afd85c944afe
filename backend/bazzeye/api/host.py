"""
Destructive host actions.

Each handler passes the gate first and then hands an argument vector to the
escalator. User-supplied paths are always single arguments after ``--``.
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from ..logging import get_logger
from ..privilege import Identity
from ..services import Services

logger = get_logger("api.host")

CONTROL_COMMANDS = {
    "reboot": ("systemctl", "reboot"),
    "shutdown": ("systemctl", "poweroff"),
}


class SystemControlMessage(BaseModel):
    action: Literal["reboot", "shutdown"]


class PathMessage(BaseModel):
    """A filesystem target chosen in the file browser."""
    path: str = Field(..., min_length=1)

    @field_validator("path")
    @classmethod
    def _absolute(cls, value: str) -> str:
        if "\x00" in value:
            raise ValueError("path must not contain NUL bytes")
        if not value.startswith("/"):
            raise ValueError("path must be absolute")
        return value


async def handle_system_control(services: Services, connection_id: str, payload: dict) -> list[dict]:
    request = SystemControlMessage.model_validate(payload)
    program, *args = CONTROL_COMMANDS[request.action]
    logger.warning(f"Connection {connection_id} requested {request.action}")
    await services.escalator.run_as_root(connection_id, program, *args)
    return [{"type": "system:control-status", "action": request.action, "status": "ok"}]


async def handle_delete(services: Services, connection_id: str, payload: dict) -> list[dict]:
    request = PathMessage.model_validate(payload)
    await services.escalator.run_as_root(connection_id, "rm", "-rf", "--", request.path)
    logger.info(f"Deleted {request.path!r} for {connection_id}")
    return [{"type": "files:status", "operation": "delete", "path": request.path, "status": "ok"}]


async def handle_create_folder(services: Services, connection_id: str, payload: dict) -> list[dict]:
    request = PathMessage.model_validate(payload)
    services.sessions.require_elevated(connection_id)
    await services.escalator.run(["mkdir", "-p", "--", request.path], Identity.OWNER)
    return [{"type": "files:status", "operation": "create-folder", "path": request.path, "status": "ok"}]


async def handle_create_file(services: Services, connection_id: str, payload: dict) -> list[dict]:
    request = PathMessage.model_validate(payload)
    services.sessions.require_elevated(connection_id)
    await services.escalator.run(["touch", "--", request.path], Identity.OWNER)
    return [{"type": "files:status", "operation": "create-file", "path": request.path, "status": "ok"}]


HANDLERS = {
    "system:control": handle_system_control,
    "files:delete": handle_delete,
    "files:create-folder": handle_create_folder,
    "files:create-file": handle_create_file,
}
