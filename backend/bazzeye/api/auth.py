"""WebSocket message handlers for login, elevation and password management."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..auth import ElevationResult, Tier
from ..errors import AuthError, InvalidCredential
from ..logging import get_logger
from ..services import Services

logger = get_logger("api.auth")


# --- Message Models ---

class LoginMessage(BaseModel):
    """Unlock the dashboard for this connection."""
    password: str = ""


class VerifyElevateMessage(BaseModel):
    """Elevation password, sent after the server asked for it."""
    password: str = ""


class SetPasswordMessage(BaseModel):
    """Change or remove the password of one tier."""
    model_config = ConfigDict(populate_by_name=True)

    tier: Tier = Tier.DASHBOARD
    new_password: str = Field(default="", alias="newPassword")
    old_password: Optional[str] = Field(default=None, alias="oldPassword")
    confirm_unprotected: bool = Field(
        default=False,
        alias="confirmUnprotected",
        description="Must be true when newPassword is empty (tier becomes open)",
    )


def status_message(services: Services, connection_id: str) -> dict:
    status = services.sessions.status(connection_id)
    return {"type": "auth:status", **status.model_dump(by_alias=True)}


# --- Handlers ---

async def handle_status(services: Services, connection_id: str, payload: dict) -> list[dict]:
    return [status_message(services, connection_id)]


async def handle_login(services: Services, connection_id: str, payload: dict) -> list[dict]:
    request = LoginMessage.model_validate(payload)
    try:
        services.sessions.login(connection_id, request.password)
    except InvalidCredential as e:
        return [{"type": "auth:login-fail", "code": e.code, "message": e.message}]
    return [{"type": "auth:login-success"}, status_message(services, connection_id)]


async def handle_logout(services: Services, connection_id: str, payload: dict) -> list[dict]:
    services.sessions.logout(connection_id)
    return [status_message(services, connection_id)]


async def handle_request_elevate(services: Services, connection_id: str, payload: dict) -> list[dict]:
    result = services.sessions.request_elevate(connection_id)
    if result is ElevationResult.PASSWORD_REQUIRED:
        return [{"type": "auth:require-password"}]
    return [status_message(services, connection_id)]


async def handle_verify_elevate(services: Services, connection_id: str, payload: dict) -> list[dict]:
    request = VerifyElevateMessage.model_validate(payload)
    try:
        services.sessions.verify_elevate(connection_id, request.password)
    except InvalidCredential as e:
        return [{"type": "auth:verify-fail", "code": e.code, "message": e.message}]
    return [{"type": "auth:verify-success"}, status_message(services, connection_id)]


async def handle_revoke_elevate(services: Services, connection_id: str, payload: dict) -> list[dict]:
    services.sessions.revoke_elevate(connection_id)
    return [status_message(services, connection_id)]


async def handle_set_password(services: Services, connection_id: str, payload: dict) -> list[dict]:
    """
    Set, change or clear a tier password.

    Clearing (empty newPassword) leaves the tier open to everyone, so the
    client must confirm it explicitly.
    """
    request = SetPasswordMessage.model_validate(payload)
    if not request.new_password and not request.confirm_unprotected:
        return [{
            "type": "auth:set-password-error",
            "tier": request.tier.value,
            "code": "confirmation_required",
            "message": "Removing the password leaves this tier unprotected; confirm to continue",
        }]

    try:
        services.sessions.change_password(
            connection_id,
            request.tier,
            request.new_password,
            request.old_password,
        )
    except AuthError as e:
        return [{
            "type": "auth:set-password-error",
            "tier": request.tier.value,
            "code": e.code,
            "message": e.message,
        }]

    logger.info(f"Connection {connection_id} changed the {request.tier.value} password")
    return [
        {"type": "auth:set-password-success", "tier": request.tier.value},
        status_message(services, connection_id),
    ]


HANDLERS = {
    "auth:status": handle_status,
    "auth:login": handle_login,
    "auth:logout": handle_logout,
    "auth:request-elevate": handle_request_elevate,
    "auth:verify-elevate": handle_verify_elevate,
    "auth:revoke-elevate": handle_revoke_elevate,
    "auth:set-password": handle_set_password,
}
