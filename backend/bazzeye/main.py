"""
FastAPI backend for the Bazzeye host dashboard.

Dashboard clients talk over one WebSocket each. Every socket is a connection
with its own authorization state; the state is dropped when it closes.
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .api.auth import HANDLERS as AUTH_HANDLERS
from .api.auth import status_message
from .api.host import HANDLERS as HOST_HANDLERS
from .auth import expiry_sweep_loop
from .config import DashboardConfig
from .errors import AuthError, EscalationError
from .logging import get_logger
from .services import Services, build_services

logger = get_logger("main")
ws_logger = get_logger("websocket")

HANDLERS = {**AUTH_HANDLERS, **HOST_HANDLERS}


def error_reply(message_type: str, code: str, message: str) -> dict:
    """Common failure reply: ``<topic>:error`` carrying a stable code."""
    topic = message_type.split(":", 1)[0]
    return {
        "type": f"{topic}:error" if topic else "error",
        "request": message_type,
        "code": code,
        "message": message,
    }


async def dispatch(services: Services, connection_id: str, message: Any) -> list[dict]:
    """Route one client message to its handler and collect the replies."""
    if not isinstance(message, dict):
        return [error_reply("", "invalid_message", "Expected a JSON object")]

    message_type = message.get("type")
    handler = HANDLERS.get(message_type) if isinstance(message_type, str) else None
    if handler is None:
        return [error_reply(str(message_type or ""), "unknown_message", f"Unknown message type: {message_type}")]

    payload = {key: value for key, value in message.items() if key != "type"}
    try:
        return await handler(services, connection_id, payload)
    except ValidationError as e:
        return [error_reply(message_type, "invalid_message", f"{e.error_count()} invalid field(s)")]
    except (AuthError, EscalationError) as e:
        ws_logger.warning(f"{message_type} from {connection_id} rejected: {e.code}: {e.message}")
        return [error_reply(message_type, e.code, e.message)]
    except Exception:
        ws_logger.exception(f"Handler for {message_type} failed")
        return [error_reply(message_type, "internal_error", "Internal server error")]


def create_app(config: Optional[DashboardConfig] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the dashboard application.

    Services are constructed once here (or passed in, e.g. by tests) and
    shared by every connection.
    """
    if services is None:
        services = build_services(config or DashboardConfig())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        logger.info("Starting Bazzeye dashboard...")
        if not services.vault.dashboard_password_set:
            logger.warning("No dashboard password set; dashboard is open to every client")
        shutdown_event = asyncio.Event()
        sweep_task = asyncio.create_task(
            expiry_sweep_loop(services.sessions, services.config.sweep_interval, shutdown_event)
        )
        yield
        shutdown_event.set()
        await sweep_task
        services.sessions.store.clear()
        logger.info("Shutting down...")

    app = FastAPI(
        title="Bazzeye",
        description="Host control dashboard",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.websocket("/ws")
    async def dashboard_socket(websocket: WebSocket):
        """
        Dashboard connection.

        The client gets ``auth:status`` right away so it knows whether to
        show the lock screen, then exchanges ``{"type": ...}`` messages.
        """
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        services.sessions.connect(connection_id)
        ws_logger.info(f"Client connected: {connection_id}")

        try:
            await websocket.send_json(status_message(services, connection_id))
            while True:
                try:
                    message = await websocket.receive_json()
                except (KeyError, ValueError):
                    # KeyError: binary frame; ValueError: text that is not JSON
                    await websocket.send_json(error_reply("", "invalid_message", "Expected a JSON text frame"))
                    continue

                for reply in await dispatch(services, connection_id, message):
                    await websocket.send_json(reply)
        except WebSocketDisconnect:
            pass
        finally:
            services.sessions.disconnect(connection_id)
            ws_logger.info(f"Client disconnected: {connection_id}")

    return app
