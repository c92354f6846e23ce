"""WebSocket server — carries the terminal protocol over JSON frames.

Every frame is ``{"event": <name>, "data": {...}}``.  The user identity
comes from the ``userId`` query parameter and is not authenticated.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
from fastapi.staticfiles import StaticFiles
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from shellmux.config import ShellmuxConfig
from shellmux.errors import SpawnError
from shellmux.manager import SessionManager
from shellmux.routing.router import Connection
from shellmux.routing.wire import EventType, WireEvent

logger = logging.getLogger(__name__)


class CreateTerminalRequest(BaseModel):
    shell: str | None = None
    options: dict[str, Any] | None = None


class SessionRequest(BaseModel):
    session_id: str = Field(validation_alias=AliasChoices("sessionId", "termId"))


class InputRequest(SessionRequest):
    input: str


class ResizeRequest(SessionRequest):
    cols: int = Field(ge=1)
    rows: int = Field(ge=1)


class _OutputEncoder:
    """Turns wire events into JSON-ready messages.

    Output bytes are decoded incrementally per session so a multi-byte
    character split across two chunks is not mangled.
    """

    def __init__(self) -> None:
        self._decoders: dict[str, codecs.IncrementalDecoder] = {}

    def encode(self, event: WireEvent) -> dict[str, Any]:
        data = dict(event.data)
        session_id = data.get("sessionId", "")
        if event.type is EventType.TERMINAL_OUTPUT:
            data["data"] = self._decoder(session_id).decode(data["data"])
        elif event.type is EventType.TERMINAL_HISTORY:
            data["history"] = data["history"].decode("utf-8", errors="replace")
        elif event.type is EventType.TERMINAL_CLOSED:
            self._decoders.pop(session_id, None)
        return WireEvent(event.type, data).to_message()

    def _decoder(self, session_id: str) -> codecs.IncrementalDecoder:
        decoder = self._decoders.get(session_id)
        if decoder is None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            self._decoders[session_id] = decoder
        return decoder


async def _pump(websocket: WebSocket, connection: Connection) -> None:
    """Drain the connection's wire into the socket until the wire closes."""
    encoder = _OutputEncoder()
    while True:
        event = await connection.wire.get()
        if event is None:
            break
        try:
            await websocket.send_json(encoder.encode(event))
        except Exception as e:
            logger.debug("Send to connection %s failed: %s", connection.id, e)
            break


async def handle_message(
    manager: SessionManager, connection: Connection, raw: str
) -> None:
    """Apply one client frame.  Malformed frames are ignored."""
    try:
        message = json.loads(raw)
        event = EventType(message["event"])
        data = message.get("data") or {}
    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
        logger.debug("Ignoring malformed frame from %s: %.100r", connection.id, raw)
        return

    try:
        if event is EventType.CREATE_TERMINAL:
            request = CreateTerminalRequest.model_validate(data)
            try:
                await manager.create_terminal(
                    connection, shell=request.shell, options=request.options
                )
            except SpawnError as e:
                logger.warning("create-terminal from %s failed: %s", connection.id, e)
                connection.wire.send_error(str(e))
        elif event is EventType.SWITCH_TERMINAL:
            request = SessionRequest.model_validate(data)
            manager.switch_terminal(connection, request.session_id)
        elif event is EventType.TERMINAL_INPUT:
            request = InputRequest.model_validate(data)
            manager.write(connection, request.session_id, request.input)
        elif event is EventType.TERMINAL_RESIZE:
            request = ResizeRequest.model_validate(data)
            manager.resize(connection, request.session_id, request.cols, request.rows)
        elif event is EventType.CLOSE_TERMINAL:
            request = SessionRequest.model_validate(data)
            manager.close_terminal(connection, request.session_id)
        elif event is EventType.GET_TERMINALS:
            manager.list_terminals(connection)
        else:
            logger.debug("Ignoring server-side event %s from client", event.value)
    except ValidationError as e:
        logger.debug("Ignoring invalid %s from %s: %s", event.value, connection.id, e)


def create_app(
    config: ShellmuxConfig | None = None,
    manager: SessionManager | None = None,
) -> FastAPI:
    """Build the ASGI app around a (possibly injected) session manager."""
    config = config or ShellmuxConfig()
    manager = manager or SessionManager(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await manager.shutdown()

    app = FastAPI(title="shellmux", lifespan=lifespan)
    app.state.manager = manager

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "mode": manager.mode.value, **manager.stats()}

    @app.get("/sessions")
    async def sessions() -> list[dict[str, Any]]:
        return manager.registry.list_sessions()

    @app.websocket("/ws")
    async def terminal_socket(
        websocket: WebSocket,
        user_id: str | None = Query(default=None, alias="userId"),
        user: str | None = Query(default=None),
    ) -> None:
        await websocket.accept()
        connection = await manager.connect(user_id or user)
        sender = asyncio.create_task(_pump(websocket, connection))
        try:
            while True:
                raw = await websocket.receive_text()
                await handle_message(manager, connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await manager.disconnect(connection)
            await sender

    static_dir = config.server.static_dir
    if static_dir and os.path.isdir(static_dir):
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app
