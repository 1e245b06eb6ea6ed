"""HTTP + WebSocket server for Confess & Guess."""

import asyncio
import contextlib
import logging
import uuid
from typing import Optional

logger = logging.getLogger(__name__)

from aiohttp import web
from aiohttp import WSMsgType

from .catalog import Catalog
from .config import Settings
from .hub import Connection, Hub
from .protocol import Inbound, Outbound, parse_bool, parse_message
from .session import GameSession


MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 20

SESSION = web.AppKey("session", GameSession)
HUB = web.AppKey("hub", Hub)
SETTINGS = web.AppKey("settings", Settings)
SWEEPER = web.AppKey("sweeper", asyncio.Task)


def normalize_code(raw) -> str:
    return str(raw or "").strip().upper()


def normalize_name(raw) -> str:
    return str(raw or "").strip()


async def _read_json(request: web.Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def handle_create(request: web.Request) -> web.Response:
    """Create a lobby with the caller as host. Returns JSON { code, lobby } or error."""
    data = await _read_json(request)
    username = normalize_name(data.get("username"))
    if len(username) < MIN_NAME_LENGTH:
        return web.json_response({"error": "Username must be at least 2 characters"}, status=400)
    if len(username) > MAX_NAME_LENGTH:
        return web.json_response({"error": "Username must be 20 characters or less"}, status=400)
    lobby = request.app[SESSION].create_lobby(username)
    return web.json_response(
        {"code": lobby.code, "lobby": lobby.to_dict()},
        headers={"Cache-Control": "no-store"},
    )


async def handle_join(request: web.Request) -> web.Response:
    """Join (or rejoin) a lobby by code. Returns JSON { lobby, reconnection } or error."""
    data = await _read_json(request)
    code = normalize_code(data.get("code"))
    username = normalize_name(data.get("username"))
    if not code or not username:
        return web.json_response({"error": "Code and username are required"}, status=400)
    if len(username) > MAX_NAME_LENGTH:
        return web.json_response({"error": "Username must be 20 characters or less"}, status=400)
    lobby, reconnection = await request.app[SESSION].join_lobby(code, username)
    if lobby is None:
        return web.json_response({"error": "Lobby not found"}, status=404)
    return web.json_response(
        {"lobby": lobby.to_dict(), "reconnection": reconnection},
        headers={"Cache-Control": "no-store"},
    )


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "lobbies": len(request.app[SESSION].lobbies)})


async def send_snapshot(hub: Hub, session: GameSession, conn: Connection, code: str):
    snapshot = session.snapshot(code, conn.name)
    if snapshot is not None:
        await hub.send(conn, Outbound.SyncGameState, snapshot)


async def dispatch(hub: Hub, session: GameSession, conn: Connection, cmd: Inbound, data: dict):
    code = normalize_code(data.get("code")) or conn.code
    username = normalize_name(data.get("username")) or conn.name

    if cmd == Inbound.JoinLobby:
        if not code or not username:
            return
        hub.unregister(conn)
        conn.code, conn.name = code, username
        hub.register(conn)
        if await session.connect(code, username):
            await send_snapshot(hub, session, conn, code)
    elif cmd == Inbound.LeaveLobby:
        await session.leave(code, username)
        hub.unregister(conn)
        conn.code = conn.name = ""
    elif cmd == Inbound.StartGame:
        await session.start_game(code, username)
    elif cmd == Inbound.CastInitialVote:
        await session.submit_vote(code, username, data.get("vote"))
    elif cmd == Inbound.MakeConfession:
        await session.submit_confession(code, username, parse_bool(data.get("confession")))
    elif cmd == Inbound.MakeGuess:
        await session.submit_guess(code, username, parse_bool(data.get("guess")))
    elif cmd == Inbound.RequestSync:
        await send_snapshot(hub, session, conn, code)
    elif cmd == Inbound.RestartGame:
        # Restart is authorized by the connection's own identity
        await session.restart_game(code, conn.name)


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    hub = request.app[HUB]
    session = request.app[SESSION]
    conn = Connection(id=str(uuid.uuid4()), ws=ws)
    logger.info("Connection opened: %s", conn.id)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    cmd, data = parse_message(msg.data)
                except ValueError as e:
                    logger.debug("Dropped message from %s: %s", conn.id, e)
                    continue
                try:
                    await dispatch(hub, session, conn, cmd, data)
                except Exception:
                    logger.exception("Error handling %s from %s (%s)", cmd.value, conn.name or conn.id, conn.code)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Connection %s closed with exception %s", conn.id, ws.exception())
                break
    finally:
        hub.unregister(conn)
        logger.info("Connection closed: %s (%s)", conn.id, conn.name)
        if conn.code and conn.name and not hub.is_online(conn.code, conn.name):
            await session.leave(conn.code, conn.name)

    return ws


def create_app(settings: Optional[Settings] = None, catalog: Optional[Catalog] = None) -> web.Application:
    settings = settings or Settings()
    catalog = catalog if catalog is not None else Catalog.from_file(settings.topics_file)
    hub = Hub()
    session = GameSession(catalog, hub, settings=settings)

    app = web.Application()
    app[SETTINGS] = settings
    app[HUB] = hub
    app[SESSION] = session

    async def on_startup(app_: web.Application):
        app_[SWEEPER] = asyncio.create_task(session.presence.run(session.evict, settings.sweep_interval))

    async def on_cleanup(app_: web.Application):
        sweeper = app_[SWEEPER]
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        session.shutdown()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)
    app.router.add_post("/api/lobby/create", handle_create)
    app.router.add_post("/api/lobby/join", handle_join)
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/ws", websocket_handler)
    return app


def run(settings: Optional[Settings] = None):
    settings = settings or Settings.from_env()
    app = create_app(settings)
    logger.info("Server started on port %d", settings.port)
    web.run_app(app, host=settings.host, port=settings.port)
