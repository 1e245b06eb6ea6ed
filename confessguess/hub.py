"""Connection registry: which sockets belong to which session."""

import logging
from dataclasses import dataclass

from aiohttp import web

from .protocol import Outbound, create_message

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    id: str
    ws: web.WebSocketResponse
    code: str = ""
    name: str = ""


class Hub:
    def __init__(self):
        self._clients: dict[str, dict[str, Connection]] = {}  # code -> {conn id -> connection}

    def register(self, conn: Connection):
        self._clients.setdefault(conn.code, {})[conn.id] = conn

    def unregister(self, conn: Connection):
        clients = self._clients.get(conn.code)
        if clients is None:
            return
        clients.pop(conn.id, None)
        if not clients:
            self._clients.pop(conn.code, None)

    def connections(self, code: str) -> list[Connection]:
        return [c for c in self._clients.get(code, {}).values() if not c.ws.closed]

    def is_online(self, code: str, name: str) -> bool:
        """Whether name has any open socket in the session."""
        return any(c.name == name for c in self.connections(code))

    async def send(self, conn: Connection, event: Outbound, payload: dict = None):
        try:
            if not conn.ws.closed:
                await conn.ws.send_json(create_message(event, payload))
        except (ConnectionError, RuntimeError) as e:
            logger.warning("Failed to send %s to %s in %s: %s", event.value, conn.name, conn.code, e)

    async def broadcast(self, code: str, event: Outbound, payload: dict = None):
        for conn in self.connections(code):
            await self.send(conn, event, payload)
