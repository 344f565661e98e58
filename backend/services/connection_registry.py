from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from backend.models.ws_messages import PingEvent, WSMessage, connection_status_event, encode_message
from backend.services.errors import RegistryClosedError


class Transport(Protocol):
    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass
class Connection:
    id: str
    transport: Transport
    meeting_id: str | None = None
    is_alive: bool = True
    last_ping: float = field(default_factory=time.time)
    is_open: bool = True
    outbox: asyncio.Queue = field(default_factory=asyncio.Queue)


def _new_connection_id() -> str:
    return f"client_{uuid.uuid4().hex[:12]}"


class ConnectionRegistry:
    """Tracks open websocket connections, their meetings and their liveness.

    Sending never suspends: frames are serialized and queued on the
    connection's outbox, which the session controller drains to the socket.
    A failure for one recipient is logged and never stops a broadcast.
    """

    def __init__(self, liveness_interval: float = 30.0):
        self.liveness_interval = liveness_interval
        self.connections: dict[str, Connection] = {}
        self.accepting = True
        self._liveness_task: asyncio.Task | None = None
        self.logger = logging.getLogger(__name__)

    @property
    def active_connections(self) -> int:
        return len(self.connections)

    @property
    def active_meetings(self) -> int:
        return len({conn.meeting_id for conn in self.connections.values() if conn.meeting_id})

    def get(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def admit(self, transport: Any) -> Connection:
        if not self.accepting:
            raise RegistryClosedError("Registry is shutting down")
        connection = Connection(id=_new_connection_id(), transport=transport)
        self.connections[connection.id] = connection
        self.logger.info("WebSocket client connected: %s (%d active)", connection.id, len(self.connections))
        self.send(connection, connection_status_event(len(self.connections)))
        return connection

    def join_meeting(self, connection_id: str, meeting_id: str) -> None:
        connection = self.connections.get(connection_id)
        if not connection:
            raise KeyError(connection_id)
        if connection.meeting_id and connection.meeting_id != meeting_id:
            self.logger.info("Client %s moved from meeting %s to %s", connection_id, connection.meeting_id, meeting_id)
        connection.meeting_id = meeting_id

    def mark_alive(self, connection_id: str) -> None:
        connection = self.connections.get(connection_id)
        if connection:
            connection.is_alive = True
            connection.last_ping = time.time()

    def send(self, connection: Connection, event: WSMessage) -> bool:
        if not connection.is_open:
            return False
        try:
            connection.outbox.put_nowait(encode_message(event))
            return True
        except Exception:
            self.logger.warning("Failed to queue %s for client %s", getattr(event, "type", "?"), connection.id, exc_info=True)
            return False

    def broadcast_all(self, event: WSMessage) -> int:
        delivered = 0
        for connection in list(self.connections.values()):
            delivered += self.send(connection, event)
        return delivered

    def broadcast_to_meeting(self, meeting_id: str, event: WSMessage) -> int:
        delivered = 0
        for connection in list(self.connections.values()):
            if connection.meeting_id == meeting_id:
                delivered += self.send(connection, event)
        return delivered

    def _discard(self, connection_id: str) -> Connection | None:
        connection = self.connections.pop(connection_id, None)
        if connection:
            connection.is_open = False
        return connection

    def remove(self, connection_id: str) -> None:
        connection = self._discard(connection_id)
        if not connection:
            return
        self.logger.info("WebSocket client disconnected: %s (%d active)", connection_id, len(self.connections))
        self.broadcast_all(connection_status_event(len(self.connections)))

    async def _terminate(self, connection: Connection) -> None:
        try:
            await connection.transport.close(code=1001)
        except Exception:
            self.logger.debug("Close failed for client %s", connection.id, exc_info=True)

    async def sweep(self) -> None:
        for connection in list(self.connections.values()):
            if not connection.is_alive:
                self.logger.info("Terminating inactive client: %s", connection.id)
                self._discard(connection.id)
                await self._terminate(connection)
                continue
            connection.is_alive = False
            self.send(connection, PingEvent())
        self.broadcast_all(connection_status_event(len(self.connections)))

    async def _run_liveness(self) -> None:
        while True:
            await asyncio.sleep(self.liveness_interval)
            try:
                await self.sweep()
            except Exception:
                self.logger.exception("Liveness sweep failed")

    def start(self) -> None:
        if self._liveness_task is None or self._liveness_task.done():
            self.accepting = True
            self._liveness_task = asyncio.create_task(self._run_liveness())

    def shutdown(self) -> None:
        self.accepting = False
        if self._liveness_task is not None:
            self._liveness_task.cancel()
            self._liveness_task = None
        self.logger.info("Connection registry closed with %d open connections", len(self.connections))
