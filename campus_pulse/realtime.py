"""Realtime push channel: connection registry and snapshot broadcaster.

Every message is a full snapshot of one domain, never a diff, so clients
replace their local collection wholesale:

- ``{"type": "initial", "checkIns": [...], "events": [...]}`` on connect
- ``{"type": "checkIns", "data": [...]}`` after a presence mutation
- ``{"type": "events", "data": [...]}`` after an event mutation

Delivery is best-effort with no acks or retries. A client that misses a
message heals on its next poll or on the initial snapshot of its next
connection.

Each connection owns a bounded outbox drained by its own sender task, so a
client whose socket stalls only delays itself. Publishing never awaits a
client.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

OUTBOX_SIZE = 100


class Channel(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


@dataclass(slots=True, eq=False)
class Connection:
    connection_id: str
    user_id: str
    channel: Channel
    outbox: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=OUTBOX_SIZE))
    sender: Optional[asyncio.Task] = None

    def offer(self, message: Dict[str, Any]) -> None:
        """Queue a snapshot; when the outbox is full the oldest one is dropped."""
        if self.outbox.full():
            self.outbox.get_nowait()
            self.outbox.task_done()
            logger.warning(
                "Outbox full for connection %s (user %s); dropped oldest snapshot",
                self.connection_id,
                self.user_id,
            )
        self.outbox.put_nowait(message)

    def discard_pending(self) -> None:
        while not self.outbox.empty():
            self.outbox.get_nowait()
            self.outbox.task_done()


class ConnectionRegistry:
    """Connected clients keyed by connection id.

    Registration and fan-out never await, so on a single event loop they
    cannot interleave. Once ``unregister`` returns, that connection's sender
    is cancelled and it receives nothing further.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}

    def register(self, connection: Connection) -> None:
        self._connections[connection.connection_id] = connection
        connection.sender = asyncio.create_task(
            self._send_loop(connection), name=f"realtime-{connection.connection_id}"
        )

    async def unregister(self, connection_id: str) -> bool:
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return False
        sender = connection.sender
        if sender is not None:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
        connection.discard_pending()
        return True

    def for_each(self, enqueue: Callable[[Connection], None]) -> int:
        """Call `enqueue` for every registered connection; returns how many were offered a message."""
        connections = list(self._connections.values())
        for connection in connections:
            enqueue(connection)
        return len(connections)

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    async def close(self) -> None:
        for connection_id in list(self._connections):
            await self.unregister(connection_id)

    async def _send_loop(self, connection: Connection) -> None:
        while True:
            message = await connection.outbox.get()
            try:
                await connection.channel.send_json(message)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Dropping connection %s for user %s: %s",
                    connection.connection_id,
                    connection.user_id,
                    exc,
                )
                self._connections.pop(connection.connection_id, None)
                connection.discard_pending()
                return
            finally:
                connection.outbox.task_done()

    def __len__(self) -> int:
        return len(self._connections)


SnapshotBuilder = Callable[[str], Any]


class Broadcaster:
    """Pushes full snapshots to every registered connection.

    Snapshots are built and queued in the order publishes happen, and the
    initial snapshot is queued before the connection is registered, so it
    is never followed by an older one.
    """

    def __init__(self, registry: ConnectionRegistry | None = None) -> None:
        self.registry = registry or ConnectionRegistry()

    async def connect(
        self,
        user_id: str,
        channel: Channel,
        initial: Callable[[str], Dict[str, Any]],
    ) -> Connection:
        """Queue the initial combined snapshot and start receiving broadcasts."""
        connection = Connection(connection_id=str(uuid.uuid4()), user_id=user_id, channel=channel)
        connection.offer({"type": "initial", **initial(user_id)})
        self.registry.register(connection)
        logger.info("Realtime client connected: user=%s connection=%s", user_id, connection.connection_id)
        return connection

    async def disconnect(self, connection: Connection) -> None:
        if await self.registry.unregister(connection.connection_id):
            logger.info(
                "Realtime client disconnected: user=%s connection=%s",
                connection.user_id,
                connection.connection_id,
            )

    async def publish(self, kind: str, build: SnapshotBuilder) -> int:
        """Queue `{"type": kind, "data": build(user_id)}` for every connection."""

        def enqueue(connection: Connection) -> None:
            connection.offer({"type": kind, "data": build(connection.user_id)})

        return self.registry.for_each(enqueue)

    async def flush(self) -> None:
        """Wait until every queued snapshot has been handed to its channel."""
        await asyncio.gather(*(c.outbox.join() for c in self.registry.connections()))

    async def close(self) -> None:
        await self.registry.close()


__all__ = ["Channel", "Connection", "ConnectionRegistry", "Broadcaster", "OUTBOX_SIZE"]
