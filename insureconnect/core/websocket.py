"""
WebSocket connection registry for real-time delivery.

Tracks which users are reachable, which connections sit in which chat
room, and hands out the per-chat ordering locks used when persisting and
broadcasting messages.

Mutations (add/remove/join/leave) happen on the event loop; lookups also
happen from request worker threads, so all state is guarded by a
threading lock and readers only ever see copies.
"""

from __future__ import annotations

import json
import logging
import threading
import weakref
from typing import Any, Hashable, Protocol
from uuid import UUID

from insureconnect.core.async_utils import run_async

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Anything that can receive a text frame (Starlette WebSocket, test fakes)."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


def encode_event(event: str, data: Any) -> str:
    return json.dumps({"event": event, "data": data}, default=str)


class ConnectionRegistry:
    """Connections per user and per chat room."""

    def __init__(self):
        # user_id -> active connections
        self._connections: dict[UUID, set[Connection]] = {}
        # chat_id -> connections that joined the chat room
        self._chat_rooms: dict[UUID, set[Connection]] = {}
        # connection -> chat rooms it joined (for cleanup on disconnect)
        self._joined: dict[Connection, set[UUID]] = {}
        # chat_id -> ordering lock; an entry lives only while some thread holds a reference
        self._chat_locks: weakref.WeakValueDictionary[Hashable, threading.Lock] = weakref.WeakValueDictionary()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Mutation points
    # ------------------------------------------------------------------

    def add(self, user_id: UUID, connection: Connection) -> bool:
        """Register a connection. Returns True when the user just came online."""
        with self._lock:
            conns = self._connections.setdefault(user_id, set())
            first = not conns
            conns.add(connection)
            self._joined.setdefault(connection, set())
        return first

    def remove(self, user_id: UUID, connection: Connection) -> bool:
        """Drop a connection and its room memberships. Returns True when the user went offline."""
        with self._lock:
            for chat_id in self._joined.pop(connection, set()):
                room = self._chat_rooms.get(chat_id)
                if room is not None:
                    room.discard(connection)
                    if not room:
                        del self._chat_rooms[chat_id]
            conns = self._connections.get(user_id)
            if conns is None:
                return False
            conns.discard(connection)
            if conns:
                return False
            del self._connections[user_id]
            return True

    def lookup(self, user_id: UUID) -> set[Connection]:
        """Snapshot of a user's live connections (empty when offline)."""
        with self._lock:
            return set(self._connections.get(user_id, ()))

    def join_chat(self, chat_id: UUID, connection: Connection) -> None:
        with self._lock:
            self._chat_rooms.setdefault(chat_id, set()).add(connection)
            self._joined.setdefault(connection, set()).add(chat_id)

    def leave_chat(self, chat_id: UUID, connection: Connection) -> None:
        with self._lock:
            room = self._chat_rooms.get(chat_id)
            if room is not None:
                room.discard(connection)
                if not room:
                    del self._chat_rooms[chat_id]
            joined = self._joined.get(connection)
            if joined is not None:
                joined.discard(chat_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def chat_members(self, chat_id: UUID) -> set[Connection]:
        with self._lock:
            return set(self._chat_rooms.get(chat_id, ()))

    def in_chat(self, chat_id: UUID, connection: Connection) -> bool:
        with self._lock:
            return connection in self._chat_rooms.get(chat_id, ())

    def is_online(self, user_id: UUID) -> bool:
        with self._lock:
            return bool(self._connections.get(user_id))

    def online_user_ids(self) -> list[UUID]:
        with self._lock:
            return list(self._connections.keys())

    def all_connections(self) -> set[Connection]:
        with self._lock:
            return {ws for conns in self._connections.values() for ws in conns}

    def get_total_connections(self) -> int:
        with self._lock:
            return sum(len(conns) for conns in self._connections.values())

    def chat_lock(self, chat_id: Hashable) -> threading.Lock:
        """
        Lock serializing persist-then-broadcast for one chat.

        Callers keep the returned lock referenced for as long as they use it;
        chats nobody is sending to hold no entry.
        """
        with self._lock:
            lock = self._chat_locks.get(chat_id)
            if lock is None:
                lock = threading.Lock()
                self._chat_locks[chat_id] = lock
            return lock

    # ------------------------------------------------------------------
    # Delivery (async, on the event loop)
    # ------------------------------------------------------------------

    async def _deliver(self, connections: set[Connection], data: str) -> int:
        delivered = 0
        for ws in connections:
            try:
                await ws.send_text(data)
                delivered += 1
            except Exception:
                # Connection closed mid-send; the disconnect handler cleans it up
                logger.debug("Dropped frame for a closing connection")
        return delivered

    async def send_to_user(self, user_id: UUID, event: str, data: Any) -> int:
        """Send to all connections of one user."""
        connections = self.lookup(user_id)
        if not connections:
            return 0
        return await self._deliver(connections, encode_event(event, data))

    async def send_to_chat(
        self, chat_id: UUID, event: str, data: Any, exclude: Connection | None = None
    ) -> int:
        """Send to every connection in a chat room, optionally skipping the sender."""
        connections = self.chat_members(chat_id)
        if exclude is not None:
            connections.discard(exclude)
        if not connections:
            return 0
        return await self._deliver(connections, encode_event(event, data))

    async def broadcast(self, event: str, data: Any, exclude: Connection | None = None) -> int:
        """Send to every live connection."""
        connections = self.all_connections()
        if exclude is not None:
            connections.discard(exclude)
        if not connections:
            return 0
        return await self._deliver(connections, encode_event(event, data))

    # ------------------------------------------------------------------
    # Delivery from sync service code (request worker threads)
    # ------------------------------------------------------------------

    def push_to_user(self, user_id: UUID, event: str, data: Any) -> int:
        """Best-effort push; never raises. Returns frames delivered."""
        if not self.is_online(user_id):
            return 0
        try:
            return run_async(self.send_to_user(user_id, event, data))
        except Exception:
            logger.warning("Real-time push to user failed", exc_info=True)
            return 0

    def push_to_chat(self, chat_id: UUID, event: str, data: Any) -> int:
        """Best-effort chat-room broadcast; never raises."""
        if not self.chat_members(chat_id):
            return 0
        try:
            return run_async(self.send_to_chat(chat_id, event, data))
        except Exception:
            logger.warning("Real-time chat broadcast failed", exc_info=True)
            return 0

    async def close_user(self, user_id: UUID, code: int = 4001, reason: str = "Session revoked") -> int:
        """Close every connection of a user (e.g. after session revocation)."""
        closed = 0
        for ws in self.lookup(user_id):
            try:
                await ws.close(code=code, reason=reason)
                closed += 1
            except Exception:
                logger.debug("Connection already closed")
        return closed
