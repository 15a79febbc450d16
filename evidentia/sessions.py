"""
Session registry and broadcast fan-out for WebSocket clients

Every connected client (field unit or dashboard) gets a Session with its own
bounded outbound queue and writer task. Fan-out only enqueues, so it is
synchronous and never yields mid-handler; each writer drains its queue in
order, which keeps delivery ordered per connection. Nothing is promised about
ordering across connections.

A client that cannot keep up has messages dropped once its queue is full.
Presence broadcasts are full snapshots, so the next one repairs the gap.
"""

import asyncio
import logging
from time import time
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .constants import DEFAULT_SEND_QUEUE_SIZE
from .fanout import encode_event
from .models import ConnectionId

LOGGER = logging.getLogger(__name__)


class Session:
    """One live WebSocket connection"""

    def __init__(self, connection_id: ConnectionId, websocket: Any,
                 queue_size: int = DEFAULT_SEND_QUEUE_SIZE):
        self.connection_id = connection_id
        self.websocket = websocket
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.connected_at = time()
        self.messages_dropped = 0
        self.closed = False
        self.writer: Optional[asyncio.Task] = None

    def enqueue(self, message: str) -> bool:
        """Queue an encoded message for this client without blocking"""
        if self.closed:
            return False
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.messages_dropped += 1
            LOGGER.warning(f'Send queue full for {self.connection_id}, dropping message '
                           f'({self.messages_dropped} dropped so far)')
            return False
        return True

    def start(self) -> None:
        """Start the writer task (needs a running event loop)"""
        if self.writer is None:
            self.writer = asyncio.create_task(self.run_writer(), name=f'writer_{self.connection_id}')

    async def run_writer(self) -> None:
        """Drain the outbound queue in order until the connection fails or is closed"""
        while True:
            message = await self.queue.get()
            try:
                await self.websocket.send_text(message)
            except Exception as e:
                # The receive side sees the same failure and closes the session
                LOGGER.debug(f'Send to {self.connection_id} failed: {e}')
                self.closed = True
                return

    def stop(self) -> None:
        self.closed = True
        if self.writer is not None and not self.writer.done():
            self.writer.cancel()


class SessionHub:
    """
    Tracks open sessions and implements the fan-out contract.

    close() is the single place a session ends; it reports True only the
    first time for a given connection, so disconnect cleanup runs exactly once
    however the disconnect was triggered.
    """

    def __init__(self, send_queue_size: int = DEFAULT_SEND_QUEUE_SIZE):
        self.send_queue_size = send_queue_size
        self._sessions: Dict[ConnectionId, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, connection_id: ConnectionId) -> bool:
        return connection_id in self._sessions

    def connection_ids(self) -> List[ConnectionId]:
        return list(self._sessions)

    def describe(self) -> List[dict]:
        """Per-session connection time and drop count for the stats endpoint"""
        return [{
            'connection_id': session.connection_id,
            'connected_at': session.connected_at,
            'messages_dropped': session.messages_dropped
        } for session in self._sessions.values()]

    def open(self, websocket: Any) -> Session:
        """Register a new connection under a fresh identity"""
        connection_id = uuid4().hex
        session = Session(connection_id, websocket, self.send_queue_size)
        self._sessions[connection_id] = session
        LOGGER.debug(f'Session opened: {connection_id} (total: {len(self._sessions)})')
        return session

    def close(self, connection_id: ConnectionId) -> bool:
        """
        End a session.

        Returns:
            True if the session was open, False if it was already closed
        """
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return False
        session.stop()
        LOGGER.debug(f'Session closed: {connection_id} (remaining: {len(self._sessions)})')
        return True

    def close_all(self) -> List[ConnectionId]:
        closed = [cid for cid in list(self._sessions) if self.close(cid)]
        return closed

    def send_all(self, event_type: str, data: Any) -> int:
        """Deliver to every session; returns the number of sessions queued"""
        message = encode_event(event_type, data)
        return sum(1 for session in list(self._sessions.values()) if session.enqueue(message))

    def send_all_except(self, connection_id: ConnectionId, event_type: str, data: Any) -> int:
        """Deliver to every session except connection_id"""
        message = encode_event(event_type, data)
        return sum(1 for cid, session in list(self._sessions.items())
                   if cid != connection_id and session.enqueue(message))

    def send_to(self, connection_id: ConnectionId, event_type: str, data: Any) -> bool:
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        return session.enqueue(encode_event(event_type, data))

    def send_raw(self, connection_id: ConnectionId, text: str) -> bool:
        """Queue an already-encoded frame (keepalive replies)"""
        session = self._sessions.get(connection_id)
        if session is None:
            return False
        return session.enqueue(text)
