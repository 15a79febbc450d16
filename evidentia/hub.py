"""
Evidentia hub: ties sessions, presence and radio relay together

One Hub per server process (or per test). It owns the connection registry
and the session table, decodes inbound frames and routes them to the
presence protocol or the radio relay. Every handler here is synchronous, so
each inbound frame is fully applied before the next one is looked at.
"""

import json
import logging
from typing import Any, Optional

from .constants import (
    EVT_LOGIN, EVT_LOCATION_UPDATE, EVT_RADIO_VOICE, EVT_RADIO_TEXT,
    EVT_UNITS_UPDATE, PING, PONG, AUDIO_PLACEHOLDER, DEFAULT_SEND_QUEUE_SIZE
)
from .log_store import LogWriter
from .models import ConnectionId
from .presence import PresenceProtocol, Login, LocationUpdate, Disconnect
from .registry import ConnectionRegistry
from .relay import RadioRelay
from .sessions import Session, SessionHub

LOGGER = logging.getLogger(__name__)


def _reject_constant(token: str):
    """NaN and Infinity are not JSON; browsers cannot parse them back out of a snapshot"""
    raise ValueError(f"non-standard JSON constant {token}")


class Hub:
    """Session lifecycle and inbound event dispatch"""

    def __init__(self, log_writer: Optional[LogWriter] = None,
                 send_queue_size: int = DEFAULT_SEND_QUEUE_SIZE,
                 audio_placeholder: str = AUDIO_PLACEHOLDER):
        self.registry = ConnectionRegistry()
        self.sessions = SessionHub(send_queue_size=send_queue_size)
        self.presence = PresenceProtocol(self.registry, self.sessions)
        self.relay = RadioRelay(self.sessions, log_writer=log_writer, registry=self.registry,
                                audio_placeholder=audio_placeholder)
        self.log_writer = log_writer
        self.stats = {
            'sessions_total': 0,
            'frames_rejected': 0
        }

    # ---- Session lifecycle ----

    def connect(self, websocket: Any) -> Session:
        """
        Register a transport connection. No registry entry is created until
        the unit logs in; the new session alone receives the current snapshot.
        """
        session = self.sessions.open(websocket)
        self.stats['sessions_total'] += 1
        self.sessions.send_to(session.connection_id, EVT_UNITS_UPDATE, self.presence.snapshot())
        return session

    def disconnect(self, connection_id: ConnectionId) -> bool:
        """
        End a connection however it was lost (close, timeout, transport error).
        Cleanup and the follow-up snapshot run only the first time.
        """
        if not self.sessions.close(connection_id):
            return False
        self.presence.handle(Disconnect(connection_id))
        return True

    def shutdown(self) -> None:
        for connection_id in self.sessions.connection_ids():
            self.disconnect(connection_id)

    # ---- Inbound dispatch ----

    def handle_frame(self, connection_id: ConnectionId, raw: str) -> None:
        """Decode one inbound text frame and apply it"""
        if raw == PING:
            self.sessions.send_raw(connection_id, PONG)
            return

        try:
            envelope = json.loads(raw, parse_constant=_reject_constant)
        except (ValueError, TypeError) as e:
            self.stats['frames_rejected'] += 1
            LOGGER.warning(f'Invalid JSON from {connection_id}: {e}')
            return

        if not isinstance(envelope, dict) or not isinstance(envelope.get('type'), str):
            self.stats['frames_rejected'] += 1
            LOGGER.warning(f'Frame from {connection_id} has no event type, ignoring')
            return

        self.handle_event(connection_id, envelope['type'], envelope.get('data'))

    def handle_event(self, connection_id: ConnectionId, event_type: str, data: Any) -> None:
        """Route a named event from a connection"""
        if connection_id not in self.sessions:
            # Frame raced with the session closing
            LOGGER.debug(f'Dropping {event_type} from closed session {connection_id}')
            return

        if event_type == EVT_LOGIN:
            self.presence.handle(Login(connection_id, data))

        elif event_type == EVT_LOCATION_UPDATE:
            self.presence.handle(LocationUpdate(connection_id, data))

        elif event_type == EVT_RADIO_VOICE:
            self.relay.relay_voice(connection_id, data)

        elif event_type == EVT_RADIO_TEXT:
            self.relay.relay_text(connection_id, data)

        else:
            self.stats['frames_rejected'] += 1
            LOGGER.warning(f'Unknown event type from {connection_id}: {event_type}')

    def get_stats(self) -> dict:
        stats = {
            'sessions_connected': len(self.sessions),
            'units_active': len(self.registry),
            **self.stats,
            **self.relay.stats,
            'sessions': self.sessions.describe()
        }
        if self.log_writer is not None:
            stats['log_writes_pending'] = self.log_writer.pending
            stats['log_writes_failed'] = self.log_writer.stats['failed']
            stats['log_writes_written'] = self.log_writer.stats['written']
        return stats
