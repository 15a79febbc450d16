"""
Presence protocol

Per-connection state machine:

    Disconnected --login--> Active --location_update*--> Active --disconnect--> Disconnected

Every honoured event results in exactly one full registry snapshot being
broadcast to all sessions. Snapshots rather than deltas mean a listener that
misses one update converges as soon as the next one arrives.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from .constants import EVT_UNITS_UPDATE
from .models import ConnectionId, coerce_payload
from .registry import ConnectionRegistry
from .fanout import Fanout

LOGGER = logging.getLogger(__name__)


@dataclass
class Login:
    connection_id: ConnectionId
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LocationUpdate:
    connection_id: ConnectionId
    fields: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Disconnect:
    connection_id: ConnectionId


PresenceEvent = Union[Login, LocationUpdate, Disconnect]


class PresenceProtocol:
    """Drives registry mutation from presence events and triggers snapshot fan-out"""

    def __init__(self, registry: ConnectionRegistry, fanout: Fanout):
        self.registry = registry
        self.fanout = fanout

    def is_active(self, connection_id: ConnectionId) -> bool:
        return connection_id in self.registry

    def handle(self, event: PresenceEvent) -> bool:
        """
        Apply a presence event.

        Must not await anything: the read-modify-write and the broadcast
        enqueue complete before any other handler runs.

        Returns:
            True if a snapshot was broadcast, False if the event was ignored
        """
        if isinstance(event, Login):
            unit = self.registry.replace(event.connection_id, coerce_payload(event.fields))
            LOGGER.info(f'Unit logged in: {unit.name or "UNKNOWN"} ({event.connection_id}) - {len(self.registry)} active')

        elif isinstance(event, LocationUpdate):
            if not self.is_active(event.connection_id):
                # Updates before login are not an error, there is simply nothing to update
                LOGGER.debug(f'Ignoring location update from {event.connection_id}: not logged in')
                return False
            self.registry.upsert(event.connection_id, coerce_payload(event.fields))

        elif isinstance(event, Disconnect):
            unit = self.registry.remove(event.connection_id)
            if unit is not None:
                LOGGER.info(f'Unit left: {unit.name or "UNKNOWN"} ({event.connection_id}) - {len(self.registry)} active')

        else:
            raise TypeError(f'Unknown presence event: {event!r}')

        self.broadcast_snapshot()
        return True

    def snapshot(self) -> dict:
        return {'units': self.registry.snapshot_all()}

    def broadcast_snapshot(self) -> None:
        self.fanout.send_all(EVT_UNITS_UPDATE, self.snapshot())
