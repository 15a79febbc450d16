"""
Connection Registry for the Evidentia hub

Holds the live state of every logged-in field unit, keyed by the connection
that owns it. Pure in-memory map; one instance per server process (or per
test). All access happens from the event loop, one handler at a time.
"""

import logging
from typing import Dict, List, Optional, Any

from .models import ConnectionId, UnitState

LOGGER = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    Insertion-ordered map of connection id -> UnitState.

    The registry itself never refuses an upsert. Callers that must not create
    entries (bare location updates) check membership first.
    """

    def __init__(self):
        self._units: Dict[ConnectionId, UnitState] = {}

    def __contains__(self, connection_id: ConnectionId) -> bool:
        return connection_id in self._units

    def __len__(self) -> int:
        return len(self._units)

    def get(self, connection_id: ConnectionId) -> Optional[UnitState]:
        return self._units.get(connection_id)

    def upsert(self, connection_id: ConnectionId, fields: Dict[str, Any]) -> UnitState:
        """
        Create an entry or shallow-merge into the existing one.

        Args:
            connection_id: Owning connection
            fields: Partial unit state supplied by the unit

        Returns:
            The (possibly new) UnitState for this connection
        """
        unit = self._units.get(connection_id)
        if unit is None:
            unit = UnitState(connection_id=connection_id)
            self._units[connection_id] = unit
            LOGGER.debug(f'Registry: added {connection_id}')
        unit.merge(fields)
        return unit

    def replace(self, connection_id: ConnectionId, fields: Dict[str, Any]) -> UnitState:
        """Overwrite the entry for a connection with a fresh one built from fields"""
        unit = UnitState(connection_id=connection_id)
        unit.merge(fields)
        # Re-assigning an existing key keeps its insertion position
        self._units[connection_id] = unit
        return unit

    def remove(self, connection_id: ConnectionId) -> Optional[UnitState]:
        """Remove an entry; removing an absent id is a no-op"""
        unit = self._units.pop(connection_id, None)
        if unit is not None:
            LOGGER.debug(f'Registry: removed {connection_id} ({unit.name})')
        return unit

    def snapshot_all(self) -> List[dict]:
        """Serialized copy of every entry, in insertion order"""
        return [unit.to_dict() for unit in self._units.values()]
