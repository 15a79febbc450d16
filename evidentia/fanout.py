"""
Broadcast fan-out contract

Two delivery modes cover everything the hub sends: every connected session,
or every session except the one that originated the message. A single
addressed send is used for the initial snapshot on connect.

Implementations must not block: fan-out is called from inside handlers that
may not yield to the event loop part-way through.
"""

import json
from typing import Any, Protocol

from .models import ConnectionId


class Fanout(Protocol):
    """Structural interface so handlers can be tested with a recording fake"""

    def send_all(self, event_type: str, data: Any) -> int:
        ...

    def send_all_except(self, connection_id: ConnectionId, event_type: str, data: Any) -> int:
        ...

    def send_to(self, connection_id: ConnectionId, event_type: str, data: Any) -> bool:
        ...


def encode_event(event_type: str, data: Any) -> str:
    """Wire envelope shared by every outbound event"""
    return json.dumps({'type': event_type, 'data': data}, separators=(',', ':'))
