"""
Common data models used throughout the Evidentia hub
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from time import time

from .constants import AUDIO_PLACEHOLDER, RESERVED_UNIT_FIELDS

# Type definitions
ConnectionId = str


def coerce_payload(data: Any) -> Dict[str, Any]:
    """Return data if it is a dict, otherwise an empty dict (malformed payloads degrade to 'no fields')"""
    if isinstance(data, dict):
        return data
    return {}


@dataclass
class UnitState:
    """Live presence of one field unit, keyed by the connection that owns it"""
    connection_id: ConnectionId
    name: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    # Fields stored as attributes; everything else lands in extra
    CORE_FIELDS = ('name', 'lat', 'lng', 'status')

    def merge(self, fields: Dict[str, Any]) -> None:
        """
        Shallow-merge supplied fields into this state.
        Supplied keys overwrite, omitted keys keep their current value.
        """
        for key, value in fields.items():
            if key in RESERVED_UNIT_FIELDS:
                continue
            if key in self.CORE_FIELDS:
                setattr(self, key, value)
            else:
                self.extra[key] = value

    def to_dict(self) -> dict:
        """Convert to dictionary for broadcast; unset core fields are omitted"""
        result = {'connection_id': self.connection_id}
        for key in self.CORE_FIELDS:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        for key, value in self.extra.items():
            result.setdefault(key, value)
        return result


@dataclass
class RadioMessage:
    """
    A single radio transmission, voice or text.

    Never retained by the hub: it is fanned out and turned into a log record
    for the durable store in the same handler call.
    """
    sender: str
    is_voice: bool
    text: Optional[str] = None
    audio: Any = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    timestamp: float = field(default_factory=time)

    @classmethod
    def from_payload(cls, data: Any, is_voice: bool, default_sender: str = 'Unknown') -> 'RadioMessage':
        """Build a message from a client payload; missing fields stay absent"""
        data = coerce_payload(data)
        sender = data.get('sender') or data.get('name') or default_sender
        if is_voice:
            return cls(
                sender=sender,
                is_voice=True,
                audio=data.get('audio'),
                lat=data.get('lat'),
                lng=data.get('lng')
            )
        return cls(
            sender=sender,
            is_voice=False,
            text=data.get('text', data.get('message')),
            lat=data.get('lat'),
            lng=data.get('lng')
        )

    def _add_coordinates(self, target: dict) -> dict:
        if self.lat is not None:
            target['lat'] = self.lat
        if self.lng is not None:
            target['lng'] = self.lng
        return target

    def to_broadcast(self) -> dict:
        """Payload delivered to listening sessions"""
        payload = {'sender': self.sender, 'timestamp': self.timestamp}
        if self.is_voice:
            payload['audio'] = self.audio
        else:
            payload['text'] = self.text
        return self._add_coordinates(payload)

    def to_log_record(self, audio_placeholder: str = AUDIO_PLACEHOLDER) -> dict:
        """Record appended to the durable radio log"""
        if self.is_voice:
            record = {
                'sender': self.sender,
                'message': audio_placeholder,
                'is_voice': True,
                'audio_data': self.audio
            }
        else:
            record = {
                'sender': self.sender,
                'message': self.text,
                'is_voice': False
            }
        return self._add_coordinates(record)
