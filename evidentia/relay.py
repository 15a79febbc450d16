"""
Radio relay

Voice and text transmissions have different fan-out rules:

- Voice goes to every session except the sender, which already played its
  own audio locally.
- Text goes to every session including the sender, whose UI shows the
  message only once it comes back from the hub.

Both kinds are then handed to the log writer. Broadcast never waits for, or
depends on, the outcome of that write.
"""

import logging
from typing import Any, Optional

from .constants import AUDIO_PLACEHOLDER, EVT_RADIO_TEXT, EVT_RADIO_VOICE
from .fanout import Fanout
from .log_store import LogWriter
from .models import ConnectionId, RadioMessage
from .registry import ConnectionRegistry

LOGGER = logging.getLogger(__name__)


class RadioRelay:
    """Fans out radio traffic and issues the matching log write"""

    def __init__(self, fanout: Fanout, log_writer: Optional[LogWriter] = None,
                 registry: Optional[ConnectionRegistry] = None,
                 audio_placeholder: str = AUDIO_PLACEHOLDER):
        self.fanout = fanout
        self.log_writer = log_writer
        self.registry = registry
        self.audio_placeholder = audio_placeholder
        self.stats = {
            'voice_relayed': 0,
            'text_relayed': 0
        }

    def _default_sender(self, connection_id: ConnectionId) -> str:
        """Display name for a sender that did not name itself in the payload"""
        if self.registry is not None:
            unit = self.registry.get(connection_id)
            if unit is not None and unit.name:
                return unit.name
        return 'Unknown'

    def relay_voice(self, connection_id: ConnectionId, data: Any) -> RadioMessage:
        """Relay a voice clip to everyone but the sender, then log it"""
        message = RadioMessage.from_payload(data, is_voice=True,
                                            default_sender=self._default_sender(connection_id))
        delivered = self.fanout.send_all_except(connection_id, EVT_RADIO_VOICE, message.to_broadcast())
        self.stats['voice_relayed'] += 1
        LOGGER.info(f'🎙️ Voice from {message.sender} relayed to {delivered} session(s)')
        self._persist(message)
        return message

    def relay_text(self, connection_id: ConnectionId, data: Any) -> RadioMessage:
        """Relay a text message to everyone including the sender, then log it"""
        message = RadioMessage.from_payload(data, is_voice=False,
                                            default_sender=self._default_sender(connection_id))
        delivered = self.fanout.send_all(EVT_RADIO_TEXT, message.to_broadcast())
        self.stats['text_relayed'] += 1
        LOGGER.info(f'💬 Text from {message.sender} relayed to {delivered} session(s): {message.text!r}')
        self._persist(message)
        return message

    def _persist(self, message: RadioMessage) -> None:
        if self.log_writer is None:
            return
        try:
            self.log_writer.submit(message.to_log_record(self.audio_placeholder))
        except RuntimeError as e:
            # No running event loop; the transmission has already been relayed
            LOGGER.warning(f'Could not schedule radio log write for {message.sender}: {e}')
