"""
Event names and protocol constants
"""

# Client -> hub events
EVT_LOGIN           = 'login'
EVT_LOCATION_UPDATE = 'location_update'
EVT_RADIO_VOICE     = 'radio_voice'
EVT_RADIO_TEXT      = 'radio_text'

# Hub -> client events
EVT_UNITS_UPDATE    = 'units_update'

# Keepalive (plain text frames, not JSON)
PING = 'ping'
PONG = 'pong'

# Fields a unit may never set on its own entry
RESERVED_UNIT_FIELDS = ('connection_id',)

# Message body stored in the radio log in place of raw audio
AUDIO_PLACEHOLDER = '[Voice Message]'

# Defaults
DEFAULT_PORT = 3000
DEFAULT_WS_MAX_SIZE = 50 * 1024 * 1024  # Voice clips arrive as single frames
DEFAULT_SEND_QUEUE_SIZE = 256
DEFAULT_LOG_TABLE = 'radio_logs'
DEFAULT_LOG_TIMEOUT = 10.0
