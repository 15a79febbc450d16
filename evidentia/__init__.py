"""
Evidentia Hub - live presence and radio relay for field units

This package implements the real-time core of the Evidentia security
operations dashboard: the registry of connected units, the presence
protocol, and the voice/text radio relay with its durable log.
"""

from .constants import *
from .models import UnitState, RadioMessage
from .registry import ConnectionRegistry
from .presence import PresenceProtocol, Login, LocationUpdate, Disconnect
from .relay import RadioRelay
from .sessions import Session, SessionHub
from .hub import Hub

__version__ = '1.0.0'

__all__ = [
    'UnitState',
    'RadioMessage',
    'ConnectionRegistry',
    'PresenceProtocol',
    'Login',
    'LocationUpdate',
    'Disconnect',
    'RadioRelay',
    'Session',
    'SessionHub',
    'Hub'
]
