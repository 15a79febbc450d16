"""
Exception types for the Evidentia hub
"""


class EvidentiaError(Exception):
    """Base class for hub errors"""


class ConfigError(EvidentiaError):
    """Raised when the configuration file is missing, unreadable or invalid"""


class LogStoreError(EvidentiaError):
    """Raised when the durable radio log rejects a write"""
    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
