from __future__ import annotations


class RigError(Exception):
    """Base class for rigcat failures."""


class ConfigurationError(RigError, ValueError):
    """Bad driver id, mode, frequency or option; raised before any bytes go out."""


class NotConnectedError(RigError, RuntimeError):
    def __init__(self, message: str = "Not connected") -> None:
        super().__init__(message)


class TransportError(RigError, OSError):
    """The serial channel failed to open, write or stay open."""
