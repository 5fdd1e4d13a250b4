"""CAT control for amateur radio transceivers over serial links."""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - fallback when package metadata missing
    __version__ = version("rigcat")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

from .controller import ConnectionState, RadioController, SerialRuntime
from .errors import ConfigurationError, NotConnectedError, RigError, TransportError
from .events import RadioState
from .registry import DriverRegistry, default_registry

__all__ = [
    "__version__",
    "ConnectionState",
    "RadioController",
    "SerialRuntime",
    "ConfigurationError",
    "NotConnectedError",
    "RigError",
    "TransportError",
    "RadioState",
    "DriverRegistry",
    "default_registry",
]
