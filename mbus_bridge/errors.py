"""Exception hierarchy for the M-Bus to Homie bridge."""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class TransportError(BridgeError):
    """A bus read failed (tool missing, timeout, bad frame or malformed XML)."""

    def __init__(self, message: str, address: str | None = None):
        super().__init__(message)
        self.address = address


class PropertyLookupError(BridgeError, KeyError):
    """A refresh referenced a property that was never created on the node."""

    def __init__(self, node: str, key: str):
        super().__init__(f"Property '{key}' not found on node '{node}'")
        self.node = node
        self.key = key

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.args[0]


class ConfigurationError(BridgeError):
    """Required configuration is missing or invalid."""
