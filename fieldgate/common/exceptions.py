"""
Custom Exception Classes for the Fieldgate Gateway

Hierarchical exception structure for error handling across services.
Bus errors are treated as boolean failure signals by the pollers;
only the lifecycle manager acts on them beyond logging.
"""


class FieldgateError(Exception):
    """Base exception for all gateway errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(FieldgateError):
    """Configuration-related errors"""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        prefix = f"{key}: " if key else ""
        super().__init__(f"Config Error: {prefix}{message}", recoverable=False)


class BusError(FieldgateError):
    """Field-bus communication errors"""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        recoverable: bool = True,
    ):
        self.endpoint = endpoint
        super().__init__(message, recoverable)


class ConnectError(BusError):
    """Connection to the field bus could not be established"""

    def __init__(self, message: str, endpoint: str | None = None):
        super().__init__(f"Connect Error: {message}", endpoint, recoverable=True)


class TransportError(BusError):
    """A register exchange could not be carried out on the bus"""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        unit_id: int | None = None,
    ):
        self.unit_id = unit_id
        super().__init__(f"Transport Error: {message}", endpoint, recoverable=True)


class SinkError(FieldgateError):
    """Telemetry sink delivery errors"""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(f"Sink Error: {message}", recoverable=True)
