"""
Common Utilities

Shared modules used across all services:
- config.py - Configuration dataclasses and YAML loader
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .config import (
    Device,
    GatewayConfig,
    HealthSettings,
    InfluxDb2Settings,
    InfluxDbSettings,
    ModbusTcpSettings,
    ReconnectSettings,
    Register,
    RegisterDataType,
    RegisterKind,
    RegisterMap,
    SerialSettings,
    StatusSettings,
    ThresholdPolicyName,
    load_config_file,
    load_gateway_config,
    parse_duration,
)
from .exceptions import (
    FieldgateError,
    ConfigError,
    BusError,
    ConnectError,
    TransportError,
    SinkError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    log_register_read,
    log_escalation,
)

__all__ = [
    # Config
    "Device",
    "GatewayConfig",
    "HealthSettings",
    "InfluxDb2Settings",
    "InfluxDbSettings",
    "ModbusTcpSettings",
    "ReconnectSettings",
    "Register",
    "RegisterDataType",
    "RegisterKind",
    "RegisterMap",
    "SerialSettings",
    "StatusSettings",
    "ThresholdPolicyName",
    "load_config_file",
    "load_gateway_config",
    "parse_duration",
    # Exceptions
    "FieldgateError",
    "ConfigError",
    "BusError",
    "ConnectError",
    "TransportError",
    "SinkError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "log_register_read",
    "log_escalation",
]
