"""
Configuration Dataclasses

Type-safe configuration structures for the gateway.
Configuration is loaded once from a YAML file before the lifecycle
manager starts and is never re-read at runtime.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator

import yaml

from .exceptions import ConfigError


class RegisterKind(str, Enum):
    """Modbus register tables that can be polled"""
    INPUT = "input"
    HOLDING = "holding"


class RegisterDataType(str, Enum):
    """Modbus register data types (big-endian word order)"""
    U16 = "u16"
    I16 = "i16"
    U32 = "u32"
    I32 = "i32"
    F32 = "f32"
    F64 = "f64"

    @property
    def register_count(self) -> int:
        return {
            RegisterDataType.U16: 1,
            RegisterDataType.I16: 1,
            RegisterDataType.U32: 2,
            RegisterDataType.I32: 2,
            RegisterDataType.F32: 2,
            RegisterDataType.F64: 4,
        }[self]


class ThresholdPolicyName(str, Enum):
    """Selectable bus health threshold formulas"""
    RATIO = "ratio"
    FLAT = "flat"


Tags = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class Register:
    """Modbus register definition"""
    address: int
    name: str
    kind: RegisterKind = RegisterKind.INPUT
    data_type: RegisterDataType = RegisterDataType.U16
    scale: float = 1.0
    tags: Tags = ()

    @property
    def count(self) -> int:
        return self.data_type.register_count


class RegisterMap:
    """
    Read-only, bidirectional address <-> name lookup for one sensor group.

    Built once from a template and shared by every device of that group.
    Iterates registers in configuration order.
    """

    def __init__(self, registers: Iterable[Register]):
        ordered: list[Register] = []
        by_address: dict[int, Register] = {}
        by_name: dict[str, int] = {}

        for register in registers:
            if not 0 <= register.address <= 0xFFFF:
                raise ConfigError(
                    f"address {register.address} out of range [0, 65535]",
                    key=register.name,
                )
            if register.address in by_address:
                raise ConfigError(
                    f"duplicate register address {register.address}",
                    key=register.name,
                )
            if register.name in by_name:
                raise ConfigError(
                    f"duplicate register name {register.name!r}",
                    key=register.name,
                )
            ordered.append(register)
            by_address[register.address] = register
            by_name[register.name] = register.address

        self._registers = tuple(ordered)
        self._by_address = MappingProxyType(by_address)
        self._by_name = MappingProxyType(by_name)

    def __iter__(self) -> Iterator[Register]:
        return iter(self._registers)

    def __len__(self) -> int:
        return len(self._registers)

    def __contains__(self, address: object) -> bool:
        return address in self._by_address

    def __repr__(self) -> str:
        return f"RegisterMap({[r.name for r in self._registers]!r})"

    @property
    def addresses(self) -> tuple[int, ...]:
        return tuple(r.address for r in self._registers)

    def get(self, address: int) -> Register:
        """Register definition at address (KeyError if unknown)"""
        return self._by_address[address]

    def name_of(self, address: int) -> str:
        return self._by_address[address].name

    def address_of(self, name: str) -> int:
        return self._by_name[name]


@dataclass(frozen=True)
class Device:
    """
    One polled unit on the shared bus.

    A device whose register map holds more than one register is a
    sensor group: losing every register in one cycle is treated as a
    connection-level fault rather than a per-device failure.
    """
    unit_id: int
    group: str
    scan_interval: float
    register_map: RegisterMap = field(compare=False)
    tags: Tags = ()

    @property
    def name(self) -> str:
        return f"{self.group}/{self.unit_id}"

    @property
    def is_group(self) -> bool:
        return len(self.register_map) > 1


@dataclass(frozen=True)
class ModbusTcpSettings:
    """Modbus TCP endpoint"""
    hostname: str
    port: int = 502
    timeout: float = 1.0

    @property
    def endpoint(self) -> str:
        return f"{self.hostname}:{self.port}"


@dataclass(frozen=True)
class SerialSettings:
    """Modbus RTU serial line"""
    port: str
    baudrate: int = 9600
    parity: str = "N"
    stopbits: int = 1
    bytesize: int = 8
    timeout: float = 1.0

    @property
    def endpoint(self) -> str:
        return f"{self.port}@{self.baudrate}"


@dataclass(frozen=True)
class InfluxDbSettings:
    """InfluxDB 1.x write endpoint"""
    hostname: str
    database: str
    username: str | None = None
    password: str | None = None
    timeout: float = 5.0


@dataclass(frozen=True)
class InfluxDb2Settings:
    """InfluxDB 2.x write endpoint"""
    hostname: str
    organization: str
    bucket: str
    auth_token: str
    timeout: float = 5.0


@dataclass(frozen=True)
class HealthSettings:
    """Bus health accounting"""
    threshold_policy: ThresholdPolicyName = ThresholdPolicyName.RATIO


@dataclass(frozen=True)
class ReconnectSettings:
    """Reconnect delay; max_delay > delay enables exponential backoff with jitter"""
    delay: float = 5.0
    max_delay: float = 5.0


@dataclass(frozen=True)
class StatusSettings:
    """Status HTTP server (port 0 disables it)"""
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration"""
    bus: ModbusTcpSettings | SerialSettings
    sink: InfluxDbSettings | InfluxDb2Settings
    devices: tuple[Device, ...]
    health: HealthSettings = field(default_factory=HealthSettings)
    reconnect: ReconnectSettings = field(default_factory=ReconnectSettings)
    status: StatusSettings = field(default_factory=StatusSettings)


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value: Any, key: str) -> float:
    """Parse "500ms", "2s", "1m", "1h" or a bare number of seconds"""
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration {value!r}", key=key)
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ConfigError(f"invalid duration {value!r}", key=key)
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds < 0:
        raise ConfigError(f"duration must not be negative, got {value!r}", key=key)
    return seconds


def _require(data: dict, name: str, section: str) -> Any:
    if name not in data or data[name] in (None, ""):
        raise ConfigError("missing required value", key=f"{section}.{name}")
    return data[name]


def _int(value: Any, key: str, min_val: int, max_val: int) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{value!r} is not a valid integer", key=key)
    try:
        val = int(value)
    except (ValueError, TypeError):
        raise ConfigError(f"{value!r} is not a valid integer", key=key)
    if not (min_val <= val <= max_val):
        raise ConfigError(f"{val} out of range [{min_val}, {max_val}]", key=key)
    return val


def _float(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{value!r} is not a valid number", key=key)
    try:
        return float(value)
    except (ValueError, TypeError):
        raise ConfigError(f"{value!r} is not a valid number", key=key)


def _tags(value: Any, key: str) -> Tags:
    if value is None:
        return ()
    if not isinstance(value, dict):
        raise ConfigError("tags must be a mapping", key=key)
    return tuple((str(k), str(v)) for k, v in value.items())


def _merge_tags(base: Tags, override: Tags) -> Tags:
    """Override keys in place, append new keys"""
    merged = dict(base)
    merged.update(override)
    return tuple(merged.items())


def _load_bus(data: dict) -> ModbusTcpSettings | SerialSettings:
    has_tcp = bool(data.get("modbus"))
    has_serial = bool(data.get("serial"))
    if has_tcp == has_serial:
        raise ConfigError("exactly one of 'modbus' or 'serial' must be configured")

    if has_tcp:
        tcp = data["modbus"]
        return ModbusTcpSettings(
            hostname=str(_require(tcp, "hostname", "modbus")),
            port=_int(tcp.get("port", 502), "modbus.port", 1, 65535),
            timeout=parse_duration(tcp.get("timeout", "1s"), "modbus.timeout"),
        )

    serial = data["serial"]
    parity = str(serial.get("parity", "N")).upper()
    if parity not in ("N", "E", "O"):
        raise ConfigError(f"{parity!r} is not one of N, E, O", key="serial.parity")
    return SerialSettings(
        port=str(_require(serial, "port", "serial")),
        baudrate=_int(serial.get("baudrate", 9600), "serial.baudrate", 300, 921600),
        parity=parity,
        stopbits=_int(serial.get("stopbits", 1), "serial.stopbits", 1, 2),
        bytesize=_int(serial.get("bytesize", 8), "serial.bytesize", 5, 8),
        timeout=parse_duration(serial.get("timeout", "1s"), "serial.timeout"),
    )


def _load_sink(data: dict) -> InfluxDbSettings | InfluxDb2Settings:
    has_v1 = bool(data.get("influxdb"))
    has_v2 = bool(data.get("influxdb2"))
    if has_v1 == has_v2:
        raise ConfigError("exactly one of 'influxdb' or 'influxdb2' must be configured")

    if has_v1:
        v1 = data["influxdb"]
        return InfluxDbSettings(
            hostname=str(_require(v1, "hostname", "influxdb")).rstrip("/"),
            database=str(_require(v1, "database", "influxdb")),
            username=v1.get("username"),
            password=v1.get("password"),
            timeout=parse_duration(v1.get("timeout", "5s"), "influxdb.timeout"),
        )

    v2 = data["influxdb2"]
    return InfluxDb2Settings(
        hostname=str(_require(v2, "hostname", "influxdb2")).rstrip("/"),
        organization=str(_require(v2, "organization", "influxdb2")),
        bucket=str(_require(v2, "bucket", "influxdb2")),
        auth_token=str(_require(v2, "auth_token", "influxdb2")),
        timeout=parse_duration(v2.get("timeout", "5s"), "influxdb2.timeout"),
    )


def _load_registers(entries: Any, kind: RegisterKind, key: str) -> list[Register]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ConfigError("must be a list", key=key)

    registers = []
    for i, r in enumerate(entries):
        entry_key = f"{key}[{i}]"
        if not isinstance(r, dict):
            raise ConfigError("must be a mapping", key=entry_key)
        try:
            data_type = RegisterDataType(str(r.get("data_type", "u16")).lower())
        except ValueError:
            raise ConfigError(f"unsupported data_type {r.get('data_type')!r}", key=entry_key)
        registers.append(Register(
            address=_int(_require(r, "addr", entry_key), f"{entry_key}.addr", 0, 0xFFFF),
            name=str(_require(r, "name", entry_key)),
            kind=kind,
            data_type=data_type,
            scale=_float(r.get("scale", 1.0), f"{entry_key}.scale"),
            tags=_tags(r.get("tags"), f"{entry_key}.tags"),
        ))
    return registers


@dataclass(frozen=True)
class _Template:
    scan_interval: float
    tags: Tags
    register_map: RegisterMap


def _load_templates(data: dict) -> dict[str, _Template]:
    templates = {}
    for name, t in (data.get("templates") or {}).items():
        key = f"templates.{name}"
        if not isinstance(t, dict):
            raise ConfigError("must be a mapping", key=key)

        registers = (
            _load_registers(t.get("input_registers"), RegisterKind.INPUT, f"{key}.input_registers")
            + _load_registers(t.get("holding_registers"), RegisterKind.HOLDING, f"{key}.holding_registers")
        )
        if not registers:
            raise ConfigError("template defines no registers", key=key)

        scan_interval = parse_duration(t.get("scan_interval", "1s"), f"{key}.scan_interval")
        if scan_interval <= 0:
            raise ConfigError("scan_interval must be positive", key=f"{key}.scan_interval")

        templates[str(name)] = _Template(
            scan_interval=scan_interval,
            tags=_tags(t.get("tags"), f"{key}.tags"),
            register_map=RegisterMap(registers),
        )
    return templates


def _load_devices(data: dict, templates: dict[str, _Template]) -> tuple[Device, ...]:
    entries = data.get("devices") or []
    if not entries:
        raise ConfigError("at least one device must be configured", key="devices")

    devices = []
    seen: set[tuple[str, int]] = set()
    for i, d in enumerate(entries):
        key = f"devices[{i}]"
        if not isinstance(d, dict):
            raise ConfigError("must be a mapping", key=key)
        template_name = str(_require(d, "template", key))
        template = templates.get(template_name)
        if template is None:
            raise ConfigError(f"unknown template {template_name!r}", key=f"{key}.template")

        unit_id = _int(_require(d, "id", key), f"{key}.id", 0, 247)
        if (template_name, unit_id) in seen:
            raise ConfigError(f"duplicate device {template_name}/{unit_id}", key=key)
        seen.add((template_name, unit_id))

        scan_interval = template.scan_interval
        if "scan_interval" in d:
            scan_interval = parse_duration(d["scan_interval"], f"{key}.scan_interval")
            if scan_interval <= 0:
                raise ConfigError("scan_interval must be positive", key=f"{key}.scan_interval")

        devices.append(Device(
            unit_id=unit_id,
            group=template_name,
            scan_interval=scan_interval,
            register_map=template.register_map,
            tags=_merge_tags(template.tags, _tags(d.get("tags"), f"{key}.tags")),
        ))
    return tuple(devices)


def load_gateway_config(data: dict) -> GatewayConfig:
    """Load GatewayConfig from dictionary (e.g., parsed YAML)"""
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be a mapping")

    templates = _load_templates(data)

    health_data = data.get("health") or {}
    try:
        policy = ThresholdPolicyName(str(health_data.get("threshold_policy", "ratio")).lower())
    except ValueError:
        raise ConfigError(
            f"unknown policy {health_data.get('threshold_policy')!r}",
            key="health.threshold_policy",
        )

    reconnect_data = data.get("reconnect") or {}
    delay = parse_duration(reconnect_data.get("delay", "5s"), "reconnect.delay")
    max_delay = parse_duration(reconnect_data.get("max_delay", delay), "reconnect.max_delay")
    if max_delay < delay:
        raise ConfigError("max_delay must not be less than delay", key="reconnect.max_delay")

    status_data = data.get("status") or {}

    return GatewayConfig(
        bus=_load_bus(data),
        sink=_load_sink(data),
        devices=_load_devices(data, templates),
        health=HealthSettings(threshold_policy=policy),
        reconnect=ReconnectSettings(delay=delay, max_delay=max_delay),
        status=StatusSettings(
            host=str(status_data.get("host", "127.0.0.1")),
            port=_int(status_data.get("port", 0), "status.port", 0, 65535),
        ),
    )


def load_config_file(path: str | Path) -> GatewayConfig:
    """Read and validate a YAML configuration file"""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"configuration file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}")

    return load_gateway_config(data or {})
