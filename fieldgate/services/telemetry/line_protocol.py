"""
Line Protocol Encoder

Pure functions turning register readings into InfluxDB line protocol:

    <measurement>[,<key>=<value>]* value=<value> <timestamp>\\n

Commas and spaces are escaped in measurements, tag keys and tag values;
equals signs are escaped in tag keys and tag values only.
"""

import math
from typing import Iterable, Sequence

from fieldgate.common.config import Device
from fieldgate.common.readings import Reading

_MEASUREMENT_ESCAPES = str.maketrans({",": "\\,", " ": "\\ "})
_TAG_ESCAPES = str.maketrans({",": "\\,", " ": "\\ ", "=": "\\="})


def escape_measurement(name: str) -> str:
    return name.translate(_MEASUREMENT_ESCAPES)


def escape_tag(text: str) -> str:
    return text.translate(_TAG_ESCAPES)


def format_value(value: float | int) -> str:
    """Render a field value; rejects values line protocol cannot carry"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"unencodable field value {value!r}")
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError(f"unencodable field value {value!r}")
        return repr(value)
    return str(value)


def encode_line(
    measurement: str,
    tags: Sequence[tuple[str, str]],
    value: float | int,
    timestamp: int,
) -> str:
    """Encode one sample as a newline-terminated line"""
    parts = [escape_measurement(measurement)]
    for key, tag_value in tags:
        parts.append(f"{escape_tag(key)}={escape_tag(tag_value)}")
    return f"{','.join(parts)} value={format_value(value)} {timestamp}\n"


def device_tags(device: Device, address: int) -> list[tuple[str, str]]:
    """Tag set for one register of a device, in emission order"""
    register = device.register_map.get(address)
    tags = [
        ("group", device.group),
        ("device", str(device.unit_id)),
        ("address", str(address)),
    ]
    tags.extend(device.tags)
    tags.extend(register.tags)
    return tags


def encode_readings(device: Device, readings: Iterable[Reading]) -> str:
    """Encode one cycle's readings into a single payload"""
    return "".join(
        encode_line(
            device.register_map.name_of(reading.address),
            device_tags(device, reading.address),
            reading.value,
            reading.timestamp,
        )
        for reading in readings
    )
