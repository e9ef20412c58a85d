"""
Telemetry Service - Line Protocol Forwarding

Responsibilities:
- Encode register readings as InfluxDB line protocol
- Deliver payloads to InfluxDB 1.x or 2.x over HTTP
"""

from .influx_sink import InfluxDb2Sink, InfluxDbSink, TelemetrySink, create_sink
from .line_protocol import encode_line, encode_readings

__all__ = [
    "InfluxDb2Sink",
    "InfluxDbSink",
    "TelemetrySink",
    "create_sink",
    "encode_line",
    "encode_readings",
]
