"""
Fieldgate - Modbus to InfluxDB gateway.

Polls registers from devices on one shared Modbus bus and forwards the
values to InfluxDB as line protocol, reconnecting whenever the bus goes
unhealthy.
"""

__version__ = "1.0.0"
