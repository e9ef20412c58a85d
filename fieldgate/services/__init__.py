"""
Fieldgate Services

Layered service architecture:
1. Bus Service - Modbus connection, register reads, transport guard
2. Telemetry Service - Line protocol encoding, InfluxDB delivery
3. Polling Service - Per-device poll loops, health aggregation, shutdown
4. Status Service - Read-only HTTP status endpoints
"""
