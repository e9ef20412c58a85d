"""
Status Service - Read-Only HTTP Endpoints

Responsibilities:
- Expose gateway liveness for probes
- Expose the connection lifecycle snapshot
"""

from .server import StatusServer

__all__ = ["StatusServer"]
