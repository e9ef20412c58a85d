"""
InfluxDB Telemetry Sinks

Best-effort HTTP delivery of line-protocol payloads. Each payload is sent
once; nothing is buffered or retried.

Optimized for low CPU usage:
- Reuses single HTTP client (no connection overhead per request)
"""

from typing import Protocol, runtime_checkable

import httpx

from fieldgate.common.config import InfluxDb2Settings, InfluxDbSettings
from fieldgate.common.exceptions import SinkError
from fieldgate.common.logging_setup import get_service_logger

logger = get_service_logger("telemetry.sink")


@runtime_checkable
class TelemetrySink(Protocol):
    """Protocol for line-protocol sinks.

    Implementations: InfluxDbSink, InfluxDb2Sink.
    """

    async def send(self, body: str) -> httpx.Response:
        """POST one payload; raises SinkError if no response was received"""
        ...

    async def close(self) -> None:
        """Release the HTTP client"""
        ...


class _HttpSink:
    """Shared HTTP plumbing for the InfluxDB write APIs"""

    def __init__(
        self,
        write_url: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.write_url = write_url
        self.timeout = timeout
        self._transport = transport
        # Reusable HTTP client - avoids connection overhead per request
        self._client: httpx.AsyncClient | None = None

    def _params(self) -> dict[str, str]:
        return {"precision": "s"}

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "text/plain; charset=utf-8"}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def send(self, body: str) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.post(
                self.write_url,
                params=self._params(),
                headers=self._headers(),
                content=body.encode("utf-8"),
            )
        except httpx.TimeoutException as e:
            raise SinkError("Timeout", url=self.write_url) from e
        except httpx.HTTPError as e:
            raise SinkError(f"{e.__class__.__name__}: {e}", url=self.write_url) from e

        logger.debug(
            f"POST {self.write_url} -> HTTP {response.status_code} ({len(body)} bytes)"
        )
        return response

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class InfluxDbSink(_HttpSink):
    """InfluxDB 1.x: POST /write?db=...; credentials passed as u/p"""

    def __init__(
        self,
        settings: InfluxDbSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(f"{settings.hostname}/write", settings.timeout, transport)
        self.settings = settings

    def _params(self) -> dict[str, str]:
        params = {"db": self.settings.database, "precision": "s"}
        if self.settings.username:
            params["u"] = self.settings.username
        if self.settings.password:
            params["p"] = self.settings.password
        return params


class InfluxDb2Sink(_HttpSink):
    """InfluxDB 2.x: POST /write?org=...&bucket=... with a token header"""

    def __init__(
        self,
        settings: InfluxDb2Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(f"{settings.hostname}/write", settings.timeout, transport)
        self.settings = settings

    def _params(self) -> dict[str, str]:
        return {
            "org": self.settings.organization,
            "bucket": self.settings.bucket,
            "precision": "s",
        }

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Authorization"] = f"Token {self.settings.auth_token}"
        return headers


def create_sink(
    settings: InfluxDbSettings | InfluxDb2Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TelemetrySink:
    """Pick the sink matching the configured InfluxDB version"""
    if isinstance(settings, InfluxDb2Settings):
        return InfluxDb2Sink(settings, transport)
    return InfluxDbSink(settings, transport)
