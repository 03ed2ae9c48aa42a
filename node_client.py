"""
Node HTTP Client
================
Talks to the embedded HTTP server on each microcontroller node.

Endpoints (plain HTTP, no auth):
- GET /digital?pin=<4|5|6|7>&val=<0|1>
- GET /pwm?pin=<9|10>&val=<0..255>
- GET /sensors -> {"temp": <number>, "gas": <number>, ...}

Command responses carry no acknowledgement and are never read.
"""
import logging
from typing import Dict, Any, Optional

import httpx

from error_handler import NodeUnreachable, TelemetryError

logger = logging.getLogger("node_client")

# Sensor payload key -> runtime state field
SENSOR_FIELDS = {
    "temp": "temperature",
    "gas": "gas_level",
}


def _as_number(value: Any) -> Optional[float]:
    """Return value as a number, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def parse_sensor_payload(payload: Any) -> Dict[str, float]:
    """
    Extract the readings the gateway understands from a /sensors payload.
    Unknown keys and non-numeric values are ignored.

    Raises:
        TelemetryError: If the payload is not a JSON object
    """
    if not isinstance(payload, dict):
        raise TelemetryError(f"Sensor payload is not an object: {type(payload).__name__}")

    readings = {}
    for key, field_name in SENSOR_FIELDS.items():
        if key not in payload:
            continue
        number = _as_number(payload[key])
        if number is None:
            logger.debug(f"Ignoring non-numeric sensor value {key}={payload[key]!r}")
            continue
        readings[field_name] = number
    return readings


class NodeClient:
    """Async client for node endpoints, shared by all devices."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        if client is None:
            # No explicit deadline unless configured: httpx's default applies
            client = httpx.AsyncClient(timeout=timeout) if timeout else httpx.AsyncClient()
        self._client = client

    @staticmethod
    def _url(ip: str, path: str) -> str:
        return f"http://{ip}/{path}"

    async def send_command(self, ip: str, kind: str, pin: int, value: int):
        """
        Fire a digital/pwm command. The response body is not read.

        Raises:
            NodeUnreachable: On any transport failure
        """
        try:
            await self._client.get(self._url(ip, kind), params={"pin": pin, "val": value})
        except httpx.HTTPError as e:
            raise NodeUnreachable(f"{ip}: {e}") from e

    async def read_sensors(self, ip: str) -> Dict[str, float]:
        """
        Read the node's sensor snapshot.

        Returns:
            Dict with 'temperature' and/or 'gas_level'

        Raises:
            NodeUnreachable: On transport failure
            TelemetryError: On a non-2xx status or unusable payload
        """
        try:
            response = await self._client.get(self._url(ip, "sensors"))
        except httpx.HTTPError as e:
            raise NodeUnreachable(f"{ip}: {e}") from e

        if response.is_error:
            raise TelemetryError(f"{ip}: sensors returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise TelemetryError(f"{ip}: sensors payload is not JSON") from e

        return parse_sensor_payload(payload)

    async def close(self):
        await self._client.aclose()
