"""
Device Registry Client
Backend collaborator that persists devices, users and action history.
Keeps a local cache of DeviceRecord objects keyed by id.
"""
import logging
from typing import Dict, Any, Optional, List

import httpx

from device import DeviceRecord
from error_handler import BackendError

logger = logging.getLogger("registry")

DEFAULT_SERVER_URL = "http://localhost:3001/api"


class DeviceRegistry:
    """
    Thin REST client for the backend, plus the cached device records
    the gateway reads from.
    """

    def __init__(self, base_url: str = DEFAULT_SERVER_URL, client: Optional[httpx.AsyncClient] = None,
                 token: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        if client is None:
            client = httpx.AsyncClient(timeout=timeout) if timeout else httpx.AsyncClient()
        self._client = client
        self.records: Dict[str, DeviceRecord] = {}

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = await self._client.request(method, url, json=json, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(f"{method} {url} -> HTTP {e.response.status_code}",
                               status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {url} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(f"{method} {url} returned invalid JSON") from e

    # =========================================================================
    # DEVICE CACHE
    # =========================================================================

    def get(self, device_id) -> Optional[DeviceRecord]:
        return self.records.get(str(device_id))

    def all(self) -> List[DeviceRecord]:
        return list(self.records.values())

    def set_cached_status(self, device_id, status: str):
        """Mirror a primary output change into the cached record."""
        record = self.get(device_id)
        if record is None:
            logger.warning(f"[{device_id}] Cannot cache status, record unknown")
            return
        record.status = status

    async def refresh(self) -> List[DeviceRecord]:
        """Reload the device list from the backend, replacing the cache."""
        data = await self._request("GET", "devices") or []
        if isinstance(data, dict):
            data = data.get("devices", [])
        records = {}
        for item in data:
            try:
                record = DeviceRecord.from_dict(item)
            except (KeyError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed device record {item!r}: {e}")
                continue
            records[record.id] = record

        self.records = records
        logger.info(f"Loaded {len(records)} device records from backend")
        return self.all()

    # =========================================================================
    # DEVICES
    # =========================================================================

    async def update_status(self, device_id, status: str):
        """Persist the primary output state."""
        await self._request("PUT", f"devices/{device_id}/status", json={"status": status})
        logger.debug(f"[{device_id}] Backend status set to {status}")

    async def create_device(self, data: Dict[str, Any]) -> DeviceRecord:
        created = await self._request("POST", "devices", json=data)
        record = DeviceRecord.from_dict({**data, **(created or {})})
        self.records[record.id] = record
        logger.info(f"[{record.id}] Device created: {record.name}")
        return record

    async def update_device(self, device_id, data: Dict[str, Any]) -> DeviceRecord:
        updated = await self._request("PUT", f"devices/{device_id}", json=data)
        current = self.get(device_id)
        base = current.to_dict() if current else {"id": device_id}
        record = DeviceRecord.from_dict({**base, **data, **(updated or {})})
        self.records[record.id] = record
        return record

    async def delete_device(self, device_id):
        await self._request("DELETE", f"devices/{device_id}")
        self.records.pop(str(device_id), None)
        logger.info(f"[{device_id}] Device deleted")

    # =========================================================================
    # USERS / SESSION / HISTORY
    # =========================================================================

    async def list_users(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "users") or []

    async def create_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "users", json=data)

    async def update_user(self, user_id, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"users/{user_id}", json=data)

    async def delete_user(self, user_id):
        await self._request("DELETE", f"users/{user_id}")

    async def login(self, username: str, password: str) -> Optional[str]:
        """Authenticate and keep the returned session token."""
        data = await self._request("POST", "login", json={"username": username, "password": password}) or {}
        self.token = data.get("token")
        return self.token

    async def get_history(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "history") or []

    async def close(self):
        await self._client.aclose()
