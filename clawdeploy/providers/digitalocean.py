"""
DigitalOcean API Client

Async client for the subset of the v2 API the deploy flow consumes:
SSH key registration and droplet create/get/list/delete.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from ..config import DROPLET_IMAGE, DROPLET_TAG
from ..errors import ProviderAPIError, SerializationError, TransportError

logger = structlog.get_logger(__name__)

API_BASE = "https://api.digitalocean.com/v2"


class NetworkV4(BaseModel):
    ip_address: str
    type: str


class Networks(BaseModel):
    v4: List[NetworkV4] = Field(default_factory=list)


class RegionInfo(BaseModel):
    slug: str
    name: str = ""


class InstanceDescriptor(BaseModel):
    """Read-only view of a droplet; refresh by fetching again."""

    id: int
    name: str
    status: str
    networks: Networks = Field(default_factory=Networks)
    region: RegionInfo
    size_slug: str = ""

    @property
    def public_ip(self) -> Optional[str]:
        for network in self.networks.v4:
            if network.type == "public":
                return network.ip_address
        return None


class SshKeyInfo(BaseModel):
    id: int
    fingerprint: str
    name: str = ""


class DigitalOceanClient:
    def __init__(
        self,
        token: str,
        *,
        base_url: str = API_BASE,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "DigitalOceanClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            logger.warning("do_transport_error", operation=operation, error=str(e))
            raise TransportError(f"{operation}: {e}") from e

        if not response.is_success:
            logger.error("do_api_error", operation=operation, status=response.status_code)
            raise ProviderAPIError(operation, response.status_code, response.text)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise SerializationError(f"{operation}: {e}") from e

    @staticmethod
    def _parse(model, payload: Any, operation: str):
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise SerializationError(f"{operation}: {e}") from e

    async def upload_ssh_key(self, name: str, public_key: str) -> SshKeyInfo:
        """Register a public key. Returns key ID and fingerprint."""
        operation = "Upload SSH key"
        data = await self._request(
            operation, "POST", "/account/keys", json={"name": name, "public_key": public_key}
        )
        return self._parse(SshKeyInfo, data.get("ssh_key"), operation)

    async def create_droplet(
        self,
        name: str,
        region: str,
        size: str,
        ssh_key_id: int,
        user_data: str,
        enable_backups: bool,
    ) -> InstanceDescriptor:
        operation = "Create droplet"
        body = {
            "name": name,
            "region": region,
            "size": size,
            "image": DROPLET_IMAGE,
            "ssh_keys": [ssh_key_id],
            "user_data": user_data,
            "tags": [DROPLET_TAG],
            "backups": enable_backups,
        }
        data = await self._request(operation, "POST", "/droplets", json=body)
        return self._parse(InstanceDescriptor, data.get("droplet"), operation)

    async def get_droplet(self, droplet_id: int) -> InstanceDescriptor:
        operation = "Get droplet"
        data = await self._request(operation, "GET", f"/droplets/{droplet_id}")
        return self._parse(InstanceDescriptor, data.get("droplet"), operation)

    async def list_droplets(self) -> List[InstanceDescriptor]:
        """List all droplets carrying the deploy tag."""
        operation = "List droplets"
        data = await self._request(
            operation, "GET", "/droplets", params={"tag_name": DROPLET_TAG}
        )
        return [self._parse(InstanceDescriptor, d, operation) for d in data.get("droplets", [])]

    async def delete_droplet(self, droplet_id: int) -> None:
        await self._request("Delete droplet", "DELETE", f"/droplets/{droplet_id}")

    async def list_ssh_keys(self) -> List[SshKeyInfo]:
        operation = "List SSH keys"
        data = await self._request(operation, "GET", "/account/keys", params={"per_page": 200})
        return [self._parse(SshKeyInfo, k, operation) for k in data.get("ssh_keys", [])]

    async def delete_ssh_key(self, key_id: int) -> None:
        await self._request("Delete SSH key", "DELETE", f"/account/keys/{key_id}")
