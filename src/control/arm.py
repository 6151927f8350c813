"""Elastic pool capacity changes through the management REST API."""

import logging
from typing import List, Optional, Protocol

import httpx

from src.scaling.exceptions import MutationError
from src.scaling.models import MutationResult, TargetSettings

logger = logging.getLogger(__name__)

HYPERSCALE_TIER = "Hyperscale"

# Error markers of a 409 caused by geo-replication links catching up.
CONFLICT_MARKERS = ("ElasticPoolUpdateLinksNotInCatchup", "40940")

ACCEPTED_STATUS_CODES = (200, 201, 202)
DENIED_STATUS_CODES = (401, 403, 404)


class TokenCredential(Protocol):
    async def get_token(self) -> str:
        ...


def is_transient_http_error(error: BaseException) -> bool:
    """True for throttling, server errors and transport failures."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False


class ArmResourceControl:
    """Reads and patches elastic pools on one server."""

    def __init__(
        self,
        credential: TokenCredential,
        subscription_id: str,
        resource_group: str,
        server_name: str,
        client: Optional[httpx.AsyncClient] = None,
        endpoint: str = "https://management.azure.com",
        api_version: str = "2021-11-01",
        timeout: float = 30.0,
    ):
        """Initialize the control-plane client.

        Args:
            credential: Supplies bearer tokens
            subscription_id: Subscription that owns the server
            resource_group: Resource group of the server
            server_name: SQL server name
            client: HTTP client; one is created when omitted
            endpoint: Management API base URL
            api_version: Management API version
            timeout: Request timeout in seconds
        """
        self.credential = credential
        self.subscription_id = subscription_id
        self.resource_group = resource_group
        self.server_name = server_name
        self.endpoint = endpoint.rstrip("/")
        self.api_version = api_version
        self._client = client or httpx.AsyncClient(timeout=timeout)

    is_transient = staticmethod(is_transient_http_error)

    def pool_url(self, pool_id: str) -> str:
        return (
            f"{self.endpoint}/subscriptions/{self.subscription_id}"
            f"/resourceGroups/{self.resource_group}"
            f"/providers/Microsoft.Sql/servers/{self.server_name}"
            f"/elasticPools/{pool_id}"
        )

    async def _request(self, method: str, pool_id: str, json: Optional[dict] = None) -> httpx.Response:
        token = await self.credential.get_token()
        return await self._client.request(
            method,
            self.pool_url(pool_id),
            params={"api-version": self.api_version},
            headers={"Authorization": f"Bearer {token}"},
            json=json,
        )

    async def get_pool(self, pool_id: str) -> dict:
        """Fetch the pool resource.

        Raises:
            httpx.HTTPStatusError: If the request is not successful
        """
        response = await self._request("GET", pool_id)
        response.raise_for_status()
        return response.json()

    async def probe_permissions(self, pool_ids: List[str]) -> bool:
        """Check that every pool can be read.

        Returns:
            False when any pool is denied or missing

        Raises:
            httpx.HTTPError: For throttling, server or transport errors
        """
        for pool_id in pool_ids:
            response = await self._request("GET", pool_id)
            if response.status_code in DENIED_STATUS_CODES:
                logger.error(f"Failed to access elastic pool: {pool_id} (status {response.status_code})")
                return False
            response.raise_for_status()
        return True

    async def mutate(self, pool_id: str, settings: TargetSettings) -> MutationResult:
        """Submit a capacity change and return once it is accepted.

        The change keeps applying after this returns; later cycles see it
        through the operation status view.

        Raises:
            MutationError: If the pool is already at the target or the
                change is rejected for a reason other than a conflict
            httpx.HTTPStatusError: For throttling and server errors
        """
        pool = await self.get_pool(pool_id)
        sku = pool.get("sku") or {}
        capacity = int(settings.capacity)

        if sku.get("capacity") == capacity:
            raise MutationError(pool_id, f"Pool is already at {capacity} vCores. Nothing to do.")

        patch = {
            "sku": {
                "name": sku.get("name"),
                "tier": HYPERSCALE_TIER,
                "capacity": capacity,
            },
            "properties": {
                "perDatabaseSettings": {
                    "minCapacity": settings.per_unit_min,
                    "maxCapacity": settings.per_unit_max,
                }
            },
        }
        response = await self._request("PATCH", pool_id, json=patch)

        if response.status_code in ACCEPTED_STATUS_CODES:
            logger.info(f"{pool_id}: Capacity change to {capacity} accepted (status {response.status_code})")
            return MutationResult.ACCEPTED

        if response.status_code == 409:
            if any(marker in response.text for marker in CONFLICT_MARKERS):
                logger.warning(f"{pool_id}: Capacity change conflicts with geo-replication catch-up")
                return MutationResult.CONFLICT
            raise MutationError(
                pool_id,
                f"Failed to scale pool to {capacity} vCores due to a conflict error: {response.text}",
                status_code=409,
            )

        if response.status_code == 429 or response.status_code >= 500:
            response.raise_for_status()

        raise MutationError(
            pool_id,
            f"Failed to scale pool to {capacity} vCores: {response.text}",
            status_code=response.status_code,
        )

    async def close(self) -> None:
        await self._client.aclose()
        close_credential = getattr(self.credential, "close", None)
        if close_credential is not None:
            await close_credential()
