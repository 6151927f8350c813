"""Unit tests for the management API client and credentials."""

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from src.control.arm import ArmResourceControl, is_transient_http_error
from src.control.credentials import ClientSecretCredential, StaticTokenCredential
from src.scaling.config import RetryPolicy
from src.scaling.exceptions import MutationError
from src.scaling.models import MutationResult, TargetSettings

POOL_RESOURCE = {
    "name": "pool-a",
    "sku": {"name": "HS_Gen5", "tier": "Hyperscale", "capacity": 8},
    "properties": {"perDatabaseSettings": {"minCapacity": 0, "maxCapacity": 6}},
}


def make_control(handler):
    """Build an ArmResourceControl whose requests are answered by ``handler``."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ArmResourceControl(
        credential=StaticTokenCredential("token-123"),
        subscription_id="sub-1",
        resource_group="rg-1",
        server_name="sql-1",
        client=client,
    )


def patch_responder(status_code, text=""):
    """Answer GET with the pool resource and PATCH with ``status_code``."""
    requests = []

    def handler(request):
        requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=POOL_RESOURCE)
        return httpx.Response(status_code, text=text)

    return handler, requests


class TestMutate:
    """Tests for submitting capacity changes."""

    @pytest.mark.asyncio
    async def test_accepted(self):
        handler, requests = patch_responder(202)
        control = make_control(handler)

        result = await control.mutate("pool-a", TargetSettings(capacity=10, per_unit_max=6))

        assert result is MutationResult.ACCEPTED
        patch = requests[-1]
        assert patch.method == "PATCH"
        assert patch.url.path == (
            "/subscriptions/sub-1/resourceGroups/rg-1"
            "/providers/Microsoft.Sql/servers/sql-1/elasticPools/pool-a"
        )
        assert patch.url.params["api-version"] == "2021-11-01"
        assert patch.headers["Authorization"] == "Bearer token-123"
        body = json.loads(patch.content)
        assert body["sku"] == {"name": "HS_Gen5", "tier": "Hyperscale", "capacity": 10}
        assert body["properties"]["perDatabaseSettings"] == {"minCapacity": 0, "maxCapacity": 6}

    @pytest.mark.asyncio
    async def test_catch_up_conflict_is_deferred(self):
        handler, _ = patch_responder(
            409, '{"error": {"code": "ElasticPoolUpdateLinksNotInCatchup", "message": "busy"}}'
        )
        control = make_control(handler)

        result = await control.mutate("pool-a", TargetSettings(capacity=10, per_unit_max=6))

        assert result is MutationResult.CONFLICT

    @pytest.mark.asyncio
    async def test_conflict_error_number_is_deferred(self):
        handler, _ = patch_responder(409, "Error 40940: links not in catch-up")
        control = make_control(handler)

        assert await control.mutate("pool-a", TargetSettings(10, 6)) is MutationResult.CONFLICT

    @pytest.mark.asyncio
    async def test_other_conflict_is_an_error(self):
        handler, _ = patch_responder(409, '{"error": {"code": "OperationInProgress"}}')
        control = make_control(handler)

        with pytest.raises(MutationError) as exc_info:
            await control.mutate("pool-a", TargetSettings(10, 6))

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_bad_request_is_an_error(self):
        handler, _ = patch_responder(400, "invalid capacity")
        control = make_control(handler)

        with pytest.raises(MutationError, match="invalid capacity"):
            await control.mutate("pool-a", TargetSettings(10, 6))

    @pytest.mark.asyncio
    async def test_server_error_is_raised_as_transient(self):
        handler, _ = patch_responder(503)
        control = make_control(handler)

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await control.mutate("pool-a", TargetSettings(10, 6))

        assert is_transient_http_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_already_at_target(self):
        handler, requests = patch_responder(202)
        control = make_control(handler)

        with pytest.raises(MutationError, match="already at 8 vCores"):
            await control.mutate("pool-a", TargetSettings(8, 6))

        assert [r.method for r in requests] == ["GET"]


class TestProbePermissions:
    @pytest.mark.asyncio
    async def test_all_pools_readable(self):
        control = make_control(lambda request: httpx.Response(200, json=POOL_RESOURCE))

        assert await control.probe_permissions(["pool-a", "pool-b"]) is True

    @pytest.mark.asyncio
    async def test_denied_pool(self):
        def handler(request):
            if request.url.path.endswith("/pool-b"):
                return httpx.Response(403)
            return httpx.Response(200, json=POOL_RESOURCE)

        control = make_control(handler)

        assert await control.probe_permissions(["pool-a", "pool-b"]) is False

    @pytest.mark.asyncio
    async def test_throttled_probe_raises(self):
        control = make_control(lambda request: httpx.Response(429))

        with pytest.raises(httpx.HTTPStatusError):
            await control.probe_permissions(["pool-a"])


class TestTransientHttpErrors:
    def _status_error(self, status_code):
        request = httpx.Request("GET", "https://management.azure.com/")
        response = httpx.Response(status_code, request=request)
        return httpx.HTTPStatusError("error", request=request, response=response)

    def test_classification(self):
        assert is_transient_http_error(self._status_error(429))
        assert is_transient_http_error(self._status_error(500))
        assert not is_transient_http_error(self._status_error(400))
        assert is_transient_http_error(httpx.ConnectError("refused"))
        assert not is_transient_http_error(ValueError("bad"))


class TestClose:
    @pytest.mark.asyncio
    async def test_close_releases_client_and_credential(self):
        credential = StaticTokenCredential("token-123")
        credential.close = AsyncMock()
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        control = ArmResourceControl(
            credential=credential,
            subscription_id="sub-1",
            resource_group="rg-1",
            server_name="sql-1",
            client=client,
        )

        await control.close()

        assert client.is_closed
        credential.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_credential_without_close(self):
        control = make_control(lambda request: httpx.Response(200))

        await control.close()

        assert control._client.is_closed


class TestClientSecretCredential:
    """Tests for token acquisition and caching."""

    def _credential(self, clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(
                200,
                json={"access_token": f"token-{len(calls)}", "expires_in": 3600},
            )

        credential = ClientSecretCredential(
            tenant_id="tenant-1",
            client_id="client-1",
            client_secret="secret",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            clock=clock,
        )
        return credential, calls

    @pytest.mark.asyncio
    async def test_token_is_cached_until_near_expiry(self):
        now = [0.0]
        credential, calls = self._credential(lambda: now[0])

        assert await credential.get_token() == "token-1"
        now[0] = 3000.0
        assert await credential.get_token() == "token-1"
        now[0] = 3400.0
        assert await credential.get_token() == "token-2"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_token_request(self):
        credential, calls = self._credential(lambda: 0.0)

        await credential.get_token()

        request = calls[0]
        assert request.url.path == "/tenant-1/oauth2/v2.0/token"
        form = request.content.decode()
        assert "grant_type=client_credentials" in form
        assert "client_id=client-1" in form

    def test_missing_secret(self):
        with pytest.raises(ValueError):
            ClientSecretCredential(tenant_id="t", client_id="c", client_secret="")

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self):
        calls = []

        async def handler(request):
            calls.append(request)
            await asyncio.sleep(0)
            return httpx.Response(200, json={"access_token": "token-1", "expires_in": 3600})

        credential = ClientSecretCredential(
            tenant_id="tenant-1",
            client_id="client-1",
            client_secret="secret",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            clock=lambda: 0.0,
        )

        tokens = await asyncio.gather(*(credential.get_token() for _ in range(5)))

        assert tokens == ["token-1"] * 5
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_throttled_token_request_is_retried(self):
        responses = [
            httpx.Response(503),
            httpx.Response(200, json={"access_token": "token-1", "expires_in": 3600}),
        ]
        credential = ClientSecretCredential(
            tenant_id="tenant-1",
            client_id="client-1",
            client_secret="secret",
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: responses.pop(0))),
            clock=lambda: 0.0,
            retry=RetryPolicy(count=1, interval=0),
        )

        assert await credential.get_token() == "token-1"
        assert responses == []

    @pytest.mark.asyncio
    async def test_rejected_secret_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401)

        credential = ClientSecretCredential(
            tenant_id="tenant-1",
            client_id="client-1",
            client_secret="wrong",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            retry=RetryPolicy(count=3, interval=0),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await credential.get_token()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        credential = ClientSecretCredential(
            tenant_id="t", client_id="c", client_secret="s", client=client
        )

        await credential.close()

        assert not client.is_closed
        await client.aclose()

    def test_static_token_requires_value(self):
        with pytest.raises(ValueError):
            StaticTokenCredential("")
