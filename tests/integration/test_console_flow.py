"""
Integration tests for the console service against a simulated backend.
"""

import asyncio

import httpx
import pytest

from shared.config import get_config
from shared.metrics import MetricsCollector
from shared.test_helpers import TestDataFactory
from service_console.app.main import ConsoleService


class GatedBackend:
    """Backend double whose responses wait for ``release``."""

    def __init__(self):
        self.requests = []
        self.release = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await self.release.wait()
        group_id = int(request.url.path.split("/")[3])
        return httpx.Response(200, json=[TestDataFactory.expense(group_id * 10, group_id, 25)])


def make_service(backend, capacity=50):
    config = get_config(
        "console",
        8020,
        backend_url="http://backend.test/api",
        retry_max_attempts=1,
        cache_capacity=capacity,
    )
    return ConsoleService(config=config, metrics=MetricsCollector("console"),
                          transport=httpx.MockTransport(backend))


async def wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class TestConsoleFlow:
    """Requests through the ASGI app share cache state."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_backend_call(self):
        backend = GatedBackend()
        service = make_service(backend)
        transport = httpx.ASGITransport(app=service.app)

        async with httpx.AsyncClient(transport=transport, base_url="http://console.test") as client:
            first = asyncio.ensure_future(client.get("/groups/1/expenses"))
            await wait_for(lambda: len(backend.requests) == 1)
            second = asyncio.ensure_future(client.get("/groups/1/expenses"))
            await wait_for(lambda: service.caches.expenses.expenses.pending_keys() == [1])
            await asyncio.sleep(0.05)

            backend.release.set()
            responses = await asyncio.gather(first, second)

        assert len(backend.requests) == 1
        for response in responses:
            assert response.status_code == 200
            assert [e["id"] for e in response.json()["items"]] == [10]

        metrics = service.metrics.registry
        assert metrics.get_sample_value("cache_coalesced_total", {"cache": "expenses"}) == 1
        await service.client.close()

    @pytest.mark.asyncio
    async def test_cache_stays_bounded_across_requests(self):
        backend = GatedBackend()
        backend.release.set()
        service = make_service(backend, capacity=3)
        transport = httpx.ASGITransport(app=service.app)

        async with httpx.AsyncClient(transport=transport, base_url="http://console.test") as client:
            for group_id in range(1, 6):
                response = await client.get(f"/groups/{group_id}/expenses")
                assert response.status_code == 200

            stats = (await client.get("/caches")).json()["expenses"]

        assert stats["keys"] == [3, 4, 5]
        assert stats["size"] == 3
        await service.client.close()
