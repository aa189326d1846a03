"""
Pytest configuration and fixtures.
"""
import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from cassandra_operator.services.jolokia_client import JolokiaClient
from fakes import FakeClock, FakeGate, FakeStatefulSets, JolokiaMock


@pytest_asyncio.fixture
async def test_client():
    """Health API client; the operator lifespan is not started."""
    from cassandra_operator.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def jolokia_mock() -> JolokiaMock:
    return JolokiaMock()


@pytest_asyncio.fixture
async def jolokia(jolokia_mock: JolokiaMock):
    """JolokiaClient wired to the mock transport."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(jolokia_mock.handler)) as http:
        yield JolokiaClient(http=http, port=8778, cluster_domain="")


@pytest.fixture
def statefulsets() -> FakeStatefulSets:
    return FakeStatefulSets()


@pytest.fixture
def gate() -> FakeGate:
    return FakeGate(allowed=True)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
