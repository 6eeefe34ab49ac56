"""
Integration test fixtures.

Builds the application around an in-memory container. Destination
traffic goes through a respx router mounted as the dispatcher's
transport, so only the relay's own HTTP surface is real.
"""

import httpx
import pytest
import pytest_asyncio
import respx

from webhook_relay.container import build_container
from webhook_relay.main import create_app


@pytest.fixture
def destination_router():
    router = respx.MockRouter(assert_all_called=False)
    router.post("http://d1.example.test/hook").mock(return_value=httpx.Response(200))
    router.post("http://d2.example.test/hook").mock(
        side_effect=httpx.ConnectError("connection refused")
    )
    return router


@pytest_asyncio.fixture
async def container(settings, accounts, destinations, delivery_log, destination_router):
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(destination_router.async_handler)
    )
    container = await build_container(
        settings,
        accounts=accounts,
        destinations=destinations,
        log_writer=delivery_log,
        http_client=http_client,
    )
    yield container
    await container.close()
    await http_client.aclose()


@pytest_asyncio.fixture
async def client(settings, container):
    app = create_app(settings, container=container)
    # ASGITransport does not run the lifespan
    app.state.container = container

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://relay.test") as client:
        yield client
