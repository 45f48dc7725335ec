import asyncio

from aiohttp import test_utils

from rss_huddle.liveness import build_app


def test_healthz_and_index_respond():
    async def scenario():
        async with test_utils.TestClient(test_utils.TestServer(build_app())) as client:
            health = await client.get("/healthz")
            index = await client.get("/")
            return health.status, await health.text(), index.status, await index.text()

    assert asyncio.run(scenario()) == (200, "ok", 200, "bot online")
