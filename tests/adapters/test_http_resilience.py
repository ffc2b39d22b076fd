from __future__ import annotations

import asyncio

import httpx

from keyfeed.adapters.http_resilience import ResilientClient, build_retry
from keyfeed.config import RateLimit, ResilienceConfig, RetryPolicy


def test_build_retry_copies_policy() -> None:
    retry = build_retry(RetryPolicy(total=5))

    assert retry.total == 5


def test_client_applies_base_url_headers_and_hooks() -> None:
    seen: list[int] = []

    def hook(response: httpx.Response) -> None:
        seen.append(response.status_code)

    config = ResilienceConfig(
        name="test",
        base_url="http://svc.test",
        ratelimit=RateLimit(max_calls=5, per_seconds=1.0),
        response_hooks=(hook,),
        default_headers={"X-Client": "keyfeed"},
    )
    client = ResilientClient(config)

    assert str(client._client.base_url) == "http://svc.test"  # noqa: SLF001
    assert client._client.headers["X-Client"] == "keyfeed"  # noqa: SLF001

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"path": request.url.path})

    async def scenario() -> httpx.Response:
        client._client = httpx.AsyncClient(  # noqa: SLF001
            base_url=config.base_url or "",
            transport=httpx.MockTransport(handler),
            event_hooks={"response": [hook]},
        )
        async with client:
            return await client.get("/ping")

    response = asyncio.run(scenario())

    assert response.json() == {"path": "/ping"}
    assert seen == [200]
