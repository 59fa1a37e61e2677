"""Sliding-window rate limiter."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from casedocs_api.common.rate_limit import InMemoryRateLimiter, RateLimit


def test_limiter_blocks_after_max_requests_and_recovers() -> None:
    limiter = InMemoryRateLimiter(limit=RateLimit(max_requests=2, window_seconds=10))

    assert limiter.hit("10.0.0.1:query", now=100.0) is None
    assert limiter.hit("10.0.0.1:query", now=101.0) is None
    assert limiter.hit("10.0.0.1:query", now=102.0) == pytest.approx(8.0)
    assert limiter.allow("10.0.0.2:query", now=102.0)
    assert limiter.allow("10.0.0.1:query", now=110.5)


def test_reset_clears_history() -> None:
    limiter = InMemoryRateLimiter(limit=RateLimit(max_requests=1, window_seconds=60))
    limiter.hit("k", now=1.0)

    limiter.reset()

    assert limiter.allow("k", now=2.0)


@pytest.fixture()
def base_env(base_env: dict[str, str], monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    monkeypatch.setenv("CASEDOCS_RATE_LIMIT_ENABLED", "true")
    monkeypatch.setenv("CASEDOCS_RATE_LIMIT_QUERY_MAX", "2")
    return base_env


@pytest.mark.asyncio
async def test_query_routes_return_429_with_retry_after(async_client: AsyncClient) -> None:
    for _ in range(2):
        assert (await async_client.get("/api/documents/C-1001")).status_code == 200

    response = await async_client.get("/api/documents/C-1001")

    assert response.status_code == 429
    assert response.json()["type"] == "rate_limited"
    assert int(response.headers["Retry-After"]) >= 1

    upload = await async_client.post(
        "/api/documents/C-1001/upload",
        files={"file": ("a.txt", b"still allowed", "text/plain")},
    )
    assert upload.status_code == 200
