"""Per-user listing and deletion endpoint tests."""

import pytest
from httpx import AsyncClient
from prometheus_client import REGISTRY


def _applied_batches() -> float:
    value = REGISTRY.get_sample_value("shortener_deletion_batches_total", {"status": "applied"})
    return value or 0.0


async def _shorten(client: AsyncClient, url: str) -> str:
    response = await client.post("/api/shorten", json={"url": url})
    assert response.status_code == 201
    return response.json()["result"]


@pytest.mark.asyncio
async def test_new_user_has_no_urls(client: AsyncClient) -> None:
    response = await client.get("/api/user/urls")
    assert response.status_code == 204


@pytest.mark.asyncio
async def test_user_sees_only_own_urls(client: AsyncClient, other_client: AsyncClient) -> None:
    mine = await _shorten(client, "https://www.google.com")
    await _shorten(other_client, "https://www.github.com")

    response = await client.get("/api/user/urls")

    assert response.status_code == 200
    assert response.json() == [{"short_url": mine, "original_url": "https://www.google.com"}]


@pytest.mark.asyncio
async def test_deleted_urls_leave_the_listing(client: AsyncClient, wait_until) -> None:
    kept = await _shorten(client, "https://www.google.com")
    dropped = await _shorten(client, "https://www.github.com")

    response = await client.request("DELETE", "/api/user/urls", json=[dropped.rsplit("/", 1)[1]])
    assert response.status_code == 202

    async def only_kept_listed() -> bool:
        listing = await client.get("/api/user/urls")
        return [item["short_url"] for item in listing.json()] == [kept]

    await wait_until(only_kept_listed)


@pytest.mark.asyncio
async def test_cannot_delete_someone_elses_url(client: AsyncClient, other_client: AsyncClient, wait_until) -> None:
    short_url = await _shorten(client, "https://www.python.org")
    short_code = short_url.rsplit("/", 1)[1]
    applied_before = _applied_batches()

    response = await other_client.request("DELETE", "/api/user/urls", json=[short_code])
    assert response.status_code == 202

    async def batch_applied() -> bool:
        return _applied_batches() > applied_before

    await wait_until(batch_applied)
    lookup = await client.get(f"/{short_code}", follow_redirects=False)
    assert lookup.status_code == 307


@pytest.mark.asyncio
async def test_delete_requires_a_list(client: AsyncClient) -> None:
    response = await client.request("DELETE", "/api/user/urls", json={"codes": ["abc"]})
    assert response.status_code == 400
