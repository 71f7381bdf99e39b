"""Shorten endpoint behavior tests."""

import pytest
from httpx import AsyncClient


def _code(short_url: str) -> str:
    return short_url.rsplit("/", 1)[1]


@pytest.mark.asyncio
async def test_shorten_valid_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    assert response.status_code == 201
    result = response.json()["result"]
    assert result.startswith("http://localhost:8080/")
    assert len(_code(result)) == 8


@pytest.mark.asyncio
async def test_shorten_invalid_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "not-a-url"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_shorten_empty_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": ""})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_shorten_duplicate_url_returns_existing(client: AsyncClient, other_client: AsyncClient) -> None:
    first = await client.post("/api/shorten", json={"url": "https://www.github.com"})
    second = await other_client.post("/api/shorten", json={"url": "https://www.github.com"})

    assert second.status_code == 409
    assert second.json()["result"] == first.json()["result"]


@pytest.mark.asyncio
async def test_shorten_plain_text(client: AsyncClient) -> None:
    response = await client.post("/", content="https://www.python.org")
    assert response.status_code == 201
    assert response.text.startswith("http://localhost:8080/")

    duplicate = await client.post("/", content="https://www.python.org")
    assert duplicate.status_code == 409
    assert duplicate.text == response.text


@pytest.mark.asyncio
async def test_shorten_plain_text_invalid(client: AsyncClient) -> None:
    response = await client.post("/", content="definitely not a url")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_shorten_batch(client: AsyncClient) -> None:
    existing = await client.post("/api/shorten", json={"url": "https://www.rust-lang.org"})

    response = await client.post(
        "/api/shorten/batch",
        json=[
            {"correlation_id": "a", "original_url": "https://www.rust-lang.org"},
            {"correlation_id": "b", "original_url": "https://go.dev"},
        ],
    )

    assert response.status_code == 201
    data = response.json()
    assert [item["correlation_id"] for item in data] == ["a", "b"]
    assert data[0]["short_url"] == existing.json()["result"]
    assert data[1]["short_url"] != data[0]["short_url"]


@pytest.mark.asyncio
async def test_first_request_issues_owner_cookie(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "https://www.djangoproject.com"})
    assert "user" in response.cookies

    again = await client.post("/api/shorten", json={"url": "https://flask.palletsprojects.com"})
    assert "user" not in again.cookies


@pytest.mark.asyncio
async def test_forged_cookie_is_replaced_on_write(client: AsyncClient) -> None:
    client.cookies.set("user", "forged.deadbeef")

    response = await client.post("/api/shorten", json={"url": "https://www.starlette.io"})

    assert response.status_code == 201
    assert response.cookies.get("user") not in (None, "forged.deadbeef")


@pytest.mark.asyncio
async def test_forged_cookie_cannot_list_urls(client: AsyncClient) -> None:
    client.cookies.set("user", "some_irrelevant_token")

    response = await client.get("/api/user/urls")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_missing_cookie_lists_nothing(client: AsyncClient) -> None:
    response = await client.get("/api/user/urls")

    assert response.status_code == 204
    assert "user" in response.cookies
