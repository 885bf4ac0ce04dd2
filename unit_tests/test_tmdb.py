"""Unit tests for db.tmdb (upcoming-movie candidate fetcher)."""

from datetime import date
from typing import Any, Callable

import httpx
import pytest

from db import tmdb


def _entry(movie_id: int, release_date: str, **overrides: Any) -> dict[str, Any]:
    """Build a raw TMDB /movie/upcoming result entry."""
    data: dict[str, Any] = {
        "id": movie_id,
        "title": f"Movie {movie_id}",
        "overview": "An upcoming feature.",
        "release_date": release_date,
        "vote_average": 6.5,
        "vote_count": 120,
        "popularity": 33.3,
        "genre_ids": [28, 12],
        "poster_path": f"/p{movie_id}.jpg",
        "backdrop_path": None,
        "adult": False,
    }
    data.update(overrides)
    return data


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _page_handler(pages: dict[int, Any]) -> Callable[[httpx.Request], httpx.Response]:
    """
    Serve a fixed payload per page number. A value of an int status code
    returns that status; an exception instance is raised as a transport error.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        payload = pages[page]
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, int):
            return httpx.Response(payload, json={"status_message": "error"})
        return httpx.Response(200, json={"results": payload, "total_pages": len(pages), "total_results": 0})

    return handler


@pytest.mark.asyncio
async def test_fetch_merges_pages_dedupes_and_sorts(fixed_now) -> None:
    pages = {
        1: [_entry(3, "2030-03-01"), _entry(1, "2030-01-20")],
        2: [_entry(1, "2030-01-20"), _entry(2, "2030-02-10")],
    }
    async with _client(_page_handler(pages)) as client:
        movies = await tmdb.fetch_upcoming_candidates(2, client=client, now=fixed_now)

    assert [movie.id for movie in movies] == [1, 2, 3]
    assert movies[0].genres == [28, 12]
    assert movies[0].release_date == date(2030, 1, 20)


@pytest.mark.asyncio
async def test_fetch_tolerates_failing_pages(fixed_now) -> None:
    """Two of five pages failing still returns the union of the other three."""
    request = httpx.Request("GET", "https://api.themoviedb.org/3/movie/upcoming")
    pages = {
        1: [_entry(1, "2030-02-01")],
        2: 500,
        3: [_entry(3, "2030-02-03"), _entry(1, "2030-02-01")],
        4: httpx.ConnectTimeout("timed out", request=request),
        5: [_entry(5, "2030-02-05")],
    }
    async with _client(_page_handler(pages)) as client:
        movies = await tmdb.fetch_upcoming_candidates(5, client=client, now=fixed_now)

    assert [movie.id for movie in movies] == [1, 3, 5]


@pytest.mark.asyncio
async def test_fetch_all_pages_failing_returns_empty(fixed_now) -> None:
    async with _client(_page_handler({1: 500, 2: 503})) as client:
        assert await tmdb.fetch_upcoming_candidates(2, client=client, now=fixed_now) == []


@pytest.mark.asyncio
async def test_fetch_applies_six_month_lookback(fixed_now) -> None:
    """Releases within the last 180 days pass; older ones are dropped. Not future-only."""
    pages = {
        1: [
            _entry(1, "2029-06-01"),   # ~214 days before 2030-01-01
            _entry(2, "2029-07-05"),   # exactly 180 days before: on the floor, dropped
            _entry(3, "2029-07-06"),   # 179 days before
            _entry(4, "2029-12-31"),   # yesterday
            _entry(5, "2030-05-01"),
        ],
    }
    async with _client(_page_handler(pages)) as client:
        movies = await tmdb.fetch_upcoming_candidates(1, client=client, now=fixed_now)

    assert [movie.id for movie in movies] == [3, 4, 5]


@pytest.mark.asyncio
async def test_fetch_skips_incomplete_and_invalid_entries(fixed_now) -> None:
    pages = {
        1: [
            _entry(1, ""),                         # TMDB sends "" for unknown dates
            _entry(2, "2030-02-01", title=""),
            _entry(3, "2030-02-01", vote_average=11),
            {"title": "No id", "release_date": "2030-02-01"},
            _entry(4, "2030-02-01", overview=None, popularity=None),
        ],
    }
    async with _client(_page_handler(pages)) as client:
        movies = await tmdb.fetch_upcoming_candidates(1, client=client, now=fixed_now)

    assert [movie.id for movie in movies] == [4]
    assert movies[0].overview == ""
    assert movies[0].popularity == 0.0


@pytest.mark.asyncio
async def test_fetch_sends_fixed_region_and_language(fixed_now) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"results": []})

    async with _client(handler) as client:
        await tmdb.fetch_upcoming_candidates(3, client=client, now=fixed_now)

    assert sorted(int(request.url.params["page"]) for request in seen) == [1, 2, 3]
    assert all(request.url.path.endswith("/movie/upcoming") for request in seen)
    assert {request.url.params["region"] for request in seen} == {tmdb.TMDB_REGION}
    assert {request.url.params["language"] for request in seen} == {tmdb.TMDB_LANGUAGE}


@pytest.mark.asyncio
async def test_fetch_retries_rate_limited_page(fixed_now) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return httpx.Response(200, json={"results": [_entry(7, "2030-04-01")]})

    async with _client(handler) as client:
        movies = await tmdb.fetch_upcoming_candidates(1, client=client, now=fixed_now)

    assert calls["count"] == 2
    assert [movie.id for movie in movies] == [7]


@pytest.mark.asyncio
async def test_fetch_retries_when_retry_after_is_http_date(fixed_now, mocker) -> None:
    sleep = mocker.patch("db.tmdb.asyncio.sleep", new=mocker.AsyncMock())
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2030 07:28:00 GMT"})
        return httpx.Response(200, json={"results": [_entry(8, "2030-04-01")]})

    async with _client(handler) as client:
        movies = await tmdb.fetch_upcoming_candidates(1, client=client, now=fixed_now)

    assert [movie.id for movie in movies] == [8]
    sleep.assert_awaited_once_with(tmdb._RETRY_BACKOFF_BASE * 2)


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ({"Retry-After": "3"}, 3.0),
        ({"Retry-After": "86400"}, tmdb._MAX_RETRY_DELAY),
        ({"Retry-After": "-5"}, 0.0),
        ({"Retry-After": "nan"}, tmdb._RETRY_BACKOFF_BASE * 4),
        ({"Retry-After": "soon"}, tmdb._RETRY_BACKOFF_BASE * 4),
        ({}, tmdb._RETRY_BACKOFF_BASE * 4),
    ],
)
def test_retry_delay_parsing_and_cap(header: dict, expected: float) -> None:
    response = httpx.Response(429, headers=header)
    assert tmdb._retry_delay(response, attempt=2) == expected


@pytest.mark.asyncio
async def test_fetch_page_without_results_counts_as_failed_page(fixed_now) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json={"status_message": "maintenance"})
        return httpx.Response(200, json={"results": [_entry(2, "2030-02-01")]})

    async with _client(handler) as client:
        movies = await tmdb.fetch_upcoming_candidates(2, client=client, now=fixed_now)

    assert [movie.id for movie in movies] == [2]


@pytest.mark.asyncio
async def test_fetch_rejects_non_positive_page_count() -> None:
    with pytest.raises(ValueError, match="max_pages must be positive"):
        await tmdb.fetch_upcoming_candidates(0)


@pytest.mark.asyncio
async def test_fetch_without_client_requires_access_token(monkeypatch) -> None:
    monkeypatch.delenv("TMDB_ACCESS_TOKEN", raising=False)
    with pytest.raises(RuntimeError, match="TMDB_ACCESS_TOKEN"):
        await tmdb.fetch_upcoming_candidates(1)
