"""
TMDB API client for fetching upcoming-release candidates.

Uses httpx.AsyncClient with Bearer token authentication. All pages are fetched
concurrently, bounded by a semaphore to respect TMDB's rate limits. Each page
is isolated: a page that errors or times out contributes no movies instead of
failing the whole batch.
"""

import asyncio
import logging
import math
import os
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from implementation.classes.schemas import CandidateMovie
from implementation.misc.helpers import release_date_floor, utc_now

logger = logging.getLogger(__name__)

_TMDB_BASE_URL = "https://api.themoviedb.org/3"
_UPCOMING_PATH = "/movie/upcoming"
_SEMAPHORE_LIMIT = 10    # max concurrent requests (~40 req/10 s TMDB limit)
_MAX_RETRIES = 3
_RETRY_BACKOFF_BASE = 1.0  # seconds; doubles on each retry
_MAX_RETRY_DELAY = 30.0

# Fixed locale so every page is drawn from the same release calendar.
TMDB_REGION: str = os.getenv("TMDB_REGION", "US")
TMDB_LANGUAGE: str = os.getenv("TMDB_LANGUAGE", "en-US")
TMDB_TIMEOUT_SECONDS: float = float(os.getenv("TMDB_TIMEOUT_SECONDS", "10"))


def _access_token() -> str:
    token = os.getenv("TMDB_ACCESS_TOKEN")
    if not token:
        raise RuntimeError("TMDB_ACCESS_TOKEN environment variable is not set")
    return token


def _retry_delay(response: httpx.Response, attempt: int) -> float:
    """
    Seconds to wait before retrying a 429. Uses Retry-After when it is a number
    of seconds, otherwise exponential back-off; never more than _MAX_RETRY_DELAY.
    """
    backoff = _RETRY_BACKOFF_BASE * 2 ** attempt
    try:
        delay = float(response.headers.get("Retry-After", backoff))
        if math.isnan(delay):
            delay = backoff
    except ValueError:
        # HTTP-date form
        delay = backoff
    return min(max(delay, 0.0), _MAX_RETRY_DELAY)


def _parse_candidates(results: list[dict[str, Any]], page: int) -> list[CandidateMovie]:
    """
    Validate raw TMDB result entries into CandidateMovie objects.

    Entries without an id, title or release date (TMDB sends "" for
    unknown dates) are dropped, as are entries that fail validation.
    """
    movies: list[CandidateMovie] = []
    for entry in results:
        if not (entry.get("id") and entry.get("title") and entry.get("release_date")):
            continue
        try:
            movies.append(CandidateMovie.model_validate(entry))
        except ValidationError as exc:
            logger.debug("Skipping malformed TMDB entry %s on page %d: %s", entry.get("id"), page, exc)
    return movies


async def _fetch_upcoming_page(
    client: httpx.AsyncClient,
    sem: asyncio.Semaphore,
    page: int,
) -> list[CandidateMovie]:
    """
    Fetch one page of upcoming movies and return its valid entries in page order.

    Retries on 429 rate-limit responses with exponential back-off. Transport
    errors (including timeouts) and other HTTP errors are raised to the caller.
    """
    url = f"{_TMDB_BASE_URL}{_UPCOMING_PATH}"
    params = {"page": page, "region": TMDB_REGION, "language": TMDB_LANGUAGE}

    for attempt in range(1, _MAX_RETRIES + 1):
        async with sem:
            response = await client.get(url, params=params)

        if response.status_code == 429:
            retry_after = _retry_delay(response, attempt)
            if attempt == _MAX_RETRIES:
                response.raise_for_status()
            logger.warning("TMDB rate-limited on page %d, sleeping %.1fs", page, retry_after)
            await asyncio.sleep(retry_after)
            continue

        response.raise_for_status()
        payload = response.json()
        if "results" not in payload:
            raise ValueError(f"TMDB page {page} response has no results")
        return _parse_candidates(payload["results"], page)

    raise RuntimeError(f"Failed to fetch TMDB page {page} after {_MAX_RETRIES} attempts")  # unreachable


def _merge_pages(
    pages: list[list[CandidateMovie] | BaseException],
    now: datetime,
) -> list[CandidateMovie]:
    """
    Collect the successful pages, drop stale releases, dedupe and sort.

    Args:
        pages: One entry per requested page (1-indexed in order); failed
            pages are the exception they raised.
        now: Reference time for the release-date floor.

    Returns:
        Unique candidates (first occurrence wins) released after the floor,
        ordered by release_date then id.
    """
    floor = release_date_floor(now)
    seen: set[int] = set()
    merged: list[CandidateMovie] = []

    for page_number, page in enumerate(pages, start=1):
        if isinstance(page, BaseException):
            logger.warning("Failed to fetch upcoming page %d: %s", page_number, page)
            continue
        logger.info("Upcoming page %d: %d movies fetched", page_number, len(page))
        for movie in page:
            if movie.id in seen or movie.release_date <= floor:
                continue
            seen.add(movie.id)
            merged.append(movie)

    merged.sort(key=lambda movie: (movie.release_date, movie.id))
    return merged


async def fetch_upcoming_candidates(
    max_pages: int = 5,
    client: Optional[httpx.AsyncClient] = None,
    now: Optional[datetime] = None,
) -> list[CandidateMovie]:
    """
    Return deduplicated upcoming-release candidates from the first ``max_pages`` pages.

    Pages are fetched concurrently and joined with settle-all semantics: a
    failing page is logged and contributes nothing. An empty return value is
    not an error here; callers decide what to do with it.

    Args:
        max_pages: Number of listing pages to request. Must be positive.
        client: Optional pre-configured client (authentication headers and
            timeout are the caller's responsibility when supplied).
        now: Reference time for the 6-month release-date floor (defaults to now).

    Returns:
        Candidates sorted ascending by release_date.
    """
    if max_pages <= 0:
        raise ValueError(f"max_pages must be positive, got {max_pages}")

    logger.info("Fetching upcoming movies from %d pages", max_pages)
    sem = asyncio.Semaphore(_SEMAPHORE_LIMIT)

    async def _gather(active_client: httpx.AsyncClient) -> list[list[CandidateMovie] | BaseException]:
        tasks = [_fetch_upcoming_page(active_client, sem, page) for page in range(1, max_pages + 1)]
        return await asyncio.gather(*tasks, return_exceptions=True)

    if client is not None:
        pages = await _gather(client)
    else:
        headers = {"Authorization": f"Bearer {_access_token()}"}
        async with httpx.AsyncClient(headers=headers, timeout=TMDB_TIMEOUT_SECONDS) as owned_client:
            pages = await _gather(owned_client)

    candidates = _merge_pages(pages, now or utc_now())
    logger.info("Total unique upcoming movies found: %d", len(candidates))
    return candidates
