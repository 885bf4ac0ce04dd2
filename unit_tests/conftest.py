"""Shared pytest fixtures for unit tests."""

from datetime import date, datetime, timezone
from typing import Any, Callable, Optional
from pathlib import Path
import sys

import pytest

# Ensure project root is importable when tests run from repository root.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from implementation.classes.enums import FeaturedSortBy, SortOrder
from implementation.classes.schemas import (
    CandidateMovie,
    CuratedEntry,
    FeaturedStats,
    ScoredCandidate,
    StoreResult,
)

FIXED_NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryFeaturedStore:
    """Featured store double with the same replace/read semantics as Postgres."""

    def __init__(self, last_update: Optional[datetime] = None, fail_with: Optional[str] = None) -> None:
        self.entries: list[CuratedEntry] = []
        self.last_update = last_update
        self.fail_with = fail_with
        self.replace_calls = 0

    async def replace_all(self, entries: list[CuratedEntry]) -> StoreResult:
        self.replace_calls += 1
        if self.fail_with is not None:
            return StoreResult(success=False, error=self.fail_with)
        self.entries = list(entries)
        self.last_update = FIXED_NOW
        return StoreResult(success=True)

    async def read_all(
        self,
        sort_by: FeaturedSortBy = FeaturedSortBy.RANK,
        order: SortOrder = SortOrder.ASC,
        limit: int = 10,
    ) -> list[CuratedEntry]:
        ordered = sorted(self.entries, key=lambda entry: entry.rank_position)
        if order is SortOrder.DESC:
            ordered.reverse()
        return ordered[:limit]

    async def most_recent_update_timestamp(self) -> Optional[datetime]:
        return self.last_update

    async def stats(self) -> FeaturedStats:
        return FeaturedStats(total_featured=len(self.entries), last_updated=self.last_update)


@pytest.fixture
def candidate_factory() -> Callable[..., CandidateMovie]:
    """Return a factory that builds a CandidateMovie that scores a flat 5 by default."""

    def _factory(**overrides: Any) -> CandidateMovie:
        """Construct a minimal March release with no rating, buzz or genre bonus."""
        base_data: dict[str, Any] = {
            "id": 1,
            "title": "The Long Winter",
            "overview": "",
            "release_date": date(2030, 3, 14),
            "vote_average": 0.0,
            "vote_count": 0,
            "popularity": 0.0,
            "genres": [],
            "poster_path": "/poster.jpg",
            "backdrop_path": None,
        }
        base_data.update(overrides)
        return CandidateMovie(**base_data)

    return _factory


@pytest.fixture
def scored_factory(candidate_factory) -> Callable[..., ScoredCandidate]:
    """Return a factory for ScoredCandidate with an explicit score and genres."""

    def _factory(movie_id: int, score: float, genres: Optional[list[int]] = None) -> ScoredCandidate:
        movie = candidate_factory(id=movie_id, title=f"Movie {movie_id}", genres=genres or [])
        return ScoredCandidate(movie=movie, score=score, reasoning="Selected for: testing")

    return _factory


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def featured_store() -> InMemoryFeaturedStore:
    return InMemoryFeaturedStore()
