"""
Database connection pool and featured-list queries for the API service.

This module provides a psycopg v3 AsyncConnectionPool configured for production use,
async helper functions for executing queries, and the featured upcoming-movies
store used by the curation pipeline.
"""

import logging
import os
from datetime import date, datetime
from typing import Optional, Sequence

import psycopg
from psycopg_pool import AsyncConnectionPool

from implementation.classes.enums import FeaturedCategory, FeaturedSortBy, SortOrder
from implementation.classes.schemas import (
    CandidateMovie,
    CuratedEntry,
    FeaturedStats,
    StoreResult,
)
from implementation.misc.helpers import utc_now

logger = logging.getLogger(__name__)

_FEATURED_TABLE = "public.upcoming_movies_featured"

# Column order shared by the SELECT queries and _row_to_entry.
_FEATURED_COLUMNS = (
    "id, title, overview, release_date, poster_path, backdrop_path, "
    "vote_average, vote_count, popularity, genres, "
    "curation_score, curation_reasoning, rank_position, category, "
    "featured_at, updated_at"
)

_FEATURED_SCHEMA_DDL = f"""\
CREATE TABLE IF NOT EXISTS {_FEATURED_TABLE} (
    id BIGINT PRIMARY KEY,
    title TEXT NOT NULL,
    overview TEXT,
    release_date DATE NOT NULL,
    poster_path TEXT,
    backdrop_path TEXT,
    vote_average DECIMAL(3,1) DEFAULT 0,
    vote_count INTEGER DEFAULT 0,
    popularity DECIMAL(8,3) DEFAULT 0,
    genres INTEGER[] DEFAULT '{{}}',
    curation_score DECIMAL(5,2) NOT NULL DEFAULT 0,
    curation_reasoning TEXT,
    rank_position INTEGER NOT NULL,
    category TEXT DEFAULT 'upcoming' CHECK (category = 'upcoming'),
    featured_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    CONSTRAINT valid_rank_position CHECK (rank_position >= 1 AND rank_position <= 10)
);
CREATE INDEX IF NOT EXISTS idx_upcoming_featured_rank ON {_FEATURED_TABLE}(rank_position);
CREATE INDEX IF NOT EXISTS idx_upcoming_featured_release_date ON {_FEATURED_TABLE}(release_date);
CREATE INDEX IF NOT EXISTS idx_upcoming_featured_curation_score ON {_FEATURED_TABLE}(curation_score DESC);
"""

_DELETE_FEATURED_QUERY = f"DELETE FROM {_FEATURED_TABLE} WHERE category = %s"

_INSERT_FEATURED_QUERY = f"""\
INSERT INTO {_FEATURED_TABLE} (
    id, title, overview, release_date, poster_path, backdrop_path,
    vote_average, vote_count, popularity, genres,
    curation_score, curation_reasoning, rank_position, category,
    featured_at, updated_at
)
VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, now(), now())"""


def _build_conninfo() -> str:
    """
    Build a libpq connection string from environment variables.

    Returns:
        A connection string in the format expected by psycopg.
    """
    return (
        f"host={os.getenv('POSTGRES_HOST')} "
        f"dbname={os.getenv('POSTGRES_DB')} "
        f"user={os.getenv('POSTGRES_USER')} "
        f"password={os.getenv('POSTGRES_PASSWORD')}"
    )


# The pool is created inert (open=False) and opened during FastAPI startup
# via the lifespan handler.
pool = AsyncConnectionPool(
    conninfo=_build_conninfo(),
    min_size=1,           # Curation traffic is light; one warm connection is enough
    max_size=5,
    max_lifetime=1800,    # Recycle connections after 30 minutes to prevent staleness
    max_idle=300,         # Close idle connections above min_size after 5 minutes
    timeout=5.0,          # Wait up to 5s for a connection before raising PoolTimeout
    open=False,
)


# ===============================
#     PRIVATE BASE METHODS
# ===============================

async def _execute_read(query: str, params: Sequence[object] | None = None) -> list[tuple]:
    """
    Execute a read query and return all rows.

    Args:
        query: SQL query string with parameter placeholders (%s).
        params: Optional sequence of parameters to bind to the query.

    Returns:
        List of tuples, where each tuple represents a row.
    """
    async with pool.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()


async def _execute_read_one(query: str, params: Sequence[object] | None = None) -> tuple | None:
    """
    Execute a read query and return a single row, or None if no rows match.
    """
    async with pool.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchone()


async def _execute_write(query: str, params: Sequence[object] | None = None) -> None:
    """
    Execute a write/DDL statement with an explicit commit.

    If an exception occurs the transaction is rolled back automatically by
    the connection context manager.
    """
    async with pool.connection() as conn:
        async with conn.cursor() as cur:
            await cur.execute(query, params)
        await conn.commit()


# ===============================
#     PRIVATE HELPER METHODS
# ===============================

def _entry_params(entry: CuratedEntry) -> tuple:
    """Positional parameters for _INSERT_FEATURED_QUERY."""
    row = entry.as_featured_row()
    return (
        row["id"],
        row["title"],
        row["overview"],
        row["release_date"],
        row["poster_path"],
        row["backdrop_path"],
        row["vote_average"],
        row["vote_count"],
        row["popularity"],
        row["genres"],
        row["curation_score"],
        row["curation_reasoning"],
        row["rank_position"],
        row["category"],
    )


def _row_to_entry(row: tuple) -> CuratedEntry:
    """Build a CuratedEntry from a row selected with _FEATURED_COLUMNS."""
    (
        movie_id, title, overview, release_date, poster_path, backdrop_path,
        vote_average, vote_count, popularity, genres,
        curation_score, curation_reasoning, rank_position, category,
        featured_at, updated_at,
    ) = row
    movie = CandidateMovie(
        id=movie_id,
        title=title,
        overview=overview,
        release_date=release_date,
        poster_path=poster_path,
        backdrop_path=backdrop_path,
        # DECIMAL columns come back as Decimal
        vote_average=float(vote_average or 0),
        vote_count=vote_count,
        popularity=float(popularity or 0),
        genres=genres,
    )
    return CuratedEntry(
        movie=movie,
        curation_score=float(curation_score or 0),
        curation_reasoning=curation_reasoning or "",
        rank_position=rank_position,
        category=category,
        featured_at=featured_at,
        updated_at=updated_at,
    )


def _summarize_featured_rows(rows: list[tuple]) -> FeaturedStats:
    """
    Aggregate (vote_average, popularity, genres, updated_at) rows into FeaturedStats.

    Averages are rounded to one decimal place; the genre distribution counts
    how many featured movies carry each genre code.
    """
    if not rows:
        return FeaturedStats()

    total = len(rows)
    rating_sum = 0.0
    popularity_sum = 0.0
    genre_distribution: dict[int, int] = {}
    last_updated: Optional[datetime] = None

    for vote_average, popularity, genres, updated_at in rows:
        rating_sum += float(vote_average or 0)
        popularity_sum += float(popularity or 0)
        for genre_id in genres or []:
            genre_distribution[genre_id] = genre_distribution.get(genre_id, 0) + 1
        if updated_at is not None and (last_updated is None or updated_at > last_updated):
            last_updated = updated_at

    return FeaturedStats(
        total_featured=total,
        last_updated=last_updated,
        average_rating=round(rating_sum / total, 1),
        average_popularity=round(popularity_sum / total, 1),
        genre_distribution=genre_distribution,
    )


# ===============================
#        PUBLIC METHODS
# ===============================

async def check_postgres() -> str:
    """
    Ping Postgres via the pool to verify connectivity.

    This validates that the pool can successfully obtain a connection
    and execute a simple query. Used by the /health endpoint.

    Returns:
        'ok' if the check succeeds, otherwise an error message string.
    """
    try:
        async with pool.connection() as conn:
            await conn.execute("SELECT 1")
        return "ok"
    except Exception as e:
        return str(e)


async def ensure_featured_schema() -> None:
    """Create the featured table and its indexes if they don't exist yet."""
    await _execute_write(_FEATURED_SCHEMA_DDL)


async def replace_featured_entries(
    entries: list[CuratedEntry],
    category: FeaturedCategory = FeaturedCategory.UPCOMING,
) -> StoreResult:
    """
    Replace every featured row of ``category`` with ``entries``.

    The delete and the bulk insert share one connection and one transaction,
    so readers see either the previous batch or the new one, never an empty
    or half-written table. Any database error rolls back both statements.

    Args:
        entries: Curated entries to store (rank_position 1..10).
        category: Featured category to replace.

    Returns:
        StoreResult(success=True) or StoreResult(success=False, error=<message>).
    """
    params = [_entry_params(entry) for entry in entries]

    try:
        async with pool.connection() as conn:
            try:
                async with conn.cursor() as cur:
                    await cur.execute(_DELETE_FEATURED_QUERY, (category.value,))
                    if params:
                        await cur.executemany(_INSERT_FEATURED_QUERY, params)
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise
    except psycopg.Error as exc:
        logger.error("Failed to replace featured %s movies: %s", category.value, exc)
        return StoreResult(success=False, error=str(exc))

    logger.info("Stored %d featured %s movies", len(entries), category.value)
    return StoreResult(success=True)


async def read_featured_entries(
    sort_by: FeaturedSortBy = FeaturedSortBy.RANK,
    order: SortOrder = SortOrder.ASC,
    limit: int = 10,
    category: FeaturedCategory = FeaturedCategory.UPCOMING,
    today: Optional[date] = None,
) -> list[CuratedEntry]:
    """
    Read the live featured batch, excluding movies already released.

    Args:
        sort_by: Column to order by (whitelisted through the enum).
        order: Sort direction.
        limit: Maximum rows to return.
        category: Featured category to read.
        today: Release-date floor (defaults to the current UTC date).

    Returns:
        Entries with release_date >= today, ordered as requested.
    """
    direction = "ASC" if order is SortOrder.ASC else "DESC"
    query = (
        f"SELECT {_FEATURED_COLUMNS}\n"
        f"FROM {_FEATURED_TABLE}\n"
        f"WHERE category = %s AND release_date >= %s\n"
        f"ORDER BY {sort_by.column} {direction}, rank_position ASC\n"
        f"LIMIT %s"
    )
    rows = await _execute_read(query, (category.value, today or utc_now().date(), limit))
    return [_row_to_entry(row) for row in rows]


async def fetch_featured_last_updated(
    category: FeaturedCategory = FeaturedCategory.UPCOMING,
) -> Optional[datetime]:
    """Return the most recent updated_at among featured rows, or None if there are none."""
    row = await _execute_read_one(
        f"SELECT max(updated_at) FROM {_FEATURED_TABLE} WHERE category = %s",
        (category.value,),
    )
    return row[0] if row else None


async def fetch_featured_stats(
    category: FeaturedCategory = FeaturedCategory.UPCOMING,
) -> FeaturedStats:
    """Summary statistics over every stored featured row of ``category``."""
    rows = await _execute_read(
        f"SELECT vote_average, popularity, genres, updated_at FROM {_FEATURED_TABLE} WHERE category = %s",
        (category.value,),
    )
    return _summarize_featured_rows(rows)


class PostgresFeaturedStore:
    """Featured-list persistence gateway backed by the shared connection pool."""

    def __init__(self, category: FeaturedCategory = FeaturedCategory.UPCOMING) -> None:
        self.category = category

    async def replace_all(self, entries: list[CuratedEntry]) -> StoreResult:
        return await replace_featured_entries(entries, self.category)

    async def read_all(
        self,
        sort_by: FeaturedSortBy = FeaturedSortBy.RANK,
        order: SortOrder = SortOrder.ASC,
        limit: int = 10,
    ) -> list[CuratedEntry]:
        return await read_featured_entries(sort_by, order, limit, self.category)

    async def most_recent_update_timestamp(self) -> Optional[datetime]:
        return await fetch_featured_last_updated(self.category)

    async def stats(self) -> FeaturedStats:
        return await fetch_featured_stats(self.category)
