"""
Upcoming-movies curation orchestration.

Fetches upcoming candidates from TMDB, scores them, selects a diverse top 10
and atomically replaces the stored featured list. Runs are single-flight per
process (and across processes when a lease is configured) and skipped while
the stored list is still fresh.
"""

import logging
import os
import time
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Protocol

from db.tmdb import fetch_upcoming_candidates
from db.upcoming_scoring import score_candidates, select_featured_entries
from implementation.classes.enums import CurationErrorCode, FeaturedSortBy, SortOrder
from implementation.classes.schemas import (
    CandidateMovie,
    CuratedEntry,
    CurationResult,
    CurationStatus,
    FeaturedStats,
    StoreResult,
)
from implementation.misc.helpers import utc_now

logger = logging.getLogger(__name__)

CURATION_INTERVAL_HOURS: float = float(os.getenv("CURATION_INTERVAL_HOURS", "2"))
CURATION_MAX_PAGES: int = int(os.getenv("CURATION_MAX_PAGES", "5"))


class CurationInProgressError(RuntimeError):
    """Another curation run holds the process flag or the shared lease."""


class NoUpcomingMoviesError(RuntimeError):
    """Every page failed or nothing survived filtering."""


class CurationPersistenceError(RuntimeError):
    """The featured store rejected the new batch."""


_ERROR_CODES: dict[type[Exception], CurationErrorCode] = {
    CurationInProgressError: CurationErrorCode.IN_PROGRESS,
    NoUpcomingMoviesError: CurationErrorCode.NO_CANDIDATES,
    CurationPersistenceError: CurationErrorCode.PERSISTENCE_FAILED,
}


class FeaturedStore(Protocol):
    async def replace_all(self, entries: list[CuratedEntry]) -> StoreResult: ...

    async def read_all(
        self,
        sort_by: FeaturedSortBy = FeaturedSortBy.RANK,
        order: SortOrder = SortOrder.ASC,
        limit: int = 10,
    ) -> list[CuratedEntry]: ...

    async def most_recent_update_timestamp(self) -> Optional[datetime]: ...

    async def stats(self) -> FeaturedStats: ...


class CurationLease(Protocol):
    async def acquire(self) -> bool: ...

    async def release(self) -> None: ...


def should_curate(
    last_curation: Optional[datetime],
    interval_hours: float = CURATION_INTERVAL_HOURS,
    now: Optional[datetime] = None,
) -> bool:
    """
    Decide whether a new curation pass is due.

    Args:
        last_curation: Completion time of the last successful run, or None.
        interval_hours: Minimum time between runs.
        now: Reference time (defaults to the current UTC time).

    Returns:
        True if there was no previous run or at least ``interval_hours``
        have elapsed since it.
    """
    if last_curation is None:
        return True
    elapsed = (now or utc_now()) - last_curation
    return elapsed >= timedelta(hours=interval_hours)


class UpcomingCurator:
    """
    Coordinates fetch -> score -> select -> store for the featured upcoming list.

    Holds the only mutable curation state (is_running, last_curation); build
    one per application (or per test) rather than sharing module globals.
    The store's most recent updated_at is the authority on freshness, so a
    freshly started process doesn't re-curate a list another process just wrote.
    """

    def __init__(
        self,
        store: FeaturedStore,
        fetch_candidates: Callable[[int], Awaitable[list[CandidateMovie]]] = fetch_upcoming_candidates,
        lease: Optional[CurationLease] = None,
        interval_hours: float = CURATION_INTERVAL_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.fetch_candidates = fetch_candidates
        self.lease = lease
        self.interval_hours = interval_hours
        self._clock = clock
        self.is_running = False
        self.last_curation: Optional[datetime] = None

    async def _stored_last_update(self) -> Optional[datetime]:
        try:
            return await self.store.most_recent_update_timestamp()
        except Exception as exc:
            logger.warning("Could not read featured list freshness: %s", exc)
            raise

    async def is_curation_due(self) -> bool:
        """Store-backed staleness check. An unreadable store counts as due."""
        try:
            last_update = await self._stored_last_update()
        except Exception:
            return True
        return should_curate(last_update, self.interval_hours, self._clock())

    def _elapsed_ms(self, started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    def _failure(self, started: float, exc: Exception) -> CurationResult:
        error_code = _ERROR_CODES.get(type(exc), CurationErrorCode.UNEXPECTED)
        if error_code is CurationErrorCode.UNEXPECTED:
            logger.exception("Curation failed unexpectedly")
        else:
            logger.error("Curation failed: %s", exc)
        return CurationResult(
            success=False,
            duration_ms=self._elapsed_ms(started),
            timestamp=self._clock(),
            error=str(exc) or type(exc).__name__,
            error_code=error_code,
        )

    async def curate(self, max_pages: int = CURATION_MAX_PAGES, force: bool = False) -> CurationResult:
        """
        Run one curation pass and report the outcome. Never raises.

        Steps:
            1. Fail fast if a run is already in flight (state untouched),
               otherwise mark this run as in flight. The claim precedes the
               staleness read, so a concurrent non-forced call that arrives
               during that read gets in_progress rather than a skipped success.
            2. Unless forced, return a skipped success while the list is fresh.
            3. Take the shared lease when configured.
            4. Fetch candidates; none at all fails the run.
            5. Score, sort and select the featured entries.
            6. Replace the stored batch; a store failure fails the run.

        Args:
            max_pages: TMDB listing pages to fetch.
            force: Ignore the staleness policy.

        Returns:
            CurationResult with counts and duration, or the failure reason.
        """
        started = time.perf_counter()

        if self.is_running:
            return self._failure(started, CurationInProgressError("Curation already in progress"))

        # Claimed before the first await so a concurrent call sees it.
        self.is_running = True
        lease_held = False
        try:
            if not force and not await self.is_curation_due():
                logger.info("Featured upcoming list is still fresh, skipping curation")
                return CurationResult(
                    success=True,
                    duration_ms=self._elapsed_ms(started),
                    timestamp=self._clock(),
                    skipped=True,
                )

            if self.lease is not None:
                if not await self.lease.acquire():
                    raise CurationInProgressError("Curation already in progress on another instance")
                lease_held = True

            logger.info("Curating upcoming movies (max_pages=%d, force=%s)", max_pages, force)
            candidates = await self.fetch_candidates(max_pages)
            if not candidates:
                raise NoUpcomingMoviesError("No upcoming movies found to curate")

            entries = select_featured_entries(score_candidates(candidates))

            store_result = await self.store.replace_all(entries)
            if not store_result.success:
                raise CurationPersistenceError(f"Failed to store curated movies: {store_result.error}")

            self.last_curation = self._clock()
            result = CurationResult(
                success=True,
                movies_processed=len(candidates),
                featured_entries_selected=len(entries),
                duration_ms=self._elapsed_ms(started),
                timestamp=self.last_curation,
            )
            logger.info(
                "Curation completed: %d processed, %d featured in %.1fms",
                result.movies_processed, result.featured_entries_selected, result.duration_ms,
            )
            return result
        except Exception as exc:
            return self._failure(started, exc)
        finally:
            if lease_held:
                try:
                    await self.lease.release()
                except Exception as exc:
                    logger.error("Failed to release curation lease: %s", exc)
            self.is_running = False

    async def force_curation(self, max_pages: int = CURATION_MAX_PAGES) -> CurationResult:
        """Curate regardless of how fresh the stored list is."""
        logger.info("Force curating upcoming movies")
        return await self.curate(max_pages, force=True)

    async def get_status(self) -> CurationStatus:
        """
        Report whether a run is in flight and when the next one is due.

        last_curation comes from the store when it is readable and holds a
        batch, otherwise from this process's own last successful run.
        """
        last_curation = self.last_curation
        try:
            stored = await self._stored_last_update()
        except Exception:
            stored = None
        if stored is not None:
            last_curation = stored

        now = self._clock()
        next_due = (
            last_curation + timedelta(hours=self.interval_hours)
            if last_curation is not None
            else now
        )
        return CurationStatus(
            is_running=self.is_running,
            last_curation=last_curation,
            next_curation_due=next_due,
        )
