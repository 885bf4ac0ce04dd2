import logging
import os
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv

# Connection settings are read at import time by the db modules.
load_dotenv()

from fastapi import Depends, FastAPI, Header, Query  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from db.postgres import pool, check_postgres, ensure_featured_schema, PostgresFeaturedStore  # noqa: E402
from db.redis import init_redis, close_redis, check_redis, RedisCurationLease  # noqa: E402
from db.upcoming_curation import FeaturedStore, UpcomingCurator  # noqa: E402
from implementation.classes.enums import FeaturedSortBy, SortOrder  # noqa: E402
from implementation.classes.schemas import CurateRequest, CurationResult, CurationStatus  # noqa: E402
from implementation.misc.helpers import utc_now  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CRON_MAX_PAGES: int = int(os.getenv("CRON_MAX_PAGES", "4"))
USE_REDIS_LOCK: bool = os.getenv("CURATION_USE_REDIS_LOCK", "true").lower() in ("1", "true", "yes")

featured_store = PostgresFeaturedStore()
curator = UpcomingCurator(
    store=featured_store,
    lease=RedisCurationLease() if USE_REDIS_LOCK else None,
)


def get_curator() -> UpcomingCurator:
    return curator


def get_featured_store() -> FeaturedStore:
    return featured_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan handler for connection lifecycle management.

    Opens the Postgres pool (and Redis when the curation lease is enabled) on
    startup, makes sure the featured table exists, and closes everything on
    shutdown.
    """
    await pool.open()
    # Validate that connections actually work (fast-fail if Postgres is unreachable)
    await pool.check()
    await ensure_featured_schema()
    if USE_REDIS_LOCK:
        await init_redis()
    yield
    await close_redis()
    await pool.close()


app = FastAPI(lifespan=lifespan)


async def _curation_response(
    result: CurationResult,
    curator: UpcomingCurator,
    success_message: str,
    failure_message: str,
) -> JSONResponse:
    """Map a CurationResult to 200 (success or skipped) / 500 (failure)."""
    payload = result.model_dump(mode="json", by_alias=True)
    if result.skipped:
        status = await curator.get_status()
        payload["message"] = "Curation not needed yet"
        payload["status"] = status.model_dump(mode="json", by_alias=True)
        payload["nextUpdate"] = payload["status"]["nextCurationDue"]
    else:
        payload["message"] = success_message if result.success else failure_message
    return JSONResponse(content=payload, status_code=200 if result.success else 500)


@app.get("/health")
async def health_check():
    """
    Health check endpoint that validates connectivity to all external services.

    Returns a dictionary with status for each service:
    - postgres: 'ok' or error message (checked via connection pool)
    - redis: 'ok' or error message
    """
    return {
        "postgres": await check_postgres(),
        "redis": await check_redis(),
    }


@app.post("/curate")
async def trigger_curation(
    body: Optional[CurateRequest] = None,
    curator: UpcomingCurator = Depends(get_curator),
):
    """Run a curation pass on demand. ``force`` ignores the staleness policy."""
    request = body or CurateRequest()
    logger.info("Manual curation triggered (force=%s, max_pages=%d)", request.force, request.max_pages)

    if request.force:
        result = await curator.force_curation(request.max_pages)
    else:
        result = await curator.curate(request.max_pages)
    return await _curation_response(
        result, curator, "Curation completed successfully", "Curation failed",
    )


@app.get("/curate/status", response_model=CurationStatus)
async def curation_status(curator: UpcomingCurator = Depends(get_curator)):
    return await curator.get_status()


@app.post("/cron/curate-upcoming-movies")
async def cron_curation(
    authorization: Optional[str] = Header(default=None),
    curator: UpcomingCurator = Depends(get_curator),
):
    """
    Scheduler entry point. Requires ``Authorization: Bearer $CRON_SECRET``
    when CRON_SECRET is configured; the curator is not touched otherwise.
    """
    cron_secret = os.getenv("CRON_SECRET")
    if cron_secret:
        # Header values arrive latin-1 decoded; compare them as raw bytes.
        presented = (authorization or "").encode("latin-1", "replace")
        if not secrets.compare_digest(presented, f"Bearer {cron_secret}".encode()):
            return JSONResponse(
                content={"message": "Unauthorized access to CRON endpoint"},
                status_code=401,
            )
    else:
        logger.warning("CRON_SECRET is not set; cron curation endpoint is unauthenticated")

    result = await curator.curate(CRON_MAX_PAGES)
    return await _curation_response(
        result, curator, "CRON curation completed successfully", "CRON curation failed",
    )


@app.get("/cron/curate-upcoming-movies")
async def cron_health(curator: UpcomingCurator = Depends(get_curator)):
    status = await curator.get_status()
    return {
        "message": "CRON endpoint healthy",
        "service": "upcoming-movies-curation",
        "status": status.model_dump(mode="json", by_alias=True),
        "timestamp": utc_now().isoformat(),
    }


@app.get("/upcoming/featured")
async def featured_upcoming_movies(
    sort_by: FeaturedSortBy = Query(FeaturedSortBy.RANK, alias="sortBy"),
    sort_order: SortOrder = Query(SortOrder.ASC, alias="sortOrder"),
    limit: int = Query(10, ge=1, le=20),
    include_stats: bool = Query(False, alias="includeStats"),
    store: FeaturedStore = Depends(get_featured_store),
):
    """
    Read the live featured list (unreleased movies only) with optional stats.
    """
    try:
        entries = await store.read_all(sort_by, sort_order, limit)
    except Exception as e:
        logger.exception("Failed to read featured upcoming movies")
        return JSONResponse(
            content={"message": "Failed to fetch featured upcoming movies", "error": str(e)},
            status_code=500,
        )

    response = {
        "success": True,
        "movies": [entry.as_featured_row() for entry in entries],
        "count": len(entries),
        "sortBy": sort_by.value,
        "sortOrder": sort_order.value,
        "timestamp": utc_now().isoformat(),
    }

    if include_stats:
        try:
            stats = await store.stats()
            response["stats"] = stats.model_dump(mode="json", by_alias=True)
        except Exception as e:
            logger.warning("Featured stats unavailable: %s", e)

    return response
