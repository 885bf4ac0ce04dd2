"""
"Worth waiting for" scoring and featured-list selection for upcoming movies.

Both stages are pure: scoring maps one CandidateMovie to a (score, reasoning)
pair, and selection walks the score-sorted pool once (plus an optional
backfill pass) to build a genre-diverse top 10.
"""

import logging
from typing import Iterable

from implementation.classes.enums import ANTICIPATED_GENRES, BLOCKBUSTER_GENRES
from implementation.classes.schemas import CandidateMovie, CuratedEntry, ScoredCandidate
from implementation.misc.helpers import format_number, round_half_up, to_fixed

logger = logging.getLogger(__name__)

# ── Scoring weights ─────────────────────────────────────────────────
_RATING_WEIGHT = 40.0
_POPULARITY_WEIGHT = 30.0
_POPULARITY_SCALE = 100.0
_VOTE_COUNT_WEIGHT = 15.0
_VOTE_COUNT_SCALE = 1000.0

_BLOCKBUSTER_BONUS = 15.0
_ANTICIPATED_BONUS = 10.0
_DEFAULT_GENRE_BONUS = 5.0
_RELEASE_WINDOW_BONUS = 5.0
_PLOT_DETAIL_BONUS = 5.0

# Factor thresholds
_HIGH_RATING = 7.5
_HIGH_POPULARITY = 50.0
_STRONG_VOTE_COUNT = 500
_DETAILED_OVERVIEW_CHARS = 200

# Summer (May-July) and holiday (Nov-Dec) releases.
_PRIME_RELEASE_MONTHS = frozenset({5, 6, 7, 11, 12})

_FALLBACK_REASONING = "Solid upcoming release with good potential"

# ── Selection ───────────────────────────────────────────────────────
FEATURED_LIST_SIZE = 10
MIN_CURATION_SCORE = 5.0
_BACKFILL_FLOOR_RATIO = 0.8
_GUARANTEED_SLOTS = 3
_QUALITY_BYPASS_SCORE = 70.0


def compute_worth_waiting_score(movie: CandidateMovie) -> tuple[float, str]:
    """
    Score how worth waiting for an upcoming movie is.

    Weighted additive score with a soft maximum near 100:
        rating       (vote_average / 10) * 40
        popularity   min(popularity / 100 * 30, 30)
        vote count   min(vote_count / 1000 * 15, 15)
        genre        +15 blockbuster, else +10 anticipated, else +5
        window       +5 for May/Jun/Jul/Nov/Dec releases
        plot         +5 for an overview longer than 200 characters

    The blockbuster and anticipated genre sets overlap; blockbuster is
    checked first and the two bonuses never stack.

    Args:
        movie: Candidate to score.

    Returns:
        (score rounded to 2 decimals, human-readable reasoning).
    """
    factors: list[str] = []
    vote_average = movie.vote_average or 0.0
    popularity = movie.popularity or 0.0
    vote_count = movie.vote_count or 0

    score = (vote_average / 10) * _RATING_WEIGHT
    if vote_average >= _HIGH_RATING:
        factors.append(f"High rating ({format_number(vote_average)}/10)")

    score += min((popularity / _POPULARITY_SCALE) * _POPULARITY_WEIGHT, _POPULARITY_WEIGHT)
    if popularity > _HIGH_POPULARITY:
        factors.append(f"High buzz (popularity: {to_fixed(popularity)})")

    score += min((vote_count / _VOTE_COUNT_SCALE) * _VOTE_COUNT_WEIGHT, _VOTE_COUNT_WEIGHT)
    if vote_count > _STRONG_VOTE_COUNT:
        factors.append(f"Strong audience interest ({vote_count} votes)")

    genres = set(movie.genres)
    if genres & BLOCKBUSTER_GENRES:
        score += _BLOCKBUSTER_BONUS
        factors.append("Blockbuster genre")
    elif genres & ANTICIPATED_GENRES:
        score += _ANTICIPATED_BONUS
        factors.append("Highly anticipated genre")
    else:
        score += _DEFAULT_GENRE_BONUS

    if movie.release_date.month in _PRIME_RELEASE_MONTHS:
        score += _RELEASE_WINDOW_BONUS
        factors.append("Prime release window")

    if len(movie.overview or "") > _DETAILED_OVERVIEW_CHARS:
        score += _PLOT_DETAIL_BONUS
        factors.append("Detailed plot description")

    reasoning = f"Selected for: {', '.join(factors)}" if factors else _FALLBACK_REASONING
    return round_half_up(score, 2), reasoning


def score_candidates(movies: Iterable[CandidateMovie]) -> list[ScoredCandidate]:
    """Score every movie and return them sorted by score, highest first (stable)."""
    scored = []
    for movie in movies:
        score, reasoning = compute_worth_waiting_score(movie)
        scored.append(ScoredCandidate(movie=movie, score=score, reasoning=reasoning))
    scored.sort(key=lambda candidate: candidate.score, reverse=True)

    logger.info(
        "Scored %d upcoming movies, top score: %s",
        len(scored), scored[0].score if scored else 0,
    )
    return scored


def enhance_reasoning(base_reasoning: str, rank: int, score: float) -> str:
    """Prefix the base reasoning with its rank tier and append the score."""
    if rank == 1:
        prefix = "🏆 Top Pick: "
    elif rank <= 3:
        prefix = "🥇 Premium Choice: "
    elif rank <= 6:
        prefix = "⭐ Highly Recommended: "
    else:
        prefix = "🎬 Worth Watching: "
    return f"{prefix}{base_reasoning} (Score: {to_fixed(score)})"


def _curate(candidate: ScoredCandidate, rank: int) -> CuratedEntry:
    return CuratedEntry(
        movie=candidate.movie,
        curation_score=candidate.score,
        curation_reasoning=enhance_reasoning(candidate.reasoning, rank, candidate.score),
        rank_position=rank,
    )


def select_featured_entries(
    scored: list[ScoredCandidate],
    limit: int = FEATURED_LIST_SIZE,
    min_score: float = MIN_CURATION_SCORE,
) -> list[CuratedEntry]:
    """
    Pick a genre-diverse featured list from a score-sorted pool.

    First pass, in score order, skipping anything below ``min_score``:
    admit a candidate when fewer than 3 are selected, when it brings a
    genre not yet represented, or when it scores above 70. Ranks follow
    admission order and are never reassigned.

    If fewer than ``limit`` were admitted, a backfill pass walks the same
    list again, skipping already selected ids, admitting in order and
    stopping at the first score below 80% of ``min_score``.

    Args:
        scored: Candidates sorted by score, highest first.
        limit: Maximum entries to return.
        min_score: First-pass score floor.

    Returns:
        Curated entries with rank_position 1..N, N <= limit.
    """
    selected: list[CuratedEntry] = []
    used_genres: set[int] = set()

    for candidate in scored:
        if len(selected) >= limit:
            break
        if candidate.score < min_score:
            continue

        genres = candidate.movie.genres
        has_new_genre = any(genre not in used_genres for genre in genres)

        if (
            len(selected) < _GUARANTEED_SLOTS
            or has_new_genre
            or candidate.score > _QUALITY_BYPASS_SCORE
        ):
            selected.append(_curate(candidate, rank=len(selected) + 1))
            used_genres.update(genres)

    if len(selected) < limit:
        selected_ids = {entry.movie.id for entry in selected}
        backfill_floor = min_score * _BACKFILL_FLOOR_RATIO

        for candidate in scored:
            if len(selected) >= limit:
                break
            if candidate.movie.id in selected_ids:
                continue
            # Pool is score-sorted, so nothing further can clear the floor.
            if candidate.score < backfill_floor:
                break
            selected.append(_curate(candidate, rank=len(selected) + 1))
            selected_ids.add(candidate.movie.id)

    logger.info("Selected %d movies for the featured list", len(selected))
    return selected
