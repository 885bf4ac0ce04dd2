"""
Enum classes for upcoming-movie curation.

This module contains the Enum classes shared by the TMDB client, the
curation pipeline, the featured-list store and the API layer.
"""

from enum import Enum, IntEnum


class TmdbGenre(IntEnum):
    """TMDB movie genre codes as returned in ``genre_ids``."""
    ACTION = 28
    ADVENTURE = 12
    ANIMATION = 16
    COMEDY = 35
    CRIME = 80
    DOCUMENTARY = 99
    DRAMA = 18
    FAMILY = 10751
    FANTASY = 14
    HISTORY = 36
    HORROR = 27
    MUSIC = 10402
    MYSTERY = 9648
    ROMANCE = 10749
    SCIENCE_FICTION = 878
    TV_MOVIE = 10770
    THRILLER = 53
    WAR = 10752
    WESTERN = 37


# Genres that earn the full genre bonus when scoring.
BLOCKBUSTER_GENRES: frozenset[int] = frozenset({
    TmdbGenre.ACTION,
    TmdbGenre.SCIENCE_FICTION,
    TmdbGenre.FANTASY,
    TmdbGenre.ADVENTURE,
})

# Checked only when no blockbuster genre matched.
ANTICIPATED_GENRES: frozenset[int] = BLOCKBUSTER_GENRES | {TmdbGenre.THRILLER}


class FeaturedCategory(Enum):
    """Category tag stored on every featured row."""
    UPCOMING = "upcoming"


class FeaturedSortBy(Enum):
    """Sort keys accepted when reading the featured list."""
    RANK = "rank"
    CURATION_SCORE = "curation_score"
    VOTE_AVERAGE = "vote_average"
    POPULARITY = "popularity"
    RELEASE_DATE = "release_date"

    @property
    def column(self) -> str:
        """Column in public.upcoming_movies_featured this key orders by."""
        if self is FeaturedSortBy.RANK:
            return "rank_position"
        return self.value


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


class CurationErrorCode(Enum):
    """Machine-readable failure kinds reported on a CurationResult."""
    IN_PROGRESS = "in_progress"
    NO_CANDIDATES = "no_candidates"
    PERSISTENCE_FAILED = "persistence_failed"
    UNEXPECTED = "unexpected"
