"""
Pydantic schemas for the upcoming-movie curation pipeline.

This module contains the provider-side movie record, the intermediate scored
and curated shapes, and the result/status payloads returned by the curator
and the API.
"""

from datetime import date, datetime
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, constr, field_validator
from pydantic.alias_generators import to_camel
from .enums import CurationErrorCode, FeaturedCategory


# -----------------------------
#        PROVIDER RECORDS
# -----------------------------

class CandidateMovie(BaseModel):
    """One movie from TMDB's upcoming listing (read-only to the pipeline)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    title: constr(strip_whitespace=True, min_length=1)
    overview: str = ""
    release_date: date
    vote_average: float = Field(default=0.0, ge=0, le=10)
    vote_count: int = Field(default=0, ge=0)
    popularity: float = Field(default=0.0, ge=0)
    # TMDB list endpoints send genre_ids; stored rows use genres.
    genres: list[int] = Field(
        default_factory=list,
        validation_alias=AliasChoices("genres", "genre_ids"),
    )
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None

    @field_validator("overview", mode="before")
    @classmethod
    def _overview_none_to_empty(cls, value: Any) -> Any:
        return value or ""

    @field_validator("vote_average", "vote_count", "popularity", mode="before")
    @classmethod
    def _numeric_none_to_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("genres", mode="before")
    @classmethod
    def _genres_none_to_empty(cls, value: Any) -> Any:
        return value or []


# -----------------------------
#       PIPELINE SHAPES
# -----------------------------

class ScoredCandidate(BaseModel):
    movie: CandidateMovie
    score: float
    reasoning: str


class CuratedEntry(BaseModel):
    """A selected movie with its rank in the featured batch."""
    movie: CandidateMovie
    curation_score: float
    curation_reasoning: str
    rank_position: int = Field(..., ge=1, le=10)
    category: str = FeaturedCategory.UPCOMING.value
    featured_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def as_featured_row(self) -> dict[str, Any]:
        """Flatten into the column layout of public.upcoming_movies_featured."""
        return {
            "id": self.movie.id,
            "title": self.movie.title,
            "overview": self.movie.overview or None,
            "release_date": self.movie.release_date,
            "poster_path": self.movie.poster_path,
            "backdrop_path": self.movie.backdrop_path,
            "vote_average": self.movie.vote_average,
            "vote_count": self.movie.vote_count,
            "popularity": self.movie.popularity,
            "genres": list(self.movie.genres),
            "curation_score": self.curation_score,
            "curation_reasoning": self.curation_reasoning,
            "rank_position": self.rank_position,
            "category": self.category,
            "featured_at": self.featured_at,
            "updated_at": self.updated_at,
        }


class StoreResult(BaseModel):
    success: bool
    error: Optional[str] = None


# -----------------------------
#       RESULTS & STATUS
# -----------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CurationResult(_CamelModel):
    success: bool
    movies_processed: int = 0
    featured_entries_selected: int = 0
    duration_ms: float = 0.0
    timestamp: datetime
    error: Optional[str] = None
    error_code: Optional[CurationErrorCode] = None
    skipped: bool = False


class CurationStatus(_CamelModel):
    is_running: bool
    last_curation: Optional[datetime] = None
    next_curation_due: datetime


class FeaturedStats(_CamelModel):
    total_featured: int = 0
    last_updated: Optional[datetime] = None
    average_rating: float = 0.0
    average_popularity: float = 0.0
    genre_distribution: dict[int, int] = Field(default_factory=dict)


class CurateRequest(_CamelModel):
    """Body of POST /curate."""
    force: bool = False
    max_pages: int = Field(default=5, ge=1, le=10)
