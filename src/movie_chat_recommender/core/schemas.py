from __future__ import annotations

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=1000)
    # Optional client-provided session id. If omitted, the API will create one.
    session_id: str | None = None
    stream: bool = True


class YearRangeModel(BaseModel):
    min: int
    max: int


class RatingRangeModel(BaseModel):
    min: float = Field(ge=1, le=10)
    max: float = Field(ge=1, le=10)


class PreferencesModel(BaseModel):
    genres: list[str]
    yearRange: YearRangeModel
    ratingRange: RatingRangeModel
    movieTitles: list[str]


class ChatResponse(BaseModel):
    session_id: str
    response: str
    preferences_extracted: bool
    preferences: PreferencesModel | None = None


class ChatMessageItem(BaseModel):
    role: str
    content: str
    timestamp: str


class MovieMatchItem(BaseModel):
    query: str
    tmdb_id: int
    title: str
    year: int | None = None
    rating: float | None = None
    overview: str | None = None


class ChatSessionResponse(BaseModel):
    session_id: str
    messages: list[ChatMessageItem]
    preferences_extracted: bool
    preferences: PreferencesModel | None = None
    title_matches: list[MovieMatchItem] = Field(default_factory=list)
