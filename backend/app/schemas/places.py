from datetime import datetime

from pydantic import BaseModel, model_validator


class Place(BaseModel):
    name: str
    years: str
    description: str
    lat: float
    lng: float


class ItineraryResult(BaseModel):
    """Structured provider answer. A not-found answer has an error and no places."""

    places: list[Place] = []
    error: str | None = None

    @model_validator(mode="after")
    def _error_means_no_places(self):
        if self.error:
            self.places = []
        return self

    @property
    def is_cacheable(self) -> bool:
        return bool(self.places) and not self.error


class CachedItinerary(BaseModel):
    places: list[Place]
    model: str
    cached_at: datetime


class PlacesRequest(BaseModel):
    name: str | None = None
    model: str | None = None


class PlacesResponse(BaseModel):
    places: list[Place]
    model: str
    cached: bool
    error: str | None = None
