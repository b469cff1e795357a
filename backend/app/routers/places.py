"""Places router — itinerary lookup for a historical figure."""

from fastapi import APIRouter

from app.schemas.places import PlacesRequest, PlacesResponse
from app.services.places_service import places_service

router = APIRouter()


@router.post("", response_model=PlacesResponse, response_model_exclude_none=True)
async def fetch_places(req: PlacesRequest):
    """Places the figure lived, from cache or a provider.

    Errors are mapped to 400 / 429 / 500 by the app's exception handlers.
    """
    result = await places_service.fetch_itinerary(req.name, req.model)
    return PlacesResponse(
        places=result.places,
        model=result.model,
        cached=result.cached,
        error=result.error,
    )
