"""Stats router — usage ledger listing and cache purge."""

from fastapi import APIRouter, HTTPException

from app.schemas.stats import PurgeRequest, PurgeResponse, StatsResponse
from app.services.cache_service import cache_service
from app.services.places_service import places_service

router = APIRouter()


def _require_store():
    if not cache_service.is_configured:
        raise HTTPException(status_code=503, detail="Stats not available - Redis not configured")


@router.get("", response_model=StatsResponse)
async def list_stats():
    """Every figure requested so far, most requested first."""
    _require_store()
    return {"stats": await places_service.list_stats()}


@router.delete("", response_model=PurgeResponse)
async def purge_figure(req: PurgeRequest):
    """Drop a figure's cached itineraries (and its usage record if asked)."""
    _require_store()
    if not req.normalized_name or not req.normalized_name.strip():
        raise HTTPException(status_code=400, detail="normalized_name is required")
    success = await places_service.purge(req.normalized_name, include_stats=req.include_stats)
    return {"success": success}
