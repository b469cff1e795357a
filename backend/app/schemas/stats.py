from datetime import datetime

from pydantic import BaseModel


class FigureStats(BaseModel):
    display_name: str
    normalized_name: str
    request_count: int = 1
    last_provider_id: str
    last_requested_at: datetime


class FigureStatsEntry(FigureStats):
    has_cached_data: bool = False


class StatsResponse(BaseModel):
    stats: list[FigureStatsEntry]


class PurgeRequest(BaseModel):
    normalized_name: str | None = None
    include_stats: bool = False


class PurgeResponse(BaseModel):
    success: bool
