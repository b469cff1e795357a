"""Models router — provider ids available to callers."""

from fastapi import APIRouter

from app.services.models_service import models_service

router = APIRouter()


@router.get("")
async def list_models():
    return {"models": await models_service.list_models()}
