from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.services.system_services import check_db_service, system_metrics, system_health
from app.core.dependencies import get_db

router = APIRouter()

@router.get("/health")
async def health():
    return await system_health()

@router.get("/health/db")
async def db_health():
    return await check_db_service()

@router.get("/metrics")
async def counts(db: AsyncSession = Depends(get_db)):
    """Users, groups, group expenses and settlements recorded so far."""
    return await system_metrics(db)
