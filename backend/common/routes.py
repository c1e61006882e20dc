from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import  AsyncSession
from backend.db.dependencies import get_session
from backend.common import logger

home_router = APIRouter()


@home_router.get("/health")
async def health_check(session:AsyncSession=Depends(get_session)):

    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("health.db_unreachable", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database connection error")

    return {"status": "healthy"}
