from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from easylms.courses import analytics
from easylms.courses.dependencies import get_db
from easylms.courses.errors import LMSError, unexpected

router = APIRouter(prefix="/api/stats", tags=["Statistics"])


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # stored timestamps are naive UTC
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@router.get("/dashboard")
async def dashboard(db: AsyncIOMotorDatabase = Depends(get_db)):
    """Month-to-date dashboard"""
    try:
        return {"data": await analytics.get_dashboard_stats(db)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch dashboard stats", e)


@router.get("/quick")
async def quick(db: AsyncIOMotorDatabase = Depends(get_db)):
    try:
        return {"data": await analytics.get_quick_stats(db)}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch quick stats", e)


@router.get("/period")
async def period(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    try:
        stats = await analytics.get_stats_for_period(db, _naive_utc(start_date), _naive_utc(end_date))
        return {"data": stats}
    except LMSError:
        raise
    except Exception as e:
        raise unexpected("Failed to fetch period stats", e)
