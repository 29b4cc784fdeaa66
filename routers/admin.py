import logging
import time
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db, async_session_maker
from schemas import BatchClicksRequest, BatchClicksOut, CleanupOut
from services.clicks import record_batch
from services.retention import RetentionCleaner

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/cleanup/conversions", response_model=CleanupOut)
async def cleanup_conversions(db: AsyncSession = Depends(get_db)):
    deleted = await RetentionCleaner(db).purge_expired_conversions()
    return CleanupOut(deleted=deleted)


@router.delete("/cleanup/clicks/{days}", response_model=CleanupOut)
async def cleanup_clicks(days: int, db: AsyncSession = Depends(get_db)):
    deleted = await RetentionCleaner(db).purge_old_clicks(days)
    return CleanupOut(deleted=deleted, days_kept=days)


@router.post("/batch-clicks", response_model=BatchClicksOut)
async def batch_clicks(body: BatchClicksRequest):
    started = time.perf_counter()
    results = await record_batch(async_session_maker, body.clicks)
    elapsed_ms = (time.perf_counter() - started) * 1000
    succeeded = sum(1 for r in results if r.success)
    return BatchClicksOut(
        total_clicks=len(results),
        successful_clicks=succeeded,
        failed_clicks=len(results) - succeeded,
        processing_time_ms=round(elapsed_ms, 2),
        results=results,
    )
