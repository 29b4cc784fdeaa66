import logging
import asyncio
from datetime import timedelta
from celery import Celery
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker
from config import (DATABASE_URL_ASYNC, CELERY_BROKER_URL, CELERY_RESULT_BACKEND, CLICK_RETENTION_DAYS,
                    CLEANUP_INTERVAL_HOURS)
from database import build_engine
from services.retention import RetentionCleaner

logger = logging.getLogger(__name__)
celery_app = Celery(__name__, broker=CELERY_BROKER_URL, backend=CELERY_RESULT_BACKEND)
celery_app.conf.beat_schedule = {
    "purge-expired-conversions": {
        "task": "tasks.purge_expired_conversions_task",
        "schedule": timedelta(hours=CLEANUP_INTERVAL_HOURS),
    },
    "purge-old-clicks": {
        "task": "tasks.purge_old_clicks_task",
        "schedule": timedelta(hours=CLEANUP_INTERVAL_HOURS),
    },
}

async def _run_cleaner(action: str, **kwargs) -> int:
    # the worker has no app event loop, so each run gets its own engine
    new_engine = build_engine(DATABASE_URL_ASYNC)
    NewSessionMaker = sessionmaker(new_engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with NewSessionMaker() as db:
            return await getattr(RetentionCleaner(db), action)(**kwargs)
    finally:
        await new_engine.dispose()

def _run(coro) -> int:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()

@celery_app.task(name="tasks.purge_expired_conversions_task")
def purge_expired_conversions_task():
    deleted = _run(_run_cleaner("purge_expired_conversions"))
    logger.info("Celery cleanup: %d expired conversions removed", deleted)
    return deleted

@celery_app.task(name="tasks.purge_old_clicks_task")
def purge_old_clicks_task(days_to_keep: int = CLICK_RETENTION_DAYS):
    deleted = _run(_run_cleaner("purge_old_clicks", days_to_keep=days_to_keep))
    logger.info("Celery cleanup: %d old click events removed", deleted)
    return deleted
