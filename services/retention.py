import logging
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from config import ATTRIBUTION_WINDOW_DAYS, CLICK_RETENTION_DAYS
from errors import ValidationFailed
from models import ClickEvent, ConversionEvent

logger = logging.getLogger(__name__)

MIN_DAYS_TO_KEEP = 1
MAX_DAYS_TO_KEEP = 365


def window_cutoff(now: datetime, window_days: int = ATTRIBUTION_WINDOW_DAYS) -> datetime:
    # a conversion survives only while some click for its tracking id is newer than this
    return now - timedelta(days=window_days)


class RetentionCleaner:
    def __init__(self, db: AsyncSession, window_days: int = ATTRIBUTION_WINDOW_DAYS):
        self.db = db
        self.window_days = window_days

    async def purge_expired_conversions(self, now: datetime = None) -> int:
        now = now or datetime.utcnow()
        live_tracking_ids = select(ClickEvent.tracking_id).filter(
            ClickEvent.clicked_at >= window_cutoff(now, self.window_days))
        stmt = (delete(ConversionEvent)
                .where(ConversionEvent.tracking_id.not_in(live_tracking_ids))
                .execution_options(synchronize_session=False))
        result = await self.db.execute(stmt)
        await self.db.commit()
        logger.info("Retention: %d conversions outside the attribution window removed", result.rowcount)
        return result.rowcount

    async def purge_old_clicks(self, days_to_keep: int = CLICK_RETENTION_DAYS, now: datetime = None) -> int:
        if not MIN_DAYS_TO_KEEP <= days_to_keep <= MAX_DAYS_TO_KEEP:
            raise ValidationFailed(f"Days must be a number between {MIN_DAYS_TO_KEEP} and {MAX_DAYS_TO_KEEP}")
        now = now or datetime.utcnow()
        stmt = (delete(ClickEvent)
                .where(ClickEvent.clicked_at < now - timedelta(days=days_to_keep))
                .execution_options(synchronize_session=False))
        result = await self.db.execute(stmt)
        await self.db.commit()
        logger.info("Retention: %d click events older than %d days removed", result.rowcount, days_to_keep)
        return result.rowcount
