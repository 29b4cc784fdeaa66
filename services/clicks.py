import asyncio
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import List
from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from config import BATCH_CONCURRENCY
from errors import LinkNotFound, TrackerError
from models import ClickEvent, Link
from schemas import (RedirectTarget, ClickContext, BatchClickItem, BatchItemResult, ClickStats,
                     HourlyClicks, ReferrerCount)
from services.links import find_by_segment
from utils import add_tracking_parameters

logger = logging.getLogger(__name__)


class ClickRecorder:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(self, path_segment: str, context: ClickContext = None, now: datetime = None) -> RedirectTarget:
        link = await find_by_segment(self.db, path_segment)
        if link is None:
            raise LinkNotFound("Short URL not found", {"code": path_segment})
        context = context or ClickContext()
        # every visit is its own attribution opportunity, even for a returning visitor
        tracking_id = str(uuid.uuid4())
        click = ClickEvent(
            link_id=link.id,
            tracking_id=tracking_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            referrer=context.referrer,
            clicked_at=now or datetime.utcnow(),
        )
        self.db.add(click)
        await self.db.commit()
        logger.info("Click recorded on %s (link %d), tracking id %s", path_segment, link.id, tracking_id)
        return RedirectTarget(
            url=add_tracking_parameters(link.destination_url, tracking_id, link.id),
            tracking_id=tracking_id,
            link_id=link.id,
        )


async def record_batch(session_maker, items: List[BatchClickItem],
                       concurrency: int = BATCH_CONCURRENCY) -> List[BatchItemResult]:
    """Record many clicks concurrently, one session per item.

    A failing item never aborts the batch; each item gets its own result.
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def process(index: int, item: BatchClickItem) -> BatchItemResult:
        async with semaphore:
            try:
                async with session_maker() as db:
                    context = ClickContext(ip_address=item.ip_address, user_agent=item.user_agent,
                                           referrer=item.referrer)
                    target = await ClickRecorder(db).record(item.short_code, context)
                return BatchItemResult(index=index, success=True, data=target)
            except TrackerError as e:
                return BatchItemResult(index=index, success=False, error={"code": e.code, "message": e.message})
            except Exception as e:
                logger.exception("Batch click %d failed", index)
                return BatchItemResult(index=index, success=False, error={"code": "UNEXPECTED", "message": str(e)})

    results = await asyncio.gather(*(process(i, item) for i, item in enumerate(items)))
    failed = sum(1 for r in results if not r.success)
    logger.info("Batch of %d clicks processed, %d failed", len(results), failed)
    return list(results)


async def click_stats(db: AsyncSession, link_id: int, now: datetime = None, hours: int = 24,
                      referrer_limit: int = 10) -> ClickStats:
    if await db.get(Link, link_id) is None:
        raise LinkNotFound("Campaign link not found", {"link_id": link_id})
    now = now or datetime.utcnow()

    stmt = select(func.count(ClickEvent.id), func.count(func.distinct(ClickEvent.tracking_id))).filter(
        ClickEvent.link_id == link_id)
    total, unique = (await db.execute(stmt)).one()

    stmt = select(ClickEvent.clicked_at).filter(
        ClickEvent.link_id == link_id, ClickEvent.clicked_at >= now - timedelta(hours=hours))
    buckets = Counter(
        clicked_at.replace(minute=0, second=0, microsecond=0) for clicked_at in (await db.execute(stmt)).scalars()
    )
    hourly = [HourlyClicks(hour=hour.isoformat(), clicks=count) for hour, count in sorted(buckets.items(), reverse=True)]

    referrer = func.coalesce(ClickEvent.referrer, "Direct")
    stmt = (select(referrer, func.count(ClickEvent.id).label("clicks"))
            .filter(ClickEvent.link_id == link_id)
            .group_by(referrer)
            .order_by(func.count(ClickEvent.id).desc())
            .limit(referrer_limit))
    top_referrers = [ReferrerCount(referrer=r, clicks=c) for r, c in (await db.execute(stmt)).all()]

    return ClickStats(link_id=link_id, total_clicks=total, unique_clicks=unique, hourly=hourly,
                      top_referrers=top_referrers)
