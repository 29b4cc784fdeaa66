import logging
from datetime import datetime
from decimal import Decimal
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from config import ATTRIBUTION_WINDOW_DAYS
from errors import NoClickFound
from models import ClickEvent, ConversionEvent
from schemas import AttributionSnapshot, ConversionOut
from utils import to_money

logger = logging.getLogger(__name__)


def days_since(anchor: datetime, now: datetime) -> int:
    # timedelta.days is already floored
    return (now - anchor).days


# the one window rule, shared by ConversionAttributor and AttributionResolver
def is_within_window(anchor: datetime, now: datetime, window_days: int = ATTRIBUTION_WINDOW_DAYS) -> bool:
    return days_since(anchor, now) <= window_days


async def latest_click(db: AsyncSession, tracking_id: str):
    stmt = (select(ClickEvent)
            .filter(ClickEvent.tracking_id == tracking_id)
            .order_by(ClickEvent.clicked_at.desc(), ClickEvent.id.desc())
            .limit(1))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


class AttributionResolver:
    def __init__(self, db: AsyncSession, window_days: int = ATTRIBUTION_WINDOW_DAYS):
        self.db = db
        self.window_days = window_days

    async def resolve(self, tracking_id: str, now: datetime = None) -> AttributionSnapshot:
        now = now or datetime.utcnow()
        anchor = await latest_click(self.db, tracking_id)
        if anchor is None:
            raise NoClickFound("No click event found for tracking ID", {"tracking_id": tracking_id})

        stmt = (select(ConversionEvent)
                .filter(ConversionEvent.tracking_id == tracking_id)
                .order_by(ConversionEvent.converted_at.desc(), ConversionEvent.id.desc()))
        result = await self.db.execute(stmt)
        conversions = result.scalars().all()

        total = sum((to_money(c.revenue) for c in conversions), Decimal("0.00"))
        snapshot = AttributionSnapshot(
            tracking_id=tracking_id,
            link_id=anchor.link_id,
            click_timestamp=anchor.clicked_at,
            days_since_click=days_since(anchor.clicked_at, now),
            conversions=[ConversionOut.model_validate(c) for c in conversions],
            conversion_count=len(conversions),
            total_revenue=to_money(total),
            attribution_window_days=self.window_days,
            is_within_window=is_within_window(anchor.clicked_at, now, self.window_days),
        )
        logger.info("Resolved attribution for %s: %d conversions", tracking_id, snapshot.conversion_count)
        return snapshot
