import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from config import ATTRIBUTION_WINDOW_DAYS
from errors import ValidationFailed, NoClickFound, WindowExpired, LinkNotFound
from models import ConversionEvent, ConversionKind, Link
from services.attribution import latest_click, days_since, is_within_window
from utils import parse_money, CENT

logger = logging.getLogger(__name__)

UNUSUAL_REVENUE = Decimal("10000")
# largest amount a Numeric(10, 2) revenue column holds
MAX_REVENUE = Decimal("99999999.99")


@dataclass
class ValidatedConversion:
    kind: ConversionKind
    revenue: Optional[Decimal]
    warnings: List[str] = field(default_factory=list)


@dataclass
class RecordedConversion:
    event: ConversionEvent
    warnings: List[str] = field(default_factory=list)


def check_purchase(revenue: Optional[Decimal]) -> List[str]:
    if revenue is None or revenue <= 0:
        raise ValidationFailed("Purchase events must include a positive revenue amount")
    if revenue > UNUSUAL_REVENUE:
        return ["Revenue amount is unusually high"]
    return []


def check_enrollment(revenue: Optional[Decimal]) -> List[str]:
    if revenue is not None and revenue <= 0:
        raise ValidationFailed("Enrollment revenue must be positive if provided")
    return []


def check_signup(revenue: Optional[Decimal]) -> List[str]:
    if revenue is None:
        return []
    if revenue <= 0:
        raise ValidationFailed("Revenue amount must be positive")
    return ["Signups typically do not have revenue amounts"]


REVENUE_RULES = {
    ConversionKind.purchase: check_purchase,
    ConversionKind.enrollment: check_enrollment,
    ConversionKind.signup: check_signup,
}


# first violation wins: structure, then the per-kind revenue rule
def validate_conversion(tracking_id, link_id, kind, revenue=None, data=None) -> ValidatedConversion:
    """Structural and kind-specific checks that need no datastore access."""
    if not tracking_id:
        raise ValidationFailed("Tracking ID is required")
    if link_id is None:
        raise ValidationFailed("Campaign link ID is required")
    try:
        kind = ConversionKind(kind)
    except ValueError:
        allowed = ", ".join(k.value for k in ConversionKind)
        raise ValidationFailed(f"Event type must be one of: {allowed}", {"kind": kind})
    amount = parse_money(revenue)
    if amount is not None and amount != amount.quantize(CENT):
        raise ValidationFailed("Revenue amount cannot have more than 2 decimal places")
    if amount is not None and abs(amount) > MAX_REVENUE:
        raise ValidationFailed(f"Revenue amount cannot exceed {MAX_REVENUE}", {"revenue": str(amount)})
    if data is not None and not isinstance(data, dict):
        raise ValidationFailed("Event data must be a JSON object")
    warnings = REVENUE_RULES[kind](amount)
    return ValidatedConversion(kind=kind, revenue=amount, warnings=warnings)


class ConversionAttributor:
    def __init__(self, db: AsyncSession, window_days: int = ATTRIBUTION_WINDOW_DAYS):
        self.db = db
        self.window_days = window_days

    async def record(self, tracking_id: str, link_id: int, kind, revenue=None, data: dict = None,
                     now: datetime = None) -> RecordedConversion:
        now = now or datetime.utcnow()
        validated = validate_conversion(tracking_id, link_id, kind, revenue, data)

        anchor = await latest_click(self.db, tracking_id)
        if anchor is None:
            logger.warning("Conversion rejected, no click for tracking id %s", tracking_id)
            raise NoClickFound("No click event found for tracking ID", {"tracking_id": tracking_id})
        if not is_within_window(anchor.clicked_at, now, self.window_days):
            elapsed = days_since(anchor.clicked_at, now)
            logger.warning("Conversion rejected for %s, click is %d days old", tracking_id, elapsed)
            raise WindowExpired(
                f"Conversion is outside the {self.window_days}-day attribution window",
                {"tracking_id": tracking_id, "days_since_click": elapsed},
            )

        if await self.db.get(Link, link_id) is None:
            raise LinkNotFound("Campaign link not found", {"link_id": link_id})

        event = ConversionEvent(
            tracking_id=tracking_id,
            link_id=link_id,
            kind=validated.kind,
            revenue=validated.revenue,
            event_data=data,
            converted_at=now,
        )
        self.db.add(event)
        await self.db.commit()
        for warning in validated.warnings:
            logger.warning("Conversion %d for %s: %s", event.id, tracking_id, warning)
        logger.info("Conversion %d (%s) recorded for %s on link %d", event.id, validated.kind.value, tracking_id, link_id)
        return RecordedConversion(event=event, warnings=validated.warnings)
