from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from errors import NoClickFound
from services.attribution import AttributionResolver, days_since, is_within_window
from services.conversions import ConversionAttributor
from conftest import add_click, add_conversion


def test_days_since_floors_partial_days():
    now = datetime(2024, 3, 31, 12, 0)
    assert days_since(now - timedelta(days=30, hours=23), now) == 30
    assert days_since(now - timedelta(days=31), now) == 31
    assert days_since(now, now) == 0


def test_window_is_inclusive_of_day_thirty():
    now = datetime(2024, 3, 31, 12, 0)
    assert is_within_window(now - timedelta(days=30), now)
    assert not is_within_window(now - timedelta(days=31), now)


@pytest.mark.asyncio
async def test_revenue_sum_is_exact_to_the_cent(db, link):
    click = await add_click(db, link)
    attributor = ConversionAttributor(db)
    for amount in ("10.01", "10.02", "10.03"):
        await attributor.record(click.tracking_id, link.id, "purchase", revenue=amount)

    snapshot = await AttributionResolver(db).resolve(click.tracking_id)

    assert snapshot.total_revenue == Decimal("30.06")
    assert snapshot.conversion_count == 3


@pytest.mark.asyncio
async def test_snapshot_treats_missing_revenue_as_zero(db, link):
    click = await add_click(db, link)
    await add_conversion(db, link, click.tracking_id, "signup")
    await add_conversion(db, link, click.tracking_id, "purchase", revenue=Decimal("19.99"))

    snapshot = await AttributionResolver(db).resolve(click.tracking_id)

    assert snapshot.total_revenue == Decimal("19.99")
    assert snapshot.link_id == link.id
    assert snapshot.attribution_window_days == 30
    assert snapshot.is_within_window


@pytest.mark.asyncio
async def test_snapshot_reports_expired_window(db, link):
    now = datetime.utcnow()
    click = await add_click(db, link, clicked_at=now - timedelta(days=45))

    snapshot = await AttributionResolver(db).resolve(click.tracking_id, now=now)

    assert snapshot.days_since_click == 45
    assert not snapshot.is_within_window
    assert snapshot.conversions == []


@pytest.mark.asyncio
async def test_resolve_without_click(db, link):
    with pytest.raises(NoClickFound):
        await AttributionResolver(db).resolve("unknown-tracking-id")
