from datetime import datetime, timedelta
from urllib.parse import urlsplit, parse_qs

import pytest
from sqlalchemy import select

import database
from errors import LinkNotFound
from models import ClickEvent
from schemas import ClickContext, BatchClickItem
from services.clicks import ClickRecorder, record_batch, click_stats
from conftest import make_link, add_click


@pytest.mark.asyncio
async def test_record_click_builds_tagged_redirect(db, link):
    target = await ClickRecorder(db).record("Abc12345")

    params = parse_qs(urlsplit(target.url).query)
    assert target.url.startswith("https://example.com/landing?")
    assert params["tracking_id"] == [target.tracking_id]
    assert params["click_id"] == [target.tracking_id]
    assert params["utm_campaign"] == [str(link.id)]
    assert target.link_id == link.id


@pytest.mark.asyncio
async def test_record_click_persists_context_verbatim(db, link):
    context = ClickContext(ip_address="203.0.113.9", user_agent="Mozilla/5.0", referrer="https://youtube.com/watch")
    target = await ClickRecorder(db).record("Abc12345", context)

    result = await db.execute(select(ClickEvent).filter(ClickEvent.tracking_id == target.tracking_id))
    click = result.scalar_one()
    assert click.ip_address == "203.0.113.9"
    assert click.user_agent == "Mozilla/5.0"
    assert click.referrer == "https://youtube.com/watch"
    assert click.link_id == link.id


@pytest.mark.asyncio
async def test_each_visit_gets_a_new_tracking_id(db, link):
    recorder = ClickRecorder(db)
    first = await recorder.record("Abc12345")
    second = await recorder.record("Abc12345")
    assert first.tracking_id != second.tracking_id


@pytest.mark.asyncio
async def test_record_click_resolves_custom_alias(db, campaign):
    aliased = await make_link(db, campaign, short_code="Zz998877", custom_alias="launch-day")
    target = await ClickRecorder(db).record("launch-day")
    assert target.link_id == aliased.id


@pytest.mark.asyncio
async def test_record_click_unknown_code(db, link):
    with pytest.raises(LinkNotFound):
        await ClickRecorder(db).record("nope1234")


@pytest.mark.asyncio
async def test_batch_reports_failures_per_item(link):
    items = [
        BatchClickItem(short_code="Abc12345", user_agent="bot-1"),
        BatchClickItem(short_code="missing1"),
        BatchClickItem(short_code="Abc12345", referrer="https://youtube.com"),
    ]
    results = await record_batch(database.async_session_maker, items, concurrency=2)

    assert [r.index for r in results] == [0, 1, 2]
    assert [r.success for r in results] == [True, False, True]
    assert results[1].error["code"] == "LINK_NOT_FOUND"
    assert results[0].data.tracking_id != results[2].data.tracking_id


@pytest.mark.asyncio
async def test_click_stats(db, link):
    now = datetime.utcnow()
    await add_click(db, link, clicked_at=now - timedelta(minutes=5), referrer="https://youtube.com")
    await add_click(db, link, clicked_at=now - timedelta(minutes=10), referrer="https://youtube.com")
    await add_click(db, link, clicked_at=now - timedelta(days=3))

    stats = await click_stats(db, link.id, now=now)

    assert stats.total_clicks == 3
    assert stats.unique_clicks == 3
    assert sum(h.clicks for h in stats.hourly) == 2
    assert stats.top_referrers[0].referrer == "https://youtube.com"
    assert stats.top_referrers[0].clicks == 2
    assert {r.referrer for r in stats.top_referrers} == {"https://youtube.com", "Direct"}
