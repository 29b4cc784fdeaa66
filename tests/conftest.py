import asyncio
import os
import tempfile
import uuid
from datetime import datetime

# Point the app at a throwaway SQLite file before anything imports config
test_db = os.path.join(tempfile.gettempdir(), "test_click_tracker.db")
if os.path.exists(test_db):
    os.remove(test_db)
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db}"
os.environ["BASE_URL"] = "http://test"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import delete

import database
from models import Campaign, Link, ClickEvent, ConversionEvent, VideoStat

loop = asyncio.new_event_loop()
loop.run_until_complete(database.init_models())
loop.close()


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_database():
    """Remove the database file after the session"""
    yield
    if os.path.exists(test_db):
        os.remove(test_db)


@pytest.fixture(autouse=True)
async def clean_db():
    """Clear all rows between tests"""
    async with database.async_session_maker() as session:
        for model in (ConversionEvent, ClickEvent, Link, VideoStat, Campaign):
            await session.execute(delete(model))
        await session.commit()
    yield


@pytest.fixture
async def db():
    async with database.async_session_maker() as session:
        yield session


@pytest.fixture
async def campaign(db):
    campaign = Campaign(name="Spring Launch", created_at=datetime.utcnow())
    db.add(campaign)
    await db.commit()
    return campaign


@pytest.fixture
async def link(db, campaign):
    return await make_link(db, campaign, short_code="Abc12345")


@pytest.fixture
async def client():
    from main import app
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def make_link(db, campaign, short_code, custom_alias=None, video_id="dQw4w9WgXcQ",
                    destination_url="https://example.com/landing", title=None):
    now = datetime.utcnow()
    link = Link(campaign_id=campaign.id, short_code=short_code, custom_alias=custom_alias,
                destination_url=destination_url, external_video_id=video_id, video_title=title,
                created_at=now, updated_at=now)
    db.add(link)
    await db.commit()
    return link


async def add_click(db, link, clicked_at=None, tracking_id=None, referrer=None):
    click = ClickEvent(link_id=link.id, tracking_id=tracking_id or str(uuid.uuid4()),
                       referrer=referrer, clicked_at=clicked_at or datetime.utcnow())
    db.add(click)
    await db.commit()
    return click


async def add_conversion(db, link, tracking_id, kind, revenue=None, converted_at=None):
    event = ConversionEvent(tracking_id=tracking_id, link_id=link.id, kind=kind, revenue=revenue,
                            converted_at=converted_at or datetime.utcnow())
    db.add(event)
    await db.commit()
    return event
