import logging
from datetime import datetime
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from config import BASE_URL, SHORT_CODE_LENGTH
from errors import AliasTaken, CampaignNotFound
from models import Campaign, Link
from schemas import ShortenOut
from utils import ShortCodeGenerator

logger = logging.getLogger(__name__)


async def shorten(db: AsyncSession, campaign_id: int, destination_url: str, external_video_id: str,
                  custom_alias: str = None, generator: ShortCodeGenerator = None) -> ShortenOut:
    """Create a campaign link and return its public short URL.

    The insert's unique constraints are authoritative. After a conflict the
    alias is checked again: if it is gone the caller gets AliasTaken,
    otherwise the generated code collided and a new one is drawn.
    """
    if await db.get(Campaign, campaign_id) is None:
        raise CampaignNotFound("Campaign not found", {"campaign_id": campaign_id})
    generator = generator or ShortCodeGenerator(db)
    if custom_alias:
        await generator.validate_alias(custom_alias)

    while True:
        short_code = await generator.issue(SHORT_CODE_LENGTH)
        now = datetime.utcnow()
        link = Link(
            campaign_id=campaign_id,
            short_code=short_code,
            custom_alias=custom_alias or None,
            destination_url=destination_url,
            external_video_id=external_video_id,
            created_at=now,
            updated_at=now,
        )
        db.add(link)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if custom_alias and not await generator.is_available(custom_alias):
                logger.warning("Alias %s taken at insert time", custom_alias)
                raise AliasTaken("Custom alias is already taken", {"alias": custom_alias})
            logger.warning("Short code %s taken at insert time, retrying", short_code)
            continue
        break

    await db.refresh(link)
    public_code = link.public_code
    logger.info("Link %d created for campaign %d: %s", link.id, campaign_id, public_code)
    return ShortenOut(
        short_code=public_code,
        short_url=f"{BASE_URL}/{public_code}",
        destination_url=link.destination_url,
        external_video_id=link.external_video_id,
        campaign_link_id=link.id,
    )


async def find_by_segment(db: AsyncSession, segment: str):
    """Resolve a path segment: short code first, then custom alias."""
    result = await db.execute(select(Link).filter(Link.short_code == segment))
    link = result.scalar_one_or_none()
    if link is None:
        result = await db.execute(select(Link).filter(Link.custom_alias == segment))
        link = result.scalar_one_or_none()
    return link
