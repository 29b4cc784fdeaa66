import io
import logging
import qrcode
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse, StreamingResponse, HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import BASE_URL
from database import get_db
from errors import LinkNotFound, ValidationFailed
from schemas import ShortenRequest, ShortenOut, ClickContext, ClickStats, UrlCheckRequest, UrlCheckOut, VideoIdOut
from services.clicks import ClickRecorder, click_stats
from services.links import shorten, find_by_segment
from utils import validate_url, validate_video_id, extract_video_id

logger = logging.getLogger(__name__)
router = APIRouter()

NOT_FOUND_PAGE = """<!DOCTYPE html>
<html>
<head><title>Link not found</title></head>
<body>
<h1>This link doesn't exist</h1>
<p>The short link you followed may have been mistyped or removed.</p>
</body>
</html>"""


@router.post("/shorten", response_model=ShortenOut, status_code=status.HTTP_201_CREATED)
async def create_link(link: ShortenRequest, db: AsyncSession = Depends(get_db)):
    result = await shorten(
        db,
        campaign_id=link.campaign_id,
        destination_url=str(link.destination_url),
        external_video_id=link.external_video_id,
        custom_alias=link.custom_alias,
    )
    return result


@router.post("/utils/validate-url", response_model=UrlCheckOut)
async def check_url(body: UrlCheckRequest):
    return UrlCheckOut(url=body.url, is_valid=validate_url(body.url))


@router.post("/utils/extract-video-id", response_model=VideoIdOut)
async def extract_video(body: UrlCheckRequest):
    video_id = extract_video_id(body.url)
    if not video_id:
        raise ValidationFailed("Unable to extract YouTube video ID from the provided URL")
    return VideoIdOut(url=body.url, video_id=video_id, is_valid=validate_video_id(video_id))


@router.get("/links/{link_id}/clicks", response_model=ClickStats)
async def get_click_stats(link_id: int, db: AsyncSession = Depends(get_db)):
    stats = await click_stats(db, link_id)
    logger.info("Fetched click stats for link %d", link_id)
    return stats


@router.get("/links/{code}/qrcode")
async def get_qrcode(code: str, db: AsyncSession = Depends(get_db)):
    link = await find_by_segment(db, code)
    if not link:
        raise LinkNotFound("Short URL not found", {"code": code})
    img = qrcode.make(f"{BASE_URL}/{link.public_code}")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    buf.seek(0)
    logger.info("Generated QR code for link: %s", code)
    return StreamingResponse(buf, media_type="image/png")


@router.get("/{code}", name="redirect_link", include_in_schema=False)
async def redirect_link(code: str, request: Request, db: AsyncSession = Depends(get_db)):
    context = ClickContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
    )
    try:
        target = await ClickRecorder(db).record(code, context)
    except LinkNotFound:
        logger.info("Redirect miss for code: %s", code)
        return HTMLResponse(NOT_FOUND_PAGE, status_code=status.HTTP_404_NOT_FOUND)
    return RedirectResponse(url=target.url, status_code=status.HTTP_302_FOUND)
