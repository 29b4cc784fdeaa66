import logging
import re
import secrets
import string
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode
from sqlalchemy import or_
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from config import SHORT_CODE_LENGTH, SHORT_CODE_MAX_ATTEMPTS
from errors import ValidationFailed, AliasTaken, ExhaustedAttempts
from models import Link

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_letters + string.digits
MIN_CODE_LENGTH = 6
MAX_CODE_LENGTH = 10
ALIAS_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MIN_ALIAS_LENGTH = 3
MAX_ALIAS_LENGTH = 50
VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
VIDEO_URL_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/)([A-Za-z0-9_-]{11})"),
    re.compile(r"youtube\.com/embed/([A-Za-z0-9_-]{11})"),
    re.compile(r"youtube\.com/v/([A-Za-z0-9_-]{11})"),
)
TRACKING_SOURCE = "youtube"
TRACKING_MEDIUM = "campaign_link"
TRACKING_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "tracking_id", "click_id")
CENT = Decimal("0.01")


def generate_short_code(length: int = SHORT_CODE_LENGTH) -> str:
    if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
        raise ValidationFailed(f"Short code length must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH}")
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class ShortCodeGenerator:
    """Attempts are counted over the generator's lifetime, insert retries included."""

    def __init__(self, db: AsyncSession, max_attempts: int = SHORT_CODE_MAX_ATTEMPTS):
        self.db = db
        self.max_attempts = max_attempts
        self.attempts = 0

    async def is_available(self, segment: str) -> bool:
        stmt = select(Link.id).filter(or_(Link.short_code == segment, Link.custom_alias == segment))
        result = await self.db.execute(stmt)
        return result.first() is None

    def draw(self, length: int) -> str:
        return generate_short_code(length)

    async def issue(self, length: int = SHORT_CODE_LENGTH) -> str:
        while self.attempts < self.max_attempts:
            self.attempts += 1
            code = self.draw(length)
            if await self.is_available(code):
                return code
            logger.warning("Short code collision on attempt %d/%d", self.attempts, self.max_attempts)
        logger.error("Unable to generate a unique short code after %d attempts", self.max_attempts)
        raise ExhaustedAttempts(f"Unable to generate unique short code after {self.max_attempts} attempts")

    async def validate_alias(self, alias: str) -> str:
        check_alias_format(alias)
        if not await self.is_available(alias):
            raise AliasTaken("Custom alias is already taken", {"alias": alias})
        return alias


def check_alias_format(alias: str):
    if not MIN_ALIAS_LENGTH <= len(alias) <= MAX_ALIAS_LENGTH:
        raise ValidationFailed(f"Custom alias must be between {MIN_ALIAS_LENGTH} and {MAX_ALIAS_LENGTH} characters")
    if not ALIAS_PATTERN.match(alias):
        raise ValidationFailed("Custom alias can only contain letters, numbers, hyphens, and underscores")


def validate_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def validate_video_id(video_id: str) -> bool:
    return bool(video_id) and VIDEO_ID_PATTERN.match(video_id) is not None


def extract_video_id(url: str):
    for pattern in VIDEO_URL_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def add_tracking_parameters(destination_url: str, tracking_id: str, link_id: int) -> str:
    parts = urlsplit(destination_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    query.extend([
        ("utm_source", TRACKING_SOURCE),
        ("utm_medium", TRACKING_MEDIUM),
        ("utm_campaign", str(link_id)),
        ("tracking_id", tracking_id),
        # some tag managers only read click_id
        ("click_id", tracking_id),
    ])
    return urlunsplit(parts._replace(query=urlencode(query)))


def parse_money(value):
    """Coerce a revenue amount (number or numeric string) to an exact Decimal, None stays None."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationFailed("Revenue amount must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationFailed("Revenue amount must be a number", {"revenue": str(value)})
    if not amount.is_finite():
        raise ValidationFailed("Revenue amount must be a finite number")
    return amount


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage(part, whole, places: int = 2) -> float:
    if not whole:
        return 0.0
    ratio = Decimal(str(part)) * 100 / Decimal(str(whole))
    return float(ratio.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def average(total, count) -> Decimal:
    if not count:
        return Decimal("0.00")
    return to_money(Decimal(str(total)) / count)
