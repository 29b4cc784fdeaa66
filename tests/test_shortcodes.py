import asyncio
import random
from urllib.parse import urlsplit, parse_qs

import pytest
from sqlalchemy import select

import database
from errors import ValidationFailed, AliasTaken, ExhaustedAttempts, CampaignNotFound
from models import Link
from services.links import shorten, find_by_segment
from utils import (CODE_ALPHABET, ShortCodeGenerator, generate_short_code, check_alias_format, validate_url,
                   validate_video_id, extract_video_id, add_tracking_parameters)
from conftest import make_link


class AlwaysTakenGenerator(ShortCodeGenerator):
    def __init__(self):
        super().__init__(db=None)
        self.checks = 0

    async def is_available(self, segment):
        self.checks += 1
        return False


class RacingGenerator(ShortCodeGenerator):
    """Hands out fixed codes whose pre-check passes even though a row already holds them."""

    def __init__(self, db, codes, racing=()):
        super().__init__(db)
        self.codes = list(codes)
        self.racing = set(racing)

    def draw(self, length):
        return self.codes.pop(0)

    async def is_available(self, segment):
        if segment in self.racing:
            return True
        return await super().is_available(segment)


class LateAliasGenerator(ShortCodeGenerator):
    # another writer claims the alias between the pre-check and the insert
    async def validate_alias(self, alias):
        check_alias_format(alias)
        return alias


class PooledGenerator(ShortCodeGenerator):
    POOL = [f"Pool{i:04d}" for i in range(200)]

    def draw(self, length):
        return random.choice(self.POOL)


def test_generate_short_code_uses_alphanumeric_alphabet():
    code = generate_short_code(8)
    assert len(code) == 8
    assert all(ch in CODE_ALPHABET for ch in code)
    assert len(CODE_ALPHABET) == 62


@pytest.mark.parametrize("length", [5, 11])
def test_generate_short_code_rejects_out_of_range_length(length):
    with pytest.raises(ValidationFailed):
        generate_short_code(length)


async def shorten_many(campaign, count, generator_factory=None, concurrency=20):
    semaphore = asyncio.Semaphore(concurrency)

    async def create(i):
        async with semaphore:
            async with database.async_session_maker() as session:
                generator = generator_factory(session) if generator_factory else None
                return await shorten(session, campaign.id, f"https://example.com/{i}", "dQw4w9WgXcQ",
                                     generator=generator)

    return await asyncio.gather(*(create(i) for i in range(count)))


async def persisted_codes():
    async with database.async_session_maker() as session:
        result = await session.execute(select(Link.short_code))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_concurrent_issuance_never_persists_a_duplicate(campaign):
    results = await shorten_many(campaign, 10_000)
    codes = await persisted_codes()
    assert len(codes) == 10_000
    assert len(set(codes)) == 10_000
    assert {r.short_code for r in results} == set(codes)


@pytest.mark.asyncio
async def test_issue_gives_up_after_ten_attempts():
    generator = AlwaysTakenGenerator()
    with pytest.raises(ExhaustedAttempts):
        await generator.issue()
    assert generator.checks == 10


@pytest.mark.parametrize("alias", ["ab", "x" * 51, "has space", "emoji!", "dots.not.ok"])
def test_alias_format_rejected(alias):
    with pytest.raises(ValidationFailed):
        check_alias_format(alias)


@pytest.mark.parametrize("alias", ["abc", "spring-sale_2024", "x" * 50])
def test_alias_format_accepted(alias):
    check_alias_format(alias)


@pytest.mark.asyncio
async def test_alias_shares_namespace_with_short_codes(db, campaign):
    await make_link(db, campaign, short_code="Taken123")
    with pytest.raises(AliasTaken):
        await ShortCodeGenerator(db).validate_alias("Taken123")


@pytest.mark.asyncio
async def test_shorten_then_resolve_round_trip(db, campaign):
    result = await shorten(db, campaign.id, "https://example.com/a", "dQw4w9WgXcQ")
    assert 6 <= len(result.short_code) <= 10
    assert result.short_url == f"http://test/{result.short_code}"
    link = await find_by_segment(db, result.short_code)
    assert link.id == result.campaign_link_id


@pytest.mark.asyncio
async def test_shorten_with_alias_returns_alias_as_public_code(db, campaign):
    result = await shorten(db, campaign.id, "https://example.com/a", "dQw4w9WgXcQ", custom_alias="spring-sale")
    assert result.short_code == "spring-sale"
    link = await find_by_segment(db, "spring-sale")
    assert link.id == result.campaign_link_id
    # the generated code still resolves to the same link
    assert (await find_by_segment(db, link.short_code)).id == link.id


@pytest.mark.asyncio
async def test_shorten_duplicate_alias_conflicts(db, campaign):
    await shorten(db, campaign.id, "https://example.com/a", "dQw4w9WgXcQ", custom_alias="promo")
    with pytest.raises(AliasTaken):
        await shorten(db, campaign.id, "https://example.com/b", "dQw4w9WgXcQ", custom_alias="promo")


@pytest.mark.asyncio
async def test_shorten_unknown_campaign(db):
    with pytest.raises(CampaignNotFound):
        await shorten(db, 9999, "https://example.com/a", "dQw4w9WgXcQ")


@pytest.mark.asyncio
async def test_racing_draws_are_caught_at_insert(campaign):
    results = await shorten_many(campaign, 50, generator_factory=PooledGenerator)
    codes = await persisted_codes()
    assert len(codes) == 50
    assert len(set(codes)) == 50
    assert set(codes) <= set(PooledGenerator.POOL)
    assert {r.short_code for r in results} == set(codes)


@pytest.mark.asyncio
async def test_code_conflict_at_insert_draws_a_new_code(db, campaign):
    await make_link(db, campaign, short_code="Collide1")
    generator = RacingGenerator(db, ["Collide1", "Fresh001"], racing={"Collide1"})

    result = await shorten(db, campaign.id, "https://example.com/a", "dQw4w9WgXcQ", generator=generator)

    assert result.short_code == "Fresh001"
    assert generator.attempts == 2


@pytest.mark.asyncio
async def test_code_conflict_with_free_alias_keeps_the_alias(db, campaign):
    await make_link(db, campaign, short_code="Collide1")
    generator = RacingGenerator(db, ["Collide1", "Fresh001"], racing={"Collide1"})

    result = await shorten(db, campaign.id, "https://example.com/a", "dQw4w9WgXcQ", custom_alias="fresh-alias",
                           generator=generator)

    assert result.short_code == "fresh-alias"
    link = await find_by_segment(db, "fresh-alias")
    assert link.short_code == "Fresh001"


@pytest.mark.asyncio
async def test_insert_conflicts_count_toward_the_ceiling(db, campaign):
    await make_link(db, campaign, short_code="Collide1")
    generator = RacingGenerator(db, ["Collide1"] * 10, racing={"Collide1"})

    with pytest.raises(ExhaustedAttempts):
        await shorten(db, campaign.id, "https://example.com/a", "dQw4w9WgXcQ", generator=generator)
    assert generator.attempts == 10


@pytest.mark.asyncio
async def test_alias_claimed_after_pre_check_conflicts(db, campaign):
    await make_link(db, campaign, short_code="Owner123", custom_alias="promo")

    with pytest.raises(AliasTaken):
        await shorten(db, campaign.id, "https://example.com/a", "dQw4w9WgXcQ", custom_alias="promo",
                      generator=LateAliasGenerator(db))


def test_validate_url():
    assert validate_url("https://example.com/page")
    assert validate_url("http://example.com")
    assert not validate_url("ftp://example.com/file")
    assert not validate_url("not a url")


def test_video_id_helpers():
    assert validate_video_id("dQw4w9WgXcQ")
    assert not validate_video_id("short")
    assert extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10") == "dQw4w9WgXcQ"
    assert extract_video_id("https://youtu.be/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_video_id("https://www.youtube.com/embed/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_video_id("https://example.com/video") is None


def test_tracking_parameters_overwrite_and_preserve():
    url = add_tracking_parameters("https://shop.example.com/p?ref=abc&utm_source=old#buy", "tid-1", 42)
    parts = urlsplit(url)
    params = parse_qs(parts.query)
    assert params["ref"] == ["abc"]
    assert params["utm_source"] == ["youtube"]
    assert params["utm_medium"] == ["campaign_link"]
    assert params["utm_campaign"] == ["42"]
    assert params["tracking_id"] == ["tid-1"]
    assert params["click_id"] == ["tid-1"]
    assert parts.fragment == "buy"
