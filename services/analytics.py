import logging
from decimal import Decimal
from typing import List
from sqlalchemy import func, case
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from errors import LinkNotFound, CampaignNotFound, ValidationFailed
from models import Campaign, Link, ClickEvent, ConversionEvent, ConversionKind, VideoStat
from schemas import (AnalyticsFilters, LinkMetrics, CampaignMetrics, FunnelStep, KindRevenue, DailyRevenue,
                     RevenueAttribution, TopLink, CampaignComparison)
from utils import to_money, percentage, average

logger = logging.getLogger(__name__)

FUNNEL_ORDER = {ConversionKind.signup.value: 1, ConversionKind.enrollment.value: 2, ConversionKind.purchase.value: 3}
TOP_LINK_METRICS = ("clicks", "conversions", "revenue", "ctr")
MAX_TOP_LINKS = 100
DAILY_ROWS = 30
CTR_PLACES = 4


def click_conditions(filters: AnalyticsFilters) -> list:
    conditions = []
    if filters.start_date:
        conditions.append(ClickEvent.clicked_at >= filters.start_date)
    if filters.end_date:
        conditions.append(ClickEvent.clicked_at <= filters.end_date)
    return conditions


def conversion_conditions(filters: AnalyticsFilters) -> list:
    conditions = []
    if filters.start_date:
        conditions.append(ConversionEvent.converted_at >= filters.start_date)
    if filters.end_date:
        conditions.append(ConversionEvent.converted_at <= filters.end_date)
    if filters.kind:
        conditions.append(ConversionEvent.kind == filters.kind)
    return conditions


def kind_name(kind) -> str:
    return kind.value if isinstance(kind, ConversionKind) else str(kind)


def funnel_key(kind: str):
    return FUNNEL_ORDER.get(kind, len(FUNNEL_ORDER) + 1), kind


def day_label(value) -> str:
    # DATE() comes back as a date on PostgreSQL and as text on SQLite
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


class AnalyticsAggregator:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_link(self, link_id: int) -> Link:
        link = await self.db.get(Link, link_id)
        if link is None:
            raise LinkNotFound("Campaign link not found", {"link_id": link_id})
        return link

    async def _click_counts(self, link_id: int, filters: AnalyticsFilters):
        stmt = select(func.count(ClickEvent.id), func.count(func.distinct(ClickEvent.tracking_id))).filter(
            ClickEvent.link_id == link_id, *click_conditions(filters))
        total, unique = (await self.db.execute(stmt)).one()
        return total or 0, unique or 0

    async def _conversion_totals(self, link_id: int, filters: AnalyticsFilters):
        stmt = select(func.count(ConversionEvent.id), func.sum(ConversionEvent.revenue)).filter(
            ConversionEvent.link_id == link_id, *conversion_conditions(filters))
        count, revenue = (await self.db.execute(stmt)).one()
        return count or 0, to_money(revenue)

    async def _video_views(self, video_id: str) -> int:
        stat = await self.db.get(VideoStat, video_id)
        return int(stat.view_count) if stat else 0

    async def link_metrics(self, link_id: int, filters: AnalyticsFilters = None) -> LinkMetrics:
        filters = filters or AnalyticsFilters()
        link = await self._get_link(link_id)
        views = await self._video_views(link.external_video_id)
        total_clicks, unique_clicks = await self._click_counts(link_id, filters)
        conversions, revenue = await self._conversion_totals(link_id, filters)
        return LinkMetrics(
            link_id=link.id,
            short_code=link.public_code,
            external_video_id=link.external_video_id,
            video_title=link.video_title,
            video_thumbnail_url=link.video_thumbnail_url,
            video_views=views,
            total_clicks=total_clicks,
            unique_clicks=unique_clicks,
            ctr=percentage(total_clicks, views, CTR_PLACES),
            conversions=conversions,
            conversion_rate=percentage(conversions, total_clicks),
            revenue=revenue,
        )

    async def campaign_metrics(self, campaign_id: int, filters: AnalyticsFilters = None) -> CampaignMetrics:
        filters = filters or AnalyticsFilters()
        if await self.db.get(Campaign, campaign_id) is None:
            raise CampaignNotFound("Campaign not found", {"campaign_id": campaign_id})
        result = await self.db.execute(
            select(Link.id).filter(Link.campaign_id == campaign_id).order_by(Link.created_at.desc(), Link.id.desc()))
        links = [await self.link_metrics(link_id, filters) for link_id in result.scalars().all()]

        total_clicks = sum(l.total_clicks for l in links)
        conversions = sum(l.conversions for l in links)
        # rate comes from the summed totals, never an average of per-link rates
        return CampaignMetrics(
            campaign_id=campaign_id,
            total_clicks=total_clicks,
            unique_clicks=sum(l.unique_clicks for l in links),
            total_conversions=conversions,
            conversion_rate=percentage(conversions, total_clicks),
            total_revenue=to_money(sum((l.revenue for l in links), Decimal("0"))),
            links=links,
        )

    async def funnel(self, link_id: int, filters: AnalyticsFilters = None) -> List[FunnelStep]:
        filters = filters or AnalyticsFilters()
        await self._get_link(link_id)
        total_clicks, _ = await self._click_counts(link_id, filters)
        if total_clicks == 0:
            return [FunnelStep(step="clicks", count=0, rate=0, drop_off_rate=0)]

        stmt = (select(ConversionEvent.kind, func.count(ConversionEvent.id))
                .filter(ConversionEvent.link_id == link_id, *conversion_conditions(filters))
                .group_by(ConversionEvent.kind))
        counts = {kind_name(kind): count for kind, count in (await self.db.execute(stmt)).all()}

        steps = [FunnelStep(step="clicks", count=total_clicks, rate=100, drop_off_rate=0)]
        previous = total_clicks
        for kind in sorted(counts, key=funnel_key):
            count = counts[kind]
            steps.append(FunnelStep(
                step=kind,
                count=count,
                rate=percentage(count, total_clicks),
                drop_off_rate=percentage(previous - count, previous),
            ))
            previous = count
        return steps

    async def revenue_attribution(self, link_id: int, filters: AnalyticsFilters = None) -> RevenueAttribution:
        filters = filters or AnalyticsFilters()
        await self._get_link(link_id)
        conditions = [ConversionEvent.link_id == link_id, ConversionEvent.revenue.isnot(None),
                      *conversion_conditions(filters)]

        total = (await self.db.execute(select(func.sum(ConversionEvent.revenue)).filter(*conditions))).scalar()

        revenue_sum = func.sum(ConversionEvent.revenue).label("revenue")
        stmt = (select(ConversionEvent.kind, revenue_sum, func.count(ConversionEvent.id))
                .filter(*conditions)
                .group_by(ConversionEvent.kind)
                .order_by(revenue_sum.desc()))
        by_kind = [
            KindRevenue(kind=kind_name(kind), revenue=to_money(revenue), count=count,
                        average_order_value=average(revenue, count))
            for kind, revenue, count in (await self.db.execute(stmt)).all()
        ]

        day = func.date(ConversionEvent.converted_at).label("day")
        stmt = (select(day, func.sum(ConversionEvent.revenue), func.count(ConversionEvent.id))
                .filter(*conditions)
                .group_by(day)
                .order_by(day.desc())
                .limit(DAILY_ROWS))
        daily = [
            DailyRevenue(date=day_label(d), revenue=to_money(revenue), conversions=count)
            for d, revenue, count in (await self.db.execute(stmt)).all()
        ]
        return RevenueAttribution(total_revenue=to_money(total), by_kind=by_kind, daily=daily)

    async def top_links(self, limit: int = 10, metric: str = "clicks",
                        filters: AnalyticsFilters = None) -> List[TopLink]:
        filters = filters or AnalyticsFilters()
        if metric not in TOP_LINK_METRICS:
            raise ValidationFailed(f"Metric must be one of: {', '.join(TOP_LINK_METRICS)}", {"metric": metric})
        if not 1 <= limit <= MAX_TOP_LINKS:
            raise ValidationFailed(f"Limit must be between 1 and {MAX_TOP_LINKS}")

        # separate subqueries so clicks and conversions never multiply each other
        clicks_sq = (select(ClickEvent.link_id, func.count(ClickEvent.id).label("clicks"))
                     .filter(*click_conditions(filters))
                     .group_by(ClickEvent.link_id)
                     .subquery())
        conversions_sq = (select(ConversionEvent.link_id,
                                 func.count(ConversionEvent.id).label("conversions"),
                                 func.sum(ConversionEvent.revenue).label("revenue"))
                          .filter(*conversion_conditions(filters))
                          .group_by(ConversionEvent.link_id)
                          .subquery())
        clicks = func.coalesce(clicks_sq.c.clicks, 0)
        conversions = func.coalesce(conversions_sq.c.conversions, 0)
        revenue = func.coalesce(conversions_sq.c.revenue, 0)
        views = func.coalesce(VideoStat.view_count, 0)
        ctr = case((views > 0, clicks * 100.0 / views), else_=0.0)
        order = {"clicks": clicks, "conversions": conversions, "revenue": revenue, "ctr": ctr}[metric]

        stmt = (select(Link.id, Link.campaign_id, Campaign.name, Link.short_code, Link.custom_alias,
                       Link.video_title, clicks, conversions, revenue, views)
                .join(Campaign, Campaign.id == Link.campaign_id)
                .outerjoin(clicks_sq, clicks_sq.c.link_id == Link.id)
                .outerjoin(conversions_sq, conversions_sq.c.link_id == Link.id)
                .outerjoin(VideoStat, VideoStat.video_id == Link.external_video_id)
                .order_by(order.desc(), Link.id)
                .limit(limit))
        rows = (await self.db.execute(stmt)).all()
        return [
            TopLink(
                link_id=link_id,
                campaign_id=campaign_id,
                campaign_name=campaign_name,
                short_code=alias or code,
                video_title=title or "Unknown Video",
                clicks=link_clicks,
                conversions=link_conversions,
                revenue=to_money(link_revenue),
                ctr=percentage(link_clicks, link_views, CTR_PLACES),
                conversion_rate=percentage(link_conversions, link_clicks),
            )
            for (link_id, campaign_id, campaign_name, code, alias, title,
                 link_clicks, link_conversions, link_revenue, link_views) in rows
        ]

    async def compare_campaigns(self, campaign_ids: List[int],
                                filters: AnalyticsFilters = None) -> List[CampaignComparison]:
        results = []
        for campaign_id in campaign_ids:
            campaign = await self.db.get(Campaign, campaign_id)
            if campaign is None:
                logger.info("Skipping missing campaign %s in comparison", campaign_id)
                continue
            metrics = await self.campaign_metrics(campaign_id, filters)
            results.append(CampaignComparison(
                campaign_id=campaign_id,
                campaign_name=campaign.name,
                clicks=metrics.total_clicks,
                unique_clicks=metrics.unique_clicks,
                conversions=metrics.total_conversions,
                conversion_rate=metrics.conversion_rate,
                revenue=metrics.total_revenue,
                average_order_value=average(metrics.total_revenue, metrics.total_conversions),
            ))
        return results
