import logging
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from errors import ValidationFailed
from models import ConversionKind
from schemas import (AnalyticsFilters, LinkMetrics, CampaignMetrics, FunnelStep, RevenueAttribution, TopLink,
                     CampaignComparison)
from services.analytics import AnalyticsAggregator

logger = logging.getLogger(__name__)
router = APIRouter()


def analytics_filters(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                      kind: Optional[ConversionKind] = None) -> AnalyticsFilters:
    try:
        return AnalyticsFilters(start_date=start_date, end_date=end_date, kind=kind)
    except ValidationError:
        raise ValidationFailed("End date must be after start date")


@router.get("/links/{link_id}", response_model=LinkMetrics)
async def get_link_metrics(link_id: int, filters: AnalyticsFilters = Depends(analytics_filters),
                           db: AsyncSession = Depends(get_db)):
    return await AnalyticsAggregator(db).link_metrics(link_id, filters)


@router.get("/links/{link_id}/funnel", response_model=List[FunnelStep])
async def get_funnel(link_id: int, filters: AnalyticsFilters = Depends(analytics_filters),
                     db: AsyncSession = Depends(get_db)):
    return await AnalyticsAggregator(db).funnel(link_id, filters)


@router.get("/links/{link_id}/revenue", response_model=RevenueAttribution)
async def get_revenue(link_id: int, filters: AnalyticsFilters = Depends(analytics_filters),
                      db: AsyncSession = Depends(get_db)):
    return await AnalyticsAggregator(db).revenue_attribution(link_id, filters)


@router.get("/campaigns/{campaign_id}", response_model=CampaignMetrics)
async def get_campaign_metrics(campaign_id: int, filters: AnalyticsFilters = Depends(analytics_filters),
                               db: AsyncSession = Depends(get_db)):
    return await AnalyticsAggregator(db).campaign_metrics(campaign_id, filters)


@router.get("/top-links", response_model=List[TopLink])
async def get_top_links(limit: int = Query(10), metric: str = Query("clicks"),
                        filters: AnalyticsFilters = Depends(analytics_filters),
                        db: AsyncSession = Depends(get_db)):
    return await AnalyticsAggregator(db).top_links(limit, metric, filters)


@router.get("/compare", response_model=List[CampaignComparison])
async def compare_campaigns(campaign_ids: List[int] = Query(...),
                            filters: AnalyticsFilters = Depends(analytics_filters),
                            db: AsyncSession = Depends(get_db)):
    logger.info("Comparing campaigns: %s", campaign_ids)
    return await AnalyticsAggregator(db).compare_campaigns(campaign_ids, filters)
