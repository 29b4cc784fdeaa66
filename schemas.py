from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Any, Annotated
from pydantic import BaseModel, ConfigDict, Field, HttpUrl, PlainSerializer, field_validator, model_validator
from config import BATCH_MAX_CLICKS
from models import ConversionKind

# Exact Decimal in Python, a plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ShortenRequest(BaseModel):
    campaign_id: int
    destination_url: HttpUrl
    external_video_id: str = Field(pattern=r"^[A-Za-z0-9_-]{11}$")
    custom_alias: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_-]+$")

    @field_validator("custom_alias", mode="before")
    @classmethod
    def strip_alias(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class ShortenOut(BaseModel):
    short_code: str
    short_url: str
    destination_url: str
    external_video_id: str
    campaign_link_id: int


class LinkOut(BaseModel):
    id: int
    campaign_id: int
    short_code: str
    custom_alias: Optional[str] = None
    destination_url: str
    external_video_id: str
    video_title: Optional[str] = None
    video_thumbnail_url: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RedirectTarget(BaseModel):
    url: str
    tracking_id: str
    link_id: int


class ClickContext(BaseModel):
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None


class BatchClickItem(ClickContext):
    short_code: str


class BatchClicksRequest(BaseModel):
    clicks: List[BatchClickItem] = Field(min_length=1, max_length=BATCH_MAX_CLICKS)


class BatchItemResult(BaseModel):
    index: int
    success: bool
    data: Optional[RedirectTarget] = None
    error: Optional[dict] = None


class BatchClicksOut(BaseModel):
    total_clicks: int
    successful_clicks: int
    failed_clicks: int
    processing_time_ms: float
    results: List[BatchItemResult]


class HourlyClicks(BaseModel):
    hour: str
    clicks: int


class ReferrerCount(BaseModel):
    referrer: str
    clicks: int


class ClickStats(BaseModel):
    link_id: int
    total_clicks: int
    unique_clicks: int
    hourly: List[HourlyClicks]
    top_referrers: List[ReferrerCount]


class ConversionCreate(BaseModel):
    # Checked by ConversionAttributor in its fixed rule order
    tracking_id: Optional[str] = None
    link_id: Optional[int] = None
    kind: Optional[str] = None
    revenue: Optional[Decimal] = None
    data: Optional[Any] = None


class ConversionOut(BaseModel):
    id: int
    tracking_id: str
    link_id: int
    kind: ConversionKind
    revenue: Optional[Money] = None
    event_data: Optional[dict] = None
    converted_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AttributionSnapshot(BaseModel):
    tracking_id: str
    link_id: int
    click_timestamp: datetime
    days_since_click: int
    conversions: List[ConversionOut]
    conversion_count: int
    total_revenue: Money
    attribution_window_days: int
    is_within_window: bool


class ConversionRecordedOut(BaseModel):
    conversion: ConversionOut
    attribution: AttributionSnapshot
    warnings: List[str] = []


class AnalyticsFilters(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    kind: Optional[ConversionKind] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class LinkMetrics(BaseModel):
    link_id: int
    short_code: str
    external_video_id: str
    video_title: Optional[str] = None
    video_thumbnail_url: Optional[str] = None
    video_views: int
    total_clicks: int
    unique_clicks: int
    ctr: float
    conversions: int
    conversion_rate: float
    revenue: Money


class CampaignMetrics(BaseModel):
    campaign_id: int
    total_clicks: int
    unique_clicks: int
    total_conversions: int
    conversion_rate: float
    total_revenue: Money
    links: List[LinkMetrics]


class FunnelStep(BaseModel):
    step: str
    count: int
    rate: float
    drop_off_rate: float


class KindRevenue(BaseModel):
    kind: str
    revenue: Money
    count: int
    average_order_value: Money


class DailyRevenue(BaseModel):
    date: str
    revenue: Money
    conversions: int


class RevenueAttribution(BaseModel):
    total_revenue: Money
    by_kind: List[KindRevenue]
    daily: List[DailyRevenue]


class TopLink(BaseModel):
    link_id: int
    campaign_id: int
    campaign_name: str
    short_code: str
    video_title: str
    clicks: int
    conversions: int
    revenue: Money
    ctr: float
    conversion_rate: float


class CampaignComparison(BaseModel):
    campaign_id: int
    campaign_name: str
    clicks: int
    unique_clicks: int
    conversions: int
    conversion_rate: float
    revenue: Money
    average_order_value: Money


class CleanupOut(BaseModel):
    deleted: int
    days_kept: Optional[int] = None


class UrlCheckRequest(BaseModel):
    url: str


class UrlCheckOut(BaseModel):
    url: str
    is_valid: bool


class VideoIdOut(BaseModel):
    url: str
    video_id: str
    is_valid: bool
