import enum
from sqlalchemy import (Column, Integer, BigInteger, String, Text, DateTime, Numeric, JSON, Enum,
                        ForeignKey, func)
from sqlalchemy.orm import relationship
from database import Base


class ConversionKind(str, enum.Enum):
    signup = "signup"
    purchase = "purchase"
    enrollment = "enrollment"


class Campaign(Base):
    __tablename__ = "campaigns"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    links = relationship("Link", back_populates="campaign")


class Link(Base):
    __tablename__ = "campaign_links"
    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id", ondelete="CASCADE"), index=True, nullable=False)
    short_code = Column(String(10), unique=True, index=True, nullable=False)
    custom_alias = Column(String(50), unique=True, index=True, nullable=True)
    destination_url = Column(Text, nullable=False)
    external_video_id = Column(String(20), index=True, nullable=False)
    video_title = Column(Text, nullable=True)
    video_thumbnail_url = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
    campaign = relationship("Campaign", back_populates="links")

    @property
    def public_code(self) -> str:
        return self.custom_alias or self.short_code


class ClickEvent(Base):
    __tablename__ = "click_events"
    id = Column(Integer, primary_key=True, index=True)
    link_id = Column(Integer, ForeignKey("campaign_links.id"), index=True, nullable=False)
    tracking_id = Column(String(36), index=True, nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    clicked_at = Column(DateTime, server_default=func.now(), index=True, nullable=False)


class ConversionEvent(Base):
    __tablename__ = "conversion_events"
    id = Column(Integer, primary_key=True, index=True)
    tracking_id = Column(String(36), index=True, nullable=False)
    link_id = Column(Integer, ForeignKey("campaign_links.id"), index=True, nullable=False)
    kind = Column(Enum(ConversionKind, name="conversion_kind", native_enum=False), nullable=False)
    revenue = Column(Numeric(10, 2), nullable=True)
    event_data = Column(JSON, nullable=True)
    converted_at = Column(DateTime, server_default=func.now(), index=True, nullable=False)


class VideoStat(Base):
    __tablename__ = "video_stats"
    video_id = Column(String(20), primary_key=True)
    view_count = Column(BigInteger, nullable=False, default=0)
    last_updated = Column(DateTime, server_default=func.now(), nullable=False)
