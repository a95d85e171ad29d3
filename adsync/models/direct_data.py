"""
Yandex Direct Report Models

Daily fact tables refreshed by the report sync. Each table has a natural
composite key; a sync replaces every row inside its date window.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Date, UniqueConstraint
from datetime import datetime

from adsync.models.base import Base


class CampaignDaily(Base):
    """Campaign performance per day and network"""
    __tablename__ = "campaign_daily"
    __table_args__ = (
        UniqueConstraint("date", "campaign_id", "ad_network_type", name="uq_campaign_daily_key"),
    )

    id = Column(Integer, primary_key=True, index=True)

    date = Column(Date, index=True, nullable=False)
    campaign_id = Column(String, index=True, nullable=False)
    campaign = Column(String, nullable=False)
    ad_network_type = Column(String, nullable=False, default="UNKNOWN")
    # SEARCH or AD_NETWORK

    # Performance metrics
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    cost = Column(Float, default=0.0)

    # Goal conversions (attribution model from settings)
    purchase = Column(Float, default=0.0)
    addtocart = Column(Float, default=0.0)
    checkout = Column(Float, default=0.0)

    # Derived metrics
    avg_cpc = Column(Float, default=0.0)
    avg_position = Column(Float, default=0.0)
    ctr = Column(Float, default=0.0)
    # Percentage (0-100)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<CampaignDaily {self.campaign} - {self.date}>"


class SearchQueryDaily(Base):
    """Search query performance per day"""
    __tablename__ = "search_queries"
    __table_args__ = (
        UniqueConstraint("date", "campaign", "query", "criterion", name="uq_search_queries_key"),
    )

    id = Column(Integer, primary_key=True, index=True)

    date = Column(Date, index=True, nullable=False)
    query = Column(String, nullable=False)
    campaign = Column(String, nullable=False)
    criterion = Column(String, nullable=False, default="")
    criteria_type = Column(String, nullable=True)

    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    cost = Column(Float, default=0.0)

    purchase = Column(Float, default=0.0)
    addtocart = Column(Float, default=0.0)
    checkout = Column(Float, default=0.0)

    avg_cpc = Column(Float, default=0.0)
    avg_click_position = Column(Float, default=0.0)
    avg_impr_position = Column(Float, default=0.0)
    ctr = Column(Float, default=0.0)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<SearchQueryDaily '{self.query}' - {self.date}>"


class DisplayPlacementDaily(Base):
    """Display network (AD_NETWORK) placement performance per day"""
    __tablename__ = "display_data"
    __table_args__ = (
        UniqueConstraint(
            "date", "campaign", "adgroup", "placement", "criteria",
            name="uq_display_data_key"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    date = Column(Date, index=True, nullable=False)
    campaign = Column(String, nullable=False)
    adgroup = Column(String, nullable=False, default="")
    placement = Column(String, nullable=False, default="")
    # Site or app where the ad was shown
    criteria = Column(String, nullable=False, default="")
    criteria_type = Column(String, nullable=True)

    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    cost = Column(Float, default=0.0)

    purchase = Column(Float, default=0.0)
    addtocart = Column(Float, default=0.0)
    checkout = Column(Float, default=0.0)

    avg_cpc = Column(Float, default=0.0)
    ctr = Column(Float, default=0.0)

    synced_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<DisplayPlacementDaily {self.placement} - {self.date}>"
