"""Dispatch job database model."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import String, Text, DateTime, Float, Integer, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class DispatchJob(Base):
    """A scheduled job in a campaign together with its forecast snapshot."""

    __tablename__ = "weather_vote_jobs"

    id: Mapped[int] = mapped_column(primary_key=True)
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("weather_vote_campaigns.id"), index=True
    )
    internal_job_id: Mapped[int] = mapped_column(Integer, index=True)
    property_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    service_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Wall-clock route times, e.g. "2026-01-07 07:10:00+00" or "07:10"
    route_start_time: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    route_end_time: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    risk_level: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    violated_rules_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    max_rain_chance: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_rain_inches_route: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hourly_weather: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    campaign: Mapped["Campaign"] = relationship(back_populates="jobs", lazy="selectin")


from app.models.campaign import Campaign
