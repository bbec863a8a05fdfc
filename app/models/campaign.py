"""Campaign and campaign person database models."""

from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, Date, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


def _new_id() -> str:
    return str(uuid4())


class InviteStatus:
    """Coarse progress marker for a campaign person."""

    NOT_STARTED = "not_started"
    STARTED = "started"
    COMPLETED = "completed"

    ORDER = (NOT_STARTED, STARTED, COMPLETED)


class Campaign(Base):
    """A dispatch day for which crew members vote on weather-affected jobs."""

    __tablename__ = "weather_vote_campaigns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    campaign_date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    people: Mapped[list["CampaignPerson"]] = relationship(back_populates="campaign", lazy="selectin")
    jobs: Mapped[list["DispatchJob"]] = relationship(back_populates="campaign", lazy="selectin")


class CampaignPerson(Base):
    """A crew member or estimator invited to vote in a campaign."""

    __tablename__ = "weather_vote_people"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("weather_vote_campaigns.id"), index=True
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    invite_status: Mapped[str] = mapped_column(String(20), default=InviteStatus.NOT_STARTED)
    first_viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    campaign: Mapped["Campaign"] = relationship(back_populates="people", lazy="selectin")


# Import at bottom to avoid circular imports
from app.models.job import DispatchJob
