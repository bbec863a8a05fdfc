"""Per-person job assignment model for the go/delay/hold vote."""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, Text, DateTime, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class AssignmentStatus:
    PENDING = "pending"
    VOTED = "voted"


class Assignment(Base):
    """One job assigned to one campaign person for a vote.

    ``status`` only moves from pending to voted, and is written together
    with the vote fields and ``voted_at``.
    """

    __tablename__ = "weather_vote_assignments"

    __table_args__ = (
        UniqueConstraint("campaign_person_id", "job_id", name="uq_assignment_person_job"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("weather_vote_campaigns.id"), index=True
    )
    campaign_person_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("weather_vote_people.id"), index=True
    )
    job_id: Mapped[int] = mapped_column(Integer, ForeignKey("weather_vote_jobs.id"))

    status: Mapped[str] = mapped_column(String(20), default=AssignmentStatus.PENDING)
    vote: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    delay_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    voted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    job: Mapped["DispatchJob"] = relationship(lazy="selectin")
    person: Mapped["CampaignPerson"] = relationship(lazy="selectin")


from app.models.job import DispatchJob
from app.models.campaign import CampaignPerson
