"""Voting token database model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class VoteToken(Base):
    """Hashed voting link token for one campaign person.

    Raw tokens are never stored; lookups go through ``token_hash``.
    """

    __tablename__ = "weather_vote_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    campaign_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("weather_vote_campaigns.id"), index=True
    )
    person_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("weather_vote_people.id"), index=True
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    first_viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    person: Mapped["CampaignPerson"] = relationship(lazy="selectin")


from app.models.campaign import CampaignPerson
