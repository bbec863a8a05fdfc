"""Voting link token resolution."""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models import CampaignPerson, VoteToken
from app.services.errors import InvalidTokenError, TokenMismatchError, VoteValidationError

settings = get_settings()


@dataclass
class ResolvedVoter:
    person_id: str
    display_name: Optional[str]
    role: Optional[str]

    def to_dict(self) -> dict:
        return {
            "personId": self.person_id,
            "displayName": self.display_name,
            "role": self.role,
        }


def hash_token(token: str, salt: Optional[str] = None) -> str:
    """One-way lookup key for a raw token."""
    salt = settings.token_salt if salt is None else salt
    return hashlib.sha256(f"{salt}{token}".encode("utf-8")).hexdigest()


async def resolve_token(
    db: AsyncSession,
    campaign_id: Optional[str],
    token: Optional[str],
    now: Optional[datetime] = None,
) -> ResolvedVoter:
    """Resolve a campaign voting link to the person it was issued for.

    Marks the token and person as viewed on first use.

    Raises:
        VoteValidationError: If either input is missing.
        InvalidTokenError: If no unrevoked, unexpired token matches.
        TokenMismatchError: If the token belongs to another campaign.
    """
    if not all(isinstance(value, (str, type(None))) for value in (campaign_id, token)):
        raise VoteValidationError("campaignId and token must be strings.")
    campaign_id = (campaign_id or "").strip()
    token = (token or "").strip()
    if not campaign_id or not token:
        raise VoteValidationError("campaignId and token are required.")

    now = now or datetime.utcnow()
    result = await db.execute(
        select(VoteToken).where(
            VoteToken.token_hash == hash_token(token),
            VoteToken.revoked_at.is_(None),
            VoteToken.expires_at > now,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise InvalidTokenError("Token is invalid or expired.")

    if record.campaign_id != campaign_id:
        raise TokenMismatchError("Token does not match campaign.")

    person = record.person
    if record.first_viewed_at is None:
        record.first_viewed_at = now
    if person is not None and person.first_viewed_at is None:
        person.first_viewed_at = now
    await db.commit()

    return ResolvedVoter(
        person_id=record.person_id,
        display_name=record.display_name or (person.display_name if person else None),
        role=record.role or (person.role if person else None),
    )


async def issue_token(
    db: AsyncSession, person: CampaignPerson, token: str, expires_at: datetime
) -> VoteToken:
    """Store the hash of a freshly generated voting token for ``person``."""
    record = VoteToken(
        token_hash=hash_token(token),
        campaign_id=person.campaign_id,
        person_id=person.id,
        display_name=person.display_name,
        role=person.role,
        expires_at=expires_at,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record
