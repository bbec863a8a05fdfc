"""Go/delay/hold assignment voting backed by the campaign tables."""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models import (
    Assignment,
    AssignmentStatus,
    Campaign,
    CampaignPerson,
    DispatchJob,
    InviteStatus,
)
from app.services.errors import NotFoundError, VoteValidationError

logger = logging.getLogger(__name__)

settings = get_settings()

ASSIGNMENT_VOTES = ("go", "delay", "hold")
DELAY_OPTIONS = (30, 60, 90, 120)


def is_vote_complete(vote: Optional[str], delay_minutes: Optional[int]) -> bool:
    """A vote is complete once chosen; delay votes also need positive minutes."""
    if not vote:
        return False
    if vote == "delay":
        return bool(delay_minutes) and delay_minutes > 0
    return True


def validate_assignment_vote(
    vote: Optional[str], delay_minutes: Optional[int]
) -> Optional[int]:
    """Validate a vote and return the delay minutes to store.

    Delay votes without a positive value fall back to the default delay.

    Raises:
        VoteValidationError: On an unknown vote or minutes on a non-delay vote.
    """
    if vote not in ASSIGNMENT_VOTES:
        raise VoteValidationError("Invalid vote value.")
    if vote != "delay":
        if delay_minutes is not None:
            raise VoteValidationError("delay_minutes is only allowed for delay votes.")
        return None
    if delay_minutes and delay_minutes > 0:
        return delay_minutes
    return settings.default_delay_minutes


def assignment_to_dict(assignment: Assignment) -> dict:
    """Serialize an assignment joined with its job."""
    job = assignment.job
    return {
        "assignmentId": assignment.id,
        "status": assignment.status,
        "vote": assignment.vote,
        "delay_minutes": assignment.delay_minutes,
        "comment": assignment.comment,
        "voted_at": assignment.voted_at.isoformat() if assignment.voted_at else None,
        "job": {
            "internal_job_id": job.internal_job_id if job else None,
            "property_name": job.property_name if job else None,
            "service_name": job.service_name if job else None,
            "route_start_time": job.route_start_time if job else None,
            "route_end_time": job.route_end_time if job else None,
            "risk_level": job.risk_level if job else None,
            "violated_rules_text": job.violated_rules_text if job else None,
            "max_rain_chance": job.max_rain_chance if job else None,
            "max_rain_inches_route": job.max_rain_inches_route if job else None,
            "hourly_weather": job.hourly_weather if job else None,
        },
    }


def assignment_result_dict(assignment: Assignment) -> dict:
    """Serialize the stored vote fields returned after a submission."""
    return {
        "id": assignment.id,
        "campaign_person_id": assignment.campaign_person_id,
        "vote": assignment.vote,
        "delay_minutes": assignment.delay_minutes,
        "comment": assignment.comment,
        "status": assignment.status,
        "voted_at": assignment.voted_at.isoformat() if assignment.voted_at else None,
    }


async def list_assignments(
    db: AsyncSession, campaign_id: str, person_id: str
) -> list[Assignment]:
    """A person's assignments in a campaign, ordered by route start time."""
    result = await db.execute(
        select(Assignment)
        .join(DispatchJob, Assignment.job_id == DispatchJob.id)
        .where(
            Assignment.campaign_id == campaign_id,
            Assignment.campaign_person_id == person_id,
        )
        .order_by(DispatchJob.route_start_time)
    )
    return list(result.scalars().all())


async def mark_person_activity(
    db: AsyncSession, person_id: str, status: str, now: Optional[datetime] = None
) -> bool:
    """Record activity and move the invite status forward (never back)."""
    person = await db.get(CampaignPerson, person_id)
    if person is None:
        return False

    order = InviteStatus.ORDER
    current = person.invite_status if person.invite_status in order else InviteStatus.NOT_STARTED
    if order.index(status) > order.index(current):
        person.invite_status = status
    person.last_activity_at = now or datetime.utcnow()
    await db.commit()
    return True


async def update_assignment(
    db: AsyncSession,
    assignment_id: Optional[str],
    vote: Optional[str],
    delay_minutes: Optional[int] = None,
    comment: Optional[str] = None,
) -> Assignment:
    """Store a vote on an assignment.

    The vote fields, ``status`` and ``voted_at`` are written in one commit.
    Marking the person as started afterwards is best effort.

    Raises:
        VoteValidationError: On missing or invalid input.
        NotFoundError: If the assignment does not exist.
    """
    assignment_id = (assignment_id or "").strip()
    if not assignment_id or not vote:
        raise VoteValidationError("assignmentId and vote are required.")
    if not isinstance(comment, (str, type(None))):
        raise VoteValidationError("comment must be text.")
    normalized_delay = validate_assignment_vote(vote, delay_minutes)

    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFoundError("Assignment not found.")

    now = datetime.utcnow()
    assignment.vote = vote
    assignment.delay_minutes = normalized_delay
    assignment.comment = (comment or "").strip() or None
    assignment.status = AssignmentStatus.VOTED
    assignment.voted_at = now
    assignment.updated_at = now
    await db.commit()
    await db.refresh(assignment)

    try:
        await mark_person_activity(db, assignment.campaign_person_id, InviteStatus.STARTED, now)
    except Exception as exc:
        logger.warning(
            "Could not mark person %s as started: %s", assignment.campaign_person_id, exc
        )
        await db.rollback()
        await db.refresh(assignment)

    return assignment


async def complete_voting(db: AsyncSession, person_id: Optional[str]) -> bool:
    """Mark a person's invite as completed.

    Raises:
        VoteValidationError: If ``person_id`` is missing.
    """
    person_id = (person_id or "").strip()
    if not person_id:
        raise VoteValidationError("personId is required.")
    return await mark_person_activity(db, person_id, InviteStatus.COMPLETED)


async def get_campaign_date(db: AsyncSession, campaign_id: str) -> date:
    """Forecast date of a campaign.

    Raises:
        NotFoundError: If the campaign does not exist.
    """
    campaign = await db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFoundError("Campaign not found.")
    return campaign.campaign_date
