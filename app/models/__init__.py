"""Database models."""

from app.models.campaign import Campaign, CampaignPerson, InviteStatus
from app.models.job import DispatchJob
from app.models.token import VoteToken
from app.models.assignment import Assignment, AssignmentStatus

__all__ = [
    "Campaign",
    "CampaignPerson",
    "InviteStatus",
    "DispatchJob",
    "VoteToken",
    "Assignment",
    "AssignmentStatus",
]
