"""Campaign voting page state: one person's go/delay/hold assignments.

Unlike the weather-vote flow, the campaign page keeps nothing in memory
between requests. Each request rebuilds an ``AssignmentSession`` from the
database, applies the voter's action and renders the result; complete
choices are saved as soon as they are made.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.services.assignments import (
    assignment_to_dict,
    complete_voting,
    is_vote_complete,
    list_assignments,
    update_assignment,
)
from app.services.errors import NotFoundError, VoteError, VoteValidationError
from app.services.tokens import ResolvedVoter, resolve_token

logger = logging.getLogger(__name__)


class AssignmentSession:
    """A voter walking through their campaign assignments one at a time.

    ``current_index == len(assignments)`` means the voter has finished and
    the summary is shown.
    """

    def __init__(self, db: AsyncSession, campaign_id: str, token: str, current_index: int = 0):
        self.db = db
        self.campaign_id = (campaign_id or "").strip()
        self.token = (token or "").strip()
        self.voter: Optional[ResolvedVoter] = None
        self.assignments: list[dict] = []
        self.current_index = current_index
        self.error: Optional[str] = None
        self.save_error: Optional[str] = None

    async def load(self) -> bool:
        """Resolve the link and fetch assignments. False means the link is unusable."""
        if not self.campaign_id or not self.token:
            self.error = "Missing campaign or token."
            return False
        try:
            self.voter = await resolve_token(self.db, self.campaign_id, self.token)
            rows = await list_assignments(self.db, self.campaign_id, self.voter.person_id)
        except VoteError as exc:
            self.error = exc.message
            return False

        self.assignments = [assignment_to_dict(row) for row in rows]
        self.current_index = max(0, min(self.current_index, len(self.assignments)))
        return True

    @property
    def total(self) -> int:
        return len(self.assignments)

    @property
    def current(self) -> Optional[dict]:
        if 0 <= self.current_index < self.total:
            return self.assignments[self.current_index]
        return None

    @property
    def is_finished(self) -> bool:
        return bool(self.assignments) and self.current_index >= self.total

    @property
    def can_advance(self) -> bool:
        current = self.current
        return current is not None and is_vote_complete(
            current["vote"], current["delay_minutes"]
        )

    @property
    def progress_label(self) -> str:
        if not self.total:
            return ""
        return f"{min(self.current_index + 1, self.total)} of {self.total}"

    def _find(self, assignment_id: str) -> dict:
        for assignment in self.assignments:
            if assignment["assignmentId"] == assignment_id:
                return assignment
        raise NotFoundError("Assignment not found.")

    async def set_choice(
        self,
        assignment_id: str,
        vote: Optional[str] = None,
        delay_minutes: Optional[int] = None,
        comment: Optional[str] = None,
    ) -> dict:
        """Apply a choice locally and save it once it is complete.

        A delay vote without minutes is kept locally until minutes are
        picked. Save failures are shown on the page, not raised.
        """
        assignment = self._find(assignment_id)
        if vote is not None:
            assignment["vote"] = vote
            if vote != "delay":
                assignment["delay_minutes"] = None
        if delay_minutes is not None and assignment["vote"] == "delay":
            assignment["delay_minutes"] = delay_minutes
        if comment is not None:
            assignment["comment"] = comment

        if not is_vote_complete(assignment["vote"], assignment["delay_minutes"]):
            return assignment

        self.save_error = None
        try:
            saved = await update_assignment(
                self.db,
                assignment_id,
                assignment["vote"],
                assignment["delay_minutes"],
                assignment["comment"],
            )
        except VoteError as exc:
            self.save_error = exc.message
            return assignment

        self._reconcile(assignment, saved)
        return assignment

    @staticmethod
    def _reconcile(assignment: dict, saved) -> None:
        assignment["vote"] = saved.vote
        assignment["delay_minutes"] = saved.delay_minutes
        assignment["comment"] = saved.comment
        assignment["status"] = saved.status
        assignment["voted_at"] = saved.voted_at.isoformat() if saved.voted_at else None

    def navigate(self, direction: str) -> int:
        """Step back, or forward once the current assignment is complete."""
        if direction == "prev":
            self.current_index = max(0, self.current_index - 1)
        elif direction == "next":
            if self.can_advance:
                self.current_index = min(self.total, self.current_index + 1)
        else:
            raise VoteValidationError("Direction must be 'prev' or 'next'.")
        return self.current_index

    async def submit_all(self) -> bool:
        """Save every assignment, mark the person completed and show the summary.

        Raises:
            VoteValidationError: If any assignment is still incomplete. The
                session moves to the first one.
        """
        for index, assignment in enumerate(self.assignments):
            if not is_vote_complete(assignment["vote"], assignment["delay_minutes"]):
                self.current_index = index
                raise VoteValidationError("Please vote on every job before submitting.")

        self.save_error = None
        for assignment in self.assignments:
            try:
                saved = await update_assignment(
                    self.db,
                    assignment["assignmentId"],
                    assignment["vote"],
                    assignment["delay_minutes"],
                    assignment["comment"],
                )
            except VoteError as exc:
                self.save_error = exc.message
                return False
            self._reconcile(assignment, saved)

        try:
            await complete_voting(self.db, self.voter.person_id)
        except SQLAlchemyError as exc:
            logger.warning("Could not mark person %s completed: %s", self.voter.person_id, exc)
            await self.db.rollback()

        self.current_index = self.total
        return True
