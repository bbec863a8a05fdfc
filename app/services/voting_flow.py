"""Per-voter screen progression for the weather-vote flow.

A ``VotingSession`` holds the in-memory projection of one voter's context
(items, votes, counts) plus screen state. It is rebuilt from the backend on
every load and patched locally after each confirmed submission. Sessions
live in a ``SessionRegistry`` keyed by token and are dropped when idle.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.config import get_settings
from app.services.backend_rpc import BackendRPCClient, backend_client
from app.services.errors import (
    BackendError,
    NotFoundError,
    SubmissionInProgressError,
    VoteError,
    VoteValidationError,
)
from app.services.feedback import CelebrationType, HapticPattern, NullFeedback
from app.services.normalizer import (
    ItemKey,
    Vote,
    VoteCounts,
    VoteItem,
    compute_counts,
    normalize_context,
    voter_identity,
    with_vote,
)
from app.services.submission import submit_weather_vote, validate_weather_vote
from app.services.weather import JobWeather, WeatherCache

logger = logging.getLogger(__name__)

settings = get_settings()

NULL_FEEDBACK = NullFeedback()


class ViewState(str, Enum):
    LOADING = "loading"
    WELCOME = "welcome"
    VOTING = "voting"
    SUMMARY = "summary"
    ERROR = "error"


@dataclass
class Draft:
    """Unsent input for one item, kept across navigation and failed submits."""

    vote_value: Optional[str] = None
    reason: str = ""
    error: Optional[str] = None


class VotingSession:
    """State machine for one voter: loading, welcome, voting, summary or error."""

    def __init__(
        self,
        token: Optional[str],
        client: Optional[BackendRPCClient] = None,
        advance_delay: Optional[float] = None,
        weather_concurrency: Optional[int] = None,
    ):
        self.token = (token or "").strip()
        self.client = client or backend_client
        self.advance_delay = (
            settings.submit_advance_delay_ms / 1000 if advance_delay is None else advance_delay
        )

        self.view_state = ViewState.LOADING
        self.error: Optional[str] = None
        self.load_error: Optional[VoteError] = None
        self.context: Optional[dict] = None
        self.items: list[VoteItem] = []
        self.votes: dict[ItemKey, Vote] = {}
        self.counts = VoteCounts()
        self.current_index = 0
        self.submitting = False
        self.cancelled = False

        self.drafts: dict[ItemKey, Draft] = {}
        self.expanded_weather: set[ItemKey] = set()
        self.weather = WeatherCache(
            self.client.get_job_weather,
            concurrency=weather_concurrency or settings.weather_prefetch_concurrency,
        )
        self.weather_errors: dict[int, str] = {}
        self.job_votes: dict[ItemKey, list[dict]] = {}
        self.job_vote_errors: dict[ItemKey, str] = {}

        self.last_activity = time.monotonic()

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def _fail(self, message: str) -> None:
        self.error = message
        self.view_state = ViewState.ERROR

    @property
    def retryable(self) -> bool:
        """Failed to load for a reason a later reload may clear."""
        return (
            self.view_state == ViewState.ERROR
            and isinstance(self.load_error, BackendError)
            and not self.load_error.is_authorization_error
        )

    # Derived state

    @property
    def current_item(self) -> Optional[VoteItem]:
        if 0 <= self.current_index < len(self.items):
            return self.items[self.current_index]
        return None

    @property
    def voter_name(self) -> str:
        return voter_identity(self.context, self.items)

    @property
    def welcome_total_jobs(self) -> int:
        remaining = self.counts.remaining_items
        return remaining if remaining > 0 else len(self.items)

    def is_voted(self, item: VoteItem) -> bool:
        vote = self.votes.get(item.key)
        return vote is not None and vote.is_complete

    @property
    def voted_items(self) -> list[VoteItem]:
        return [item for item in self.items if self.is_voted(item)]

    @property
    def has_voted_items(self) -> bool:
        return any(self.is_voted(item) for item in self.items)

    @property
    def all_voted(self) -> bool:
        return bool(self.items) and all(self.is_voted(item) for item in self.items)

    def first_unvoted_index(self) -> Optional[int]:
        for index, item in enumerate(self.items):
            if not self.is_voted(item):
                return index
        return None

    def next_unvoted_after(self, index: int) -> Optional[int]:
        """Next incomplete item strictly after ``index``. Never wraps around."""
        for position in range(index + 1, len(self.items)):
            if not self.is_voted(self.items[position]):
                return position
        return None

    def draft_for(self, key: ItemKey) -> Draft:
        return self.drafts.setdefault(key, Draft())

    # Loading

    async def load(self, show_loading: bool = True, allow_view_reset: Optional[bool] = None) -> ViewState:
        """Fetch the context and rebuild items, votes and counts.

        Args:
            show_loading: Enter the loading state while fetching.
            allow_view_reset: Return to the welcome screen afterwards.
                Defaults to ``show_loading`` so silent refreshes keep the
                voter where they are.
        """
        if allow_view_reset is None:
            allow_view_reset = show_loading
        self.touch()

        if not self.token:
            self._fail("Missing token.")
            return self.view_state

        if show_loading:
            self.view_state = ViewState.LOADING
        self.error = None

        try:
            raw = await self.client.get_context(self.token)
        except VoteError as exc:
            if not self.cancelled:
                self.load_error = exc
                self._fail(exc.message or "Invalid or expired link.")
            return self.view_state

        if self.cancelled:
            return self.view_state

        self.load_error = None
        normalized = normalize_context(raw)
        self.context = raw
        self.items = normalized.items
        self.votes = normalized.votes
        self.counts = normalized.counts

        if self.current_index >= len(self.items):
            self.current_index = max(0, len(self.items) - 1)

        if self.all_voted:
            self.view_state = ViewState.SUMMARY
        elif allow_view_reset:
            self.view_state = ViewState.WELCOME
        elif self.view_state in (ViewState.LOADING, ViewState.ERROR):
            self.view_state = ViewState.WELCOME
        return self.view_state

    # Navigation

    def begin(self, feedback: NullFeedback = NULL_FEEDBACK) -> None:
        """Start voting at the first item without a vote."""
        self.touch()
        first = self.first_unvoted_index()
        self.current_index = first if first is not None else 0
        self.view_state = ViewState.VOTING
        feedback.haptic(HapticPattern.MEDIUM)

    def navigate(self, direction: str, feedback: NullFeedback = NULL_FEEDBACK) -> int:
        """Move one item back or forward, stopping at the list edges."""
        self.touch()
        if direction == "prev":
            target = max(0, self.current_index - 1)
        elif direction == "next":
            target = min(len(self.items) - 1, self.current_index + 1)
        else:
            raise VoteValidationError("Direction must be 'prev' or 'next'.")

        target = max(0, target)
        if target != self.current_index:
            self.current_index = target
            feedback.haptic(HapticPattern.LIGHT)
        return self.current_index

    def go_to_summary(self, feedback: NullFeedback = NULL_FEEDBACK) -> None:
        self.touch()
        self.view_state = ViewState.SUMMARY
        feedback.haptic(HapticPattern.LIGHT)

    def back_to_welcome(self, feedback: NullFeedback = NULL_FEEDBACK) -> None:
        self.touch()
        self.view_state = ViewState.WELCOME
        feedback.haptic(HapticPattern.LIGHT)

    # Voting

    def select_vote(self, vote_value: str, feedback: NullFeedback = NULL_FEEDBACK) -> Draft:
        item = self.current_item
        if item is None:
            raise NotFoundError("No job selected.")
        self.touch()
        draft = self.draft_for(item.key)
        draft.vote_value = vote_value
        draft.error = None
        feedback.haptic(HapticPattern.MEDIUM)
        return draft

    def set_reason(self, reason: Optional[str]) -> Draft:
        item = self.current_item
        if item is None:
            raise NotFoundError("No job selected.")
        self.touch()
        draft = self.draft_for(item.key)
        draft.reason = reason or ""
        return draft

    async def submit(
        self,
        vote_value: Optional[str] = None,
        reason: Optional[str] = None,
        feedback: NullFeedback = NULL_FEEDBACK,
    ) -> bool:
        """Submit the current item's draft and advance.

        After a confirmed vote the session moves to the next incomplete item
        *after* the current one, or to the summary if there is none, even
        when earlier items are still open.

        Returns:
            True if the vote was stored. On failure the draft keeps the
            voter's input and carries the error message.

        Raises:
            SubmissionInProgressError: If a submission is already running.
            NotFoundError: If there is no current item.
        """
        if self.submitting:
            raise SubmissionInProgressError("A vote is already being submitted.")
        item = self.current_item
        if item is None:
            raise NotFoundError("No job selected.")
        self.touch()

        draft = self.draft_for(item.key)
        if vote_value is not None:
            draft.vote_value = vote_value
        if reason is not None:
            draft.reason = reason

        try:
            validate_weather_vote(draft.vote_value, draft.reason)
        except VoteValidationError as exc:
            draft.error = exc.message
            feedback.haptic(HapticPattern.WARNING)
            return False

        draft.error = None
        index = self.current_index
        self.submitting = True
        try:
            try:
                submitted = await submit_weather_vote(
                    self.client, self.token, item.key, draft.vote_value, draft.reason
                )
            except BackendError as exc:
                feedback.haptic(HapticPattern.ERROR)
                if exc.is_authorization_error:
                    logger.info("Token rejected during submit, reloading context")
                    await self.load(show_loading=False, allow_view_reset=False)
                else:
                    draft.error = exc.message
                return False
            except VoteError as exc:
                draft.error = exc.message
                feedback.haptic(HapticPattern.ERROR)
                return False

            if self.cancelled:
                return True

            self.votes = with_vote(self.votes, submitted.vote)
            self.counts = compute_counts(submitted.reported_counts, self.items, self.votes)
            self.drafts.pop(item.key, None)
            feedback.haptic(HapticPattern.SUCCESS)
            feedback.celebrate(CelebrationType.SUCCESS, particles=30)

            next_index = self.next_unvoted_after(index)
            if self.advance_delay > 0:
                await asyncio.sleep(self.advance_delay)
            if self.cancelled:
                return True

            if next_index is not None:
                self.current_index = next_index
            else:
                self.view_state = ViewState.SUMMARY
                feedback.celebrate(CelebrationType.EPIC, particles=80)
            return True
        finally:
            self.submitting = False

    # Weather and team votes

    async def toggle_weather(self, index: Optional[int] = None) -> Optional[JobWeather]:
        """Expand or collapse an item's forecast, fetching it on first expand."""
        item = self._item_at(self.current_index if index is None else index)
        self.touch()
        if item.key in self.expanded_weather:
            self.expanded_weather.discard(item.key)
            return self.weather.peek(item.internal_job_id)

        self.expanded_weather.add(item.key)
        return await self.weather_for(item)

    async def weather_for(self, item: VoteItem) -> Optional[JobWeather]:
        """Cached forecast for ``item``; failures are recorded, not raised."""
        try:
            weather = await self.weather.get(item.internal_job_id, item.forecast_date)
        except VoteError as exc:
            logger.warning("Weather fetch failed for job %s: %s", item.internal_job_id, exc)
            self.weather_errors[item.internal_job_id] = exc.message
            return None
        self.weather_errors.pop(item.internal_job_id, None)
        return weather

    def _item_at(self, index: int) -> VoteItem:
        if 0 <= index < len(self.items):
            return self.items[index]
        raise NotFoundError("Job not found.")

    async def load_team_votes(self) -> dict[ItemKey, list[dict]]:
        """Fetch everyone's votes for each item this voter has voted on."""
        pending = [
            item
            for item in self.voted_items
            if item.forecast_date and item.lens_id and item.key not in self.job_votes
        ]
        results = await asyncio.gather(
            *(self.client.get_job_votes(self.token, item.key) for item in pending),
            return_exceptions=True,
        )
        if self.cancelled:
            return self.job_votes

        for item, result in zip(pending, results):
            if isinstance(result, VoteError):
                self.job_vote_errors[item.key] = result.message or "Unable to load votes."
            elif isinstance(result, Exception):
                raise result
            else:
                self.job_votes[item.key] = result
                self.job_vote_errors.pop(item.key, None)
        return self.job_votes

    def close(self) -> None:
        """Mark the session ended; in-flight results are then discarded."""
        self.cancelled = True


class SessionRegistry:
    """Voting sessions keyed by token, evicted after a period of inactivity."""

    def __init__(self, idle_seconds: Optional[float] = None, client: Optional[BackendRPCClient] = None):
        self.idle_seconds = (
            settings.session_idle_minutes * 60 if idle_seconds is None else idle_seconds
        )
        self.client = client
        self._sessions: dict[str, VotingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, token: str) -> bool:
        return token in self._sessions

    def get(self, token: str) -> Optional[VotingSession]:
        self.evict_idle()
        return self._sessions.get(token)

    async def open(self, token: str) -> VotingSession:
        """Return the token's session, creating and loading it if needed.

        A session left on the error screen by a transient backend failure is
        loaded again; rejected tokens stay on it.
        """
        session = self.get(token)
        if session is None:
            session = self.register(VotingSession(token, client=self.client))
            await session.load()
        elif session.retryable:
            logger.info("Retrying voting context load for %s...", token[:6])
            await session.load()
        return session

    def register(self, session: VotingSession) -> VotingSession:
        self._sessions[session.token] = session
        return session

    def discard(self, token: str) -> None:
        session = self._sessions.pop(token, None)
        if session is not None:
            session.close()

    def close_all(self) -> None:
        for token in list(self._sessions):
            self.discard(token)

    def evict_idle(self, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        stale = [
            token
            for token, session in self._sessions.items()
            if now - session.last_activity > self.idle_seconds and not session.submitting
        ]
        for token in stale:
            logger.debug("Evicting idle voting session %s...", token[:6])
            self.discard(token)
        return len(stale)
