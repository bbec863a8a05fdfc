"""Vote validation and submission for the weather-vote flow."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from app.services.backend_rpc import BackendRPCClient
from app.services.errors import VoteValidationError
from app.services.normalizer import ItemKey, Vote

COUNT_FIELDS = (
    "total_items",
    "voted_items",
    "total_voted",
    "remaining_items",
    "total_remaining",
)


@dataclass(frozen=True)
class VoteOption:
    """A button on the voting screen."""

    value: str
    tone: str
    icon: str

    @property
    def label(self) -> str:
        return self.value


VOTE_OPTIONS = (
    VoteOption("Dispatch anyway", tone="go", icon="✓"),
    VoteOption("Cancel", tone="hold", icon="✕"),
    VoteOption("Delay by some time", tone="delay", icon="⏱"),
    VoteOption("Decide at dispatch", tone="go", icon="?"),
)
VOTE_VALUES = tuple(option.value for option in VOTE_OPTIONS)


def vote_tone(vote_value: Optional[str]) -> str:
    """Badge colour for a stored vote value."""
    lowered = (vote_value or "").lower()
    if "dispatch" in lowered:
        return "go"
    if "cancel" in lowered:
        return "hold"
    if "delay" in lowered:
        return "delay"
    return "neutral"


def validate_weather_vote(
    vote_value: Optional[str], reason: Optional[str], require_reason: bool = True
) -> tuple[str, Optional[str]]:
    """Check a vote before it is sent anywhere.

    Returns:
        The trimmed ``(vote_value, reason)``; reason is None when blank.

    Raises:
        VoteValidationError: With the message shown next to the control.
    """
    if not isinstance(vote_value, (str, type(None))):
        raise VoteValidationError("Invalid vote value.")
    if not isinstance(reason, (str, type(None))):
        raise VoteValidationError("Reason must be text.")
    value = (vote_value or "").strip()
    if not value:
        raise VoteValidationError("Please select a voting option.")
    if value not in VOTE_VALUES:
        raise VoteValidationError("Invalid vote value.")

    trimmed = (reason or "").strip()
    if require_reason and not trimmed:
        raise VoteValidationError("Please add a reason before submitting.")
    return value, trimmed or None


@dataclass
class SubmittedVote:
    """Backend-confirmed vote plus any counts the backend reported."""

    vote: Vote
    reported_counts: dict


def reconcile_submission(
    key: ItemKey, vote_value: str, reason: Optional[str], row: Optional[dict]
) -> SubmittedVote:
    """Build the local vote from what was sent, overridden by the backend row."""
    row = row or {}
    vote = Vote(
        internal_job_id=key[0],
        forecast_date=key[1],
        lens_id=key[2],
        vote_value=row["vote_value"] if row.get("vote_value") else vote_value,
        vote_reason=row["vote_reason"] if "vote_reason" in row else reason,
        voted_at=row.get("voted_at") or datetime.now(timezone.utc).isoformat(),
    )
    counts = {name: row[name] for name in COUNT_FIELDS if row.get(name) is not None}
    return SubmittedVote(vote=vote, reported_counts=counts)


async def submit_weather_vote(
    client: BackendRPCClient,
    token: str,
    key: ItemKey,
    vote_value: Optional[str],
    reason: Optional[str],
    require_reason: bool = True,
) -> SubmittedVote:
    """Validate, persist and reconcile one vote."""
    value, trimmed_reason = validate_weather_vote(vote_value, reason, require_reason)
    row = await client.submit_vote(token, key, value, trimmed_reason)
    return reconcile_submission(key, value, trimmed_reason, row)
