"""Unit tests for weather vote validation and reconciliation."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.services.errors import BackendError, VoteValidationError
from app.services.submission import (
    VOTE_OPTIONS,
    VOTE_VALUES,
    reconcile_submission,
    submit_weather_vote,
    validate_weather_vote,
    vote_tone,
)

KEY = (101, "2026-01-07", "A")


class TestValidateWeatherVote:
    """Tests for client-side vote validation."""

    def test_valid_vote_trims_input(self):
        assert validate_weather_vote(" Cancel ", "  too windy ") == ("Cancel", "too windy")

    def test_missing_vote(self):
        with pytest.raises(VoteValidationError, match="Please select a voting option."):
            validate_weather_vote(None, "reason")

    def test_unknown_vote(self):
        with pytest.raises(VoteValidationError, match="Invalid vote value."):
            validate_weather_vote("Maybe", "reason")

    @pytest.mark.parametrize("reason", [None, "", "   \n"])
    def test_blank_reason_rejected_when_required(self, reason):
        with pytest.raises(VoteValidationError, match="Please add a reason before submitting."):
            validate_weather_vote("Cancel", reason)

    def test_reason_optional_when_not_required(self):
        assert validate_weather_vote("Cancel", "  ", require_reason=False) == ("Cancel", None)

    def test_vocabulary(self):
        assert VOTE_VALUES == ("Dispatch anyway", "Cancel", "Delay by some time", "Decide at dispatch")
        assert [option.label for option in VOTE_OPTIONS] == list(VOTE_VALUES)


class TestVoteTone:
    @pytest.mark.parametrize(
        "value, tone",
        [("Dispatch anyway", "go"), ("Cancel", "hold"), ("Delay by some time", "delay"),
         ("Decide at dispatch", "go"), (None, "neutral"), ("Other", "neutral")],
    )
    def test_tone(self, value, tone):
        assert vote_tone(value) == tone


class TestReconcileSubmission:
    """Tests for merging the backend's canonical row into local state."""

    def test_backend_values_win(self):
        row = {
            "vote_value": "Delay by some time",
            "vote_reason": "rain until 9",
            "voted_at": "2026-01-07T06:00:00Z",
            "voted_items": 3,
            "remaining_items": 1,
        }
        submitted = reconcile_submission(KEY, "Cancel", "local", row)

        assert submitted.vote.key == KEY
        assert submitted.vote.vote_value == "Delay by some time"
        assert submitted.vote.vote_reason == "rain until 9"
        assert submitted.vote.voted_at == "2026-01-07T06:00:00Z"
        assert submitted.reported_counts == {"voted_items": 3, "remaining_items": 1}

    def test_local_values_fill_gaps(self):
        submitted = reconcile_submission(KEY, "Cancel", "storm", None)

        assert submitted.vote.vote_value == "Cancel"
        assert submitted.vote.vote_reason == "storm"
        assert submitted.vote.voted_at
        assert submitted.reported_counts == {}


class TestSubmitWeatherVote:
    """Tests for the submit round trip."""

    @pytest.mark.asyncio
    async def test_submits_trimmed_vote(self):
        client = MagicMock()
        client.submit_vote = AsyncMock(return_value={"vote_value": "Cancel", "total_items": 2})

        submitted = await submit_weather_vote(client, "tok", KEY, "Cancel", " too risky ")

        client.submit_vote.assert_awaited_once_with("tok", KEY, "Cancel", "too risky")
        assert submitted.vote.vote_value == "Cancel"
        assert submitted.reported_counts == {"total_items": 2}

    @pytest.mark.asyncio
    async def test_validation_errors_never_reach_backend(self):
        client = MagicMock()
        client.submit_vote = AsyncMock()

        with pytest.raises(VoteValidationError):
            await submit_weather_vote(client, "tok", KEY, "Cancel", "")

        client.submit_vote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backend_error_message_is_kept(self):
        client = MagicMock()
        client.submit_vote = AsyncMock(side_effect=BackendError("Voting is closed for this batch.", 400))

        with pytest.raises(BackendError, match="Voting is closed for this batch."):
            await submit_weather_vote(client, "tok", KEY, "Cancel", "why")
