"""Unit tests for go/delay/hold assignment voting."""

from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.models import (
    Assignment,
    AssignmentStatus,
    Campaign,
    CampaignPerson,
    DispatchJob,
    InviteStatus,
)
from app.services.assignment_flow import AssignmentSession
from app.services.assignments import (
    assignment_to_dict,
    complete_voting,
    get_campaign_date,
    is_vote_complete,
    list_assignments,
    mark_person_activity,
    update_assignment,
    validate_assignment_vote,
)
from app.services.errors import NotFoundError, VoteValidationError
from app.services.tokens import issue_token


# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session():
    """Create a fresh database session for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def campaign(db_session: AsyncSession):
    """A campaign with one person assigned three jobs, stored out of route order."""
    db_session.add(Campaign(id="camp-1", name="Tuesday", campaign_date=date(2026, 1, 7)))
    db_session.add(CampaignPerson(id="p1", campaign_id="camp-1", display_name="Jane", role="crew"))
    db_session.add_all(
        [
            DispatchJob(id=1, campaign_id="camp-1", internal_job_id=501, property_name="Late",
                        route_start_time="2026-01-07 13:00:00+00"),
            DispatchJob(id=2, campaign_id="camp-1", internal_job_id=502, property_name="Early",
                        route_start_time="2026-01-07 07:10:00+00"),
            DispatchJob(id=3, campaign_id="camp-1", internal_job_id=503, property_name="Mid",
                        route_start_time="2026-01-07 09:30:00+00"),
        ]
    )
    await db_session.flush()
    db_session.add_all(
        [
            Assignment(id="a-late", campaign_id="camp-1", campaign_person_id="p1", job_id=1),
            Assignment(id="a-early", campaign_id="camp-1", campaign_person_id="p1", job_id=2),
            Assignment(id="a-mid", campaign_id="camp-1", campaign_person_id="p1", job_id=3),
        ]
    )
    await db_session.commit()
    person = await db_session.get(CampaignPerson, "p1")
    await issue_token(db_session, person, "link-token", datetime.utcnow() + timedelta(days=1))
    return "camp-1"


class TestVoteRules:
    """Tests for vote completeness and validation."""

    @pytest.mark.parametrize(
        "vote, delay_minutes, complete",
        [
            ("go", None, True),
            ("hold", None, True),
            ("delay", 30, True),
            ("delay", 0, False),
            ("delay", None, False),
            (None, None, False),
            ("", None, False),
        ],
    )
    def test_is_vote_complete(self, vote, delay_minutes, complete):
        assert is_vote_complete(vote, delay_minutes) is complete

    def test_unknown_vote_rejected(self):
        with pytest.raises(VoteValidationError, match="Invalid vote value."):
            validate_assignment_vote("maybe", None)

    def test_minutes_only_allowed_on_delay(self):
        with pytest.raises(VoteValidationError, match="delay_minutes is only allowed for delay votes."):
            validate_assignment_vote("go", 30)

    def test_delay_without_minutes_uses_default(self):
        assert validate_assignment_vote("delay", None) == 60
        assert validate_assignment_vote("delay", 0) == 60
        assert validate_assignment_vote("delay", 90) == 90

    def test_non_delay_stores_no_minutes(self):
        assert validate_assignment_vote("hold", None) is None


class TestAssignmentStore:
    """Tests for the assignment queries and updates."""

    @pytest.mark.asyncio
    async def test_list_ordered_by_route_start(self, db_session, campaign):
        rows = await list_assignments(db_session, campaign, "p1")
        assert [row.id for row in rows] == ["a-early", "a-mid", "a-late"]

    @pytest.mark.asyncio
    async def test_list_for_unknown_person_is_empty(self, db_session, campaign):
        assert await list_assignments(db_session, campaign, "nobody") == []

    @pytest.mark.asyncio
    async def test_to_dict_includes_job(self, db_session, campaign):
        rows = await list_assignments(db_session, campaign, "p1")
        data = assignment_to_dict(rows[0])
        assert data["assignmentId"] == "a-early"
        assert data["status"] == AssignmentStatus.PENDING
        assert data["job"]["internal_job_id"] == 502
        assert data["job"]["property_name"] == "Early"

    @pytest.mark.asyncio
    async def test_update_writes_vote_status_and_timestamp_together(self, db_session, campaign):
        saved = await update_assignment(db_session, "a-mid", "hold", None, "  standing water ")

        assert saved.vote == "hold"
        assert saved.comment == "standing water"
        assert saved.status == AssignmentStatus.VOTED
        assert saved.voted_at is not None
        assert saved.delay_minutes is None

    @pytest.mark.asyncio
    async def test_update_marks_person_started(self, db_session, campaign):
        await update_assignment(db_session, "a-mid", "go")

        person = await db_session.get(CampaignPerson, "p1")
        assert person.invite_status == InviteStatus.STARTED
        assert person.last_activity_at is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [SQLAlchemyError("database is locked"), RuntimeError("boom")])
    async def test_activity_failure_keeps_the_vote(self, db_session, campaign, error):
        marker = AsyncMock(side_effect=error)
        with patch("app.services.assignments.mark_person_activity", marker):
            saved = await update_assignment(db_session, "a-mid", "delay", 90, "flooded lot")

        marker.assert_awaited_once()
        assert saved.status == AssignmentStatus.VOTED
        assert saved.delay_minutes == 90

        db_session.expire_all()
        stored = await db_session.get(Assignment, "a-mid")
        assert stored.vote == "delay"
        assert stored.comment == "flooded lot"
        assert stored.voted_at is not None
        person = await db_session.get(CampaignPerson, "p1")
        assert person.invite_status == InviteStatus.NOT_STARTED

    @pytest.mark.asyncio
    async def test_update_rejects_non_text_comment(self, db_session, campaign):
        with pytest.raises(VoteValidationError, match="comment must be text."):
            await update_assignment(db_session, "a-mid", "go", None, 12)

    @pytest.mark.asyncio
    async def test_blank_comment_is_stored_as_null(self, db_session, campaign):
        saved = await update_assignment(db_session, "a-mid", "delay", 30, "   ")
        assert saved.comment is None
        assert saved.delay_minutes == 30

    @pytest.mark.asyncio
    async def test_update_missing_input(self, db_session, campaign):
        with pytest.raises(VoteValidationError, match="assignmentId and vote are required."):
            await update_assignment(db_session, "", "go")
        with pytest.raises(VoteValidationError):
            await update_assignment(db_session, "a-mid", None)

    @pytest.mark.asyncio
    async def test_update_unknown_assignment(self, db_session, campaign):
        with pytest.raises(NotFoundError, match="Assignment not found."):
            await update_assignment(db_session, "missing", "go")

    @pytest.mark.asyncio
    async def test_invite_status_never_moves_back(self, db_session, campaign):
        assert await complete_voting(db_session, "p1") is True
        await update_assignment(db_session, "a-mid", "go")

        person = await db_session.get(CampaignPerson, "p1")
        assert person.invite_status == InviteStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_activity_for_unknown_person(self, db_session, campaign):
        assert await mark_person_activity(db_session, "ghost", InviteStatus.STARTED) is False

    @pytest.mark.asyncio
    async def test_complete_voting_requires_person(self, db_session):
        with pytest.raises(VoteValidationError, match="personId is required."):
            await complete_voting(db_session, "  ")

    @pytest.mark.asyncio
    async def test_campaign_date(self, db_session, campaign):
        assert await get_campaign_date(db_session, campaign) == date(2026, 1, 7)
        with pytest.raises(NotFoundError, match="Campaign not found."):
            await get_campaign_date(db_session, "nope")


class TestAssignmentSession:
    """Tests for the campaign page flow."""

    @pytest.mark.asyncio
    async def test_load_orders_assignments(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")

        assert await session.load() is True
        assert session.voter.display_name == "Jane"
        assert [a["assignmentId"] for a in session.assignments] == ["a-early", "a-mid", "a-late"]
        assert session.progress_label == "1 of 3"

    @pytest.mark.asyncio
    async def test_load_with_bad_token(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "wrong")
        assert await session.load() is False
        assert session.error == "Token is invalid or expired."

    @pytest.mark.asyncio
    async def test_load_with_missing_input(self, db_session):
        session = AssignmentSession(db_session, "", "")
        assert await session.load() is False
        assert session.error == "Missing campaign or token."

    @pytest.mark.asyncio
    async def test_index_is_clamped(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token", current_index=99)
        await session.load()
        assert session.current_index == 3
        assert session.is_finished

    @pytest.mark.asyncio
    async def test_cannot_advance_until_vote_complete(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")
        await session.load()

        assert session.navigate("next") == 0
        await session.set_choice("a-early", vote="delay")
        assert session.can_advance is False
        assert session.navigate("next") == 0

        await session.set_choice("a-early", delay_minutes=90)
        assert session.can_advance is True
        assert session.navigate("next") == 1
        assert session.navigate("prev") == 0
        assert session.navigate("prev") == 0

    @pytest.mark.asyncio
    async def test_complete_choice_is_saved(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")
        await session.load()

        choice = await session.set_choice("a-early", vote="go", comment="fine")

        assert choice["status"] == AssignmentStatus.VOTED
        stored = await db_session.get(Assignment, "a-early")
        assert stored.vote == "go"
        assert stored.comment == "fine"

    @pytest.mark.asyncio
    async def test_switching_away_from_delay_clears_minutes(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")
        await session.load()

        await session.set_choice("a-early", vote="delay", delay_minutes=30)
        choice = await session.set_choice("a-early", vote="hold")

        assert choice["delay_minutes"] is None
        stored = await db_session.get(Assignment, "a-early")
        assert stored.vote == "hold"
        assert stored.delay_minutes is None

    @pytest.mark.asyncio
    async def test_unknown_assignment(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")
        await session.load()
        with pytest.raises(NotFoundError):
            await session.set_choice("missing", vote="go")

    @pytest.mark.asyncio
    async def test_invalid_direction(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")
        await session.load()
        with pytest.raises(VoteValidationError):
            session.navigate("sideways")

    @pytest.mark.asyncio
    async def test_submit_all_requires_every_vote(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")
        await session.load()
        await session.set_choice("a-early", vote="go")

        with pytest.raises(VoteValidationError, match="Please vote on every job before submitting."):
            await session.submit_all()
        assert session.current_index == 1

    @pytest.mark.asyncio
    async def test_submit_all_completes_person(self, db_session, campaign):
        session = AssignmentSession(db_session, campaign, "link-token")
        await session.load()
        await session.set_choice("a-early", vote="go")
        await session.set_choice("a-mid", vote="hold")
        await session.set_choice("a-late", vote="delay", delay_minutes=120)

        assert await session.submit_all() is True

        assert session.is_finished
        person = await db_session.get(CampaignPerson, "p1")
        assert person.invite_status == InviteStatus.COMPLETED
        assert all(a["status"] == AssignmentStatus.VOTED for a in session.assignments)
