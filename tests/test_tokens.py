"""Unit tests for campaign voting token resolution."""

import hashlib
from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.models import Campaign, CampaignPerson, VoteToken
from app.services.errors import InvalidTokenError, TokenMismatchError, VoteValidationError
from app.services.tokens import hash_token, issue_token, resolve_token


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
async def campaign_person(db_session: AsyncSession):
    """A campaign with one estimator."""
    campaign = Campaign(id="camp-1", name="Tuesday dispatch", campaign_date=date(2026, 1, 7))
    other = Campaign(id="camp-2", name="Wednesday dispatch", campaign_date=date(2026, 1, 8))
    person = CampaignPerson(id="p1", campaign_id="camp-1", display_name="Jane", role="estimator")
    db_session.add_all([campaign, other, person])
    await db_session.commit()
    return person


class TestHashToken:
    def test_sha256_of_salt_and_token(self):
        assert hash_token("abc", salt="") == hashlib.sha256(b"abc").hexdigest()
        assert hash_token("abc", salt="pepper") == hashlib.sha256(b"pepperabc").hexdigest()

    def test_different_tokens_differ(self):
        assert hash_token("abc", salt="") != hash_token("abd", salt="")


class TestResolveToken:
    """Tests for resolving a raw token to a voter."""

    @pytest.mark.asyncio
    async def test_resolves_valid_token(self, db_session, campaign_person):
        await issue_token(db_session, campaign_person, "raw-token", datetime.utcnow() + timedelta(days=1))

        voter = await resolve_token(db_session, "camp-1", "raw-token")

        assert voter.to_dict() == {"personId": "p1", "displayName": "Jane", "role": "estimator"}

    @pytest.mark.asyncio
    async def test_raw_token_is_never_stored(self, db_session, campaign_person):
        record = await issue_token(
            db_session, campaign_person, "raw-token", datetime.utcnow() + timedelta(days=1)
        )
        assert record.token_hash != "raw-token"
        assert record.token_hash == hash_token("raw-token")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("campaign_id, token", [("", "raw"), ("camp-1", ""), (None, None), ("  ", "raw")])
    async def test_missing_input(self, db_session, campaign_id, token):
        with pytest.raises(VoteValidationError, match="campaignId and token are required."):
            await resolve_token(db_session, campaign_id, token)

    @pytest.mark.asyncio
    async def test_unknown_token(self, db_session, campaign_person):
        with pytest.raises(InvalidTokenError, match="Token is invalid or expired.") as exc_info:
            await resolve_token(db_session, "camp-1", "nope")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    @pytest.mark.parametrize("revoked", [False, True])
    async def test_expired_token_fails_regardless_of_revocation(self, db_session, campaign_person, revoked):
        record = await issue_token(
            db_session, campaign_person, "old-token", datetime.utcnow() - timedelta(minutes=1)
        )
        if revoked:
            record.revoked_at = datetime.utcnow() - timedelta(hours=1)
            await db_session.commit()

        with pytest.raises(InvalidTokenError):
            await resolve_token(db_session, "camp-1", "old-token")

    @pytest.mark.asyncio
    async def test_revoked_token(self, db_session, campaign_person):
        record = await issue_token(
            db_session, campaign_person, "revoked", datetime.utcnow() + timedelta(days=1)
        )
        record.revoked_at = datetime.utcnow()
        await db_session.commit()

        with pytest.raises(InvalidTokenError):
            await resolve_token(db_session, "camp-1", "revoked")

    @pytest.mark.asyncio
    async def test_campaign_mismatch_is_forbidden(self, db_session, campaign_person):
        await issue_token(db_session, campaign_person, "raw-token", datetime.utcnow() + timedelta(days=1))

        with pytest.raises(TokenMismatchError, match="Token does not match campaign.") as exc_info:
            await resolve_token(db_session, "camp-2", "raw-token")
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_marks_viewed_once(self, db_session, campaign_person):
        record = await issue_token(
            db_session, campaign_person, "raw-token", datetime.utcnow() + timedelta(days=1)
        )
        first_seen = datetime(2026, 1, 7, 6, 0)
        later = first_seen + timedelta(hours=2)

        await resolve_token(db_session, "camp-1", "raw-token", now=first_seen)
        await resolve_token(db_session, "camp-1", "raw-token", now=later)

        token = await db_session.get(VoteToken, record.id)
        person = await db_session.get(CampaignPerson, "p1")
        assert token.first_viewed_at == first_seen
        assert person.first_viewed_at == first_seen
