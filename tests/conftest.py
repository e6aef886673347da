"""Shared test infrastructure for the Swap Platform test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- make_user: factory for User rows
- make_listing: factory for ACTIVE SwapListing rows
- node: factory for in-memory ListingNode snapshots (pure-module tests)
- matching: MatchingService wired to db_session with a mock advisor
"""

import itertools
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from swap_platform.infra.database import Base

import swap_platform.domain.models  # noqa: F401

from swap_platform.app.config import Settings
from swap_platform.domain.contracts import ListingNode
from swap_platform.domain.models import SwapListing, User
from swap_platform.services.matching_service import MatchingService


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def settings():
    """Deterministic settings independent of any local .env file."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        sweeper_enabled=False,
        reliability_rank_penalty_enabled=False,
    )


@pytest.fixture
def advisor():
    mock = MagicMock()
    mock.suggest_no_match.return_value = ["Widen your search."]
    return mock


@pytest.fixture
def matching(db_session, settings, advisor):
    return MatchingService(db_session, settings=settings, advisor=advisor)


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

_counter = itertools.count(1)


@pytest.fixture
def make_user(db_session):
    """Factory: create and commit a User."""

    async def _make(full_name: str | None = None, role: str = "user", phone: str | None = None,
                    reliability_score: int = 100) -> User:
        n = next(_counter)
        user = User(
            email=f"user{n}@example.com",
            full_name=full_name or f"User {n}",
            phone=phone or f"+23480000{n:05d}",
            role=role,
            reliability_score=reliability_score,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def make_listing(db_session, make_user):
    """Factory: create and commit an ACTIVE listing.

    Each call gets a strictly later ``created_at`` so "latest listing"
    lookups are deterministic.
    """
    base = datetime.now(timezone.utc) - timedelta(hours=1)

    async def _make(user: User | None = None, **overrides) -> SwapListing:
        user = user or await make_user()
        n = next(_counter)
        now = datetime.now(timezone.utc)
        fields = dict(
            user_id=user.id,
            desired_city="Lagos",
            desired_type="2-Bedroom",
            max_budget=1200,
            timeline="Within 1 month",
            current_city="Abuja",
            current_type="1-Bedroom",
            current_rent=700,
            available_on=date(2026, 11, 1),
            features=[],
            status="active",
            expires_at=now + timedelta(days=14),
            created_at=base + timedelta(seconds=n),
            updated_at=now,
        )
        fields.update(overrides)
        listing = SwapListing(**fields)
        db_session.add(listing)
        await db_session.commit()
        return listing

    return _make


@pytest.fixture
def node():
    """Factory: in-memory ListingNode with sensible defaults."""

    def _make(id: str, **overrides) -> ListingNode:
        fields = dict(
            id=id,
            user_id=f"user-{id}",
            desired_city="Lagos",
            desired_type="2-Bedroom",
            max_budget=1200,
            timeline="Within 1 month",
            current_city="Abuja",
            current_type="1-Bedroom",
            current_rent=700,
            available_on=date(2026, 11, 1),
            features=[],
        )
        fields.update(overrides)
        return ListingNode(**fields)

    return _make
