"""Pending-review query port used by the phase closing guard."""

from __future__ import annotations

import re
from typing import Protocol

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from challenge_api.infrastructure.database.session import normalize_database_url
from challenge_api.phases.config import PhaseSettings, get_phase_settings
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Review database engines, keyed by URL
_review_engines: dict[str, AsyncEngine] = {}
_review_session_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


class PendingReviewPort(Protocol):
    """Counts review records that still block closing a phase."""

    async def count_pending_reviews(self, phase_instance_id: str) -> int: ...


class SqlPendingReviewQuery:
    """Counts pending rows in the review subsystem's ``review`` table.

    A review is pending when its status is null or one of the configured
    pending statuses. Query failures are logged and re-raised, never retried.

    Runs on ``session`` when one is given, otherwise opens a short-lived
    session from ``session_factory`` for each check.
    """

    def __init__(
        self,
        session: AsyncSession | None = None,
        settings: PhaseSettings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ):
        if session is None and session_factory is None:
            raise ValueError("SqlPendingReviewQuery needs a session or a session factory")
        self.session = session
        self.session_factory = session_factory
        self.settings = settings or get_phase_settings()
        schema = self.settings.review_db_schema
        if not _IDENTIFIER.match(schema):
            raise ValueError(f"Invalid review schema name: {schema!r}")
        self._query = text(
            f'SELECT COUNT(*) AS count FROM "{schema}"."review" '
            'WHERE "phaseId" = :phase_id '
            'AND ("status" IS NULL OR CAST("status" AS TEXT) IN :statuses)'
        ).bindparams(bindparam("statuses", expanding=True))

    async def _count(self, session: AsyncSession, phase_instance_id: str) -> int:
        result = await session.execute(
            self._query,
            {
                "phase_id": phase_instance_id,
                "statuses": list(self.settings.pending_review_statuses),
            },
        )
        return int(result.scalar() or 0)

    async def count_pending_reviews(self, phase_instance_id: str) -> int:
        try:
            if self.session is not None:
                return await self._count(self.session, phase_instance_id)
            async with self.session_factory() as session:
                return await self._count(session, phase_instance_id)
        except Exception as e:
            logger.error(
                "pending_review_check_failed",
                phase_id=phase_instance_id,
                error=str(e),
            )
            raise


class DisabledPendingReviewQuery:
    """Used when no review subsystem is configured; nothing is ever pending."""

    async def count_pending_reviews(self, phase_instance_id: str) -> int:
        logger.debug("pending_review_check_skipped", phase_id=phase_instance_id)
        return 0


def get_review_session_factory(url: str) -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory for a separate review database."""
    factory = _review_session_factories.get(url)
    if factory is None:
        engine = create_async_engine(normalize_database_url(url), pool_pre_ping=True)
        factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        _review_engines[url] = engine
        _review_session_factories[url] = factory
        logger.info("review_database_engine_created")
    return factory


async def close_review_db() -> None:
    """Dispose every review database engine."""
    for engine in _review_engines.values():
        await engine.dispose()
    _review_engines.clear()
    _review_session_factories.clear()


def get_pending_review_port(
    session: AsyncSession,
    settings: PhaseSettings | None = None,
) -> PendingReviewPort:
    settings = settings or get_phase_settings()
    if not settings.review_check_enabled:
        return DisabledPendingReviewQuery()
    if settings.review_database_url:
        return SqlPendingReviewQuery(
            settings=settings,
            session_factory=get_review_session_factory(settings.review_database_url),
        )
    return SqlPendingReviewQuery(session, settings)
