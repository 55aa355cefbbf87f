"""Tests for ChallengePhaseService persistence orchestration."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from challenge_api.infrastructure import events
from challenge_api.infrastructure.database.models import ChallengePhase, ChallengePhaseConstraint
from challenge_api.phases.catalog import DEFINITIONS_KEY, ReferenceDataCache
from challenge_api.phases.constants import Topics
from challenge_api.phases.exceptions import NotFoundError, PendingReviewsError
from challenge_api.phases.service import ChallengePhaseService
from tests.factories.phase_factory import DAY, REGISTRATION, REVIEW, SUBMISSION, utc

CHALLENGE_ID = "challenge-1"


def _row(phase_id: str, name: str, row_id: str, **kwargs) -> ChallengePhase:
    return ChallengePhase(
        id=row_id,
        challenge_id=CHALLENGE_ID,
        phase_id=phase_id,
        name=name,
        duration=kwargs.pop("duration", DAY),
        is_open=kwargs.pop("is_open", False),
        constraints=kwargs.pop("constraints", []),
        **kwargs,
    )


def _open_review_row() -> ChallengePhase:
    return _row(
        REVIEW,
        "Review",
        "cp-review",
        is_open=True,
        predecessor="cp-submission",
        scheduled_start_date=utc(2024, 1, 10),
        scheduled_end_date=utc(2024, 1, 11),
        actual_start_date=utc(2024, 1, 10),
        constraints=[ChallengePhaseConstraint(id="c-1", name="Reviewers", value=2)],
    )


@pytest.fixture
def cache() -> ReferenceDataCache:
    return ReferenceDataCache()


@pytest.fixture
def service(db_session, cache, review_port, phase_settings) -> ChallengePhaseService:
    service = ChallengePhaseService(db_session, cache, review_port=review_port, settings=phase_settings)
    service.repository = MagicMock()
    service.repository.challenge_exists = AsyncMock(return_value=True)
    service.repository.get = AsyncMock(return_value=_open_review_row())
    service.repository.list_for_challenge = AsyncMock(return_value=[])
    service.repository.update_phase = AsyncMock()
    service.repository.save_constraints = AsyncMock()
    service.repository.relink = AsyncMock()
    service.repository.delete = AsyncMock()
    return service


class TestReadPhases:
    @pytest.mark.asyncio
    async def test_missing_challenge(self, service):
        service.repository.challenge_exists.return_value = False

        with pytest.raises(NotFoundError, match="Challenge with id: challenge-1"):
            await service.get_all_phases(CHALLENGE_ID)

    @pytest.mark.asyncio
    async def test_get_all_phases_converts_rows(self, service):
        service.repository.list_for_challenge.return_value = [
            _row(REGISTRATION, "Registration", "cp-registration"),
            _open_review_row(),
        ]

        phases = await service.get_all_phases(CHALLENGE_ID)

        assert [p.id for p in phases] == ["cp-registration", "cp-review"]
        assert phases[1].constraints[0].name == "Reviewers"
        assert phases[1].scheduled_start_date == utc(2024, 1, 10)

    @pytest.mark.asyncio
    async def test_missing_phase(self, service):
        service.repository.get.return_value = None

        with pytest.raises(NotFoundError):
            await service.get_phase(CHALLENGE_ID, "cp-unknown")


class TestPartiallyUpdatePhase:
    @pytest.mark.asyncio
    async def test_close_blocked_by_pending_reviews(self, service, review_port, db_session):
        review_port.count_pending_reviews.return_value = 3

        with pytest.raises(PendingReviewsError):
            await service.partially_update_phase(CHALLENGE_ID, "cp-review", {"is_open": False}, "user-1")

        service.repository.update_phase.assert_not_awaited()
        db_session.commit.assert_not_awaited()
        db_session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_persists_and_notifies(self, service, db_session, cache):
        await cache.get(DEFINITIONS_KEY, AsyncMock(return_value={}))
        handler = AsyncMock()
        events.register_handler(Topics.CHALLENGE_PHASE_UPDATED, handler)

        result = await service.partially_update_phase(
            CHALLENGE_ID, "cp-review", {"is_open": False}, "user-1"
        )
        await events.drain_pending_events()

        assert result.is_open is False
        service.repository.update_phase.assert_awaited_once_with("cp-review", {"is_open": False}, "user-1")
        db_session.commit.assert_awaited_once()
        assert DEFINITIONS_KEY not in cache

        topic, payload = handler.await_args.args
        assert topic == "challenge.action.phase.updated"
        assert payload["challenge_id"] == CHALLENGE_ID
        assert payload["phase"]["id"] == "cp-review"

    @pytest.mark.asyncio
    async def test_constraints_saved(self, service):
        await service.partially_update_phase(
            CHALLENGE_ID,
            "cp-review",
            {"constraints": [{"id": "c-1", "name": "Reviewers", "value": 3}, {"name": "Max", "value": 1}]},
            "user-1",
        )

        row, constraints, updated_by = service.repository.save_constraints.await_args.args
        assert row.id == "cp-review"
        assert [(c.id, c.value) for c in constraints][0] == ("c-1", 3)
        assert constraints[1].name == "Max"
        assert updated_by == "user-1"

    @pytest.mark.asyncio
    async def test_predecessor_checked_against_stored_siblings(self, service):
        service.repository.list_for_challenge.return_value = [
            _row(SUBMISSION, "Submission", "cp-submission"),
            _open_review_row(),
        ]

        result = await service.partially_update_phase(
            CHALLENGE_ID, "cp-review", {"predecessor": "cp-submission"}, "user-1"
        )

        assert result.predecessor == "cp-submission"
        service.repository.list_for_challenge.assert_awaited_once_with(CHALLENGE_ID)


class TestDeletePhase:
    @pytest.mark.asyncio
    async def test_delete_relinks_successor(self, service, db_session):
        registration = _row(REGISTRATION, "Registration", "cp-registration")
        submission = _row(SUBMISSION, "Submission", "cp-submission", predecessor="cp-registration")
        review = _open_review_row()
        service.repository.get.return_value = submission
        service.repository.list_for_challenge.return_value = [registration, submission, review]
        handler = AsyncMock()
        events.register_handler(Topics.CHALLENGE_PHASE_DELETED, handler)

        deleted = await service.delete_phase(CHALLENGE_ID, "cp-submission", "user-1")
        await events.drain_pending_events()

        assert deleted.id == "cp-submission"
        (relinked,), updated_by = service.repository.relink.await_args.args
        assert relinked.id == "cp-review"
        assert relinked.predecessor == "cp-registration"
        service.repository.delete.assert_awaited_once_with("cp-submission")
        db_session.commit.assert_awaited_once()
        assert handler.await_args.args[1]["phase"]["id"] == "cp-submission"

    @pytest.mark.asyncio
    async def test_delete_missing_phase(self, service, db_session):
        service.repository.get.return_value = None

        with pytest.raises(NotFoundError):
            await service.delete_phase(CHALLENGE_ID, "cp-unknown", "user-1")

        service.repository.delete.assert_not_awaited()
        db_session.rollback.assert_awaited_once()
