"""Tests for ChallengeTimelineService create/update orchestration."""

import pytest

from challenge_api.phases.exceptions import (
    BadRequestError,
    InvalidPhaseError,
    InvalidTimelineTemplateError,
)
from challenge_api.phases.schemas import ChallengeTimeline, PhaseOverride
from challenge_api.phases.service import ChallengeTimelineService, derive_timeline_dates
from tests.factories.phase_factory import (
    DAY,
    REGISTRATION,
    REVIEW,
    SUBMISSION,
    make_entry,
    make_phase,
    make_template_record,
    utc,
)


@pytest.fixture
def service(engine) -> ChallengeTimelineService:
    return ChallengeTimelineService(engine)


def _challenge(status: str = "Draft", **kwargs) -> ChallengeTimeline:
    phases = kwargs.pop(
        "phases",
        [
            make_phase(REGISTRATION, duration=DAY, scheduled_start_date=utc(2024, 1, 1)),
            make_phase(SUBMISSION, duration=7 * DAY, predecessor=REGISTRATION),
            make_phase(REVIEW, duration=2 * DAY, predecessor=SUBMISSION),
        ],
    )
    return ChallengeTimeline(
        id="challenge-1",
        status=status,
        timeline_template_id="tpl-design",
        start_date=utc(2024, 1, 1),
        phases=phases,
        **kwargs,
    )


class TestCreateTimeline:
    @pytest.mark.asyncio
    async def test_builds_phases_and_dates(self, service):
        update = await service.create_timeline("tpl-design", None, utc(2024, 1, 1))

        assert [p.name for p in update.phases] == ["Registration", "Submission", "Review"]
        assert update.phases_updated is True
        assert update.start_date == utc(2024, 1, 1)
        assert update.end_date == utc(2024, 1, 11)

    @pytest.mark.asyncio
    async def test_template_id_required(self, service):
        with pytest.raises(InvalidTimelineTemplateError):
            await service.create_timeline(None, None, utc(2024, 1, 1))

    @pytest.mark.asyncio
    async def test_inactive_template_rejected(self, service, template_store):
        template_store.records["tpl-old"] = make_template_record(template_id="tpl-old", is_active=False)

        with pytest.raises(InvalidTimelineTemplateError, match="inactive"):
            await service.create_timeline("tpl-old", None, utc(2024, 1, 1))

    @pytest.mark.asyncio
    async def test_unknown_override_rejected(self, service):
        with pytest.raises(InvalidPhaseError):
            await service.create_timeline(
                "tpl-design", [PhaseOverride(phase_id="bogus")], utc(2024, 1, 1)
            )


class TestUpdateTimeline:
    @pytest.mark.asyncio
    async def test_no_phase_changes(self, service):
        challenge = _challenge()

        update = await service.update_timeline(challenge)

        assert update.phases_updated is False
        assert update.phases == challenge.phases
        assert update.start_date == utc(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_activation_opens_due_root(self, service):
        now = utc(2024, 1, 2)

        update = await service.update_timeline(_challenge(), status="Active", now=now)

        registration = update.phases[0]
        assert registration.is_open is True
        assert registration.actual_start_date == now
        assert update.start_date == now
        assert update.end_date == utc(2024, 1, 12)

    @pytest.mark.asyncio
    async def test_overrides_reconcile(self, service):
        overrides = [PhaseOverride(phase_id=SUBMISSION, duration=DAY)]

        update = await service.update_timeline(_challenge(), overrides=overrides, now=utc(2023, 12, 1))

        assert update.phases_updated is True
        assert update.end_date == utc(2024, 1, 5)

    @pytest.mark.asyncio
    async def test_cancellation_closes_open_registration(self, service):
        phases = [
            make_phase(
                REGISTRATION,
                is_open=True,
                scheduled_start_date=utc(2024, 1, 1),
                scheduled_end_date=utc(2024, 1, 2),
                actual_start_date=utc(2024, 1, 1),
            ),
        ]
        now = utc(2024, 1, 1, 12)

        update = await service.update_timeline(
            _challenge("Active", phases=phases), status="Cancelled - Client Request", now=now
        )

        assert update.phases_updated is True
        assert update.phases[0].is_open is False
        assert update.phases[0].actual_end_date == now

    @pytest.mark.asyncio
    async def test_phase_changes_rejected_on_completed_challenge(self, service):
        with pytest.raises(BadRequestError, match="Completed or Cancelled"):
            await service.update_timeline(
                _challenge("Completed"), overrides=[PhaseOverride(phase_id=SUBMISSION, duration=DAY)]
            )

    @pytest.mark.asyncio
    async def test_template_change_forbidden_after_new(self, service):
        with pytest.raises(BadRequestError, match="Cannot change the timelineTemplateId"):
            await service.update_timeline(_challenge("Active"), timeline_template_id="tpl-other")

    @pytest.mark.asyncio
    async def test_template_change_rebuilds(self, service, template_store):
        template_store.records["tpl-short"] = make_template_record(
            make_entry(REGISTRATION, 2 * DAY), template_id="tpl-short"
        )

        update = await service.update_timeline(_challenge("New"), timeline_template_id="tpl-short")

        assert update.timeline_template_id == "tpl-short"
        assert [p.name for p in update.phases] == ["Registration"]
        assert update.end_date == utc(2024, 1, 3)

    @pytest.mark.asyncio
    async def test_privileged_caller_may_change_template(self, service, template_store):
        template_store.records["tpl-short"] = make_template_record(
            make_entry(REGISTRATION, DAY), template_id="tpl-short"
        )

        update = await service.update_timeline(
            _challenge("Draft"), timeline_template_id="tpl-short", privileged=True
        )

        assert len(update.phases) == 1


class TestDeriveTimelineDates:
    def test_min_start_max_end(self):
        phases = [
            make_phase(scheduled_start_date=utc(2024, 1, 3), scheduled_end_date=utc(2024, 1, 4)),
            make_phase(scheduled_start_date=utc(2024, 1, 1), scheduled_end_date=utc(2024, 1, 9)),
        ]

        assert derive_timeline_dates(phases) == (utc(2024, 1, 1), utc(2024, 1, 9))

    def test_falls_back_without_phases(self):
        assert derive_timeline_dates([], utc(2024, 1, 1), None) == (utc(2024, 1, 1), None)
