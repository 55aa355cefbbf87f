"""Tests for shared logging, datetime and error-mapping helpers."""

from datetime import datetime, timedelta, timezone

import pytest
import structlog
from fastapi import HTTPException

from challenge_api.phases.exceptions import (
    InvalidPhaseError,
    NotFoundError,
    PendingReviewsError,
    PhaseStateError,
    raise_http_exception,
)
from challenge_api.shared.utils.datetime_utils import add_seconds, ensure_utc, to_iso, utcnow
from challenge_api.shared.utils.logging import (
    bind_request_context,
    clear_request_context,
    configure_logging,
    get_logger,
)


class TestDatetimeUtils:
    def test_utcnow_is_aware(self):
        assert utcnow().tzinfo == timezone.utc

    def test_naive_assumed_utc(self):
        assert ensure_utc(datetime(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_offset_converted(self):
        plus_two = timezone(timedelta(hours=2))
        result = ensure_utc(datetime(2024, 1, 1, 2, tzinfo=plus_two))

        assert result == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert result.tzinfo == timezone.utc

    def test_add_seconds(self):
        assert add_seconds(datetime(2024, 1, 1), 86400) == datetime(2024, 1, 2, tzinfo=timezone.utc)

    def test_to_iso(self):
        assert to_iso(datetime(2024, 1, 1, tzinfo=timezone.utc)) == "2024-01-01T00:00:00Z"
        assert to_iso(None) is None


class TestLogging:
    def test_request_context_bound_and_cleared(self):
        configure_logging(level="DEBUG", json_format=False)
        bind_request_context("req-1", user_id="user-1", challenge_id="c-1")

        context = structlog.contextvars.get_contextvars()
        assert context["request_id"] == "req-1"
        assert context["user_id"] == "user-1"
        assert context["challenge_id"] == "c-1"
        get_logger(__name__).debug("context_bound")

        clear_request_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestRaiseHttpException:
    @pytest.mark.parametrize(
        ("error", "status_code"),
        [
            (InvalidPhaseError(["p-1"]), 400),
            (NotFoundError("Challenge", "c-1"), 404),
            (PendingReviewsError("Review", 1), 403),
            (PhaseStateError("unopened", "closed", ["open"]), 409),
        ],
    )
    def test_status_mapping(self, error, status_code):
        with pytest.raises(HTTPException) as exc_info:
            raise_http_exception(error)

        assert exc_info.value.status_code == status_code
        assert exc_info.value.detail["detail"] == error.message
        assert exc_info.value.detail["type"].endswith(error.error_type)
