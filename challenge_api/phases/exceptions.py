"""Custom exceptions for the phase timeline engine."""

from fastapi import HTTPException, status

from challenge_api.shared.schemas.base import ErrorDetail


class PhaseServiceError(Exception):
    """Base exception for phase engine errors."""

    def __init__(self, message: str, error_type: str = "phase_service_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


# ===========================================
# BAD REQUEST
# ===========================================


class BadRequestError(PhaseServiceError):
    """Raised for caller errors that must never be retried."""

    def __init__(self, message: str, error_type: str = "bad_request"):
        super().__init__(message, error_type)


class InvalidTimelineTemplateError(BadRequestError):
    """Raised when a timeline template id is missing, unknown, inactive or malformed."""

    def __init__(self, template_id: str | None, reason: str = "invalid timeline template id"):
        super().__init__(
            f"{reason}: {template_id}",
            "invalid_timeline_template",
        )
        self.template_id = template_id


class InvalidPhaseError(BadRequestError):
    """Raised when phase ids do not reference existing phase definitions."""

    def __init__(self, phase_ids: list[str]):
        super().__init__(
            f"The following phases are invalid: {', '.join(phase_ids)}",
            "invalid_phase",
        )
        self.phase_ids = phase_ids


class PhaseDateOrderError(BadRequestError):
    """Raised when a start date falls after its matching end date."""

    def __init__(self, start_field: str, start: str, end_field: str, end: str):
        super().__init__(
            f"{start_field}: {start} should not be after {end_field}: {end}",
            "phase_date_order",
        )
        self.start_field = start_field
        self.end_field = end_field


class InvalidPredecessorError(BadRequestError):
    """Raised when a predecessor is not a phase of the same challenge."""

    def __init__(self, predecessor: str, challenge_id: str | None = None):
        super().__init__(
            f"predecessor {predecessor} should be a valid challenge phase "
            f"in the same challenge: {challenge_id}",
            "invalid_predecessor",
        )
        self.predecessor = predecessor


class InvalidConstraintError(BadRequestError):
    """Raised when a constraint id does not belong to the patched phase."""

    def __init__(self, constraint_id: str):
        super().__init__(
            f"constraint: {constraint_id} does not exist for the challenge phase",
            "invalid_constraint",
        )
        self.constraint_id = constraint_id


class TimelineCycleError(BadRequestError):
    """Raised when predecessor links form a cycle."""

    def __init__(self, phase_ids: list[str]):
        super().__init__(
            f"Phase predecessors form a cycle: {' -> '.join(phase_ids)}",
            "timeline_cycle",
        )
        self.phase_ids = phase_ids


# ===========================================
# NOT FOUND / FORBIDDEN / STATE
# ===========================================


class NotFoundError(PhaseServiceError):
    """Raised when a challenge or challenge phase does not exist."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} with id: {identifier} doesn't exist",
            "not_found",
        )
        self.resource = resource
        self.identifier = identifier


class ForbiddenError(PhaseServiceError):
    """Raised when a transition is not allowed in the current situation."""

    def __init__(self, message: str, error_type: str = "forbidden"):
        super().__init__(message, error_type)


class PendingReviewsError(ForbiddenError):
    """Raised when closing a phase that still has pending reviews."""

    def __init__(self, phase_name: str | None, pending: int):
        super().__init__(
            f"Cannot close {phase_name or 'phase'} because there are still pending scorecards",
            "pending_reviews",
        )
        self.phase_name = phase_name
        self.pending = pending


class PhaseStateError(PhaseServiceError):
    """Raised when an invalid phase state transition is attempted."""

    def __init__(self, current_state: str, target_state: str, allowed: list[str]):
        super().__init__(
            f"Cannot transition phase from '{current_state}' to '{target_state}'. "
            f"Allowed from '{current_state}': {allowed}",
            "phase_state_error",
        )
        self.current_state = current_state
        self.target_state = target_state


def raise_http_exception(error: PhaseServiceError) -> None:
    """Convert PhaseServiceError to HTTPException."""
    status_map = {
        "bad_request": status.HTTP_400_BAD_REQUEST,
        "invalid_timeline_template": status.HTTP_400_BAD_REQUEST,
        "invalid_phase": status.HTTP_400_BAD_REQUEST,
        "phase_date_order": status.HTTP_400_BAD_REQUEST,
        "invalid_predecessor": status.HTTP_400_BAD_REQUEST,
        "invalid_constraint": status.HTTP_400_BAD_REQUEST,
        "timeline_cycle": status.HTTP_400_BAD_REQUEST,
        "not_found": status.HTTP_404_NOT_FOUND,
        "forbidden": status.HTTP_403_FORBIDDEN,
        "pending_reviews": status.HTTP_403_FORBIDDEN,
        "phase_state_error": status.HTTP_409_CONFLICT,
        "phase_service_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }

    status_code = status_map.get(error.error_type, status.HTTP_500_INTERNAL_SERVER_ERROR)
    problem = ErrorDetail(
        type=f"https://api.challenges.example/errors/{error.error_type}",
        title=error.error_type.replace("_", " ").title(),
        status=status_code,
        detail=error.message,
    )
    raise HTTPException(
        status_code=status_code,
        detail=problem.model_dump(exclude_none=True),
    )
