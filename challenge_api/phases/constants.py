"""Phase names, challenge statuses and bus topics the engine special-cases."""

from enum import Enum


ITERATIVE_REVIEW_PHASE_NAME = "Iterative Review"
POST_MORTEM_PHASE_NAME = "Post-Mortem"


class ChallengeStatus(str, Enum):
    """Challenge statuses relevant to phase scheduling."""

    NEW = "New"
    DRAFT = "Draft"
    APPROVED = "Approved"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    DELETED = "Deleted"
    CANCELLED = "Cancelled"
    CANCELLED_FAILED_REVIEW = "Cancelled - Failed Review"
    CANCELLED_FAILED_SCREENING = "Cancelled - Failed Screening"
    CANCELLED_ZERO_SUBMISSIONS = "Cancelled - Zero Submissions"
    CANCELLED_WINNER_UNRESPONSIVE = "Cancelled - Winner Unresponsive"
    CANCELLED_CLIENT_REQUEST = "Cancelled - Client Request"
    CANCELLED_REQUIREMENTS_INFEASIBLE = "Cancelled - Requirements Infeasible"
    CANCELLED_ZERO_REGISTRATIONS = "Cancelled - Zero Registrations"
    CANCELLED_PAYMENT_FAILED = "Cancelled - Payment Failed"


CANCELLED_STATUSES: frozenset[str] = frozenset(
    status.value for status in ChallengeStatus if status.value.startswith("Cancelled")
)


class Topics:
    """Bus topics emitted by the phase services."""

    CHALLENGE_PHASE_UPDATED = "challenge.action.phase.updated"
    CHALLENGE_PHASE_DELETED = "challenge.action.phase.deleted"


__all__ = [
    "CANCELLED_STATUSES",
    "ChallengeStatus",
    "ITERATIVE_REVIEW_PHASE_NAME",
    "POST_MORTEM_PHASE_NAME",
    "Topics",
]
