"""Base schemas and common types used across the challenge API."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from challenge_api.shared.utils.datetime_utils import utcnow


# ===========================================
# BASE MODELS
# ===========================================


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
    )


# ===========================================
# ERROR RESPONSES
# ===========================================


class ErrorDetail(BaseSchema):
    """RFC 7807 Problem Details format."""

    type: str = Field(description="URI reference identifying the problem type")
    title: str = Field(description="Short, human-readable summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(description="Human-readable explanation")
    instance: str | None = Field(default=None, description="URI reference for this occurrence")
    errors: list[dict[str, Any]] | None = Field(
        default=None, description="Additional error details"
    )


# ===========================================
# EVENT SCHEMAS
# ===========================================


class BaseEvent(BaseSchema):
    """Base schema for bus events."""

    event_id: UUID = Field(default_factory=uuid4)
    event_type: str
    timestamp: datetime = Field(default_factory=utcnow)
    source_service: str = "challenge-api"
    correlation_id: UUID | None = None
