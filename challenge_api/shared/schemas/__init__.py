"""Shared schemas used across the challenge API."""

from challenge_api.shared.schemas.base import BaseEvent, BaseSchema, ErrorDetail

__all__ = ["BaseEvent", "BaseSchema", "ErrorDetail"]
