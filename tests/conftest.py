"""Global pytest fixtures for the challenge phase engine.

This module provides shared fixtures for testing including:
- Mock async database sessions
- Reference data stores, caches and the timeline engine
- A pending-review port stub
"""

from collections.abc import Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from challenge_api.infrastructure import events
from challenge_api.phases.catalog import (
    PhaseDefinitionCatalog,
    ReferenceDataCache,
    TimelineTemplateResolver,
)
from challenge_api.phases.config import PhaseSettings
from challenge_api.phases.engine import PhaseTimelineEngine
from tests.factories.phase_factory import make_definitions, make_template_record


# ===========================================
# DATABASE SESSION FIXTURES
# ===========================================


@pytest.fixture
def db_session() -> Generator[AsyncMock, None, None]:
    """Create a mock async database session for unit tests."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.flush = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()

    yield session


# ===========================================
# SETTINGS / PORTS
# ===========================================


@pytest.fixture
def phase_settings() -> PhaseSettings:
    return PhaseSettings(review_check_enabled=True, review_db_schema="reviews")


@pytest.fixture
def review_port() -> AsyncMock:
    """Pending-review port reporting nothing pending by default."""
    port = AsyncMock()
    port.count_pending_reviews = AsyncMock(return_value=0)
    return port


# ===========================================
# REFERENCE DATA
# ===========================================


@pytest.fixture
def definition_store() -> MagicMock:
    store = MagicMock()
    store.list_definitions = AsyncMock(return_value=list(make_definitions().values()))
    return store


@pytest.fixture
def template_store() -> MagicMock:
    records: dict[str, Any] = {"tpl-design": make_template_record()}
    store = MagicMock()
    store.records = records
    store.get_template = AsyncMock(side_effect=lambda template_id: records.get(template_id))
    return store


@pytest.fixture
def reference_cache() -> ReferenceDataCache:
    return ReferenceDataCache()


@pytest.fixture
def engine(
    definition_store: MagicMock,
    template_store: MagicMock,
    reference_cache: ReferenceDataCache,
    review_port: AsyncMock,
    phase_settings: PhaseSettings,
) -> PhaseTimelineEngine:
    return PhaseTimelineEngine(
        PhaseDefinitionCatalog(definition_store, reference_cache),
        TimelineTemplateResolver(template_store, reference_cache),
        review_port=review_port,
        settings=phase_settings,
    )


# ===========================================
# EVENTS
# ===========================================


@pytest.fixture(autouse=True)
def reset_event_handlers():
    events.clear_handlers()
    yield
    events.clear_handlers()
