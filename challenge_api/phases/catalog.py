"""Phase definition catalog and timeline template resolver.

Both read reference data through a store port and keep it in a
:class:`ReferenceDataCache` owned by the caller. Entries never expire on
their own; whoever writes phase definitions or templates must call
``invalidate()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol, TypeVar

from challenge_api.phases.exceptions import InvalidPhaseError, InvalidTimelineTemplateError
from challenge_api.phases.schemas import (
    PhaseDefinition,
    PhaseOverride,
    ResolvedTemplate,
    TimelineTemplate,
)
from challenge_api.shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFINITIONS_KEY = "phase_definitions"
TEMPLATE_KEY_PREFIX = "timeline_template:"


class DefinitionStore(Protocol):
    """Source of phase definitions."""

    async def list_definitions(self) -> list[PhaseDefinition]: ...


class TemplateStore(Protocol):
    """Source of timeline templates."""

    async def get_template(self, template_id: str) -> TimelineTemplate | None: ...


class ReferenceDataCache:
    """In-process cache for phase reference data.

    Usage:
        cache = ReferenceDataCache()
        defs = await cache.get("phase_definitions", store.list_definitions)
        cache.invalidate()          # after any write to definitions/templates
    """

    def __init__(self) -> None:
        self._entries: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value for ``key``, populating it on first use."""
        if key in self._entries:
            return self._entries[key]
        async with self._lock:
            if key not in self._entries:
                self._entries[key] = await loader()
                logger.debug("reference_cache_populated", key=key)
            return self._entries[key]

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or everything when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
        logger.debug("reference_cache_invalidated", key=key or "*")

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class PhaseDefinitionCatalog:
    """Read-only lookup of phase definitions by id and by name."""

    def __init__(self, store: DefinitionStore, cache: ReferenceDataCache):
        self.store = store
        self.cache = cache

    async def _load(self) -> dict[str, PhaseDefinition]:
        definitions = await self.store.list_definitions()
        return {definition.id: definition for definition in definitions}

    async def get_definitions(self) -> dict[str, PhaseDefinition]:
        return await self.cache.get(DEFINITIONS_KEY, self._load)

    async def get_definition(self, phase_id: str) -> PhaseDefinition | None:
        definitions = await self.get_definitions()
        return definitions.get(phase_id)

    async def find_by_name(self, name: str) -> PhaseDefinition | None:
        definitions = await self.get_definitions()
        return find_definition_by_name(definitions.values(), name)

    async def validate_overrides(self, overrides: Iterable[PhaseOverride] | None) -> None:
        """Raise InvalidPhaseError listing every override with an unknown phase id."""
        overrides = list(overrides or [])
        if not overrides:
            return
        definitions = await self.get_definitions()
        invalid = [o.phase_id for o in overrides if o.phase_id not in definitions]
        if invalid:
            logger.warning("invalid_phase_overrides", phase_ids=invalid)
            raise InvalidPhaseError(invalid)

    def invalidate(self) -> None:
        self.cache.invalidate(DEFINITIONS_KEY)


class TimelineTemplateResolver:
    """Resolves a template id to its ordered entries, cached per template id."""

    def __init__(self, store: TemplateStore, cache: ReferenceDataCache):
        self.store = store
        self.cache = cache

    async def get_template(self, template_id: str | None) -> ResolvedTemplate:
        """Return the resolved template.

        Raises:
            InvalidTimelineTemplateError: If the id is missing, unknown, or the
                template references a predecessor that is not one of its phases.
        """
        if not template_id:
            raise InvalidTimelineTemplateError(template_id)

        async def load() -> ResolvedTemplate:
            record = await self.store.get_template(template_id)
            if record is None:
                raise InvalidTimelineTemplateError(
                    template_id, "timeline template does not exist"
                )
            return resolve_template(record)

        resolved = await self.cache.get(TEMPLATE_KEY_PREFIX + template_id, load)
        logger.debug(
            "timeline_template_resolved",
            template_id=template_id,
            phases=len(resolved.entries),
        )
        return resolved

    def invalidate(self, template_id: str | None = None) -> None:
        if template_id is None:
            self.cache.invalidate()
        else:
            self.cache.invalidate(TEMPLATE_KEY_PREFIX + template_id)


def resolve_template(record: TimelineTemplate) -> ResolvedTemplate:
    """Build a ResolvedTemplate, rejecting dangling predecessor references."""
    phase_ids = {entry.phase_id for entry in record.phases}
    dangling = [
        entry.predecessor
        for entry in record.phases
        if entry.predecessor is not None and entry.predecessor not in phase_ids
    ]
    if dangling:
        raise InvalidTimelineTemplateError(
            record.id,
            f"timeline template references unknown predecessors {dangling}",
        )
    return ResolvedTemplate(
        template_id=record.id,
        is_active=record.is_active,
        entries=tuple(record.phases),
    )


def find_definition_by_name(
    definitions: Iterable[PhaseDefinition], name: str
) -> PhaseDefinition | None:
    for definition in definitions:
        if definition.name == name:
            return definition
    return None
