"""Dependency ordering and date arithmetic shared by the builder and reconciler."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

import networkx as nx

from challenge_api.phases.exceptions import TimelineCycleError
from challenge_api.phases.schemas import PhaseInstance, PhaseOverride, ResolvedTemplate
from challenge_api.shared.utils.datetime_utils import add_seconds


@dataclass(frozen=True)
class PhaseOrder:
    """Phases in dependency order plus their resolved predecessor links.

    Attributes:
        phases: Instances sorted so every predecessor precedes its successors;
            ties keep template order.
        predecessors: Instance id -> id of the sibling instance it chains after.
        unresolved: Ids of instances whose ``predecessor`` matches no sibling.
    """

    phases: list[PhaseInstance]
    predecessors: dict[str, str] = field(default_factory=dict)
    unresolved: frozenset[str] = frozenset()


def index_overrides(overrides: Iterable[PhaseOverride] | None) -> dict[str, PhaseOverride]:
    """Key overrides by phase id; the first override for a phase wins."""
    indexed: dict[str, PhaseOverride] = {}
    for override in overrides or []:
        indexed.setdefault(override.phase_id, override)
    return indexed


def schedule_end(start: datetime | None, duration: int) -> datetime | None:
    if start is None:
        return None
    return add_seconds(start, duration)


def clamp_to_fixed_start(candidate: datetime, fixed_start: datetime | None) -> datetime:
    """Push a root phase's start forward so it never precedes the first root."""
    if fixed_start is not None and candidate < fixed_start:
        return fixed_start
    return candidate


def order_phases(phases: Sequence[PhaseInstance], template: ResolvedTemplate) -> PhaseOrder:
    """Topologically sort phases by their predecessor links.

    Incoming order is never trusted: persisted phases usually arrive sorted
    by date. Ties are broken by position in the template, then by incoming
    position, so a correctly authored template keeps its authored order.

    Raises:
        TimelineCycleError: If predecessor links form a cycle.
    """
    unknown_rank = len(template.entries)
    rank = {}
    for position, phase in enumerate(phases):
        index = template.index_of(phase.phase_id)
        rank[position] = (unknown_rank if index is None else index, position)

    graph = nx.DiGraph()
    graph.add_nodes_from(range(len(phases)))
    predecessors: dict[str, str] = {}
    unresolved: set[str] = set()

    for position, phase in enumerate(phases):
        if phase.predecessor is None:
            continue
        candidates = [
            other
            for other, sibling in enumerate(phases)
            if other != position
            and phase.predecessor in (sibling.phase_id, sibling.id)
        ]
        if not candidates:
            unresolved.add(phase.id)
            continue
        source = min(candidates, key=rank.__getitem__)
        graph.add_edge(source, position)
        predecessors[phase.id] = phases[source].id

    try:
        ordered = list(nx.lexicographical_topological_sort(graph, key=rank.__getitem__))
    except nx.NetworkXUnfeasible:
        cycle = nx.find_cycle(graph)
        raise TimelineCycleError([phases[source].phase_id for source, _ in cycle])

    return PhaseOrder(
        phases=[phases[position] for position in ordered],
        predecessors=predecessors,
        unresolved=frozenset(unresolved),
    )
