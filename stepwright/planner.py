"""Execution order planning and edge selection."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .contracts import WorkflowDefinition, WorkflowEdge

logger = logging.getLogger(__name__)


def plan(definition: WorkflowDefinition) -> List[str]:
    """Return every node id of ``definition`` exactly once.

    Entry nodes (no incoming edge) come first in declaration order, each
    followed by the chain reached through first outgoing edges. Nodes not
    reached that way (cycles, disconnected nodes) are appended in
    declaration order.
    """
    targets = {edge.to for edge in definition.edges}
    first_edge: dict[str, str] = {}
    for edge in definition.edges:
        first_edge.setdefault(edge.from_, edge.to)

    order: List[str] = []
    visited: set[str] = set()
    for node in definition.nodes:
        if node.id in targets:
            continue
        current: Optional[str] = node.id
        while current is not None and current not in visited:
            visited.add(current)
            order.append(current)
            current = first_edge.get(current)

    for node in definition.nodes:
        if node.id not in visited:
            visited.add(node.id)
            order.append(node.id)

    logger.debug(f"Planned order for workflow {definition.id}: {order}")
    return order


def follow_edge(
    current: str, edges: Iterable[WorkflowEdge], branch: Optional[str] = None
) -> Optional[str]:
    """Pick the node reached from ``current``.

    With a ``branch`` the first edge labelled with it wins; without one the
    first unlabelled edge wins. ``None`` when nothing matches.
    """
    for edge in edges:
        if edge.from_ != current:
            continue
        if edge.branch == branch:
            return edge.to
    return None
