"""
LINEAGE INVARIANTS - Diagnostics for Untrusted Lineage Data

The read side never rejects malformed data: dangling parents, parent
cycles and dangling link endpoints are all absorbed by the assembler's
guards and the grouper's fallbacks. This module makes those anomalies
visible without changing that policy.

Checks Implemented:
1. Dangling parents: parent_message_id points at an unknown message
2. Parent cycles: parent pointers loop (strongly connected components)
3. Dangling links: a link endpoint is not a known message
4. Unknown link types: link_type outside the LinkType vocabulary
5. Orphans: non-user messages that no request group reaches

Every check is a report entry, never an exception. Checks are O(V+E)
using rustworkx primitives on the index's lineage graph.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

import rustworkx as rx

from core.graph_index import MessageIndex
from core.ontology import is_known_link_type, is_user_role


# =============================================================================
# REPORT TYPES
# =============================================================================

class AnomalySeverity(Enum):
    """How much an anomaly distorts the assembled view."""
    WARNING = "warning"  # Part of the data is hidden or truncated
    INFO = "info"        # Tolerated; shown as-is


@dataclass
class LineageAnomaly:
    """A specific anomaly found in the snapshot."""
    check: str                                   # Name of the check
    severity: AnomalySeverity
    message: str
    message_ids: List[str] = field(default_factory=list)
    link_ids: List[str] = field(default_factory=list)


@dataclass
class LineageReport:
    """Complete diagnostics for one snapshot."""
    anomalies: List[LineageAnomaly]
    metrics: Dict[str, Any]

    @property
    def is_clean(self) -> bool:
        return not self.anomalies

    @property
    def warnings(self) -> List[LineageAnomaly]:
        return [a for a in self.anomalies if a.severity == AnomalySeverity.WARNING]

    def by_check(self, check: str) -> List[LineageAnomaly]:
        return [a for a in self.anomalies if a.check == check]


# =============================================================================
# CHECKS
# =============================================================================

class LineageInvariants:
    """
    Anomaly detectors over a MessageIndex.

    All methods are static and return a list of anomalies (possibly empty).
    """

    @staticmethod
    def find_dangling_parents(index: MessageIndex) -> List[LineageAnomaly]:
        anomalies = []
        for parent_id, child_ids in index.dangling_parent_ids().items():
            anomalies.append(LineageAnomaly(
                check="dangling_parent",
                severity=AnomalySeverity.WARNING,
                message=f"{len(child_ids)} message(s) reference unknown parent {parent_id}",
                message_ids=child_ids,
            ))
        return anomalies

    @staticmethod
    def find_parent_cycles(index: MessageIndex) -> List[LineageAnomaly]:
        return [
            LineageAnomaly(
                check="parent_cycle",
                severity=AnomalySeverity.WARNING,
                message=f"Parent pointers form a cycle through {len(cycle)} message(s)",
                message_ids=cycle,
            )
            for cycle in index.parent_cycles()
        ]

    @staticmethod
    def find_dangling_links(index: MessageIndex) -> List[LineageAnomaly]:
        anomalies = []
        for link in index.links:
            missing = [
                endpoint for endpoint in (link.source_message_id, link.target_message_id)
                if endpoint not in index
            ]
            if missing:
                anomalies.append(LineageAnomaly(
                    check="dangling_link",
                    severity=AnomalySeverity.INFO,
                    message=f"Link {link.id} references unknown message(s): {', '.join(missing)}",
                    message_ids=missing,
                    link_ids=[link.id],
                ))
        return anomalies

    @staticmethod
    def find_unknown_link_types(index: MessageIndex) -> List[LineageAnomaly]:
        unknown: Dict[str, List[str]] = {}
        for link in index.links:
            if not is_known_link_type(link.link_type):
                unknown.setdefault(link.link_type, []).append(link.id)
        return [
            LineageAnomaly(
                check="unknown_link_type",
                severity=AnomalySeverity.INFO,
                message=f"{len(link_ids)} link(s) of unknown type {link_type!r} (non-scoring)",
                link_ids=link_ids,
            )
            for link_type, link_ids in unknown.items()
        ]

    @staticmethod
    def find_orphans(index: MessageIndex, reached_ids: Set[str]) -> List[LineageAnomaly]:
        orphan_ids = [
            message.id for message in index.messages
            if not is_user_role(message.role) and message.id not in reached_ids
        ]
        if not orphan_ids:
            return []
        return [LineageAnomaly(
            check="orphan",
            severity=AnomalySeverity.WARNING,
            message=f"{len(orphan_ids)} response(s) belong to no request group",
            message_ids=orphan_ids,
        )]


def diagnose(index: MessageIndex, reached_ids: Optional[Iterable[str]] = None) -> LineageReport:
    """
    Run every check and return a report.

    Args:
        index: The snapshot index
        reached_ids: Ids materialized in some request group tree. If None,
                     the orphan check is skipped.
    """
    anomalies: List[LineageAnomaly] = []
    anomalies.extend(LineageInvariants.find_dangling_parents(index))
    anomalies.extend(LineageInvariants.find_parent_cycles(index))
    anomalies.extend(LineageInvariants.find_dangling_links(index))
    anomalies.extend(LineageInvariants.find_unknown_link_types(index))
    if reached_ids is not None:
        anomalies.extend(LineageInvariants.find_orphans(index, set(reached_ids)))

    graph = index.lineage_graph
    metrics: Dict[str, Any] = {
        "message_count": index.message_count,
        "link_count": index.link_count,
        "lineage_edge_count": graph.num_edges(),
        "is_dag": index.is_acyclic(),
        "weakly_connected_components": (
            rx.number_weakly_connected_components(graph) if graph.num_nodes() else 0
        ),
    }
    return LineageReport(anomalies=anomalies, metrics=metrics)
