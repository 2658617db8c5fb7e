"""
LINEAGE INDEX - Lookup Structures over a Message/Link Snapshot

Built once per snapshot in O(n), then queried in O(1) by the assembler,
the grouper and the facade.

Architecture (The Bridge Pattern):
  Python Layer (Business Logic)
  - Uses string ids: "m1", "u1"
  - Calls: index.children_of("u1"), index.descendants_of("m1")

  Bridge Layer (This File)
  - _node_map: Dict[str, int]  (message id -> index)
  - _inv_map: Dict[int, str]   (index -> message id)

  Rust Layer (rustworkx.PyDiGraph)
  - parent -> child edges between KNOWN messages only
  - Used for descendants and cycle detection, never for sibling order

Tolerated anomalies (never errors):
- Duplicate message ids: the first occurrence wins
- Parents that are not in the snapshot: the child is indexed under the
  dangling id but has no lineage edge
- Links whose endpoints are unknown: indexed anyway
"""
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set

import rustworkx as rx

from core.ontology import is_user_role
from core.schemas import Link, Message, timestamp_sort_key


logger = logging.getLogger(__name__)


class MessageIndex:
    """
    Read-only index over one immutable message/link snapshot.

    Usage:
        index = MessageIndex(messages, links)
        index.children_of("u1")       # chronological children
        index.links_of("m1")          # outgoing then incoming links
    """

    def __init__(self, messages: Sequence[Message], links: Sequence[Link]):
        self._messages: List[Message] = []
        self._by_id: Dict[str, Message] = {}
        self._positions: Dict[str, int] = {}

        self._children: Dict[str, List[Message]] = defaultdict(list)
        self._unparented_by_group: Dict[str, List[Message]] = defaultdict(list)
        self._outgoing: Dict[str, List[Link]] = defaultdict(list)
        self._incoming: Dict[str, List[Link]] = defaultdict(list)
        self._links: List[Link] = list(links)

        # Lineage graph (parent -> child), Rust-backed
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=False)
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}

        self._index_messages(messages)
        self._index_links(self._links)

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    def _index_messages(self, messages: Sequence[Message]) -> None:
        duplicates = 0
        for message in messages:
            if message.id in self._by_id:
                duplicates += 1
                continue
            self._positions[message.id] = len(self._messages)
            self._messages.append(message)
            self._by_id[message.id] = message

            parent_id = message.parent_id
            if parent_id:
                self._children[parent_id].append(message)
            elif message.group_id and not is_user_role(message.role):
                self._unparented_by_group[message.group_id].append(message)

        if duplicates:
            logger.debug(f"Ignored {duplicates} duplicate message id(s) in snapshot")

        # Chronological sibling order; stable for equal timestamps
        for siblings in self._children.values():
            siblings.sort(key=lambda m: timestamp_sort_key(m.created_at))

        indices = self._graph.add_nodes_from([m.id for m in self._messages])
        for message, idx in zip(self._messages, indices):
            self._node_map[message.id] = idx
            self._inv_map[idx] = message.id

        edges = []
        for message in self._messages:
            parent_id = message.parent_id
            if parent_id and parent_id in self._node_map:
                edges.append((self._node_map[parent_id], self._node_map[message.id], None))
        if edges:
            self._graph.add_edges_from(edges)

    def _index_links(self, links: Sequence[Link]) -> None:
        for link in links:
            self._outgoing[link.source_message_id].append(link)
            self._incoming[link.target_message_id].append(link)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def messages(self) -> List[Message]:
        """Unique messages in input order."""
        return list(self._messages)

    @property
    def links(self) -> List[Link]:
        return list(self._links)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    @property
    def link_count(self) -> int:
        return len(self._links)

    @property
    def lineage_graph(self) -> rx.PyDiGraph:
        """The parent -> child graph; node payloads are message ids."""
        return self._graph

    # =========================================================================
    # MESSAGE LOOKUPS
    # =========================================================================

    def get_message(self, message_id: Optional[str]) -> Optional[Message]:
        if not message_id:
            return None
        return self._by_id.get(message_id)

    def position(self, message_id: str) -> int:
        """Input position of a message (-1 if unknown)."""
        return self._positions.get(message_id, -1)

    def children_of(self, parent_id: str) -> List[Message]:
        """Children of a message, ascending by created_at."""
        return list(self._children.get(parent_id, ()))

    def unparented_in_group(self, group_id: str) -> List[Message]:
        """Non-user messages of a request group that have no parent."""
        return list(self._unparented_by_group.get(group_id, ()))

    def user_messages(self) -> List[Message]:
        """Every user-authored message, in input order."""
        return [m for m in self._messages if is_user_role(m.role)]

    def dangling_parent_ids(self) -> Dict[str, List[str]]:
        """Parent ids that no message in the snapshot carries -> child ids."""
        return {
            parent_id: [child.id for child in children]
            for parent_id, children in self._children.items()
            if parent_id not in self._by_id
        }

    # =========================================================================
    # LINK LOOKUPS
    # =========================================================================

    def outgoing_links(self, message_id: str) -> List[Link]:
        return list(self._outgoing.get(message_id, ()))

    def incoming_links(self, message_id: str) -> List[Link]:
        return list(self._incoming.get(message_id, ()))

    def links_of(self, message_id: str) -> List[Link]:
        """Every link touching a message: outgoing first, then incoming."""
        return self.outgoing_links(message_id) + self.incoming_links(message_id)

    # =========================================================================
    # LINEAGE GRAPH QUERIES
    # =========================================================================

    def descendants_of(self, message_id: str) -> Set[str]:
        """
        All messages reachable from a message through child pointers.

        Terminates on cyclic data (rustworkx handles revisits).
        """
        idx = self._node_map.get(message_id)
        if idx is None:
            return set()
        return {self._inv_map[i] for i in rx.descendants(self._graph, idx)}

    def parent_cycles(self) -> List[List[str]]:
        """
        Groups of messages whose parent pointers loop back on themselves.

        Each entry lists the message ids of one cycle (a strongly connected
        component with more than one member, or a self-parented message).
        """
        cycles: List[List[str]] = []
        for component in rx.strongly_connected_components(self._graph):
            if len(component) > 1:
                cycles.append(sorted(self._inv_map[i] for i in component))
        for message in self._messages:
            if message.parent_id == message.id:
                cycles.append([message.id])
        return cycles

    def is_acyclic(self) -> bool:
        if any(m.parent_id == m.id for m in self._messages):
            return False
        return rx.is_directed_acyclic_graph(self._graph)

    def __len__(self) -> int:
        return self.message_count

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._by_id

    def __repr__(self) -> str:
        return f"MessageIndex(messages={self.message_count}, links={self.link_count})"
