"""
LINEAGE MESSAGE GRAPH - The Public Read Surface

MessageGraph turns a flat message snapshot and the link mirror into
request groups of candidate trees, and answers navigation and scoring
queries over them.

Architecture:
    MessageSource ----> messages snapshot --+
                                            +--> MessageIndex --> RequestGrouper --> groups
    LinkStore <--> LinkRepository (mirror) -+         |
                                                      +--> TreeAssembler / scoring

Read/Write Asymmetry:
- Every read (get_groups, get_tree, get_flat_nodes, get_path_to,
  score_path, ...) is total: it returns a value, possibly empty or
  None-scored, and never raises on malformed data.
- Only the link mutations (create/update/delete) and refresh() talk to
  external stores and can raise.

Recompute Model:
    Derived views are rebuilt lazily, on the first read after the message
    snapshot or the link mirror changed. Rebuilding is O(n) and
    synchronous; there is no background work.

Usage:
    graph = MessageGraph(messages, LinkRepository(store))
    await graph.create_link("m1", "u1", "evaluation", weight=8)
    for group in graph.get_groups():
        print(group.id, group.best_path_score)
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import polars as pl

from core.graph_index import MessageIndex
from core.graph_invariants import LineageReport, diagnose
from core.request_grouper import RequestGrouper
from core.schemas import GraphNode, Link, LinkDraft, Message, RequestGroup
from core.scoring import path_score
from core.tree_assembler import TreeAssembler, flatten
from infrastructure.config import LineageConfig, get_config
from infrastructure.event_bus import EventBus, EventType, publish_event
from infrastructure.link_repository import InMemoryLinkStore, LinkRepository
from infrastructure.message_source import MessageSource


logger = logging.getLogger(__name__)


_NODE_FRAME_SCHEMA = {
    "group_id": pl.Utf8,
    "message_id": pl.Utf8,
    "parent_message_id": pl.Utf8,
    "role": pl.Utf8,
    "model_name": pl.Utf8,
    "depth": pl.Int64,
    "path_score": pl.Float64,
    "child_count": pl.Int64,
    "link_count": pl.Int64,
}


class MessageGraph:
    """
    Grouped candidate trees over one message snapshot and one link mirror.

    Thread Safety:
        NOT thread-safe. Designed for a single cooperative event loop.
    """

    def __init__(
        self,
        messages: Optional[Iterable[Message]] = None,
        links: Optional[LinkRepository] = None,
        message_source: Optional[MessageSource] = None,
        config: Optional[LineageConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self._config = config or get_config()
        self._event_bus = event_bus
        if links is None:
            links = LinkRepository(
                InMemoryLinkStore(),
                timeout_seconds=self._config.links.timeout_seconds,
                event_bus=event_bus,
            )
        self._links = links
        self._source = message_source

        self._messages: List[Message] = list(messages or ())
        self._messages_version = 0

        # Derived views, keyed by (messages_version, links.revision)
        self._computed_for: Optional[Tuple[int, int]] = None
        self._index: MessageIndex = MessageIndex([], [])
        self._groups: List[RequestGroup] = []
        self._groups_by_id: Dict[str, RequestGroup] = {}
        self._flat: List[GraphNode] = []

    # =========================================================================
    # INPUTS
    # =========================================================================

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def links(self) -> List[Link]:
        """Current link mirror."""
        return self._links.links

    @property
    def link_repository(self) -> LinkRepository:
        return self._links

    def set_messages(self, messages: Iterable[Message]) -> None:
        """Replace the message snapshot."""
        self._messages = list(messages)
        self._messages_version += 1

    async def refresh(self, session_id: Optional[str], dchat_session_id: Optional[str] = None) -> None:
        """
        Reload messages for a session (and its consultation session) and
        the links touching them.

        A missing session clears both snapshots.

        Raises:
            ValueError: No MessageSource configured
            LinkRepositoryError: The link store failed (link mirror unchanged)
        """
        if not session_id:
            self.set_messages([])
            await self._links.load([])
            return

        if self._source is None:
            raise ValueError("MessageGraph.refresh() needs a MessageSource")

        session_ids = [s for s in (session_id, dchat_session_id) if s]
        messages = await self._source.fetch_messages(session_ids)
        await self._links.load([m.id for m in messages])
        self.set_messages(messages)
        logger.info(f"Refreshed {len(messages)} message(s) for session(s) {session_ids}")
        publish_event(
            EventType.MESSAGES_LOADED,
            {"session_ids": session_ids, "message_count": len(messages)},
            source="message_graph",
            bus=self._event_bus,
        )

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    def get_groups(self) -> List[RequestGroup]:
        """All request groups, one per user message, in input order."""
        self._ensure_computed()
        return list(self._groups)

    def get_group(self, group_id: str) -> Optional[RequestGroup]:
        self._ensure_computed()
        return self._groups_by_id.get(group_id)

    def get_tree(self, group_id: str) -> List[GraphNode]:
        """Root-level nodes of a request group ([] if the group is unknown)."""
        group = self.get_group(group_id)
        return list(group.nodes) if group else []

    def get_flat_nodes(self) -> List[GraphNode]:
        """Every node of every group, depth-first, parents before children."""
        self._ensure_computed()
        return list(self._flat)

    def get_path_to(self, message_id: str) -> List[Message]:
        """
        Messages from the lineage root down to `message_id`.

        Walks parent pointers upward until a message has no parent, the
        parent is unknown, or a message repeats.

        Returns:
            [root, ..., target], or [] if the message is unknown
        """
        self._ensure_computed()
        path: List[Message] = []
        visited = set()
        current = self._index.get_message(message_id)

        while current is not None and current.id not in visited:
            visited.add(current.id)
            path.append(current)
            current = self._index.get_message(current.parent_id)

        path.reverse()
        return path

    def score_path(self, path: Sequence[Message], links: Optional[Sequence[Link]] = None) -> Optional[float]:
        """Mean evaluation weight over `path` (default links: the mirror)."""
        return path_score(path, self._links.links if links is None else links)

    def get_links_for_message(self, message_id: str) -> List[Link]:
        return self._links.links_for_message(message_id)

    def get_cross_chat_links(self) -> List[Link]:
        return self._links.cross_chat_links()

    def diagnose(self) -> LineageReport:
        """Anomalies in the current snapshot (never raises)."""
        self._ensure_computed()
        reached = {node.id for node in self._flat}
        report = diagnose(self._index, reached)
        report.metrics["group_count"] = len(self._groups)
        return report

    def to_polars_nodes(self) -> pl.DataFrame:
        """
        Export the flattened nodes to a Polars DataFrame.

        One row per materialized node, tagged with its request group.
        """
        self._ensure_computed()
        rows: Dict[str, List[Any]] = {column: [] for column in _NODE_FRAME_SCHEMA}
        for group in self._groups:
            for node in flatten(group.nodes):
                rows["group_id"].append(group.id)
                rows["message_id"].append(node.message.id)
                rows["parent_message_id"].append(node.message.parent_id)
                rows["role"].append(node.message.role)
                rows["model_name"].append(node.message.model_name)
                rows["depth"].append(node.depth)
                rows["path_score"].append(node.path_score)
                rows["child_count"].append(len(node.children))
                rows["link_count"].append(len(node.links))
        return pl.DataFrame(rows, schema=_NODE_FRAME_SCHEMA)

    # =========================================================================
    # MUTATION PASS-THROUGHS
    # =========================================================================

    async def create_link(
        self,
        source_id: str,
        target_id: str,
        link_type: str,
        weight: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Link:
        return await self._links.create_link(source_id, target_id, link_type, weight, metadata)

    async def create_links(self, items: Sequence[LinkDraft]) -> List[Link]:
        return await self._links.create_links(items)

    async def update_weight(self, link_id: str, weight: Optional[float]) -> Optional[Link]:
        return await self._links.update_weight(link_id, weight)

    async def delete_link(self, link_id: str) -> bool:
        return await self._links.delete_link(link_id)

    # =========================================================================
    # RECOMPUTE
    # =========================================================================

    def _ensure_computed(self) -> None:
        key = (self._messages_version, self._links.revision)
        if key == self._computed_for:
            return

        index = MessageIndex(self._messages, self._links.links)
        grouper = RequestGrouper(
            index,
            TreeAssembler(index),
            cross_chat_scope=self._config.graph.cross_chat_scope,
            alternative_label=self._config.graph.alternative_label,
        )
        groups = grouper.group()

        groups_by_id: Dict[str, RequestGroup] = {}
        flat: List[GraphNode] = []
        for group in groups:
            # Several user messages may share a request_group_id: first wins
            groups_by_id.setdefault(group.id, group)
            flat.extend(flatten(group.nodes))

        self._index = index
        self._groups = groups
        self._groups_by_id = groups_by_id
        self._flat = flat
        self._computed_for = key

        logger.debug(
            f"Recomputed graph: {len(groups)} group(s), {len(flat)} node(s) "
            f"from {index.message_count} message(s) and {index.link_count} link(s)"
        )
        publish_event(
            EventType.GRAPH_RECOMPUTED,
            {"group_count": len(groups), "node_count": len(flat)},
            source="message_graph",
            bus=self._event_bus,
        )

    def __repr__(self) -> str:
        return f"MessageGraph(messages={len(self._messages)}, links={len(self._links)})"
