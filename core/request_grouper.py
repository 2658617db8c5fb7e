"""
LINEAGE REQUEST GROUPER - One Candidate Tree per User Request

Partitions a message snapshot into RequestGroups, one per user message,
and ranks each group's root-level candidates.

Root selection (both rules are required; producers are inconsistent
about which field they populate):
1. Messages whose parent_message_id is the user message's id
2. Fallback for data predating lineage tracking: non-user messages that
   share the group id and have no parent at all

Ranking uses each root's OWN node-local score (the "first impression" of
a candidate), not an aggregate over its subtree.
"""
import logging
from typing import Dict, List, Optional, Set, Tuple

from core.graph_index import MessageIndex
from core.ontology import CrossChatScope, is_cross_chat_link_type
from core.schemas import AlternativePath, GraphNode, Link, Message, RequestGroup
from core.tree_assembler import TreeAssembler


logger = logging.getLogger(__name__)


class RequestGrouper:
    """
    Builds RequestGroups over one snapshot.

    Usage:
        grouper = RequestGrouper(index)
        groups = grouper.group()
    """

    def __init__(
        self,
        index: MessageIndex,
        assembler: Optional[TreeAssembler] = None,
        cross_chat_scope: CrossChatScope = "roots",
        alternative_label: str = "Alternative path {ordinal}",
    ):
        self._index = index
        self._assembler = assembler or TreeAssembler(index)
        self._cross_chat_scope = cross_chat_scope
        self._alternative_label = alternative_label
        self._cross_chat_links: List[Link] = [
            link for link in index.links if is_cross_chat_link_type(link.link_type)
        ]

    def group(self) -> List[RequestGroup]:
        """One RequestGroup per user message, in input order."""
        groups = [self.build_group(user) for user in self._index.user_messages()]
        logger.debug(
            f"Grouped {self._index.message_count} messages into {len(groups)} request group(s)"
        )
        return groups

    def build_group(self, user_message: Message) -> RequestGroup:
        group_id = user_message.group_id or user_message.id
        roots = self.response_roots(user_message, group_id)

        # Fresh visited set per root: two roots may share a descendant
        nodes = self._assembler.build_many(roots, depth=1)

        member_ids = self._member_ids(user_message, roots)
        cross_chat = [
            link for link in self._cross_chat_links
            if link.source_message_id in member_ids or link.target_message_id in member_ids
        ]

        best, alternatives = self.rank(nodes)
        return RequestGroup(
            id=group_id,
            user_message=user_message,
            nodes=nodes,
            cross_chat_links=cross_chat,
            best_path_score=best,
            alternative_paths=alternatives,
        )

    def response_roots(self, user_message: Message, group_id: str) -> List[Message]:
        """Root-level responses of a request, de-duplicated, in input order."""
        candidates: Dict[str, Message] = {}
        for message in self._index.children_of(user_message.id):
            candidates.setdefault(message.id, message)
        for message in self._index.unparented_in_group(group_id):
            candidates.setdefault(message.id, message)
        return sorted(candidates.values(), key=lambda m: self._index.position(m.id))

    def rank(self, nodes: List[GraphNode]) -> Tuple[Optional[float], List[AlternativePath]]:
        """
        Rank root-level candidates by their node-local score.

        Returns:
            (best_path_score, alternative_paths). Unscored roots are ignored.
        """
        scores = sorted(
            (node.path_score for node in nodes if node.path_score is not None),
            reverse=True,
        )
        if not scores:
            return None, []

        alternatives = [
            AlternativePath(
                ordinal=ordinal,
                score=score,
                description=self._alternative_label.format(ordinal=ordinal),
            )
            for ordinal, score in enumerate(scores[1:], start=1)
        ]
        return scores[0], alternatives

    def _member_ids(self, user_message: Message, roots: List[Message]) -> Set[str]:
        member_ids = {user_message.id}
        member_ids.update(root.id for root in roots)
        if self._cross_chat_scope == "subtree":
            for root in roots:
                member_ids.update(self._index.descendants_of(root.id))
        return member_ids
