"""
LINEAGE TREE ASSEMBLER - One Candidate's Subtree from Parent Pointers

Source data cannot be assumed acyclic: parent pointers are written by
several producers and may loop. The assembler therefore threads one
visited set through the whole subtree:

- A message seen for the first time is materialized with its children,
  its links and its node-local score.
- A message seen again becomes a degenerate leaf (no children, no links,
  no score). This is not an error.

Because the visited set is shared across the subtree, a diamond
(two parents pointing at the same child) collapses to a single
materialization at the first encounter in depth-first pre-order.

The walk uses an explicit stack so very deep chains cannot exhaust the
interpreter's recursion limit. Visiting order is identical to the
recursive definition.
"""
from typing import List, Optional, Set, Tuple

from core.graph_index import MessageIndex
from core.schemas import GraphNode, Message
from core.scoring import node_score


class TreeAssembler:
    """
    Builds GraphNode trees over a MessageIndex.

    Usage:
        assembler = TreeAssembler(index)
        root = assembler.build(message, depth=1, visited=set())
    """

    def __init__(self, index: MessageIndex):
        self._index = index

    @property
    def index(self) -> MessageIndex:
        return self._index

    def build(self, message: Message, depth: int = 0, visited: Optional[Set[str]] = None) -> GraphNode:
        """
        Assemble the subtree rooted at `message`.

        Args:
            message: The subtree root
            depth: Depth assigned to the root; children get depth + 1
            visited: Ids already materialized in this traversal. Mutated.
                     Pass a fresh set per independent tree.

        Returns:
            The root GraphNode
        """
        if visited is None:
            visited = set()

        root_holder: List[GraphNode] = []
        # (message, depth, parent's children list)
        stack: List[Tuple[Message, int, List[GraphNode]]] = [(message, depth, root_holder)]

        while stack:
            current, current_depth, siblings = stack.pop()

            if current.id in visited:
                siblings.append(GraphNode(message=current, depth=current_depth))
                continue
            visited.add(current.id)

            links = self._index.links_of(current.id)
            node = GraphNode(
                message=current,
                links=links,
                depth=current_depth,
                path_score=node_score(links),
            )
            siblings.append(node)

            # Reversed so the earliest child is popped (and fully built) first
            for child in reversed(self._index.children_of(current.id)):
                stack.append((child, current_depth + 1, node.children))

        return root_holder[0]

    def build_many(self, roots: List[Message], depth: int = 1) -> List[GraphNode]:
        """Assemble several independent trees, each with a fresh visited set."""
        return [self.build(root, depth, set()) for root in roots]


def flatten(nodes: List[GraphNode]) -> List[GraphNode]:
    """Depth-first, parent-before-children flatten of a forest."""
    flat: List[GraphNode] = []
    stack: List[GraphNode] = list(reversed(nodes))
    while stack:
        node = stack.pop()
        flat.append(node)
        stack.extend(reversed(node.children))
    return flat
