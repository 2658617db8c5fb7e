"""
LINEAGE CORE - Central exports for the message graph engine.

This module provides access to:
- Records and derived structures (Message, Link, GraphNode, RequestGroup)
- Snapshot indexing and tree assembly (MessageIndex, TreeAssembler)
- Scoring (node_score, path_score)
- Diagnostics (diagnose)

The public read surface lives in core.message_graph (MessageGraph); it
is not imported here because it depends on the infrastructure package.
"""

from core.ontology import MessageRole, LinkType
from core.schemas import (
    Message,
    Link,
    LinkDraft,
    GraphNode,
    RequestGroup,
    AlternativePath,
)
from core.graph_index import MessageIndex
from core.tree_assembler import TreeAssembler, flatten
from core.scoring import node_score, path_score
from core.request_grouper import RequestGrouper
from core.graph_invariants import LineageReport, diagnose

__all__ = [
    "MessageRole",
    "LinkType",
    "Message",
    "Link",
    "LinkDraft",
    "GraphNode",
    "RequestGroup",
    "AlternativePath",
    "MessageIndex",
    "TreeAssembler",
    "flatten",
    "node_score",
    "path_score",
    "RequestGrouper",
    "LineageReport",
    "diagnose",
]
