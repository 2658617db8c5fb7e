"""
LINEAGE PATH SCORER - Aggregate Scores from Evaluation Links

Two forms of the same aggregate:
- node_score: mean weight of the evaluation links touching ONE message
- path_score: mean weight of the evaluation links touching ANY message
  of an arbitrary path

Both return None when nothing qualifies. None means "not evaluated",
which is not the same thing as a score of 0.0.

Pure functions: no state, no error conditions.
"""
from typing import Iterable, List, Optional

from core.ontology import SCORING_LINK_TYPES
from core.schemas import Link, Message


def is_scoring_link(link: Link) -> bool:
    """True if the link carries a weight that counts towards scores."""
    return link.link_type in SCORING_LINK_TYPES and link.weight is not None


def mean_weight(links: Iterable[Link]) -> Optional[float]:
    """Mean weight of the scoring links among `links`, or None."""
    weights = [link.weight for link in links if is_scoring_link(link)]
    if not weights:
        return None
    return sum(weights) / len(weights)


def node_score(links: Iterable[Link]) -> Optional[float]:
    """
    Node-local score.

    Args:
        links: Every link where the node's message is source or target

    Returns:
        Mean evaluation weight, or None if the node was never evaluated
    """
    return mean_weight(links)


def path_score(path: Iterable[Message], links: Iterable[Link]) -> Optional[float]:
    """
    Score an arbitrary path of messages.

    A link counts once if either of its endpoints lies on the path.

    Args:
        path: Messages on the path (order does not matter)
        links: The full link list to draw evaluations from

    Returns:
        Mean evaluation weight over the path, or None
    """
    path_ids = {message.id for message in path}
    if not path_ids:
        return None

    relevant: List[Link] = [
        link for link in links
        if link.source_message_id in path_ids or link.target_message_id in path_ids
    ]
    return mean_weight(relevant)
