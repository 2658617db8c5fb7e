"""
LINEAGE ONTOLOGY - The Vocabulary of the Message Graph

If schemas.py is the Grammar (how records are structured),
ontology.py is the Dictionary (the words records may use).

This module defines:
- MessageRole: who authored a message (the user or one of the agent roles)
- LinkType: the relationships a link may express between two messages
- Link type families used by scoring and cross-session lookup

Key Principle: link_type is an OPEN-but-mostly-closed vocabulary.
Producers may write values this module does not know about yet. Such
links are kept and shown, but they never take part in scoring.
"""
from typing import FrozenSet, Literal
from enum import Enum


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class MessageRole(str, Enum):
    """Authors of messages."""
    USER = "user"
    ASSISTANT = "assistant"
    CRITIC = "critic"
    ARBITER = "arbiter"
    CONSULTANT = "consultant"
    MODERATOR = "moderator"
    ADVISOR = "advisor"
    ARCHIVIST = "archivist"
    ANALYST = "analyst"
    WEBHUNTER = "webhunter"
    PROMPTENGINEER = "promptengineer"
    FLOWREGULATOR = "flowregulator"
    TOOLSMITH = "toolsmith"
    GUIDE = "guide"
    TECHNOCRITIC = "technocritic"
    TECHNOARBITER = "technoarbiter"
    TECHNOMODERATOR = "technomoderator"


class LinkType(str, Enum):
    """Types of links between messages."""
    REPLY = "reply"                          # Conversational reply: response -> prompt
    CRITIQUE = "critique"                    # Critique: critic message -> criticised message
    EVALUATION = "evaluation"                # Scored judgement; weight carries the score
    FORWARD_TO_DCHAT = "forward_to_dchat"    # Main chat -> consultation session
    RETURN_FROM_DCHAT = "return_from_dchat"  # Consultation session -> main chat
    SUMMARY_OF = "summary_of"                # Summary -> summarised message


# =============================================================================
# Type Aliases
# =============================================================================

CrossChatScope = Literal["roots", "subtree"]
LinkColumn = Literal["source_message_id", "target_message_id"]


# =============================================================================
# LINK FAMILIES
# =============================================================================

# Only these links contribute weights to path scores
SCORING_LINK_TYPES: FrozenSet[str] = frozenset({LinkType.EVALUATION.value})

# Links that connect a message to an auxiliary consultation session
CROSS_CHAT_LINK_TYPES: FrozenSet[str] = frozenset({
    LinkType.FORWARD_TO_DCHAT.value,
    LinkType.RETURN_FROM_DCHAT.value,
})

_KNOWN_LINK_TYPES: FrozenSet[str] = frozenset(lt.value for lt in LinkType)


def is_known_link_type(link_type: str) -> bool:
    """Check if a string is a LinkType value this engine understands."""
    return link_type in _KNOWN_LINK_TYPES


def is_cross_chat_link_type(link_type: str) -> bool:
    return link_type in CROSS_CHAT_LINK_TYPES


def is_user_role(role: str) -> bool:
    return role == MessageRole.USER.value
