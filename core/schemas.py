"""
LINEAGE SCHEMAS - The Grammar of the Message Graph

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure sentences).

This module defines the data structures that flow through the engine:
- Message: One conversational record (read-only, produced elsewhere)
- Link: A typed, optionally weighted relationship between two messages
- LinkDraft: The insert shape of a link before the store assigns an id
- GraphNode: A materialized position of a message in an assembled tree
- RequestGroup: All response candidates triggered by one user message
- Serialization helpers for store rows and snapshots

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. IMMUTABLE INPUTS: Message and Link are frozen; the engine never edits them
4. DERIVED OUTPUTS: GraphNode / RequestGroup are rebuilt, never patched
"""
import msgspec
from typing import Optional, Dict, Any, List, Tuple
from datetime import datetime, timezone
import uuid


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Generate a new UUID hex string for link IDs."""
    return uuid.uuid4().hex


_UNPARSEABLE = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a producer timestamp into an aware datetime.

    Accepts ISO8601 strings (with or without a trailing "Z") and datetime
    objects. Naive values are read as UTC.

    Returns:
        The parsed datetime, or None if the value cannot be read
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text[-1] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_sort_key(value: Any) -> Tuple[int, datetime]:
    """
    Sort key for created_at values.

    Unparseable timestamps sort after every parseable one. Equal keys keep
    their input order because Python's sort is stable.
    """
    parsed = parse_timestamp(value)
    if parsed is None:
        return (1, _UNPARSEABLE)
    return (0, parsed)


def blank_to_none(value: Optional[str]) -> Optional[str]:
    """Producers write both "" and null for a missing reference."""
    return value if value else None


# =============================================================================
# MESSAGE (The Conversational Record)
# =============================================================================

class Message(msgspec.Struct, kw_only=True, frozen=True):
    """
    One conversational record as stored by the chat backend.

    The engine treats messages as an arena keyed by id. parent_message_id
    is a weak back-reference: the parent may be missing, and the chain may
    even loop back on itself.
    """
    # === Identity ===
    id: str
    role: str                                    # MessageRole.value

    # === Content ===
    content: str = ""

    # === Lineage ===
    parent_message_id: Optional[str] = None      # Weak reference, not ownership
    request_group_id: Optional[str] = None       # Shared by all answers to one request

    # === Provenance ===
    created_at: str = msgspec.field(default_factory=now_utc)
    model_name: Optional[str] = None
    session_id: Optional[str] = None

    # === Extension Point ===
    metadata: Dict[str, Any] = msgspec.field(default_factory=dict)

    @property
    def parent_id(self) -> Optional[str]:
        """parent_message_id with blank values normalized to None."""
        return blank_to_none(self.parent_message_id)

    @property
    def group_id(self) -> Optional[str]:
        """request_group_id with blank values normalized to None."""
        return blank_to_none(self.request_group_id)


# =============================================================================
# LINK (The Relationship Record)
# =============================================================================

class Link(msgspec.Struct, kw_only=True, frozen=True):
    """
    A typed, directed relationship between two messages.

    Links are intentionally "thin". Both endpoints reference Message.id,
    but the store does not guarantee that either endpoint still exists.
    """
    # === Identity ===
    id: str
    source_message_id: str
    target_message_id: str
    link_type: str                               # LinkType.value (open vocabulary)

    # === Properties ===
    weight: Optional[float] = None               # Only meaningful for evaluation links

    # === Context ===
    metadata: Dict[str, Any] = msgspec.field(default_factory=dict)

    # === Provenance ===
    created_at: str = msgspec.field(default_factory=now_utc)

    def touches(self, message_id: str) -> bool:
        """True if the message is either endpoint of this link."""
        return self.source_message_id == message_id or self.target_message_id == message_id

    def with_weight(self, weight: Optional[float]) -> "Link":
        """Return a copy of this link carrying a new weight."""
        return msgspec.structs.replace(self, weight=weight)


class LinkDraft(msgspec.Struct, kw_only=True, frozen=True):
    """A link as submitted for insertion, before the store assigns an id."""
    source_message_id: str
    target_message_id: str
    link_type: str
    weight: Optional[float] = None
    metadata: Dict[str, Any] = msgspec.field(default_factory=dict)

    def to_link(self, link_id: Optional[str] = None, created_at: Optional[str] = None) -> Link:
        """Materialize the draft as a stored Link."""
        return Link(
            id=link_id or generate_id(),
            source_message_id=self.source_message_id,
            target_message_id=self.target_message_id,
            link_type=self.link_type,
            weight=self.weight,
            metadata=dict(self.metadata),
            created_at=created_at or now_utc(),
        )


# =============================================================================
# DERIVED STRUCTURES (Engine Output)
# =============================================================================

class GraphNode(msgspec.Struct, kw_only=True):
    """
    One message materialized at one position of an assembled tree.

    A GraphNode exclusively owns its children. The wrapped Message is a
    shared, read-only record.
    """
    message: Message
    children: List["GraphNode"] = msgspec.field(default_factory=list)
    links: List[Link] = msgspec.field(default_factory=list)
    depth: int = 0
    path_score: Optional[float] = None

    @property
    def id(self) -> str:
        return self.message.id


class AlternativePath(msgspec.Struct, kw_only=True, frozen=True):
    """A runner-up root score of a request group."""
    ordinal: int                                 # 1-based rank among alternatives
    score: float
    description: str = ""


class RequestGroup(msgspec.Struct, kw_only=True):
    """
    All response candidates triggered by one originating user message.

    id is the user message's request_group_id, or the user message's own
    id when the producer did not set one.
    """
    id: str
    user_message: Message
    nodes: List[GraphNode] = msgspec.field(default_factory=list)
    cross_chat_links: List[Link] = msgspec.field(default_factory=list)
    best_path_score: Optional[float] = None
    alternative_paths: List[AlternativePath] = msgspec.field(default_factory=list)


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled decoders, reused across the application
_encoder = msgspec.json.Encoder()
_message_list_decoder = msgspec.json.Decoder(type=List[Message])
_link_list_decoder = msgspec.json.Decoder(type=List[Link])


def decode_messages(data: bytes) -> List[Message]:
    """Decode a JSON array of message rows."""
    return _message_list_decoder.decode(data)


def decode_links(data: bytes) -> List[Link]:
    """Decode a JSON array of link rows."""
    return _link_list_decoder.decode(data)


def messages_from_rows(rows: List[Dict[str, Any]]) -> List[Message]:
    """Convert store rows (dicts) into Message structs."""
    return msgspec.convert(rows, type=List[Message])


def links_from_rows(rows: List[Dict[str, Any]]) -> List[Link]:
    """Convert store rows (dicts) into Link structs."""
    return msgspec.convert(rows, type=List[Link])


def encode(obj: Any) -> bytes:
    """Encode any schema object (or list of them) to JSON bytes."""
    return _encoder.encode(obj)
