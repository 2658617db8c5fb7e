"""
LINEAGE MESSAGE SOURCE - Read-Only Access to Conversational Records

The engine never writes messages. It only needs the full message
collection for a scope (one chat session plus, optionally, its
consultation session).
"""
from typing import Iterable, List, Optional, Sequence

from core.schemas import Message


class MessageSource:
    """
    External message provider.

    Implementations return every message of the given sessions. Order is
    significant: request groups are reported in this order.
    """

    async def fetch_messages(self, session_ids: Sequence[str]) -> List[Message]:
        raise NotImplementedError


class InMemoryMessageSource(MessageSource):
    """MessageSource over a fixed list of messages."""

    def __init__(self, messages: Optional[Iterable[Message]] = None):
        self._messages: List[Message] = list(messages or ())

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def add(self, message: Message) -> None:
        self._messages.append(message)

    async def fetch_messages(self, session_ids: Sequence[str]) -> List[Message]:
        wanted = {s for s in session_ids if s}
        return [m for m in self._messages if m.session_id in wanted]
