"""
LINEAGE LINK REPOSITORY - The Mutation Surface around an External Link Store

The repository owns the in-memory link mirror that the read side scores
and groups against. It is the only writer of that mirror:

    caller --await--> LinkRepository --await--> LinkStore (remote)
                           |
                           +--> mirror updated ONLY after remote success
                           +--> GraphEvent published on the event bus

Failure Policy:
- Any remote failure (error, timeout, short batch result) raises a
  LinkRepositoryError subclass and leaves the mirror untouched.
- Batch creation is all-or-nothing for the mirror: either every created
  link is mirrored or none is.
- Failures are logged, then raised. They are never absorbed.

The store contract (LinkStore) is four async primitives. Lookups are
issued per column because real stores often cannot OR across the
source and target columns efficiently.
"""
import asyncio
import logging
import math
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import msgspec

from core.ontology import LinkColumn, is_cross_chat_link_type, is_known_link_type
from core.schemas import Link, LinkDraft, generate_id, now_utc
from infrastructure.event_bus import EventBus, EventType, get_event_bus, publish_event


logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class LinkRepositoryError(Exception):
    """Base exception for link mutations."""
    pass


class LinkStoreError(LinkRepositoryError):
    """Raised when the remote store rejects or fails an operation."""
    pass


class LinkStoreTimeoutError(LinkStoreError):
    """Raised when a store call exceeds the configured timeout."""
    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"Link store timed out after {timeout}s during {operation}")


class LinkNotFoundError(LinkRepositoryError):
    """Raised when the store reports that a link id does not exist."""
    def __init__(self, link_id: str):
        self.link_id = link_id
        super().__init__(f"Link not found: {link_id}")


class BatchInsertError(LinkStoreError):
    """Raised when a batch insert did not create every requested link."""
    def __init__(self, requested: int, created: int):
        self.requested = requested
        self.created = created
        super().__init__(f"Batch insert created {created} of {requested} link(s)")


# =============================================================================
# LINK STORE CONTRACT
# =============================================================================

_LINK_COLUMNS = ("source_message_id", "target_message_id")


class LinkStore:
    """
    External link storage, as seen by the repository.

    Implementations raise LinkStoreError (or LinkNotFoundError) on
    failure. Any other exception is wrapped by the repository.
    """

    async def select_links(self, column: LinkColumn, ids: Sequence[str]) -> List[Link]:
        """Links whose `column` value is in `ids`."""
        raise NotImplementedError

    async def insert_links(self, drafts: Sequence[LinkDraft]) -> List[Link]:
        """Insert every draft atomically and return the created links in order."""
        raise NotImplementedError

    async def update_link_weight(self, link_id: str, weight: Optional[float]) -> None:
        raise NotImplementedError

    async def delete_link(self, link_id: str) -> None:
        raise NotImplementedError


class InMemoryLinkStore(LinkStore):
    """
    Process-local LinkStore.

    Batch inserts are atomic: every draft is materialized before any row
    is committed.
    """

    def __init__(self, links: Optional[Iterable[Link]] = None):
        self._rows: Dict[str, Link] = {}
        for link in links or ():
            self._rows[link.id] = link

    @property
    def rows(self) -> List[Link]:
        return list(self._rows.values())

    async def select_links(self, column: LinkColumn, ids: Sequence[str]) -> List[Link]:
        if column not in _LINK_COLUMNS:
            raise LinkStoreError(f"Unknown link column: {column}")
        wanted = set(ids)
        return [link for link in self._rows.values() if getattr(link, column) in wanted]

    async def insert_links(self, drafts: Sequence[LinkDraft]) -> List[Link]:
        created_at = now_utc()
        created = [draft.to_link(generate_id(), created_at) for draft in drafts]
        for link in created:
            self._rows[link.id] = link
        return created

    async def update_link_weight(self, link_id: str, weight: Optional[float]) -> None:
        if link_id not in self._rows:
            raise LinkNotFoundError(link_id)
        self._rows[link_id] = self._rows[link_id].with_weight(weight)

    async def delete_link(self, link_id: str) -> None:
        if link_id not in self._rows:
            raise LinkNotFoundError(link_id)
        del self._rows[link_id]


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

DraftLike = Union[LinkDraft, Mapping[str, Any]]


def validate_weight(weight: Any) -> Optional[float]:
    """Normalize a weight to float, or raise ValueError."""
    if weight is None:
        return None
    if isinstance(weight, bool) or not isinstance(weight, (int, float)):
        raise ValueError(f"Link weight must be a number, got {type(weight).__name__}")
    if not math.isfinite(weight):
        raise ValueError(f"Link weight must be finite, got {weight}")
    return float(weight)


def make_draft(
    source_id: str,
    target_id: str,
    link_type: str,
    weight: Optional[float] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> LinkDraft:
    """Build a validated LinkDraft."""
    if not source_id or not target_id:
        raise ValueError("Links need both a source and a target message id")
    if not link_type:
        raise ValueError("Links need a link_type")
    if not is_known_link_type(link_type):
        logger.debug(f"Accepting link of unknown type {link_type!r} (non-scoring)")
    return LinkDraft(
        source_message_id=source_id,
        target_message_id=target_id,
        link_type=link_type,
        weight=validate_weight(weight),
        metadata=dict(metadata or {}),
    )


def coerce_draft(item: DraftLike) -> LinkDraft:
    """Accept a LinkDraft or a row-shaped mapping."""
    if not isinstance(item, LinkDraft):
        try:
            item = msgspec.convert(dict(item), type=LinkDraft)
        except msgspec.ValidationError as e:
            raise ValueError(f"Invalid link draft: {e}") from e
    return make_draft(
        item.source_message_id,
        item.target_message_id,
        item.link_type,
        item.weight,
        item.metadata,
    )


# =============================================================================
# LINK REPOSITORY (Single Writer of the Link Mirror)
# =============================================================================

class LinkRepository:
    """
    Mirror of the link table for one scope, kept in step with a LinkStore.

    Usage:
        repo = LinkRepository(InMemoryLinkStore())
        await repo.load(message_ids)
        link = await repo.create_link("m1", "u1", "evaluation", weight=8)
        await repo.update_weight(link.id, 9)

    Every mutation awaits the store first and touches the mirror only on
    success. `revision` increases on every mirror change so readers can
    cache derived views.
    """

    def __init__(
        self,
        store: LinkStore,
        timeout_seconds: Optional[float] = None,
        event_bus: Optional[EventBus] = None,
        links: Optional[Iterable[Link]] = None,
    ):
        """
        Args:
            store: The external link store
            timeout_seconds: Bound for each store call (default: config)
            event_bus: Bus for mutation events (default: the global bus)
            links: Optional previously fetched snapshot to seed the mirror
        """
        if timeout_seconds is None:
            from infrastructure.config import get_config
            timeout_seconds = get_config().links.timeout_seconds
        self._store = store
        self._timeout = timeout_seconds
        self._event_bus = event_bus
        self._links: List[Link] = list(links or ())
        self._revision = 0

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def store(self) -> LinkStore:
        return self._store

    @property
    def links(self) -> List[Link]:
        """Snapshot of the mirror."""
        return list(self._links)

    @property
    def revision(self) -> int:
        return self._revision

    def __len__(self) -> int:
        return len(self._links)

    # =========================================================================
    # READ HELPERS (mirror only)
    # =========================================================================

    def get_link(self, link_id: str) -> Optional[Link]:
        for link in self._links:
            if link.id == link_id:
                return link
        return None

    def links_for_message(self, message_id: str) -> List[Link]:
        return [link for link in self._links if link.touches(message_id)]

    def cross_chat_links(self) -> List[Link]:
        return [link for link in self._links if is_cross_chat_link_type(link.link_type)]

    # =========================================================================
    # FETCH
    # =========================================================================

    async def fetch_links_for_message_ids(self, message_ids: Iterable[str]) -> List[Link]:
        """
        Links touching any of `message_ids`, de-duplicated by id.

        Two lookups (source column, then target column), awaited one at a
        time. Does not modify the mirror.
        """
        ids = list(dict.fromkeys(i for i in message_ids if i))
        if not ids:
            return []

        by_source = await self._call(
            "fetch_links(source)", self._store.select_links("source_message_id", ids)
        )
        by_target = await self._call(
            "fetch_links(target)", self._store.select_links("target_message_id", ids)
        )

        merged: Dict[str, Link] = {}
        for link in list(by_source) + list(by_target):
            merged[link.id] = link
        return list(merged.values())

    async def load(self, message_ids: Iterable[str]) -> List[Link]:
        """Fetch links for `message_ids` and replace the mirror with them."""
        links = await self.fetch_links_for_message_ids(message_ids)
        self._replace(links)
        logger.info(f"Loaded {len(links)} link(s)")
        self._publish(EventType.LINKS_LOADED, {"link_count": len(links)})
        return list(links)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def create_link(
        self,
        source_id: str,
        target_id: str,
        link_type: str,
        weight: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Link:
        """
        Create one link remotely and mirror it.

        Raises:
            ValueError: Invalid arguments (nothing sent to the store)
            LinkRepositoryError: Store failure (mirror unchanged)
        """
        draft = make_draft(source_id, target_id, link_type, weight, metadata)
        created = await self._call("create_link", self._store.insert_links([draft]))
        if len(created) != 1:
            error = BatchInsertError(requested=1, created=len(created))
            logger.error(f"create_link failed: {error}")
            raise error

        link = created[0]
        self._links.append(link)
        self._bump()
        self._publish(EventType.LINK_CREATED, {
            "link_id": link.id,
            "link_type": link.link_type,
            "source_message_id": link.source_message_id,
            "target_message_id": link.target_message_id,
        })
        return link

    async def create_links(self, items: Sequence[DraftLike]) -> List[Link]:
        """
        Create several links in one store call.

        All-or-nothing: if the store fails, or returns fewer links than
        requested, nothing is mirrored and the batch raises.

        Raises:
            ValueError: Any item is invalid (nothing sent to the store)
            LinkRepositoryError: Store failure (mirror unchanged)
        """
        drafts = [coerce_draft(item) for item in items]
        if not drafts:
            return []

        created = list(await self._call("create_links", self._store.insert_links(drafts)))
        if len(created) != len(drafts):
            error = BatchInsertError(requested=len(drafts), created=len(created))
            logger.error(f"create_links failed: {error}")
            raise error

        self._links.extend(created)
        self._bump()
        self._publish(EventType.LINKS_CREATED, {
            "link_ids": [link.id for link in created],
            "count": len(created),
        })
        return created

    async def update_weight(self, link_id: str, weight: Optional[float]) -> Optional[Link]:
        """
        Update a link's weight remotely, then in the mirror.

        Returns:
            The updated mirrored link, or None if the link is not mirrored

        Raises:
            ValueError: Non-numeric or non-finite weight
            LinkRepositoryError: Store failure (mirror unchanged)
        """
        value = validate_weight(weight)
        await self._call("update_weight", self._store.update_link_weight(link_id, value))

        updated: Optional[Link] = None
        for i, link in enumerate(self._links):
            if link.id == link_id:
                updated = link.with_weight(value)
                self._links[i] = updated
        if updated is not None:
            self._bump()
        self._publish(EventType.LINK_UPDATED, {"link_id": link_id, "weight": value})
        return updated

    async def delete_link(self, link_id: str) -> bool:
        """
        Delete a link remotely, then from the mirror.

        Returns:
            True if the link was present in the mirror

        Raises:
            LinkRepositoryError: Store failure (mirror unchanged)
        """
        await self._call("delete_link", self._store.delete_link(link_id))

        remaining = [link for link in self._links if link.id != link_id]
        removed = len(remaining) != len(self._links)
        if removed:
            self._links = remaining
            self._bump()
        self._publish(EventType.LINK_DELETED, {"link_id": link_id})
        return removed

    # =========================================================================
    # INTERNAL
    # =========================================================================

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        """Await one store call with the configured timeout and error policy."""
        try:
            if self._timeout and self._timeout > 0:
                return await asyncio.wait_for(awaitable, timeout=self._timeout)
            return await awaitable
        except asyncio.TimeoutError as e:
            error = LinkStoreTimeoutError(operation, self._timeout)
            logger.error(f"{operation} failed: {error}")
            raise error from e
        except LinkRepositoryError as e:
            logger.error(f"{operation} failed: {e}")
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            raise LinkStoreError(f"{operation} failed: {e}") from e

    def _replace(self, links: List[Link]) -> None:
        self._links = list(links)
        self._bump()

    def _bump(self) -> None:
        self._revision += 1

    def _publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        publish_event(
            event_type,
            payload,
            source="link_repository",
            bus=self._event_bus or get_event_bus(),
        )
