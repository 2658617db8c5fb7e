"""
LINEAGE INFRASTRUCTURE - Collaborator Boundaries and Ambient Services

This package contains infrastructure components:
- config: TOML-backed engine and link store settings
- event_bus: Publisher-subscriber notifications for link mutations
- link_repository: The link mirror and its external LinkStore contract
- message_source: Read-only access to conversational records
"""

from infrastructure.config import LineageConfig, get_config, load_config
from infrastructure.event_bus import EventBus, EventType, GraphEvent, get_event_bus
from infrastructure.link_repository import (
    LinkRepository,
    LinkStore,
    InMemoryLinkStore,
    LinkRepositoryError,
    LinkStoreError,
    LinkStoreTimeoutError,
    LinkNotFoundError,
    BatchInsertError,
)
from infrastructure.message_source import MessageSource, InMemoryMessageSource

__all__ = [
    "LineageConfig",
    "get_config",
    "load_config",
    "EventBus",
    "EventType",
    "GraphEvent",
    "get_event_bus",
    "LinkRepository",
    "LinkStore",
    "InMemoryLinkStore",
    "LinkRepositoryError",
    "LinkStoreError",
    "LinkStoreTimeoutError",
    "LinkNotFoundError",
    "BatchInsertError",
    "MessageSource",
    "InMemoryMessageSource",
]
