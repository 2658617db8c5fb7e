"""
Pytest configuration and shared fixtures for the lineage test suite.
"""
import sys
from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


_BASE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset global state before each test to ensure isolation."""
    from infrastructure.config import LineageConfig, set_config
    from infrastructure.event_bus import reset_event_bus

    # Defaults, independent of config/lineage.toml
    set_config(LineageConfig())
    reset_event_bus()

    yield

    set_config(None)
    reset_event_bus()


@pytest.fixture
def make_message():
    """
    Factory for Message records.

    created_at defaults to one minute after the previous message, so input
    order is also chronological unless a test says otherwise.
    """
    from core.schemas import Message

    ticks = count()

    def _make(id, role="assistant", parent=None, group=None, created_at=None, **kwargs):
        if created_at is None:
            created_at = (_BASE_TIME + timedelta(minutes=next(ticks))).isoformat()
        return Message(
            id=id,
            role=role,
            content=kwargs.pop("content", f"content of {id}"),
            parent_message_id=parent,
            request_group_id=group,
            created_at=created_at,
            **kwargs
        )

    return _make


@pytest.fixture
def make_link():
    """Factory for Link records with sequential ids."""
    from core.schemas import Link

    ids = count(1)

    def _make(source, target, link_type="evaluation", weight=None, **kwargs):
        return Link(
            id=kwargs.pop("id", f"link-{next(ids)}"),
            source_message_id=source,
            target_message_id=target,
            link_type=link_type,
            weight=weight,
            **kwargs
        )

    return _make


@pytest.fixture
def link_store():
    """Provide an empty in-memory link store."""
    from infrastructure.link_repository import InMemoryLinkStore
    return InMemoryLinkStore()


@pytest.fixture
def link_repo(link_store):
    """Provide a LinkRepository over the in-memory store."""
    from infrastructure.link_repository import LinkRepository
    return LinkRepository(link_store, timeout_seconds=1.0)


@pytest.fixture
def scenario_messages(make_message):
    """One user request answered by an assistant and a critic."""
    return [
        make_message("u1", role="user"),
        make_message("m1", role="assistant", parent="u1"),
        make_message("m2", role="critic", parent="u1"),
    ]


@pytest.fixture
def scenario_links(make_link):
    """Evaluation scores for the scenario responses (8 and 6)."""
    return [
        make_link("m1", "u1", "evaluation", weight=8),
        make_link("m2", "u1", "evaluation", weight=6),
    ]
