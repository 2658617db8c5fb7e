"""
Integration tests: MessageGraph over a message source and a link store.

Exercises the full workflow a chat view goes through:
1. Refresh a session and its consultation session
2. Read groups, trees, paths and scores
3. Add evaluations through the facade and see scores move
4. Refresh again after new messages arrive
5. Export and diagnose the assembled view
"""
import pytest

from core.message_graph import MessageGraph
from core.schemas import LinkDraft, decode_messages, encode
from infrastructure.config import GraphConfig, LineageConfig
from infrastructure.event_bus import EventType, get_event_bus
from infrastructure.link_repository import InMemoryLinkStore, LinkRepository
from infrastructure.message_source import InMemoryMessageSource


@pytest.fixture
def chat(make_message, make_link):
    """
    A main chat with one multi-agent request, one plain request, and a
    consultation in a side session.
    """
    messages = [
        make_message("u1", role="user", group="req-1", session_id="main"),
        make_message("m1", role="assistant", parent="u1", group="req-1", session_id="main"),
        make_message("m2", role="critic", parent="u1", group="req-1", session_id="main"),
        make_message("m3", role="assistant", group="req-1", session_id="main"),
        make_message("m1a", role="arbiter", parent="m1", session_id="main"),
        make_message("u2", role="user", session_id="main"),
        make_message("r", role="assistant", parent="u2", session_id="main"),
        make_message("d1", role="consultant", session_id="side"),
        make_message("old", role="user", session_id="archive"),
    ]
    links = [
        make_link("m1", "u1", "evaluation", weight=8),
        make_link("m2", "u1", "evaluation", weight=6),
        make_link("m3", "u1", "evaluation", weight=9),
        make_link("m1", "d1", "forward_to_dchat"),
        make_link("d1", "m1", "return_from_dchat"),
        make_link("m1a", "m1", "critique"),
        make_link("r", "u2", "evaluation", weight=5),
        make_link("old", "old", "reply"),
    ]
    source = InMemoryMessageSource(messages)
    store = InMemoryLinkStore(links)
    return source, store


@pytest.fixture
def graph(chat):
    source, store = chat
    return MessageGraph(
        links=LinkRepository(store, timeout_seconds=1.0),
        message_source=source,
    )


@pytest.mark.asyncio
async def test_full_refresh_and_read(graph):
    await graph.refresh("main", "side")

    assert len(graph.messages) == 8
    assert sorted(l.id for l in graph.links) == [f"link-{i}" for i in range(1, 8)]

    groups = graph.get_groups()
    assert [g.id for g in groups] == ["req-1", "u2"]

    request = graph.get_group("req-1")
    assert [n.id for n in request.nodes] == ["m1", "m2", "m3"]
    assert [n.path_score for n in request.nodes] == [8.0, 6.0, 9.0]
    assert request.best_path_score == 9.0
    assert [(a.ordinal, a.score) for a in request.alternative_paths] == [(1, 8.0), (2, 6.0)]
    assert [l.id for l in request.cross_chat_links] == ["link-4", "link-5"]

    m1 = request.nodes[0]
    assert [c.id for c in m1.children] == ["m1a"]
    assert m1.children[0].depth == 2
    assert m1.children[0].path_score is None

    assert [n.id for n in graph.get_flat_nodes()] == ["m1", "m1a", "m2", "m3", "r"]


@pytest.mark.asyncio
async def test_path_scoring_across_the_lineage(graph):
    await graph.refresh("main", "side")

    path = graph.get_path_to("m1a")

    assert [m.id for m in path] == ["u1", "m1", "m1a"]
    # Every evaluation touching u1, m1 or m1a
    assert graph.score_path(path) == pytest.approx((8 + 6 + 9) / 3)


@pytest.mark.asyncio
async def test_evaluations_move_scores_and_notify(graph):
    await graph.refresh("main", "side")
    recomputes = []
    created = []
    get_event_bus().subscribe(EventType.GRAPH_RECOMPUTED, recomputes.append)
    get_event_bus().subscribe(EventType.LINK_CREATED, created.append)

    graph.get_groups()
    link = await graph.create_link("m1a", "m2", "evaluation", weight=10)
    request = graph.get_group("req-1")

    assert created[0].payload["link_id"] == link.id
    assert len(recomputes) == 2
    assert [n.path_score for n in request.nodes] == [8.0, 8.0, 9.0]
    assert request.nodes[0].children[0].path_score == 10.0
    assert [a.score for a in request.alternative_paths] == [8.0, 8.0]


@pytest.mark.asyncio
async def test_second_refresh_picks_up_new_messages_and_links(graph, chat, make_message):
    source, store = chat
    await graph.refresh("main", "side")
    await graph.create_links([
        LinkDraft(source_message_id="m2", target_message_id="d1", link_type="forward_to_dchat"),
    ])

    source.add(make_message("m4", role="assistant", parent="u1", session_id="main"))
    assert len(source.messages) == 10
    await graph.refresh("main", "side")

    request = graph.get_group("req-1")
    assert [n.id for n in request.nodes] == ["m1", "m2", "m3", "m4"]
    assert len(request.cross_chat_links) == 3
    assert len(graph.links) == 8


@pytest.mark.asyncio
async def test_subtree_scope_includes_deep_consultations(chat):
    source, store = chat
    store_links = store.rows
    graph = MessageGraph(
        links=LinkRepository(store, timeout_seconds=1.0),
        message_source=source,
        config=LineageConfig(graph=GraphConfig(cross_chat_scope="subtree")),
    )
    await graph.refresh("main", "side")
    await graph.create_link("m1a", "d1", "forward_to_dchat")

    request = graph.get_group("req-1")

    assert len(store_links) == 8
    assert len(request.cross_chat_links) == 3
    assert len(graph.get_cross_chat_links()) == 3


@pytest.mark.asyncio
async def test_export_and_diagnose(graph):
    await graph.refresh("main", "side")

    df = graph.to_polars_nodes()
    report = graph.diagnose()

    assert df.height == 5
    assert df.filter(df["group_id"] == "u2")["message_id"].to_list() == ["r"]
    assert df.filter(df["message_id"] == "m1")["link_count"].to_list() == [4]
    # The consultant message is reachable only through links
    assert report.by_check("orphan")[0].message_ids == ["d1"]
    assert report.metrics["is_dag"] is True


@pytest.mark.asyncio
async def test_snapshot_round_trip_builds_same_view(graph):
    await graph.refresh("main", "side")

    restored = MessageGraph(
        decode_messages(encode(graph.messages)),
        LinkRepository(InMemoryLinkStore(), timeout_seconds=1.0, links=graph.links),
    )

    assert [n.id for n in restored.get_flat_nodes()] == [n.id for n in graph.get_flat_nodes()]
    assert restored.get_group("req-1").best_path_score == 9.0
