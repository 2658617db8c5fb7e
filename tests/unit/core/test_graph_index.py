"""
Unit tests for core/graph_index.py - MessageIndex

Tests the snapshot lookups:
- Children ordered by created_at
- Outgoing / incoming link maps
- Fallback lookup for unparented group members
- Tolerance of duplicates, dangling parents and cycles
"""
from core.graph_index import MessageIndex


def test_empty_snapshot_yields_empty_maps():
    index = MessageIndex([], [])

    assert index.message_count == 0
    assert index.link_count == 0
    assert index.children_of("anything") == []
    assert index.links_of("anything") == []
    assert index.user_messages() == []
    assert index.is_acyclic()


def test_children_sorted_by_created_at(make_message):
    """Siblings are chronological, regardless of input order."""
    messages = [
        make_message("p", role="user", created_at="2024-01-01T08:00:00Z"),
        make_message("c1", parent="p", created_at="2024-01-01T10:00:00Z"),
        make_message("c2", parent="p", created_at="2024-01-01T09:00:00Z"),
    ]
    index = MessageIndex(messages, [])

    assert [m.id for m in index.children_of("p")] == ["c2", "c1"]


def test_children_with_equal_timestamps_keep_input_order(make_message):
    ts = "2024-01-01T10:00:00+00:00"
    messages = [
        make_message("p", role="user"),
        make_message("b", parent="p", created_at=ts),
        make_message("a", parent="p", created_at=ts),
    ]
    index = MessageIndex(messages, [])

    assert [m.id for m in index.children_of("p")] == ["b", "a"]


def test_unparseable_timestamps_sort_last(make_message):
    messages = [
        make_message("p", role="user"),
        make_message("broken", parent="p", created_at="not a date"),
        make_message("ok", parent="p", created_at="2030-01-01T00:00:00Z"),
    ]
    index = MessageIndex(messages, [])

    assert [m.id for m in index.children_of("p")] == ["ok", "broken"]


def test_mixed_naive_and_aware_timestamps_compare(make_message):
    messages = [
        make_message("p", role="user"),
        make_message("late", parent="p", created_at="2024-01-01T10:00:00+00:00"),
        make_message("early", parent="p", created_at="2024-01-01T09:00:00"),
    ]
    index = MessageIndex(messages, [])

    assert [m.id for m in index.children_of("p")] == ["early", "late"]


def test_link_maps(make_message, make_link):
    messages = [make_message("a"), make_message("b")]
    out_link = make_link("a", "b", "reply")
    in_link = make_link("b", "a", "evaluation", weight=3)
    index = MessageIndex(messages, [out_link, in_link])

    assert index.outgoing_links("a") == [out_link]
    assert index.incoming_links("a") == [in_link]
    assert index.links_of("a") == [out_link, in_link]


def test_links_to_unknown_messages_are_indexed(make_link):
    link = make_link("ghost", "phantom", "critique")
    index = MessageIndex([], [link])

    assert index.outgoing_links("ghost") == [link]
    assert index.incoming_links("phantom") == [link]


def test_duplicate_message_ids_first_wins(make_message):
    first = make_message("dup", content="first")
    second = make_message("dup", content="second")
    index = MessageIndex([first, second], [])

    assert index.message_count == 1
    assert index.get_message("dup").content == "first"


def test_blank_parent_is_treated_as_missing(make_message):
    messages = [make_message("r", parent="", group="g1")]
    index = MessageIndex(messages, [])

    assert index.children_of("") == []
    assert [m.id for m in index.unparented_in_group("g1")] == ["r"]


def test_unparented_in_group_excludes_users_and_parented(make_message):
    messages = [
        make_message("u", role="user", group="g"),
        make_message("orphan", group="g"),
        make_message("child", parent="u", group="g"),
    ]
    index = MessageIndex(messages, [])

    assert [m.id for m in index.unparented_in_group("g")] == ["orphan"]


def test_dangling_parent_ids(make_message):
    messages = [make_message("x", parent="missing"), make_message("y", parent="x")]
    index = MessageIndex(messages, [])

    assert index.dangling_parent_ids() == {"missing": ["x"]}
    assert index.lineage_graph.num_edges() == 1


def test_descendants_of(make_message):
    messages = [
        make_message("r"),
        make_message("a", parent="r"),
        make_message("b", parent="a"),
        make_message("other"),
    ]
    index = MessageIndex(messages, [])

    assert index.descendants_of("r") == {"a", "b"}
    assert index.descendants_of("unknown") == set()


def test_parent_cycles_detected(make_message):
    messages = [
        make_message("a", parent="b"),
        make_message("b", parent="a"),
        make_message("self", parent="self"),
    ]
    index = MessageIndex(messages, [])

    assert sorted(index.parent_cycles()) == [["a", "b"], ["self"]]
    assert not index.is_acyclic()


def test_position_and_contains(make_message):
    index = MessageIndex([make_message("a"), make_message("b")], [])

    assert index.position("b") == 1
    assert index.position("zzz") == -1
    assert "a" in index
    assert "zzz" not in index
    assert len(index) == 2
