"""Tests for inherited property resolution."""
import logging
import uuid

from notetree.observability import metrics
from notetree.services.property_resolver import PropertyResolver


def _sorted_values(resolved, name):
    return sorted(v["value"] for v in resolved[name])


class TestBasicResolution:
    """Resolution over well-formed chains."""

    def test_no_ancestors_returns_empty(self, resolver, make_note, add_props):
        """A top-level note inherits nothing, even if it has properties itself."""
        root = make_note("root {color::blue}")
        add_props(root, ("size", "large"))
        assert resolver.resolve_ancestor_properties(root) == {}

    def test_missing_note_returns_empty(self, resolver):
        assert resolver.resolve_ancestor_properties(str(uuid.uuid4())) == {}

    def test_own_properties_are_not_inherited(self, resolver, make_note, add_props):
        parent = make_note("parent")
        child = make_note("child", parent=parent)
        add_props(child, ("own", "x"))
        assert resolver.resolve_ancestor_properties(child) == {}

    def test_grandparent_and_parent(self, resolver, make_note, add_props):
        """Properties of every ancestor are collected, nearest first."""
        grandparent = make_note("gp")
        parent = make_note("p", parent=grandparent)
        child = make_note("c", parent=parent)
        add_props(grandparent, ("size", "large"))
        add_props(parent, ("color", "red"))

        resolved = resolver.resolve_ancestor_properties(child)

        assert resolved == {
            "color": [{"value": "red"}],
            "size": [{"value": "large"}],
        }
        assert list(resolved) == ["color", "size"]

    def test_duplicate_values_collapse(self, resolver, make_note, add_props):
        """A (name, value) pair seen on several ancestors appears once."""
        grandparent = make_note("gp")
        parent = make_note("p", parent=grandparent)
        child = make_note("c", parent=parent)
        add_props(grandparent, ("tag", "important"), ("status", "pending"))
        add_props(parent, ("tag", "urgent"), ("tag", "important"))

        resolved = resolver.resolve_ancestor_properties(child)

        assert _sorted_values(resolved, "tag") == ["important", "urgent"]
        assert resolved["status"] == [{"value": "pending"}]

    def test_properties_from_content_are_inherited(self, resolver, make_note):
        parent = make_note("Project {status::active} {owner::sam}")
        child = make_note("task", parent=parent)
        resolved = resolver.resolve_ancestor_properties(child)
        assert resolved == {
            "status": [{"value": "active"}],
            "owner": [{"value": "sam"}],
        }

    def test_multi_valued_property_keeps_order(self, resolver, make_note, add_props):
        parent = make_note("p")
        child = make_note("c", parent=parent)
        add_props(parent, ("tag", "b"), ("tag", "a"), ("tag", "c"))
        resolved = resolver.resolve_ancestor_properties(child)
        assert resolved["tag"] == [{"value": "b"}, {"value": "a"}, {"value": "c"}]


class TestVisibility:
    """Weight-based filtering of internal properties."""

    def test_internal_excluded_by_default(self, resolver, make_note, add_props):
        parent = make_note("p")
        child = make_note("c", parent=parent)
        add_props(parent, ("public", "true", 0), ("internal_id", "abc", 3))

        assert resolver.resolve_ancestor_properties(child) == {
            "public": [{"value": "true"}]
        }

    def test_internal_included_on_request(self, resolver, make_note, add_props):
        parent = make_note("p")
        child = make_note("c", parent=parent)
        add_props(parent, ("public", "true", 0), ("internal_id", "abc", 3))

        resolved = resolver.resolve_ancestor_properties(child, include_internal=True)

        assert resolved == {
            "public": [{"value": "true"}],
            "internal_id": [{"value": "abc"}],
        }

    def test_system_log_weight_is_hidden(self, resolver, make_note):
        parent = make_note("p {seen::::today} {color::blue}")
        child = make_note("c", parent=parent)
        assert resolver.resolve_ancestor_properties(child) == {"color": [{"value": "blue"}]}
        assert "seen" in resolver.resolve_ancestor_properties(child, include_internal=True)


class TestCorruptChains:
    """Cycles and broken links end the walk instead of failing it."""

    def test_two_note_cycle_terminates(self, resolver, make_note, add_props, set_parent):
        a = make_note("a")
        b = make_note("b", parent=a)
        set_parent(a, b)
        add_props(a, ("from_a", "1"))
        add_props(b, ("from_b", "2"))

        # Walk from a: b, then a again (visited) -> stop
        assert resolver.resolve_ancestor_properties(a) == {"from_b": [{"value": "2"}]}
        assert resolver.resolve_ancestor_properties(b) == {"from_a": [{"value": "1"}]}

    def test_self_loop_terminates(self, resolver, make_note, add_props, set_parent):
        a = make_note("a")
        set_parent(a, a)
        add_props(a, ("x", "1"))
        assert resolver.resolve_ancestor_properties(a) == {}

    def test_cycle_above_the_note(self, resolver, make_note, add_props, set_parent):
        """A loop between ancestors keeps what was collected before it."""
        top = make_note("top")
        middle = make_note("middle", parent=top)
        leaf = make_note("leaf", parent=middle)
        set_parent(top, middle)
        add_props(top, ("level", "top"))
        add_props(middle, ("level", "middle"))

        resolved = resolver.resolve_ancestor_properties(leaf)

        assert resolved == {"level": [{"value": "middle"}, {"value": "top"}]}

    def test_inactive_ancestor_stops_walk(self, store, resolver, make_note, add_props):
        grandparent = make_note("gp")
        parent = make_note("p", parent=grandparent)
        child = make_note("c", parent=parent)
        add_props(grandparent, ("size", "large"))
        add_props(parent, ("color", "red"))
        with store.transaction() as session:
            store.update_note(session, parent, {"active": False})

        assert resolver.resolve_ancestor_properties(child) == {}

    def test_missing_ancestor_stops_walk(self, resolver, make_note, add_props, dangle_parent):
        parent = make_note("p")
        child = make_note("c", parent=parent)
        add_props(parent, ("color", "red"))
        dangle_parent(parent, str(uuid.uuid4()))

        assert resolver.resolve_ancestor_properties(child) == {"color": [{"value": "red"}]}

    def test_hop_budget_ends_long_chain(self, store, make_note, add_props, caplog):
        ids = [make_note("n0")]
        for i in range(1, 6):
            ids.append(make_note(f"n{i}", parent=ids[-1]))
        for i, note_id in enumerate(ids):
            add_props(note_id, ("depth", str(i)))

        short = PropertyResolver(store, max_hops=2)
        with caplog.at_level(logging.WARNING, logger="notetree"):
            resolved = short.resolve_ancestor_properties(ids[-1])

        assert resolved == {"depth": [{"value": "4"}, {"value": "3"}]}
        assert "stopped after 2 hops" in caplog.text


class TestSessionAndMetrics:
    """Reading through a caller's session and recording timings."""

    def test_sees_uncommitted_writes_through_session(self, store, resolver, page):
        with store.transaction() as session:
            parent = store.create_note(session, page.id, content="{color::green}")
            child = store.create_note(session, page.id, parent_note_id=parent.id)
            resolved = resolver.resolve_ancestor_properties(child.id, session=session)
        assert resolved == {"color": [{"value": "green"}]}

    def test_records_metrics(self, resolver, make_note):
        note_id = make_note("n")
        resolver.resolve_ancestor_properties(note_id)
        recorded = metrics.get_metrics()
        assert recorded["resolve_ancestor_properties"]["count"] == 1
        assert recorded["resolve_ancestor_properties"]["success_count"] == 1
