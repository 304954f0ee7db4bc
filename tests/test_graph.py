"""Tests for connected components over a key index."""

from helpdesk_tenants.graph import build_reverse_index, connected_components


def as_sets(components):
    return {frozenset(c) for c in components}


class TestBuildReverseIndex:
    """Tests for the reverse index."""

    def test_maps_keys_to_nodes(self):
        """Test each key lists the nodes exhibiting it, in first-seen order."""
        index = build_reverse_index({"a": ["k1", "k2"], "b": ["k2"], "c": []})
        assert index == {"k1": ["a"], "k2": ["a", "b"]}

    def test_no_duplicate_nodes(self):
        """Test a node repeating a key is listed once."""
        index = build_reverse_index({"a": ["k1", "k1"]})
        assert index == {"k1": ["a"]}

    def test_none_keys_ignored(self):
        """Test None keys are not indexed."""
        assert build_reverse_index({"a": [None]}) == {}


class TestConnectedComponents:
    """Tests for the traversal."""

    def test_transitive_chain(self):
        """Test A~B and B~C put A, B and C together."""
        components = connected_components({"A": ["x"], "B": ["x", "y"], "C": ["y"]})
        assert as_sets(components) == {frozenset("ABC")}

    def test_disjoint(self):
        """Test unrelated nodes stay apart and isolated nodes are singletons."""
        components = connected_components({"A": ["x"], "B": ["x"], "C": ["z"], "D": []})
        assert as_sets(components) == {frozenset("AB"), frozenset("C"), frozenset("D")}

    def test_partition_of_nodes(self):
        """Test every node appears in exactly one component."""
        node_keys = {n: [n % 7, (n * 3) % 11] for n in range(50)}
        components = connected_components(node_keys)
        flat = [n for c in components for n in c]
        assert sorted(flat) == list(range(50))

    def test_long_chain_no_recursion_limit(self):
        """Test a chain far deeper than the recursion limit."""
        size = 5000
        node_keys = {i: [i, i + 1] for i in range(size)}
        components = connected_components(node_keys)
        assert len(components) == 1
        assert len(components[0]) == size

    def test_discovery_order(self):
        """Test components start from the first unvisited node."""
        components = connected_components({"A": ["x"], "B": ["y"], "C": ["x"]})
        assert components[0][0] == "A"
        assert components[0] == ["A", "C"]
        assert components[1] == ["B"]

    def test_order_independent_grouping(self):
        """Test grouping does not depend on node order."""
        forward = {"A": ["x"], "B": ["x", "y"], "C": ["y"], "D": ["w"]}
        backward = dict(reversed(list(forward.items())))
        assert as_sets(connected_components(forward)) == as_sets(connected_components(backward))

    def test_prebuilt_index(self):
        """Test a supplied index is used."""
        node_keys = {"A": ["x"], "B": ["x"]}
        index = build_reverse_index(node_keys)
        assert as_sets(connected_components(node_keys, index)) == {frozenset("AB")}
