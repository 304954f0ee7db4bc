"""
Connected components over a bipartite node/key index.

Nodes are linked when they share at least one key. The traversal uses an
explicit stack, so component size is not bounded by recursion depth.
"""

from typing import Hashable, Iterable, Mapping, Optional, TypeVar


N = TypeVar("N", bound=Hashable)
K = TypeVar("K", bound=Hashable)


def build_reverse_index(node_keys: Mapping[N, Iterable[K]]) -> dict[K, list[N]]:
    """
    Map every key to the nodes exhibiting it.

    Node lists keep first-seen order and contain no duplicates.
    """
    index: dict[K, dict[N, None]] = {}
    for node, keys in node_keys.items():
        for key in keys:
            if key is None:
                continue
            index.setdefault(key, {})[node] = None
    return {key: list(nodes) for key, nodes in index.items()}


def connected_components(
    node_keys: Mapping[N, Iterable[K]],
    index: Optional[Mapping[K, list[N]]] = None,
) -> list[list[N]]:
    """
    Group nodes that are transitively linked through shared keys.

    Args:
        node_keys: Every node with the keys it exhibits. Nodes without keys
            end up in singleton components.
        index: Prebuilt reverse index; built from ``node_keys`` when omitted.

    Returns:
        Components in discovery order, each listing its nodes in visit order.
        Every node appears in exactly one component.
    """
    keys_of = {node: list(keys) for node, keys in node_keys.items()}
    if index is None:
        index = build_reverse_index(keys_of)

    visited: set = set()
    components = []

    for start in keys_of:
        if start in visited:
            continue

        component = []
        stack = [start]
        while stack:
            node = stack.pop()
            if node in visited:
                continue
            visited.add(node)
            component.append(node)

            for key in keys_of.get(node, ()):
                for neighbour in index.get(key, ()):
                    if neighbour not in visited:
                        stack.append(neighbour)

        components.append(component)

    return components
