"""
simulator/control_plane/node_filters.py
───────────────────────────────────────
Ready-made node-eligibility predicates for HintingSimulator.

A predicate receives a NodeInfo and answers "may this node be used at all
in this simulation?". That is a hard pre-filter applied before any
admissibility check, e.g. "only the new node group", "never the nodes being
drained".

Combine with all_of():
    all_of(ready_nodes, exclude_nodes({"node-draining-1"}))
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable

from sim_core.snapshot import NodeInfo

NodeFilter = Callable[[NodeInfo], bool]


def all_nodes(node_info: NodeInfo) -> bool:
    """Every node is eligible."""
    return True


def ready_nodes(node_info: NodeInfo) -> bool:
    """Only nodes whose Ready condition is true and that are not cordoned."""
    return node_info.node.ready and not node_info.node.unschedulable


def single_node(node_name: str) -> NodeFilter:
    """Only the named node."""
    def _matches(node_info: NodeInfo) -> bool:
        return node_info.name == node_name
    return _matches


def nodes_with_labels(labels: Dict[str, str]) -> NodeFilter:
    """Nodes carrying every key=value in `labels`."""
    required = dict(labels)

    def _matches(node_info: NodeInfo) -> bool:
        node_labels = node_info.node.labels
        return all(node_labels.get(k) == v for k, v in required.items())
    return _matches


def exclude_nodes(node_names: Iterable[str]) -> NodeFilter:
    """Every node except the named ones."""
    excluded = frozenset(node_names)

    def _matches(node_info: NodeInfo) -> bool:
        return node_info.name not in excluded
    return _matches


def all_of(*filters: NodeFilter) -> NodeFilter:
    """Eligible only if every filter agrees. all_of() with no filters accepts all."""
    def _matches(node_info: NodeInfo) -> bool:
        return all(f(node_info) for f in filters)
    return _matches
