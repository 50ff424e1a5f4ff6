"""
simulator/control_plane — everything around the simulation core.

Public API:
    BasicPredicateChecker  — reference admissibility filter chain
    SimulationService      — build snapshot → run simulator → report
    all_nodes, ready_nodes, single_node, nodes_with_labels,
    exclude_nodes, all_of  — node-eligibility predicates
"""

from simulator.control_plane.predicate_checker import BasicPredicateChecker
from simulator.control_plane.node_filters import (
    all_nodes,
    all_of,
    exclude_nodes,
    nodes_with_labels,
    ready_nodes,
    single_node,
)
from simulator.control_plane.simulation_service import SimulationService

__all__ = [
    "BasicPredicateChecker",
    "SimulationService",
    "all_nodes",
    "all_of",
    "exclude_nodes",
    "nodes_with_labels",
    "ready_nodes",
    "single_node",
]
