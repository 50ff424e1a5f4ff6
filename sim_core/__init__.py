"""
sim_core — scheduling simulation engine core.

Public API:
    ClusterSnapshot            — mutable, forkable node → bound-pods mapping
    initialize_cluster_snapshot — load real cluster state into a snapshot
    PredicateChecker           — injected admissibility contract
    PredicateVerdict           — fit / no-fit-with-reasons answer
    SimilarPodsScheduling      — negative cache of unschedulable pod classes
    HintingSimulator           — places a batch of pending pods, in order

Usage:
    from sim_core import ClusterSnapshot, HintingSimulator, initialize_cluster_snapshot

    snapshot = ClusterSnapshot()
    initialize_cluster_snapshot(snapshot, nodes, running_pods)
    simulator = HintingSimulator(checker)
    statuses, overflowing = simulator.try_schedule_pods(
        snapshot, pending_pods, lambda node_info: True,
    )
"""

from sim_core.hinting_simulator import HintingSimulator, SimulationInputError
from sim_core.hints import Hints, hint_key
from sim_core.predicates import (
    FatalPredicateCheckerError,
    PredicateChecker,
    PredicateCheckerError,
    PredicateVerdict,
)
from sim_core.similar_pods import (
    MAX_PODS_PER_OWNER_REF,
    SimilarPodsScheduling,
    pod_spec_semantically_equal,
    sanitize_pod_spec,
)
from sim_core.snapshot import (
    ClusterSnapshot,
    ClusterSnapshotError,
    DuplicateNodeError,
    DuplicatePodError,
    InvalidBindingError,
    NodeInfo,
    SnapshotForkError,
    UnknownNodeError,
    UnknownPodError,
    initialize_cluster_snapshot,
)

__all__ = [
    "HintingSimulator",
    "SimulationInputError",
    "Hints",
    "hint_key",
    "FatalPredicateCheckerError",
    "PredicateChecker",
    "PredicateCheckerError",
    "PredicateVerdict",
    "MAX_PODS_PER_OWNER_REF",
    "SimilarPodsScheduling",
    "pod_spec_semantically_equal",
    "sanitize_pod_spec",
    "ClusterSnapshot",
    "ClusterSnapshotError",
    "DuplicateNodeError",
    "DuplicatePodError",
    "InvalidBindingError",
    "NodeInfo",
    "SnapshotForkError",
    "UnknownNodeError",
    "UnknownPodError",
    "initialize_cluster_snapshot",
]
