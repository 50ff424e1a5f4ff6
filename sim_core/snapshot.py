"""
sim_core/snapshot.py
────────────────────
The cluster snapshot: the simulation's shared, mutable picture of the cluster.

What is a snapshot?
───────────────────
A mapping from node name to (node, ordered list of pods bound to it).
It starts empty, is populated once from real cluster state, and is then
mutated in place as the simulator binds pending pods. Every successful trial
placement is visible to every later admissibility check in the same run;
that is how the simulation models binpacking pressure.

  • Nodes are enumerated in insertion order. That order is the "stable
    enumeration order" the simulator scans in, so results are reproducible.
  • Every bound pod appears under exactly one node. A pod index
    (pod key → node name) enforces this in O(1).
  • Mutations are all-or-nothing. add_pod() validates everything before it
    touches any state; a failed call leaves the snapshot exactly as it was.

Forking
───────
fork() saves the current state, revert() goes back to it, commit() keeps
the current state and forgets the saved one. One level deep: the simulator
only ever needs "try this, maybe undo". The saved state copies the per-node
pod lists but shares the pod and node records themselves, which is safe
because records are immutable.

Thread safety
─────────────
Not thread-safe. One snapshot per simulation run; concurrent runs must each
build their own.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from simulator.shared.models import Node, Pod

logger = logging.getLogger(__name__)


# ── Error taxonomy ────────────────────────────────────────────────────────────
# All of these are configuration errors: the caller supplied inconsistent
# cluster state. None of them is a per-pod scheduling failure.

class ClusterSnapshotError(Exception):
    """Base class for every snapshot mutation failure."""


class DuplicateNodeError(ClusterSnapshotError):
    """add_node() called with a name that is already registered."""

    def __init__(self, node_name: str) -> None:
        self.node_name = node_name
        super().__init__(f"Node {node_name!r} already exists in the snapshot.")


class UnknownNodeError(ClusterSnapshotError):
    """An operation referenced a node the snapshot does not know."""

    def __init__(self, node_name: str) -> None:
        self.node_name = node_name
        super().__init__(f"Node {node_name!r} not found in the snapshot.")


class InvalidBindingError(ClusterSnapshotError):
    """
    A pod cannot be bound because it has no resolvable target node.

    Raised when neither an explicit node name, spec.node_name, nor
    nominated_node_name is available. During snapshot initialisation this
    means the upstream pod list is malformed; it must never be skipped.
    """

    def __init__(self, pod_key: str) -> None:
        self.pod_key = pod_key
        super().__init__(
            f"Pod {pod_key!r} has neither a node assignment nor a nominated node."
        )


class DuplicatePodError(ClusterSnapshotError):
    """The pod (by key) is already bound somewhere in the snapshot."""

    def __init__(self, pod_key: str, node_name: str) -> None:
        self.pod_key = pod_key
        self.node_name = node_name
        super().__init__(
            f"Pod {pod_key!r} is already bound to node {node_name!r}."
        )


class UnknownPodError(ClusterSnapshotError):
    """remove_pod() could not find the pod on the given node."""

    def __init__(self, namespace: str, name: str, node_name: str) -> None:
        self.namespace = namespace
        self.name = name
        self.node_name = node_name
        super().__init__(
            f"Pod {namespace}/{name} not found on node {node_name!r}."
        )


class SnapshotForkError(ClusterSnapshotError):
    """fork() called on a snapshot that is already forked."""


# ── Per-node view ─────────────────────────────────────────────────────────────

class NodeInfo:
    """
    One node plus the pods currently bound to it.

    This is what admissibility checkers and node-eligibility predicates read.
    Requested totals are maintained incrementally, so residual capacity is
    O(1) to query no matter how many pods are bound.

    Attributes:
        node: The immutable Node record.
    """

    def __init__(self, node: Node) -> None:
        self.node = node
        self._pods: List[Pod] = []
        self._requested_cpu: float = 0.0
        self._requested_memory: float = 0.0

    # ── Mutation (snapshot-internal) ──────────────────────────────────────────

    def _add_pod(self, pod: Pod) -> None:
        cpu, memory = pod.requests()
        self._pods.append(pod)
        self._requested_cpu += cpu
        self._requested_memory += memory

    def _remove_pod_at(self, index: int) -> Pod:
        pod = self._pods.pop(index)
        cpu, memory = pod.requests()
        self._requested_cpu -= cpu
        self._requested_memory -= memory
        if not self._pods:
            # float drift
            self._requested_cpu = 0.0
            self._requested_memory = 0.0
        return pod

    def _copy(self) -> "NodeInfo":
        clone = NodeInfo(self.node)
        clone._pods = list(self._pods)
        clone._requested_cpu = self._requested_cpu
        clone._requested_memory = self._requested_memory
        return clone

    # ── Read accessors ────────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self.node.name

    @property
    def pods(self) -> Tuple[Pod, ...]:
        """Bound pods in binding order. A tuple, so callers cannot mutate it."""
        return tuple(self._pods)

    @property
    def pod_count(self) -> int:
        return len(self._pods)

    @property
    def requested_cpu(self) -> float:
        return self._requested_cpu

    @property
    def requested_memory(self) -> float:
        return self._requested_memory

    @property
    def free_cpu(self) -> float:
        return self.node.allocatable_resources.cpu - self._requested_cpu

    @property
    def free_memory(self) -> float:
        return self.node.allocatable_resources.memory - self._requested_memory

    @property
    def free_pods(self) -> int:
        return self.node.allocatable_resources.pods - len(self._pods)

    def __repr__(self) -> str:
        return (
            f"NodeInfo({self.name!r}, pods={len(self._pods)}, "
            f"cpu={self._requested_cpu:g}/{self.node.allocatable_resources.cpu:g})"
        )


# ── The snapshot ──────────────────────────────────────────────────────────────

class ClusterSnapshot:
    """
    Mutable, forkable node → bound-pods mapping.

    Used by:
        initialize_cluster_snapshot() → clear() + add_node() + add_pod().
        HintingSimulator              → add_pod() on every successful trial.
        PredicateChecker              → get_node_info() to read residual capacity.
        SimulationService             → bindings() / node_infos() for reports.
    """

    def __init__(self) -> None:
        self._node_infos: Dict[str, NodeInfo] = {}
        self._pod_index: Dict[str, str] = {}
        self._saved: Optional[Tuple[Dict[str, NodeInfo], Dict[str, str]]] = None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def clear(self) -> None:
        """Reset to the empty state, dropping any saved fork as well."""
        self._node_infos = {}
        self._pod_index = {}
        self._saved = None

    # ── Nodes ─────────────────────────────────────────────────────────────────

    def add_node(self, node: Node) -> None:
        """
        Register a node with no bound pods.

        Raises:
            DuplicateNodeError: if a node with this name already exists.
        """
        if node.name in self._node_infos:
            raise DuplicateNodeError(node.name)
        self._node_infos[node.name] = NodeInfo(node)

    def add_nodes(self, nodes: Iterable[Node]) -> None:
        """
        Register several nodes at once.

        All-or-nothing: duplicates (against the snapshot or within `nodes`)
        are detected before any node is added.
        """
        nodes = list(nodes)
        seen = set(self._node_infos)
        for node in nodes:
            if node.name in seen:
                raise DuplicateNodeError(node.name)
            seen.add(node.name)
        for node in nodes:
            self._node_infos[node.name] = NodeInfo(node)

    def remove_node(self, node_name: str) -> None:
        """
        Remove a node together with every pod bound to it.

        Raises:
            UnknownNodeError: if the node is not in the snapshot.
        """
        info = self._node_infos.pop(node_name, None)
        if info is None:
            raise UnknownNodeError(node_name)
        for pod in info.pods:
            self._pod_index.pop(pod.key, None)

    def has_node(self, node_name: str) -> bool:
        return node_name in self._node_infos

    def get_node_info(self, node_name: str) -> NodeInfo:
        """
        Return the live NodeInfo for a node.

        Raises:
            UnknownNodeError: if the node is not in the snapshot.
        """
        try:
            return self._node_infos[node_name]
        except KeyError:
            raise UnknownNodeError(node_name) from None

    def node_infos(self) -> List[NodeInfo]:
        """All NodeInfos in stable (insertion) order."""
        return list(self._node_infos.values())

    def node_names(self) -> List[str]:
        return list(self._node_infos)

    # ── Pods ──────────────────────────────────────────────────────────────────

    def add_pod(self, pod: Pod, node_name: Optional[str] = None) -> None:
        """
        Bind a pod to a node.

        Target resolution (first non-empty wins):
            1. node_name argument
            2. pod.spec.node_name
            3. pod.nominated_node_name

        The binding is visible to every later read, including later
        add_pod() calls and admissibility checks in the same run.

        Raises:
            InvalidBindingError: no target could be resolved.
            UnknownNodeError:    the target node is not in the snapshot.
            DuplicatePodError:   a pod with the same key is already bound.

        On any error the snapshot is unchanged.
        """
        target = node_name or pod.spec.node_name or pod.nominated_node_name
        if not target:
            raise InvalidBindingError(pod.key)
        info = self._node_infos.get(target)
        if info is None:
            raise UnknownNodeError(target)
        bound_to = self._pod_index.get(pod.key)
        if bound_to is not None:
            raise DuplicatePodError(pod.key, bound_to)

        info._add_pod(pod)
        self._pod_index[pod.key] = target

    def remove_pod(self, namespace: str, name: str, node_name: str) -> Pod:
        """
        Unbind a pod from a node and return it.

        Raises:
            UnknownNodeError: if the node is not in the snapshot.
            UnknownPodError:  if no pod namespace/name is bound to that node.
        """
        info = self.get_node_info(node_name)
        for index, pod in enumerate(info.pods):
            if pod.namespace == namespace and pod.name == name:
                removed = info._remove_pod_at(index)
                self._pod_index.pop(removed.key, None)
                return removed
        raise UnknownPodError(namespace, name, node_name)

    def is_pod_bound(self, pod: Pod) -> bool:
        return pod.key in self._pod_index

    def node_of(self, pod: Pod) -> Optional[str]:
        """Name of the node the pod is bound to, or None."""
        return self._pod_index.get(pod.key)

    def pod_count(self) -> int:
        """Total number of bound pods across all nodes."""
        return len(self._pod_index)

    def bindings(self) -> Dict[str, List[str]]:
        """
        node name → ordered pod keys.

        A plain-data view of the whole binding state. Two snapshots built
        from the same inputs compare equal on bindings().
        """
        return {
            name: [pod.key for pod in info.pods]
            for name, info in self._node_infos.items()
        }

    # ── Forking ───────────────────────────────────────────────────────────────

    @property
    def is_forked(self) -> bool:
        return self._saved is not None

    def fork(self) -> None:
        """
        Save the current state so it can be restored with revert().

        Raises:
            SnapshotForkError: if the snapshot is already forked.
        """
        if self._saved is not None:
            raise SnapshotForkError("Cluster snapshot is already forked.")
        self._saved = (
            {name: info._copy() for name, info in self._node_infos.items()},
            dict(self._pod_index),
        )

    def revert(self) -> None:
        """Restore the state saved by fork(). No-op when not forked."""
        if self._saved is None:
            return
        self._node_infos, self._pod_index = self._saved
        self._saved = None

    def commit(self) -> None:
        """Keep the current state and drop the fork point. No-op when not forked."""
        self._saved = None

    def __repr__(self) -> str:
        return (
            f"ClusterSnapshot(nodes={len(self._node_infos)}, "
            f"pods={len(self._pod_index)}, forked={self.is_forked})"
        )


# ── Initialisation protocol ───────────────────────────────────────────────────

def initialize_cluster_snapshot(
    snapshot: ClusterSnapshot,
    nodes: Iterable[Node],
    pods: Iterable[Pod],
) -> None:
    """
    Load real cluster state into a snapshot, from scratch.

    Steps:
        1. clear() the snapshot.
        2. add_node() every node.
        3. Bind every already-running pod to spec.node_name, falling back to
           nominated_node_name.

    A pod with neither is not skipped: it means the caller's data is
    malformed, and InvalidBindingError propagates. The same applies to
    duplicate nodes, duplicate pods, and pods naming unknown nodes.

    Calling this twice with the same inputs yields identical bindings.

    Raises:
        ClusterSnapshotError: any of its subclasses, see above.
    """
    snapshot.clear()

    for node in nodes:
        snapshot.add_node(node)

    for pod in pods:
        if pod.spec.node_name:
            snapshot.add_pod(pod, pod.spec.node_name)
        elif pod.nominated_node_name:
            snapshot.add_pod(pod, pod.nominated_node_name)
        else:
            raise InvalidBindingError(pod.key)

    logger.debug("Initialised %r", snapshot)
