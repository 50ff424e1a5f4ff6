"""
tests/test_hinting_simulator.py
───────────────────────────────
HintingSimulator: the trial-scheduling loop.

Test groups
────────────
Group 1: Placement            — first fit, cumulative capacity, order
Group 2: Unschedulable pods   — reasons, break_on_failure, no eligible nodes
Group 3: Equivalence cache    — cached negatives skip the checker, overflow
Group 4: Hints                — steady state cost, fallback to scan, expiry
Group 5: Error handling       — checker faults, bad input, rejected batches
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import pytest

from sim_core import similar_pods
from sim_core.hinting_simulator import (
    CACHED_NEGATIVE_REASON,
    NO_ELIGIBLE_NODES_REASON,
    HintingSimulator,
    SimulationInputError,
)
from sim_core.hints import hint_key
from sim_core.predicates import (
    FatalPredicateCheckerError,
    PredicateChecker,
    PredicateCheckerError,
)
from sim_core.snapshot import ClusterSnapshot, initialize_cluster_snapshot
from simulator.control_plane.node_filters import all_nodes, single_node
from simulator.control_plane.predicate_checker import BasicPredicateChecker
from simulator.shared.models import (
    DAEMONSET_POD_ANNOTATION,
    Container,
    Node,
    NodeResources,
    OwnerReference,
    Pod,
    PodSpec,
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _make_node(name: str, cpu: float = 10.0, memory: float = 20.0) -> Node:
    return Node(name=name, capacity=NodeResources(cpu=cpu, memory=memory))


def _make_pod(
    name: str,
    cpu: float = 1.0,
    memory: float = 1.0,
    node_name: Optional[str] = None,
    owner_uid: Optional[str] = None,
    owner_kind: str = "ReplicaSet",
    labels: Optional[Dict[str, str]] = None,
) -> Pod:
    owners = []
    if owner_uid is not None:
        owners.append(OwnerReference(kind=owner_kind, name="web", uid=owner_uid, controller=True))
    return Pod(
        name=name,
        uid=name,
        labels=labels or {},
        owner_references=owners,
        spec=PodSpec(
            node_name=node_name,
            containers=[Container(cpu_request=cpu, memory_request=memory)],
        ),
    )


def _replicas(count: int, cpu: float = 1.0, memory: float = 1.0, uid: str = "rs-1") -> List[Pod]:
    return [_make_pod(f"web-{i}", cpu=cpu, memory=memory, owner_uid=uid) for i in range(count)]


def _snapshot(nodes: List[Node], pods: Optional[List[Pod]] = None) -> ClusterSnapshot:
    snap = ClusterSnapshot()
    initialize_cluster_snapshot(snap, nodes, pods or [])
    return snap


class CountingChecker(PredicateChecker):
    """Delegates to BasicPredicateChecker and records every (pod, node) call."""

    def __init__(self) -> None:
        self.inner = BasicPredicateChecker()
        self.calls: List[Tuple[str, str]] = []

    def check_predicates(self, snapshot, pod, node_name):
        self.calls.append((pod.name, node_name))
        return self.inner.check_predicates(snapshot, pod, node_name)


class FaultyChecker(PredicateChecker):
    """Raises the given error for one node, delegates for the rest."""

    def __init__(self, bad_node: str, error: Exception) -> None:
        self.inner = BasicPredicateChecker()
        self.bad_node = bad_node
        self.error = error

    def check_predicates(self, snapshot, pod, node_name):
        if node_name == self.bad_node:
            raise self.error
        return self.inner.check_predicates(snapshot, pod, node_name)


@pytest.fixture
def simulator() -> HintingSimulator:
    return HintingSimulator(BasicPredicateChecker())


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 1 — Placement
# ─────────────────────────────────────────────────────────────────────────────

class TestPlacement:

    def test_two_node_cluster(self, simulator):
        """
        n1 already runs a 1-cpu pod. Two 5-cpu pods arrive: the first fits
        n1 (9 free), the second no longer does (4 free) and lands on n2.
        """
        snap = _snapshot(
            [_make_node("n1"), _make_node("n2")],
            [_make_pod("p0", node_name="n1")],
        )
        pending = [_make_pod("p1", cpu=5, memory=5), _make_pod("p2", cpu=5, memory=5)]

        statuses, overflowing = simulator.try_schedule_pods(snap, pending, all_nodes)

        assert [s.node_name for s in statuses] == ["n1", "n2"]
        assert all(s.scheduled for s in statuses)
        assert overflowing == 0
        assert snap.get_node_info("n1").pod_count == 2
        assert snap.get_node_info("n2").pod_count == 1

    def test_statuses_follow_input_order(self, simulator):
        snap = _snapshot([_make_node("n1")])
        pending = [_make_pod(f"p{i}") for i in range(5)]
        statuses, _ = simulator.try_schedule_pods(snap, pending, all_nodes)
        assert [s.pod.name for s in statuses] == [p.name for p in pending]

    def test_scan_is_first_fit_in_node_order(self, simulator):
        snap = _snapshot([_make_node("b"), _make_node("a"), _make_node("c")])
        statuses, _ = simulator.try_schedule_pods(snap, [_make_pod("p1")], all_nodes)
        assert statuses[0].node_name == "b"

    def test_result_depends_on_input_order(self):
        big, small = _make_pod("big", cpu=8), _make_pod("small", cpu=3)

        snap = _snapshot([_make_node("n1")])
        statuses, _ = HintingSimulator(BasicPredicateChecker()).try_schedule_pods(
            snap, [big, small], all_nodes
        )
        assert [s.scheduled for s in statuses] == [True, False]

        snap = _snapshot([_make_node("n1")])
        statuses, _ = HintingSimulator(BasicPredicateChecker()).try_schedule_pods(
            snap, [small, big], all_nodes
        )
        assert [s.scheduled for s in statuses] == [True, False]
        assert statuses[0].pod.name == "small"

    def test_empty_batch(self, simulator):
        statuses, overflowing = simulator.try_schedule_pods(
            _snapshot([_make_node("n1")]), [], all_nodes
        )
        assert statuses == []
        assert overflowing == 0

    def test_node_filter_restricts_placement(self, simulator):
        snap = _snapshot([_make_node("n1"), _make_node("n2")])
        statuses, _ = simulator.try_schedule_pods(
            snap, [_make_pod("p1"), _make_pod("p2")], single_node("n2")
        )
        assert [s.node_name for s in statuses] == ["n2", "n2"]


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 2 — Unschedulable pods
# ─────────────────────────────────────────────────────────────────────────────

class TestUnschedulable:

    def test_oversized_pod_is_unschedulable_and_unbound(self, simulator):
        snap = _snapshot([_make_node("n1"), _make_node("n2")])
        pod = _make_pod("huge", cpu=20)
        statuses, _ = simulator.try_schedule_pods(snap, [pod], all_nodes)

        assert not statuses[0].scheduled
        assert statuses[0].node_name is None
        assert statuses[0].reasons == ["n1: Insufficient cpu", "n2: Insufficient cpu"]
        assert not snap.is_pod_bound(pod)

    def test_failure_does_not_stop_batch_by_default(self, simulator):
        snap = _snapshot([_make_node("n1")])
        pending = [_make_pod("huge", cpu=20), _make_pod("small")]
        statuses, _ = simulator.try_schedule_pods(snap, pending, all_nodes)
        assert [s.scheduled for s in statuses] == [False, True]

    def test_break_on_failure_stops_after_failed_pod(self, simulator):
        snap = _snapshot([_make_node("n1")])
        pending = [_make_pod("ok"), _make_pod("huge", cpu=20), _make_pod("never")]
        statuses, _ = simulator.try_schedule_pods(
            snap, pending, all_nodes, break_on_failure=True
        )
        assert [s.pod.name for s in statuses] == ["ok", "huge"]
        assert not statuses[-1].scheduled
        assert not snap.is_pod_bound(pending[2])

    def test_break_on_failure_without_failures_runs_everything(self, simulator):
        snap = _snapshot([_make_node("n1")])
        pending = [_make_pod(f"p{i}") for i in range(3)]
        statuses, _ = simulator.try_schedule_pods(
            snap, pending, all_nodes, break_on_failure=True
        )
        assert len(statuses) == 3

    def test_no_eligible_nodes(self, simulator):
        snap = _snapshot([_make_node("n1")])
        statuses, _ = simulator.try_schedule_pods(
            snap, [_make_pod("p1")], lambda node_info: False
        )
        assert statuses[0].reasons == [NO_ELIGIBLE_NODES_REASON]

    def test_empty_cluster(self, simulator):
        statuses, _ = simulator.try_schedule_pods(ClusterSnapshot(), [_make_pod("p1")], all_nodes)
        assert statuses[0].reasons == [NO_ELIGIBLE_NODES_REASON]


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 3 — Equivalence cache
# ─────────────────────────────────────────────────────────────────────────────

class TestEquivalenceCache:

    def test_second_equivalent_pod_skips_checker(self):
        checker = CountingChecker()
        snap = _snapshot([_make_node("n1"), _make_node("n2")])
        pending = _replicas(2, cpu=20)

        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, pending, all_nodes)

        assert [pod for pod, _ in checker.calls] == ["web-0", "web-0"]
        assert statuses[1].reasons == [CACHED_NEGATIVE_REASON]
        assert not statuses[1].scheduled

    def test_bare_pods_are_always_checked(self):
        checker = CountingChecker()
        snap = _snapshot([_make_node("n1")])
        pending = [_make_pod("a", cpu=20), _make_pod("b", cpu=20)]

        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, pending, all_nodes)

        assert len(checker.calls) == 2
        assert statuses[1].reasons == ["n1: Insufficient cpu"]

    def test_daemonset_pods_are_always_checked(self):
        checker = CountingChecker()
        snap = _snapshot([_make_node("n1")])
        pending = [
            _make_pod(f"ds-{i}", cpu=20, owner_uid="ds-1", owner_kind="DaemonSet")
            for i in range(2)
        ]
        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, pending, all_nodes)
        assert len(checker.calls) == 2
        assert CACHED_NEGATIVE_REASON not in statuses[1].reasons

    def test_daemonset_annotated_sibling_is_checked(self):
        checker = CountingChecker()
        snap = _snapshot([_make_node("n1")])
        replica = _make_pod("web-0", cpu=20, owner_uid="rs-1")
        daemon = _make_pod("web-1", cpu=20, owner_uid="rs-1").model_copy(
            update={"annotations": {DAEMONSET_POD_ANNOTATION: "true"}}
        )
        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, [replica, daemon], all_nodes)
        assert len(checker.calls) == 2
        assert statuses[1].reasons == ["n1: Insufficient cpu"]

    def test_signature_computed_once_per_pod(self, simulator, monkeypatch):
        calls = []
        original = similar_pods.semantic_spec

        def counting(spec):
            calls.append(spec)
            return original(spec)

        monkeypatch.setattr(similar_pods, "semantic_spec", counting)
        snap = _snapshot([_make_node("n1")])
        simulator.try_schedule_pods(snap, [_make_pod("web-0", cpu=20, owner_uid="rs-1")], all_nodes)
        assert len(calls) == 1

    def test_cache_is_scoped_to_one_call(self):
        checker = CountingChecker()
        simulator = HintingSimulator(checker)
        snap = _snapshot([_make_node("n1")])

        simulator.try_schedule_pods(snap, [_make_pod("a", cpu=20, owner_uid="rs-1")], all_nodes)
        statuses, _ = simulator.try_schedule_pods(
            snap, [_make_pod("b", cpu=20, owner_uid="rs-1")], all_nodes
        )
        assert len(checker.calls) == 2
        assert statuses[0].reasons == ["n1: Insufficient cpu"]

    def test_overflowing_controllers_reported(self, simulator):
        snap = _snapshot([_make_node("n1")])
        pending = [
            _make_pod(f"p{i}", cpu=20, owner_uid="rs-1", labels={"v": str(i)})
            for i in range(11)
        ]
        statuses, overflowing = simulator.try_schedule_pods(snap, pending, all_nodes)
        assert overflowing == 1
        assert not any(s.scheduled for s in statuses)


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 4 — Hints
# ─────────────────────────────────────────────────────────────────────────────

class TestHints:

    def test_replicas_cost_one_check_each_while_hint_holds(self):
        checker = CountingChecker()
        snap = _snapshot([_make_node("n1"), _make_node("n2"), _make_node("n3")])

        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, _replicas(5), all_nodes)

        assert len(checker.calls) == 5
        assert {s.node_name for s in statuses} == {"n1"}

    def test_full_hinted_node_falls_back_to_scan(self):
        checker = CountingChecker()
        snap = _snapshot([_make_node("n1", cpu=2), _make_node("n2")])

        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, _replicas(3), all_nodes)

        assert [s.node_name for s in statuses] == ["n1", "n1", "n2"]
        # web-2: hint n1 (full) → scan n1 (full) → n2
        assert checker.calls[2:] == [("web-2", "n1"), ("web-2", "n1"), ("web-2", "n2")]

    def test_hint_updated_after_scan(self):
        simulator = HintingSimulator(BasicPredicateChecker())
        snap = _snapshot([_make_node("n1", cpu=2), _make_node("n2")])
        pods = _replicas(3)
        simulator.try_schedule_pods(snap, pods, all_nodes)
        assert simulator.hints.get(hint_key(pods[0])) == "n2"

    def test_hint_ignored_when_node_filtered_out(self):
        checker = CountingChecker()
        simulator = HintingSimulator(checker)
        snap = _snapshot([_make_node("n1"), _make_node("n2")])

        simulator.try_schedule_pods(snap, _replicas(1), all_nodes)
        statuses, _ = simulator.try_schedule_pods(
            snap, [_make_pod("web-9", owner_uid="rs-1")], single_node("n2")
        )
        assert statuses[0].node_name == "n2"
        assert ("web-9", "n1") not in checker.calls

    def test_hints_persist_across_calls_until_dropped(self):
        simulator = HintingSimulator(BasicPredicateChecker())
        snap = _snapshot([_make_node("n1")])
        simulator.try_schedule_pods(snap, _replicas(1), all_nodes)
        assert len(simulator.hints) == 1

        simulator.drop_old_hints()
        assert len(simulator.hints) == 1
        simulator.drop_old_hints()
        assert len(simulator.hints) == 0


# ─────────────────────────────────────────────────────────────────────────────
# GROUP 5 — Error handling
# ─────────────────────────────────────────────────────────────────────────────

class TestErrors:

    def test_checker_fault_treats_node_as_inadmissible(self):
        checker = FaultyChecker("n1", PredicateCheckerError("boom", node_name="n1"))
        snap = _snapshot([_make_node("n1"), _make_node("n2")])
        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, [_make_pod("p1")], all_nodes)
        assert statuses[0].node_name == "n2"

    def test_checker_fault_becomes_reason(self):
        checker = FaultyChecker("n1", PredicateCheckerError("boom"))
        snap = _snapshot([_make_node("n1")])
        statuses, _ = HintingSimulator(checker).try_schedule_pods(snap, [_make_pod("p1")], all_nodes)
        assert statuses[0].reasons == ["n1: predicate checker error: boom"]

    def test_fatal_checker_fault_aborts(self):
        checker = FaultyChecker("n1", FatalPredicateCheckerError("dead"))
        snap = _snapshot([_make_node("n1")])
        with pytest.raises(FatalPredicateCheckerError):
            HintingSimulator(checker).try_schedule_pods(snap, [_make_pod("p1")], all_nodes)

    @pytest.mark.parametrize("snapshot", [None, "not a snapshot"])
    def test_bad_snapshot_rejected(self, simulator, snapshot):
        with pytest.raises(SimulationInputError):
            simulator.try_schedule_pods(snapshot, [_make_pod("p1")], all_nodes)

    def test_missing_pod_list_rejected(self, simulator):
        with pytest.raises(SimulationInputError):
            simulator.try_schedule_pods(_snapshot([_make_node("n1")]), None, all_nodes)

    def test_missing_node_predicate_rejected(self, simulator):
        with pytest.raises(SimulationInputError):
            simulator.try_schedule_pods(_snapshot([_make_node("n1")]), [], None)

    def test_same_pod_twice_rejected_before_binding(self, simulator):
        snap = _snapshot([_make_node("n1")])
        a, b = _make_pod("a"), _make_pod("b")
        with pytest.raises(SimulationInputError, match="more than once"):
            simulator.try_schedule_pods(snap, [a, b, a], all_nodes)
        assert snap.bindings() == {"n1": []}

    def test_non_pod_entry_rejected_before_binding(self, simulator):
        snap = _snapshot([_make_node("n1")])
        with pytest.raises(SimulationInputError, match=r"pods\[1\]"):
            simulator.try_schedule_pods(snap, [_make_pod("a"), None], all_nodes)
        assert snap.bindings() == {"n1": []}

    def test_already_bound_pod_rejected(self, simulator):
        running = _make_pod("p0", node_name="n1")
        snap = _snapshot([_make_node("n1")], [running])
        with pytest.raises(SimulationInputError, match="already bound"):
            simulator.try_schedule_pods(snap, [_make_pod("a"), running], all_nodes)
        assert snap.bindings() == {"n1": ["p0"]}
