"""
simulator/control_plane/predicate_checker.py
────────────────────────────────────────────
BasicPredicateChecker: a reference admissibility filter chain.

The simulation core only knows the PredicateChecker contract
(sim_core/predicates.py). This module supplies a concrete checker that
covers the filters capacity forecasting cares about most, so the simulator
is usable out of the box and testable end-to-end. Deployments that need the
full scheduler filter set plug in their own checker instead.

What it checks (in order, first failure wins)
──────────────────────────────────────────────
  1. NodeUnschedulable: cordoned nodes reject pods unless the pod tolerates
     node.kubernetes.io/unschedulable:NoSchedule.

  2. TaintToleration: every NoSchedule / NoExecute taint on the node must be
     tolerated. PreferNoSchedule is a soft preference and never blocks.
     A not-ready node is rejected here through its not-ready taint.

  3. NodeAffinity: every key=value in the pod's node selector must be a
     label on the node.

  4. NodeResourcesFit: the pod's effective request must fit into the
     node's allocatable resources minus what is already bound to it in the
     snapshot. CPU, memory, and the pod-count ceiling are all checked and
     all shortfalls are reported together.

What it does NOT check
──────────────────────
  • Inter-pod affinity / anti-affinity, topology spread.
  • Volume binding and zone restrictions.
  • Host ports.

Reason strings use the scheduler's own wording ("Insufficient cpu",
"Too many pods", ...) so reports read the same as real FailedScheduling
events.
"""

from __future__ import annotations

from typing import List, Optional

from sim_core.predicates import (
    PredicateChecker,
    PredicateCheckerError,
    PredicateVerdict,
)
from sim_core.snapshot import ClusterSnapshot, NodeInfo, UnknownNodeError
from simulator.shared.models import (
    UNSCHEDULABLE_TAINT_KEY,
    Pod,
    Taint,
    TaintEffect,
)

# ── Filter names (reported as PredicateVerdict.predicate_name) ────────────────

NODE_UNSCHEDULABLE: str = "NodeUnschedulable"
TAINT_TOLERATION: str = "TaintToleration"
NODE_AFFINITY: str = "NodeAffinity"
NODE_RESOURCES_FIT: str = "NodeResourcesFit"

_BLOCKING_EFFECTS = (TaintEffect.NO_SCHEDULE, TaintEffect.NO_EXECUTE)

_UNSCHEDULABLE_TAINT = Taint(key=UNSCHEDULABLE_TAINT_KEY, effect=TaintEffect.NO_SCHEDULE)


class BasicPredicateChecker(PredicateChecker):
    """
    Stateless filter chain over a ClusterSnapshot.

    One instance can be shared across simulation runs; every answer is
    computed from the snapshot passed in.
    """

    def check_predicates(
        self,
        snapshot: ClusterSnapshot,
        pod: Pod,
        node_name: str,
    ) -> PredicateVerdict:
        """
        Run every filter against one node.

        Raises:
            PredicateCheckerError: the node is not in the snapshot. That is
                                   a fault in the caller, not a "no fit".
        """
        try:
            node_info = snapshot.get_node_info(node_name)
        except UnknownNodeError as err:
            raise PredicateCheckerError(str(err), node_name=node_name) from err

        for check in (
            _check_node_unschedulable,
            _check_taint_toleration,
            _check_node_affinity,
            _check_resources_fit,
        ):
            verdict = check(pod, node_info)
            if verdict is not None:
                return verdict
        return PredicateVerdict.admit()


# ── Individual filters ────────────────────────────────────────────────────────
# Each returns None when the pod passes, or a rejected verdict.

def _tolerates(pod: Pod, taint: Taint) -> bool:
    return any(t.tolerates(taint) for t in pod.spec.tolerations)


def _check_node_unschedulable(pod: Pod, node_info: NodeInfo) -> Optional[PredicateVerdict]:
    if node_info.node.unschedulable and not _tolerates(pod, _UNSCHEDULABLE_TAINT):
        return PredicateVerdict.reject(NODE_UNSCHEDULABLE, ["node(s) were unschedulable"])
    return None


def _check_taint_toleration(pod: Pod, node_info: NodeInfo) -> Optional[PredicateVerdict]:
    """Report the first untolerated blocking taint, as the scheduler does."""
    for taint in node_info.node.taints:
        if taint.effect not in _BLOCKING_EFFECTS:
            continue
        if not _tolerates(pod, taint):
            return PredicateVerdict.reject(
                TAINT_TOLERATION,
                [f"node(s) had untolerated taint {{{taint.key}: {taint.value}}}"],
            )
    return None


def _check_node_affinity(pod: Pod, node_info: NodeInfo) -> Optional[PredicateVerdict]:
    labels = node_info.node.labels
    for key, value in pod.spec.node_selector.items():
        if labels.get(key) != value:
            return PredicateVerdict.reject(
                NODE_AFFINITY, ["node(s) didn't match Pod's node affinity/selector"]
            )
    return None


def _check_resources_fit(pod: Pod, node_info: NodeInfo) -> Optional[PredicateVerdict]:
    """
    Compare the pod's request with the node's residual capacity.

    All shortfalls are collected, so a pod that is short on both CPU and
    memory says so in one verdict.
    """
    cpu, memory = pod.requests()
    reasons: List[str] = []

    if node_info.free_pods < 1:
        reasons.append("Too many pods")
    if cpu > node_info.free_cpu:
        reasons.append("Insufficient cpu")
    if memory > node_info.free_memory:
        reasons.append("Insufficient memory")

    if reasons:
        return PredicateVerdict.reject(NODE_RESOURCES_FIT, reasons)
    return None
