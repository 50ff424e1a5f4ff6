"""
sim_core/hinting_simulator.py
─────────────────────────────
The HintingSimulator: places a batch of pending pods one at a time on a
cluster snapshot, and reports where each one landed.

How a batch is processed
────────────────────────
Pods are processed strictly in input order. Each successful placement is
written into the snapshot before the next pod is looked at, so earlier pods
consume capacity that later pods might have needed. That is intentional: it
models "if these pods arrived in this order, what happens".

For every pod:

  1. Equivalence cache. If an identical pod from the same controller has
     already failed in this batch, record it unschedulable
     ("cached negative result") without calling the checker at all.

  2. Hint. If the hint table knows where the last pod of this kind went,
     and that node is still acceptable, check that one node first.
     Fits → bind, refresh the hint, next pod.

  3. Full scan. Check every acceptable node in the snapshot's stable
     order. First fit → bind, set the hint, next pod.

  4. Nothing fits. Record unschedulable with the reasons collected from
     every node tried, and add the pod's equivalence class to the cache.

  5. break_on_failure. After an unschedulable pod, stop. The failed pod's
     status is in the result; pods after it are simply not there. The
     caller must treat them as "not evaluated", not as failures.

Why hints
─────────
Without them, N replicas on M nodes cost up to N × M checks. With them the
steady state is about one check per replica while the hinted node still has
room, and the full scan only runs when it fills up or the pod is different.

Error handling contract
───────────────────────
  SimulationInputError       — snapshot or pod list unusable (missing, a
                               non-Pod entry, a pod key repeated in the
                               batch or already bound). Raised before any
                               pod is bound; no partial result.
  PredicateCheckerError      — caught per node; that node counts as
                               inadmissible and the fault becomes a reason.
  FatalPredicateCheckerError — propagates, aborting the batch.
  add_pod() failure on the
  hinted node                — logged, treated as a missed hint.
  add_pod() failure during
  the scan                   — propagates. The checker just admitted the
                               node, so the snapshot and the checker
                               disagree about the cluster.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Set, Tuple

from simulator.shared.models import Pod, SchedulingStatus
from sim_core.hints import Hints, hint_key
from sim_core.predicates import (
    FatalPredicateCheckerError,
    PredicateChecker,
    PredicateCheckerError,
    PredicateVerdict,
)
from sim_core.similar_pods import EquivalenceSignature, SimilarPodsScheduling
from sim_core.snapshot import ClusterSnapshot, ClusterSnapshotError, NodeInfo

logger = logging.getLogger(__name__)

NodeAcceptable = Callable[[NodeInfo], bool]
"""Node-eligibility predicate: NodeInfo → may this node be used at all?"""

CACHED_NEGATIVE_REASON: str = "cached negative result"
NO_ELIGIBLE_NODES_REASON: str = "no eligible nodes"


class SimulationInputError(ValueError):
    """The batch cannot be scheduled as given (missing inputs, bad or duplicate pods)."""


def _validate_batch(snapshot: ClusterSnapshot, pods: List[Pod]) -> None:
    """
    Reject a batch that could not be bound consistently.

    Runs before any pod is bound, so a rejected batch leaves the snapshot
    untouched.
    """
    seen: Set[str] = set()
    for index, pod in enumerate(pods):
        if not isinstance(pod, Pod):
            raise SimulationInputError(
                f"pods[{index}] is not a Pod, got {type(pod).__name__}."
            )
        if pod.key in seen:
            raise SimulationInputError(
                f"Pod {pod.key!r} appears more than once in the batch."
            )
        seen.add(pod.key)
        bound_to = snapshot.node_of(pod)
        if bound_to is not None:
            raise SimulationInputError(
                f"Pod {pod.key!r} is already bound to node {bound_to!r}."
            )


class HintingSimulator:
    """
    Trial scheduler with a hint table and a per-call equivalence cache.

    Usage:
        simulator = HintingSimulator(checker)
        statuses, overflowing = simulator.try_schedule_pods(
            snapshot, pending_pods, all_nodes, break_on_failure=False,
        )

    The hint table lives as long as the simulator instance. Build one
    simulator per simulation run (SimulationService does) to keep hints
    run-scoped, or call drop_old_hints() between calls on a long-lived one.
    """

    def __init__(self, predicate_checker: PredicateChecker) -> None:
        self._checker = predicate_checker
        self._hints = Hints()

    # ── Public API ────────────────────────────────────────────────────────────

    def try_schedule_pods(
        self,
        snapshot: ClusterSnapshot,
        pods: Sequence[Pod],
        is_node_acceptable: NodeAcceptable,
        break_on_failure: bool = False,
    ) -> Tuple[List[SchedulingStatus], int]:
        """
        Place `pods` on `snapshot` in order, mutating the snapshot.

        Args:
            snapshot:           Initialised snapshot. Mutated in place.
            pods:               Pending pods, in arrival order.
            is_node_acceptable: Node-eligibility predicate.
            break_on_failure:   Stop after the first unschedulable pod.

        Returns:
            (statuses, overflowing_controller_count)
            statuses has one entry per evaluated pod, in input order.

        Raises:
            SimulationInputError:       snapshot/pods missing or wrong type,
                                        or a pod key that is repeated in
                                        the batch or already bound.
            FatalPredicateCheckerError: raised by the checker.
            ClusterSnapshotError:       the snapshot refused a binding the
                                        checker admitted (see module
                                        docstring).
        """
        if snapshot is None or not isinstance(snapshot, ClusterSnapshot):
            raise SimulationInputError(
                f"try_schedule_pods needs a ClusterSnapshot, got {type(snapshot).__name__}."
            )
        if pods is None:
            raise SimulationInputError("try_schedule_pods needs a pod list, got None.")
        if is_node_acceptable is None:
            raise SimulationInputError("try_schedule_pods needs a node predicate, got None.")
        pods = list(pods)
        _validate_batch(snapshot, pods)

        similar_pods = SimilarPodsScheduling()
        statuses: List[SchedulingStatus] = []

        for pod in pods:
            logger.debug("Looking for a place for %s/%s", pod.namespace, pod.name)
            status = self._find_node(snapshot, pod, is_node_acceptable, similar_pods)
            statuses.append(status)

            if status.scheduled:
                logger.debug(
                    "Pod %s/%s can be moved to %s",
                    pod.namespace, pod.name, status.node_name,
                )
                continue

            logger.debug(
                "Pod %s/%s is unschedulable: %s",
                pod.namespace, pod.name, "; ".join(status.reasons),
            )
            if break_on_failure:
                logger.debug(
                    "Stopping batch after %d of %d pods (break_on_failure).",
                    len(statuses), len(pods),
                )
                break

        scheduled = sum(1 for s in statuses if s.scheduled)
        logger.info(
            "try_schedule_pods: %d/%d scheduled, %d unschedulable, %d not evaluated, "
            "%d overflowing controllers",
            scheduled, len(pods), len(statuses) - scheduled, len(pods) - len(statuses),
            similar_pods.overflowing_controller_count(),
        )
        return statuses, similar_pods.overflowing_controller_count()

    def drop_old_hints(self) -> None:
        """Forget hints that were not refreshed since the last call to this."""
        self._hints.drop_old()

    @property
    def hints(self) -> Hints:
        return self._hints

    # ── Per-pod search ────────────────────────────────────────────────────────

    def _find_node(
        self,
        snapshot: ClusterSnapshot,
        pod: Pod,
        is_node_acceptable: NodeAcceptable,
        similar_pods: SimilarPodsScheduling,
    ) -> SchedulingStatus:
        signature = (
            EquivalenceSignature.from_pod(pod) if pod.controller_ref() is not None else None
        )
        if similar_pods.is_similar_unschedulable(pod, signature):
            return SchedulingStatus(pod=pod, reasons=[CACHED_NEGATIVE_REASON])

        key = hint_key(pod, signature)

        node_name = self._try_schedule_using_hints(snapshot, pod, key, is_node_acceptable)
        if node_name is not None:
            return SchedulingStatus(pod=pod, node_name=node_name)

        node_name, reasons = self._try_schedule_anywhere(snapshot, pod, is_node_acceptable)
        if node_name is not None:
            self._hints.set(key, node_name)
            return SchedulingStatus(pod=pod, node_name=node_name)

        similar_pods.set_unschedulable(pod, signature)
        return SchedulingStatus(pod=pod, reasons=reasons)

    def _try_schedule_using_hints(
        self,
        snapshot: ClusterSnapshot,
        pod: Pod,
        key: str,
        is_node_acceptable: NodeAcceptable,
    ) -> Optional[str]:
        """Check the hinted node only. Returns its name on success, else None."""
        hinted = self._hints.get(key)
        if hinted is None or not snapshot.has_node(hinted):
            return None
        if not is_node_acceptable(snapshot.get_node_info(hinted)):
            return None

        verdict = self._check(snapshot, pod, hinted)
        if not verdict.fits:
            return None

        try:
            snapshot.add_pod(pod, hinted)
        except ClusterSnapshotError as err:
            logger.warning(
                "Binding %s/%s to hinted node %s failed, falling back to full scan: %s",
                pod.namespace, pod.name, hinted, err,
            )
            return None

        self._hints.set(key, hinted)
        return hinted

    def _try_schedule_anywhere(
        self,
        snapshot: ClusterSnapshot,
        pod: Pod,
        is_node_acceptable: NodeAcceptable,
    ) -> Tuple[Optional[str], List[str]]:
        """
        First-fit scan over acceptable nodes in stable order.

        Returns:
            (node_name, [])   on success;
            (None, reasons)   otherwise, one "<node>: <reason>" per reason
                              from every node tried.
        """
        reasons: List[str] = []
        tried = 0

        for node_info in snapshot.node_infos():
            if not is_node_acceptable(node_info):
                continue
            tried += 1

            verdict = self._check(snapshot, pod, node_info.name)
            if verdict.fits:
                snapshot.add_pod(pod, node_info.name)
                return node_info.name, []

            reasons.extend(f"{node_info.name}: {reason}" for reason in verdict.reasons)

        if tried == 0:
            reasons.append(NO_ELIGIBLE_NODES_REASON)
        return None, reasons

    def _check(self, snapshot: ClusterSnapshot, pod: Pod, node_name: str) -> PredicateVerdict:
        """
        Run the checker, turning non-fatal faults into a rejected verdict.
        """
        try:
            return self._checker.check_predicates(snapshot, pod, node_name)
        except FatalPredicateCheckerError:
            raise
        except PredicateCheckerError as err:
            logger.warning(
                "Predicate checker failed for %s/%s on node %s: %s",
                pod.namespace, pod.name, node_name, err,
            )
            return PredicateVerdict.reject("InternalError", [f"predicate checker error: {err}"])
