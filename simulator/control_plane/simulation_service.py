"""
simulator/control_plane/simulation_service.py
─────────────────────────────────────────────
SimulationService: the end-to-end entry point of the scheduling simulator.

Pipeline
────────
  1. Build a fresh ClusterSnapshot and load it with
     initialize_cluster_snapshot(nodes, scheduled_pods).
     Malformed input (duplicate node, pod without a target, pod on an
     unknown node) raises here; nothing is simulated.
  2. Build a fresh HintingSimulator around the predicate checker, so hints
     and the equivalence cache are scoped to this run.
  3. try_schedule_pods(pending_pods) in input order.
  4. Digest everything into a SimulationReport.

Nothing here touches a real cluster. The snapshot built for a run is
discarded afterwards; the service keeps only run metrics.

Replicas
────────
"What if this Deployment scaled by N?" needs N distinct pods. The snapshot
and the simulator reject a second binding of the same pod key, so
replicate_pod() stamps out copies of a template with unique names and uids,
keeping labels, spec and owner references (and therefore the equivalence
class) identical.

Thread safety
─────────────
Each simulate() call owns its snapshot and simulator, so concurrent calls
are independent as far as simulation state goes. The metrics deque is
shared; wrap simulate() in a lock if runs are issued from several threads
and exact metrics matter.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Sequence

import numpy as np

from sim_core.hinting_simulator import HintingSimulator, NodeAcceptable
from sim_core.predicates import PredicateChecker
from sim_core.snapshot import ClusterSnapshot, initialize_cluster_snapshot
from simulator.control_plane.node_filters import all_nodes
from simulator.control_plane.predicate_checker import BasicPredicateChecker
from simulator.shared.models import Node, Pod
from simulator.shared.report import SimulationReport

logger = logging.getLogger(__name__)

METRICS_WINDOW: int = 1000
"""Number of recent run latencies kept for the mean / P99 metrics."""


class SimulationService:
    """
    Build snapshot → run simulator → report.

    Public API:
        simulate(nodes, scheduled_pods, pending_pods, ...) → SimulationReport
        replicate_pod(template, count)                     → List[Pod]
        get_simulation_metrics()                           → Dict

    Attributes:
        predicate_checker : PredicateChecker — injected, shared across runs.
        run_latencies     : deque(maxlen=METRICS_WINDOW) — ms per run.
    """

    def __init__(self, predicate_checker: Optional[PredicateChecker] = None) -> None:
        self.predicate_checker: PredicateChecker = predicate_checker or BasicPredicateChecker()
        self.run_latencies: Deque[float] = deque(maxlen=METRICS_WINDOW)
        self._runs = 0
        self._pods_scheduled = 0
        self._pods_unschedulable = 0
        self._pods_not_evaluated = 0

    # ── Primary public API ────────────────────────────────────────────────────

    def simulate(
        self,
        nodes: Iterable[Node],
        scheduled_pods: Iterable[Pod],
        pending_pods: Sequence[Pod],
        node_filter: Optional[NodeAcceptable] = None,
        break_on_failure: bool = False,
    ) -> SimulationReport:
        """
        Answer "if these pods were submitted now, where would they land?".

        Args:
            nodes:            Current cluster nodes.
            scheduled_pods:   Pods already running (spec.node_name or
                              nominated_node_name set).
            pending_pods:     Pods to place, in arrival order.
            node_filter:      Node-eligibility predicate. None = all nodes.
            break_on_failure: Stop at the first unschedulable pod.

        Returns:
            SimulationReport for this run.

        Raises:
            ClusterSnapshotError: the cluster state is inconsistent.
            SimulationInputError: pending_pods is None.
            FatalPredicateCheckerError: raised by the predicate checker.
        """
        start = time.perf_counter()

        snapshot = ClusterSnapshot()
        initialize_cluster_snapshot(snapshot, nodes, scheduled_pods)

        simulator = HintingSimulator(self.predicate_checker)
        pending = list(pending_pods) if pending_pods is not None else None
        statuses, overflowing = simulator.try_schedule_pods(
            snapshot,
            pending,
            node_filter or all_nodes,
            break_on_failure=break_on_failure,
        )

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        report = SimulationReport.build(
            statuses=statuses,
            pending_pods=pending,
            snapshot=snapshot,
            overflowing_controller_count=overflowing,
            elapsed_ms=elapsed_ms,
        )
        self._record(report)

        logger.info(
            "simulate: %d pending on %d nodes → %d scheduled, %d unschedulable, "
            "%d not evaluated (%.2fms)",
            len(pending), len(snapshot.node_infos()), len(report.scheduled),
            len(report.unschedulable), len(report.not_evaluated), elapsed_ms,
        )
        return report

    @staticmethod
    def replicate_pod(template: Pod, count: int) -> List[Pod]:
        """
        `count` copies of `template` with unique names and uids.

        Copies are named "<name>-<i>" (i from 0) and get uid
        "<uid or name>-<i>". Everything else, including labels, spec and
        owner references, is shared with the template, so all copies fall
        into one equivalence class.

        Raises:
            ValueError: if count is negative.
        """
        if count < 0:
            raise ValueError(f"replicate_pod count must be >= 0, got {count}")
        base_uid = template.uid or template.name
        return [
            template.model_copy(update={
                "name": f"{template.name}-{i}",
                "uid": f"{base_uid}-{i}",
            })
            for i in range(count)
        ]

    def get_simulation_metrics(self) -> Dict[str, float]:
        """
        Aggregate counters across every simulate() call on this service.

        Returns:
            runs, pods_scheduled, pods_unschedulable, pods_not_evaluated,
            mean_run_ms, p99_run_ms (latency figures over the last
            METRICS_WINDOW runs; 0.0 before the first run).
        """
        latencies = np.asarray(self.run_latencies, dtype=np.float64)
        return {
            "runs": self._runs,
            "pods_scheduled": self._pods_scheduled,
            "pods_unschedulable": self._pods_unschedulable,
            "pods_not_evaluated": self._pods_not_evaluated,
            "mean_run_ms": float(latencies.mean()) if latencies.size else 0.0,
            "p99_run_ms": float(np.percentile(latencies, 99)) if latencies.size else 0.0,
        }

    # ── Internal ──────────────────────────────────────────────────────────────

    def _record(self, report: SimulationReport) -> None:
        self._runs += 1
        self._pods_scheduled += len(report.scheduled)
        self._pods_unschedulable += len(report.unschedulable)
        self._pods_not_evaluated += len(report.not_evaluated)
        self.run_latencies.append(report.elapsed_ms)
