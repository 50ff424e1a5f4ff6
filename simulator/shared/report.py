"""
simulator/shared/report.py
──────────────────────────
SimulationReport: what one simulation run tells a capacity planner.

Why this is a separate file from models.py
------------------------------------------
models.py defines the *inputs* of a simulation (nodes, pods) and the raw
per-pod outcome. report.py defines the *digest* a caller acts on:

  models.py  → "What is the cluster, and where did each pod go?"
  report.py  → "So what? How full is the cluster now, and what is left over?"

How a report gets populated
---------------------------
1. SimulationService.simulate() runs the HintingSimulator.
2. It hands the statuses, the original pending list and the mutated
   snapshot to SimulationReport.build().
3. build() partitions the pods, lists the ones never evaluated (batch
   stopped early), and computes per-node utilisation with numpy.

Fields a scale-up decision typically reads:
  • unschedulable          → pods that need new capacity.
  • not_evaluated          → pods skipped after break_on_failure. Unknown,
                             not failed.
  • node_utilisation       → how tightly the existing nodes are packed.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Sequence

import numpy as np
from pydantic import BaseModel, Field

from simulator.shared.models import PlacementPlan, Pod, SchedulingStatus
from sim_core.snapshot import ClusterSnapshot


class NodeUtilisation(BaseModel):
    """
    Requested-vs-allocatable figures for one node after the run.

    Fractions are in [0, 1] for a consistent snapshot; a node with zero
    allocatable of a resource reports 0.0 for it.
    """
    node_name: str
    pod_count: int = Field(..., ge=0)
    cpu_requested: float = Field(..., ge=0.0)
    cpu_allocatable: float = Field(..., ge=0.0)
    memory_requested: float = Field(..., ge=0.0)
    memory_allocatable: float = Field(..., ge=0.0)
    cpu_fraction: float = Field(..., ge=0.0)
    memory_fraction: float = Field(..., ge=0.0)


class SimulationReport(BaseModel):
    """
    Outcome of one SimulationService.simulate() call.

    Fields:
        statuses                     → One SchedulingStatus per evaluated pod,
                                       in input order.
        not_evaluated                → Pending pods after the break point.
                                       Empty unless break_on_failure fired.
        overflowing_controller_count → Controllers too diverse for the
                                       equivalence cache.
        elapsed_ms                   → Wall-clock duration of the trial.
        node_utilisation             → Per-node figures after the run,
                                       in snapshot order.
        generated_at                 → When the report was built (UTC).
    """
    statuses: List[SchedulingStatus] = Field(default_factory=list)
    not_evaluated: List[Pod] = Field(default_factory=list)
    overflowing_controller_count: int = Field(0, ge=0)
    elapsed_ms: float = Field(0.0, ge=0.0)
    node_utilisation: List[NodeUtilisation] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    # ── Construction ──────────────────────────────────────────────────────────

    @classmethod
    def build(
        cls,
        statuses: List[SchedulingStatus],
        pending_pods: Sequence[Pod],
        snapshot: ClusterSnapshot,
        overflowing_controller_count: int,
        elapsed_ms: float,
    ) -> "SimulationReport":
        """
        Digest a finished run.

        statuses is always a prefix of pending_pods (the simulator goes in
        order and only ever stops early), so everything past it is
        not_evaluated.
        """
        return cls(
            statuses=statuses,
            not_evaluated=list(pending_pods[len(statuses):]),
            overflowing_controller_count=overflowing_controller_count,
            elapsed_ms=elapsed_ms,
            node_utilisation=_node_utilisation(snapshot),
        )

    # ── Views ─────────────────────────────────────────────────────────────────

    @property
    def scheduled(self) -> List[SchedulingStatus]:
        return [s for s in self.statuses if s.scheduled]

    @property
    def unschedulable(self) -> List[SchedulingStatus]:
        return [s for s in self.statuses if not s.scheduled]

    @property
    def placement_plan(self) -> PlacementPlan:
        """pod key → node name, scheduled pods only."""
        return {s.pod.key: s.node_name for s in self.statuses if s.scheduled}

    @property
    def all_scheduled(self) -> bool:
        """True only if every pending pod was evaluated and placed."""
        return not self.not_evaluated and all(s.scheduled for s in self.statuses)

    @property
    def mean_cpu_fraction(self) -> float:
        """Average CPU fraction across nodes. 0.0 for an empty cluster."""
        if not self.node_utilisation:
            return 0.0
        return float(np.mean([u.cpu_fraction for u in self.node_utilisation]))

    @property
    def mean_memory_fraction(self) -> float:
        if not self.node_utilisation:
            return 0.0
        return float(np.mean([u.memory_fraction for u in self.node_utilisation]))


def _node_utilisation(snapshot: ClusterSnapshot) -> List[NodeUtilisation]:
    """
    Vectorised requested/allocatable ratios for every node.

    np.divide(..., where=allocatable > 0) leaves 0.0 in place for nodes
    without any allocatable of a resource instead of producing inf/nan.
    """
    infos = snapshot.node_infos()
    if not infos:
        return []

    cpu_req = np.array([i.requested_cpu for i in infos], dtype=np.float64)
    cpu_alloc = np.array([i.node.allocatable_resources.cpu for i in infos], dtype=np.float64)
    mem_req = np.array([i.requested_memory for i in infos], dtype=np.float64)
    mem_alloc = np.array([i.node.allocatable_resources.memory for i in infos], dtype=np.float64)

    cpu_frac = np.divide(cpu_req, cpu_alloc, out=np.zeros_like(cpu_req), where=cpu_alloc > 0)
    mem_frac = np.divide(mem_req, mem_alloc, out=np.zeros_like(mem_req), where=mem_alloc > 0)

    return [
        NodeUtilisation(
            node_name=info.name,
            pod_count=info.pod_count,
            cpu_requested=float(cpu_req[idx]),
            cpu_allocatable=float(cpu_alloc[idx]),
            memory_requested=float(mem_req[idx]),
            memory_allocatable=float(mem_alloc[idx]),
            cpu_fraction=float(cpu_frac[idx]),
            memory_fraction=float(mem_frac[idx]),
        )
        for idx, info in enumerate(infos)
    ]
