"""
simulator/shared/models.py
──────────────────────────
The single source of truth for every record the scheduling simulator reads.

Design philosophy
-----------------
Every model answers one question: "What does the simulator *need to know*
about this thing in order to decide whether a pod fits on a node?"

The real cluster API objects carry far more than that. The cluster client
(out of scope here) flattens them into these records; the simulation core
treats them as immutable values. All models are frozen: once a Node or Pod
is handed to a snapshot, nobody can change it behind the snapshot's back.
Anything that needs a modified record (sanitisation, replication, marking a
node not-ready) works on a copy via model_copy().

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from simulator.shared.quantities import parse_cpu, parse_memory


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: CONSTANTS & ENUMERATIONS
# Well-known keys the simulator must recognise by name.
# ─────────────────────────────────────────────────────────────────────────────

NOT_READY_TAINT_KEY: str = "node.kubernetes.io/not-ready"
"""Taint placed on a node whose Ready condition is false.

The node lifecycle controller adds it in a real cluster. We add it in
set_node_ready_state() so a not-ready node repels pods through the ordinary
taint/toleration check instead of a special case.
"""

UNSCHEDULABLE_TAINT_KEY: str = "node.kubernetes.io/unschedulable"
"""Toleration key that lets a pod land on a cordoned node."""

DAEMONSET_POD_ANNOTATION: str = "cluster-autoscaler.kubernetes.io/daemonset-pod"
"""Annotation that marks a pod as daemon-set-like even without a DaemonSet owner."""

DEFAULT_POD_CAPACITY: int = 110
"""Pod-count ceiling used when a node record does not state one (kubelet default)."""


class TaintEffect(str, Enum):
    """
    What a taint does to pods that do not tolerate it.

    NO_SCHEDULE        → New pods are not placed on the node.
    PREFER_NO_SCHEDULE → Soft preference only. Never blocks placement.
    NO_EXECUTE         → New pods are not placed; running pods are evicted.
    """
    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


class TolerationOperator(str, Enum):
    EXISTS = "Exists"
    EQUAL = "Equal"


class _Record(BaseModel):
    """Base for every simulator record: immutable, no unknown fields."""
    model_config = ConfigDict(frozen=True, extra="forbid")


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: NODE MODELS
# A capacity-bearing host in the simulated cluster.
# ─────────────────────────────────────────────────────────────────────────────

class Taint(_Record):
    """A repel condition on a node: key=value:effect."""
    key: str
    value: str = ""
    effect: TaintEffect = TaintEffect.NO_SCHEDULE

    def __str__(self) -> str:
        return f"{self.key}={self.value}:{self.effect.value}"


class NodeResources(_Record):
    """
    A bundle of node resources.

    Used twice on every node:
        capacity    → what the machine physically has.
        allocatable → what is left for pods after system reservations.
                      This is what admissibility is checked against.

    cpu is in cores, memory in bytes. Both accept Kubernetes quantity
    strings ("3500m", "16Gi").
    """
    cpu: float = Field(0.0, ge=0.0, description="CPU cores")
    memory: float = Field(0.0, ge=0.0, description="Memory in bytes")
    pods: int = Field(DEFAULT_POD_CAPACITY, ge=0, description="Pod-count ceiling")

    @field_validator("cpu", mode="before")
    @classmethod
    def _parse_cpu(cls, value: Any) -> float:
        return parse_cpu(value)

    @field_validator("memory", mode="before")
    @classmethod
    def _parse_memory(cls, value: Any) -> float:
        return parse_memory(value)


class Node(_Record):
    """
    A node in the simulated cluster.

    Fields:
        name          → Unique identity. The snapshot keys everything by it.
        labels        → Key-value tags matched by pod node selectors.
        taints        → Repel conditions (see TaintEffect).
        capacity      → Raw machine resources.
        allocatable   → Resources available to pods. Defaults to capacity
                        when omitted, which is what test clusters want.
        ready         → Ready condition. Informational on its own; the
                        not-ready taint is what actually repels pods.
        unschedulable → Cordoned. Blocks new pods unless they tolerate
                        UNSCHEDULABLE_TAINT_KEY.
    """
    name: str = Field(..., min_length=1, description="Unique node name")
    labels: Dict[str, str] = Field(default_factory=dict)
    taints: List[Taint] = Field(default_factory=list)
    capacity: NodeResources = Field(default_factory=NodeResources)
    allocatable: Optional[NodeResources] = Field(
        None,
        description="Resources available to pods. None = same as capacity."
    )
    ready: bool = True
    unschedulable: bool = False

    @property
    def allocatable_resources(self) -> NodeResources:
        """Effective allocatable resources (falls back to capacity)."""
        return self.allocatable if self.allocatable is not None else self.capacity


def set_node_ready_state(node: Node, ready: bool) -> Node:
    """
    Return a copy of `node` with its readiness set.

    A not-ready node also gets the NOT_READY_TAINT_KEY NoSchedule taint, the
    same way the node lifecycle controller would mark it. Marking a node
    ready again removes that taint.
    """
    taints = [t for t in node.taints if t.key != NOT_READY_TAINT_KEY]
    if not ready:
        taints.append(
            Taint(key=NOT_READY_TAINT_KEY, value="true", effect=TaintEffect.NO_SCHEDULE)
        )
    return node.model_copy(update={"ready": ready, "taints": taints})


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: POD SPEC MODELS
# What a workload asks for and how it is wired to volumes.
# ─────────────────────────────────────────────────────────────────────────────

class Toleration(_Record):
    """
    Allows a pod onto nodes carrying a matching taint.

    Matching follows the Kubernetes rules:
      • effect None matches every effect.
      • key None matches every key, so key None + Exists tolerates
        every taint.
      • Exists ignores the value; Equal requires value == taint.value.
    """
    key: Optional[str] = None
    operator: TolerationOperator = TolerationOperator.EQUAL
    value: Optional[str] = None
    effect: Optional[TaintEffect] = None

    def tolerates(self, taint: Taint) -> bool:
        if self.effect is not None and self.effect != taint.effect:
            return False
        if self.key and self.key != taint.key:
            return False
        if self.operator == TolerationOperator.EXISTS:
            return True
        return (self.value or "") == taint.value


class VolumeMount(_Record):
    name: str
    mount_path: str
    read_only: bool = False


class ProjectedVolumeSource(_Record):
    """
    A projected volume: service-account tokens, downward API, etc.

    The sources are kept opaque. The simulator only cares that the volume
    IS projected, because projected volumes are generated per pod instance
    and must not make two otherwise identical pods look different.
    """
    sources: List[Dict[str, Any]] = Field(default_factory=list)


class Volume(_Record):
    """A pod volume. At most one source field is expected to be set."""
    name: str
    projected: Optional[ProjectedVolumeSource] = None
    empty_dir: Optional[Dict[str, Any]] = None
    config_map: Optional[str] = None
    secret: Optional[str] = None
    persistent_volume_claim: Optional[str] = None


class Container(_Record):
    """
    One container of a pod.

    cpu_request is in cores, memory_request in bytes; both accept
    Kubernetes quantity strings.
    """
    name: str = "main"
    image: str = ""
    cpu_request: float = Field(0.0, ge=0.0)
    memory_request: float = Field(0.0, ge=0.0)
    volume_mounts: List[VolumeMount] = Field(default_factory=list)

    @field_validator("cpu_request", mode="before")
    @classmethod
    def _parse_cpu(cls, value: Any) -> float:
        return parse_cpu(value)

    @field_validator("memory_request", mode="before")
    @classmethod
    def _parse_memory(cls, value: Any) -> float:
        return parse_memory(value)


class PodSpec(_Record):
    """
    The scheduling-relevant part of a pod.

    node_name is set on pods that are already bound. Pending pods leave it
    empty; the simulator never writes it (records are immutable), it tracks
    placement in the snapshot instead.
    """
    node_name: Optional[str] = None
    node_selector: Dict[str, str] = Field(default_factory=dict)
    tolerations: List[Toleration] = Field(default_factory=list)
    volumes: List[Volume] = Field(default_factory=list)
    containers: List[Container] = Field(default_factory=list)
    init_containers: List[Container] = Field(default_factory=list)
    hostname: Optional[str] = None
    priority: Optional[int] = None


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: POD
# A unit of work, either already bound or pending.
# ─────────────────────────────────────────────────────────────────────────────

class OwnerReference(_Record):
    """
    Link from a pod to the object that created it.

    Only the reference with controller=True matters for the simulator: its
    uid is the stable identity shared by every replica of one Deployment,
    ReplicaSet, Job, ... and is the first-level key of the equivalence cache.
    """
    kind: str
    name: str
    uid: str
    controller: bool = False


class Pod(_Record):
    """
    A workload instance.

    Already-bound pods carry spec.node_name (or, for pods the scheduler has
    nominated but not yet bound, nominated_node_name). Pending pods carry
    neither; the simulator chooses a node for them or reports them
    unschedulable.
    """
    name: str = Field(..., min_length=1)
    namespace: str = "default"
    uid: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    owner_references: List[OwnerReference] = Field(default_factory=list)
    spec: PodSpec = Field(default_factory=PodSpec)
    nominated_node_name: Optional[str] = None

    @property
    def key(self) -> str:
        """Identity used by the snapshot: uid if set, else namespace/name."""
        return self.uid or f"{self.namespace}/{self.name}"

    def controller_ref(self) -> Optional[OwnerReference]:
        """The owning controller reference, or None for a bare pod."""
        for ref in self.owner_references:
            if ref.controller:
                return ref
        return None

    def is_daemonset_pod(self) -> bool:
        """
        True for pods that follow their node rather than binpacking.

        Either owned by a DaemonSet controller, or explicitly annotated as
        daemon-set-like (static/mirror pods managed outside the API).
        """
        ref = self.controller_ref()
        if ref is not None and ref.kind == "DaemonSet":
            return True
        return self.annotations.get(DAEMONSET_POD_ANNOTATION, "").lower() == "true"

    def requests(self) -> Tuple[float, float]:
        """
        Effective (cpu, memory) request of the pod.

        Regular containers run together, so their requests add up. Init
        containers run one at a time before them, so only the largest one
        counts. The pod needs the larger of the two, per resource.
        """
        cpu = sum(c.cpu_request for c in self.spec.containers)
        memory = sum(c.memory_request for c in self.spec.containers)
        for init in self.spec.init_containers:
            cpu = max(cpu, init.cpu_request)
            memory = max(memory, init.memory_request)
        return cpu, memory


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 5: SIMULATION OUTCOMES
# One record per pod the simulator evaluated.
# ─────────────────────────────────────────────────────────────────────────────

class SchedulingStatus(BaseModel):
    """
    Outcome of one trial placement.

    Fields:
        pod       → The pod that was evaluated.
        node_name → Where it landed. None = unschedulable.
        reasons   → Why it did not fit. Empty for scheduled pods, never
                    empty for unschedulable ones.
    """
    pod: Pod
    node_name: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)

    @property
    def scheduled(self) -> bool:
        return self.node_name is not None


# A placement plan maps pod key → node name
# e.g., {"default/web-1": "node-a", "default/web-2": "node-b"}
PlacementPlan = Dict[str, str]
