"""
sim_core/similar_pods.py
────────────────────────
Equivalence cache: remembers which groups of near-identical pods are
already known not to fit anywhere.

Why this exists
───────────────
Running the admissibility checker against every node for every pending pod
costs #pending_pods × #nodes checks. With thousands of pending pods that
dominates the whole simulation. But thousands of pending pods are almost
always replicas created by a handful of controllers (one Deployment scaled
to 2000), and replicas of one controller are usually identical for
scheduling purposes. If replica #1 fits nowhere, replica #2 will not either.

So instead of re-running every check we ask: "have we already seen an
identical pod from this controller fail?"

Two-level lookup
────────────────
A full signature (spec + labels) is not hashable in any useful way, and a
flat list of signatures would need a deep comparison against every entry.
So:

  Level 1: controller uid → list of signatures        O(1) dict lookup
  Level 2: scan that list with a deep comparison     O(MAX_PODS_PER_OWNER_REF)

The list is capped. A controller that produces more than the cap of
distinct unschedulable signatures is marked "overflowing" and nothing more
is cached for it: a long list would turn the cache itself into the linear
scan it was meant to avoid.

What counts as "identical"
──────────────────────────
Two pods are equivalent iff:
  • their label maps are exactly equal, and
  • their specs are semantically equal after sanitisation.

Sanitisation removes what legitimately differs between replicas without
affecting where they can run:
  • projected volumes (per-pod service-account tokens, downward API) and
    every container / init-container mount of those volumes;
  • the pod-local hostname override.

Semantic equality treats an absent field and its empty value as the same
thing (None == "" == [] == {}), and compares quantities by value (they are
already parsed to floats by the models, so "1000m" == "1").
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Set

from simulator.shared.models import Pod, PodSpec

logger = logging.getLogger(__name__)

# ── Cache configuration ───────────────────────────────────────────────────────

MAX_PODS_PER_OWNER_REF: int = 10
"""Maximum distinct unschedulable signatures remembered per controller.

Past this, the controller is marked overflowing and the cache is effectively
disabled for it. 10 is enough for the common case (one template, perhaps a
few rollout generations) and keeps the level-2 scan trivially cheap.
"""


# ── Sanitisation & semantic comparison ────────────────────────────────────────

def sanitize_pod_spec(spec: PodSpec) -> PodSpec:
    """
    Return a copy of `spec` with per-instance noise removed.

    The input is never modified: models are frozen and every change here
    goes through model_copy().

    Removed:
        • volumes with a projected source;
        • volume mounts (containers and init containers) that reference
          those volumes;
        • the hostname override.
    """
    projected_names = {v.name for v in spec.volumes if v.projected is not None}

    def _strip_mounts(containers):
        return [
            c.model_copy(update={
                "volume_mounts": [
                    m for m in c.volume_mounts if m.name not in projected_names
                ],
            })
            for c in containers
        ]

    return spec.model_copy(update={
        "volumes": [v for v in spec.volumes if v.projected is None],
        "containers": _strip_mounts(spec.containers),
        "init_containers": _strip_mounts(spec.init_containers),
        "hostname": None,
    })


def _semantic_form(value: Any) -> Any:
    """
    Normalise a dumped model for comparison.

    Dict entries whose value is None or empty ("", [], {}) are dropped, so
    "field absent" and "field empty" compare equal. Explicit 0 / False are
    kept: they are real values, not absence.
    """
    if isinstance(value, dict):
        normalised = {}
        for key, item in value.items():
            item = _semantic_form(item)
            if item is None or item == "" or item == [] or item == {}:
                continue
            normalised[key] = item
        return normalised
    if isinstance(value, list):
        return [_semantic_form(item) for item in value]
    return value


def semantic_spec(spec: PodSpec) -> Dict[str, Any]:
    """The sanitised, normalised comparison form of a pod spec."""
    return _semantic_form(sanitize_pod_spec(spec).model_dump(mode="json"))


def pod_spec_semantically_equal(a: PodSpec, b: PodSpec) -> bool:
    """True if two specs are equal once sanitised and normalised."""
    return semantic_spec(a) == semantic_spec(b)


# ── Signature ─────────────────────────────────────────────────────────────────

class EquivalenceSignature:
    """
    The (sanitised spec, labels) pair that stands in for "this pod".

    The semantic form of the spec is computed once at construction. Callers
    that need a pod's signature for several lookups build it once and pass
    it along.
    """

    __slots__ = ("labels", "spec_form")

    def __init__(self, labels: Dict[str, str], spec_form: Dict[str, Any]) -> None:
        self.labels = dict(labels)
        self.spec_form = spec_form

    @classmethod
    def from_pod(cls, pod: Pod) -> "EquivalenceSignature":
        return cls(pod.labels, semantic_spec(pod.spec))

    def matches(self, other: "EquivalenceSignature") -> bool:
        """Labels exactly equal and spec semantically equal."""
        return self.labels == other.labels and self.spec_form == other.spec_form

    def digest(self) -> str:
        """
        Stable short hash of the signature.

        Used where a hashable stand-in is needed (the hint table). Not used
        for cache matching itself, which always does the full comparison.
        """
        payload = json.dumps(
            {"labels": self.labels, "spec": self.spec_form},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha1(payload.encode("utf-8")).hexdigest()[:16]


# ── The cache ─────────────────────────────────────────────────────────────────

class SimilarPodsScheduling:
    """
    Negative cache of unschedulable pod equivalence classes, per controller.

    Scope: one simulation call. The HintingSimulator creates a fresh
    instance for every try_schedule_pods() so a result can never go stale
    across runs.

    Attributes:
        _items                   : Dict[str, List[EquivalenceSignature]]
                                   controller uid → known-bad signatures.
        _overflowing_controllers : Set[str]
                                   controllers past MAX_PODS_PER_OWNER_REF.
    """

    def __init__(self) -> None:
        self._items: Dict[str, List[EquivalenceSignature]] = {}
        self._overflowing_controllers: Set[str] = set()

    def is_similar_unschedulable(
        self,
        pod: Pod,
        signature: Optional[EquivalenceSignature] = None,
    ) -> bool:
        """
        True if an equivalent pod from the same controller already failed.

        Pods without a controller reference and daemon-set pods always
        return False: they are never cached, and a daemon-set pod must not
        be answered from a sibling's entry either.

        `signature` is the pod's precomputed EquivalenceSignature, if the
        caller has one; it is built here otherwise, at most once.
        """
        ref = pod.controller_ref()
        if ref is None or pod.is_daemonset_pod():
            return False
        stored = self._items.get(ref.uid)
        if not stored:
            return False
        candidate = signature or EquivalenceSignature.from_pod(pod)
        return any(entry.matches(candidate) for entry in stored)

    def set_unschedulable(
        self,
        pod: Pod,
        signature: Optional[EquivalenceSignature] = None,
    ) -> None:
        """
        Record that `pod`'s equivalence class does not fit anywhere.

        No-op for pods without a controller and for daemon-set pods (those
        target a specific node regardless of binpacking, so one failing says
        nothing about its siblings). A controller already holding
        MAX_PODS_PER_OWNER_REF signatures is marked overflowing instead.
        """
        ref = pod.controller_ref()
        if ref is None or pod.is_daemonset_pod():
            return
        signatures = self._items.setdefault(ref.uid, [])
        if len(signatures) >= MAX_PODS_PER_OWNER_REF:
            if ref.uid not in self._overflowing_controllers:
                logger.debug(
                    "Controller %s/%s (%s) overflowed the equivalence cache "
                    "(%d distinct signatures).",
                    ref.kind, ref.name, ref.uid, len(signatures),
                )
            self._overflowing_controllers.add(ref.uid)
            return
        signatures.append(signature or EquivalenceSignature.from_pod(pod))

    def overflowing_controller_count(self) -> int:
        """Number of controllers with too many distinct pods to cache."""
        return len(self._overflowing_controllers)

    def signature_count(self, controller_uid: str) -> int:
        """How many signatures are stored for one controller."""
        return len(self._items.get(controller_uid, ()))

    def __repr__(self) -> str:
        return (
            f"SimilarPodsScheduling(controllers={len(self._items)}, "
            f"overflowing={len(self._overflowing_controllers)})"
        )
